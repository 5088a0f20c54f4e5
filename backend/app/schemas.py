import enum
from pydantic import BaseModel, field_validator
from typing import Optional, List, Literal
from datetime import datetime

class ContentKind(str, enum.Enum):
    LIVE = "live"
    VOD = "vod"
    SERIES = "series"

DEFAULT_EXTENSIONS = {
    ContentKind.VOD: "mp4",
    ContentKind.SERIES: "mkv",
}

StrategyName = Literal["per_category", "bulk", "m3u_import"]

# --- Canonical model ---

def one_line(value: str) -> str:
    """Collapse whitespace runs and line breaks into single spaces."""
    return " ".join(str(value).split())


class Credentials(BaseModel):
    server: str
    username: str
    password: str

    class Config:
        frozen = True

class Category(BaseModel):
    category_id: str
    category_name: str
    kind: ContentKind

class Stream(BaseModel):
    stream_id: int
    name: str
    kind: ContentKind
    stream_icon: Optional[str] = None
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    container_extension: Optional[str] = None
    # Series episodes only
    season: Optional[int] = None
    episode: Optional[int] = None
    episode_title: Optional[str] = None

    @field_validator("name", "stream_icon", "category_name")
    @classmethod
    def _single_line(cls, value):
        return one_line(value) if value is not None else value

def episode_display_name(series_name: str, season: int, episode: int, title: Optional[str] = None) -> str:
    """`<series> - S01E02[ - <title>]`"""
    name = f"{series_name} - S{season:02d}E{episode:02d}"
    if title:
        name = f"{name} - {title}"
    return name

# --- API payloads ---

class CredentialsIn(BaseModel):
    server: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None

class SelectedCategory(BaseModel):
    category_id: str
    kind: ContentKind
    category_name: Optional[str] = None

class DiscoveryResponse(BaseModel):
    credentials: Credentials
    live: List[Category]
    vod: List[Category]
    series: List[Category]

class MaterializeRequest(BaseModel):
    credentials: CredentialsIn
    categories: List[SelectedCategory]
    strategy: Optional[StrategyName] = None

class StreamListResponse(BaseModel):
    streams: List[Stream]
    total: int

class PlaylistCreate(BaseModel):
    credentials: CredentialsIn
    streams: List[Stream]
    name: Optional[str] = None

class PlaylistCreated(BaseModel):
    id: str
    count: int

class PlaylistInfo(BaseModel):
    id: str
    name: str
    created_at: datetime
    hit_count: int
    count: int
