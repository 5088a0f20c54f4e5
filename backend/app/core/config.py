from pydantic_settings import BaseSettings
from typing import Literal

class Settings(BaseSettings):
    PROJECT_NAME: str = "Xtream Playlist Builder"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # Database (playlist store)
    DATABASE_URL: str = "sqlite:///./playlists.db"

    # Upstream calls
    UPSTREAM_TIMEOUT: float = 20.0
    UPSTREAM_RETRIES: int = 2

    # Aggregation
    AGGREGATION_DEADLINE: float = 60.0
    AGGREGATION_STRATEGY: Literal["per_category", "bulk", "m3u_import"] = "per_category"
    SERIES_BATCH_SIZE: int = 10
    SERIES_LIMIT: int = 200
    BULK_VOD_LIMIT: int = 3000

    class Config:
        env_file = ".env"

settings = Settings()
