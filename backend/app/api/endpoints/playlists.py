from typing import Any, Optional

import httpx
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Response
from sqlalchemy.orm import Session

from app import schemas
from app.api import deps
from app.api.endpoints.xtream import materialize, validate_credentials
from app.core.exceptions import PlaylistNotFound
from app.db.session import SessionLocal
from app.services import m3u
from app.services.playlist_store import PlaylistStore, increment_hits

router = APIRouter()

M3U_MEDIA_TYPE = "application/x-mpegurl"


@router.post("", response_model=schemas.PlaylistCreated)
def save_playlist(
    playlist_in: schemas.PlaylistCreate,
    db: Session = Depends(deps.get_db),
) -> Any:
    """Save an already materialized stream selection."""
    credentials = validate_credentials(playlist_in.credentials)
    playlist_id = PlaylistStore(db).save(credentials, playlist_in.streams, playlist_in.name)
    return schemas.PlaylistCreated(id=playlist_id, count=len(playlist_in.streams))


@router.post("/generate", response_model=schemas.PlaylistCreated)
async def generate_playlist(
    request: schemas.MaterializeRequest,
    db: Session = Depends(deps.get_db),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(deps.get_upstream_transport),
) -> Any:
    """Materialize the selected categories and save them as a new playlist."""
    credentials, streams = await materialize(request, transport)
    playlist_id = PlaylistStore(db).save(credentials, streams)
    return schemas.PlaylistCreated(id=playlist_id, count=len(streams))


@router.get("/{playlist_id}/info", response_model=schemas.PlaylistInfo)
def get_playlist_info(
    playlist_id: str,
    db: Session = Depends(deps.get_db),
) -> Any:
    try:
        playlist = PlaylistStore(db).get(playlist_id)
    except PlaylistNotFound:
        raise HTTPException(status_code=404, detail="Playlist not found")
    return schemas.PlaylistInfo(
        id=playlist.id,
        name=playlist.name,
        created_at=playlist.created_at,
        hit_count=playlist.hit_count,
        count=len(playlist.streams or []),
    )


@router.get("/{playlist_id}")
def download_playlist(
    playlist_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(deps.get_db),
):
    """Serve a saved playlist as an M3U file."""
    try:
        credentials, streams = PlaylistStore(db).load_by_id(playlist_id)
    except PlaylistNotFound:
        raise HTTPException(status_code=404, detail="Playlist not found")

    background_tasks.add_task(increment_hits, SessionLocal, playlist_id)
    return Response(
        content=m3u.serialize(credentials, streams),
        media_type=M3U_MEDIA_TYPE,
        headers={
            "Content-Disposition": f'attachment; filename="playlist-{playlist_id}.m3u"',
            "Cache-Control": "no-cache",
        },
    )
