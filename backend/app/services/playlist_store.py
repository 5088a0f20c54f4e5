import uuid
import logging
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from app.core.exceptions import PlaylistNotFound
from app.models.playlist import Playlist
from app.schemas import Credentials, Stream

logger = logging.getLogger(__name__)


class PlaylistStore:
    """Saved stream selections keyed by an opaque id."""

    def __init__(self, db: Session):
        self.db = db

    def save(self, credentials: Credentials, streams: Sequence[Stream], name: Optional[str] = None) -> str:
        playlist = Playlist(
            id=uuid.uuid4().hex,
            name=name or f"Playlist {datetime.utcnow().isoformat()}",
            server=credentials.server,
            username=credentials.username,
            password=credentials.password,
            streams=[s.model_dump(mode="json") for s in streams],
            hit_count=0,
        )
        self.db.add(playlist)
        self.db.commit()
        logger.info(f"Saved playlist {playlist.id} with {len(streams)} streams")
        return playlist.id

    def get(self, playlist_id: str) -> Playlist:
        playlist = self.db.query(Playlist).filter(Playlist.id == playlist_id).first()
        if not playlist:
            raise PlaylistNotFound(playlist_id)
        return playlist

    def load_by_id(self, playlist_id: str) -> Tuple[Credentials, List[Stream]]:
        playlist = self.get(playlist_id)
        credentials = Credentials(server=playlist.server, username=playlist.username, password=playlist.password)
        streams = [Stream.model_validate(s) for s in playlist.streams or []]
        return credentials, streams


def increment_hits(session_factory: Callable[[], Session], playlist_id: str) -> None:
    """
    Bump the access counter of a playlist in its own session.

    Runs after the playlist has been served, so it never raises.
    """
    db = session_factory()
    try:
        db.query(Playlist).filter(Playlist.id == playlist_id).update(
            {Playlist.hit_count: Playlist.hit_count + 1}, synchronize_session=False
        )
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Could not update hit count for playlist {playlist_id}: {e}")
    finally:
        db.close()
