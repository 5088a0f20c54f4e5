from typing import Optional
import httpx
from app.db.session import get_db  # noqa: F401


def get_upstream_transport() -> Optional[httpx.AsyncBaseTransport]:
    """Transport used for upstream Xtream calls; None means the real network."""
    return None
