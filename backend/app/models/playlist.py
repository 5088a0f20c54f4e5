from sqlalchemy import Column, Integer, String, DateTime, JSON
from datetime import datetime
from app.db.base_class import Base

class Playlist(Base):
    __tablename__ = "playlists"

    id = Column(String(32), primary_key=True, index=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    hit_count = Column(Integer, default=0, nullable=False)

    # Credentials used to build the media URLs (server already normalized)
    server = Column(String, nullable=False)
    username = Column(String, nullable=False)
    password = Column(String, nullable=False)

    # Ordered list of canonical streams, as dicts
    streams = Column(JSON, nullable=False, default=list)
