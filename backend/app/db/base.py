# Import Base class
from app.db.base_class import Base

# Import all models here so that Base has them registered
# This is needed for Base.metadata.create_all()
from app.models.playlist import Playlist
