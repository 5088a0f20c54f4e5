from fastapi import APIRouter
from app.api.endpoints import xtream, playlists

api_router = APIRouter()
api_router.include_router(xtream.router, prefix="/xtream", tags=["xtream"])
api_router.include_router(playlists.router, prefix="/playlists", tags=["playlists"])
