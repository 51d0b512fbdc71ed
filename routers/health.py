from fastapi import APIRouter, Depends

from backend import RoomStore
from dependencies import get_room_store
from schemas.rooms import HealthResponse

health_router = APIRouter(tags=["health"])


@health_router.get("/health", response_model=HealthResponse)
async def health(rooms: RoomStore = Depends(get_room_store)):
    return HealthResponse(ts=rooms.now(), rooms=rooms.count())
