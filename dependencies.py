from fastapi import Request

from backend import PunchStore, RoomStore
from constants import Settings
from public_ip import PublicIpResolver


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_room_store(request: Request) -> RoomStore:
    return request.app.state.rooms


def get_punch_store(request: Request) -> PunchStore:
    return request.app.state.punches


def get_resolver(request: Request) -> PublicIpResolver:
    return request.app.state.resolver
