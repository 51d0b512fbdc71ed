from pydantic import BaseModel, field_validator
from typing import Optional


def scalar_to_str(value):
    # clients send codes and passwords as JSON numbers too
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class ConnectRoomRequest(BaseModel):
    code: Optional[str] = None
    codeLength: Optional[int] = None
    password: Optional[str] = None
    port: Optional[int] = None
    ttlSeconds: Optional[int] = None
    localIp: Optional[str] = None
    creatorToken: Optional[str] = None

    coerce_scalars = field_validator("code", "password", "creatorToken", mode="before")(scalar_to_str)

class CreateRoomRequest(BaseModel):
    code: Optional[str] = None
    codeLength: Optional[int] = None
    password: Optional[str] = None
    port: Optional[int] = None
    ttlSeconds: Optional[int] = None

    coerce_scalars = field_validator("code", "password", mode="before")(scalar_to_str)

class UpdateRoomRequest(BaseModel):
    password: Optional[str] = None
    port: Optional[int] = None
    ttlSeconds: Optional[int] = None

    coerce_scalars = field_validator("password", mode="before")(scalar_to_str)

class RoomView(BaseModel):
    code: str
    ip: str
    localIp: str
    port: int
    expiresAt: int

class ConnectResponse(BaseModel):
    ok: bool = True
    created: bool
    role: int
    waiting: bool
    creatorToken: Optional[str] = None
    youIp: str
    room: RoomView

class RoomResponse(BaseModel):
    ok: bool = True
    room: RoomView

class DeleteRoomResponse(BaseModel):
    ok: bool = True
    deleted: bool

class HealthResponse(BaseModel):
    ok: bool = True
    ts: int
    rooms: int

class ErrorResponse(BaseModel):
    ok: bool = False
    error: str
