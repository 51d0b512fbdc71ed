"""Connect protocol for ``POST /rooms/connect``.

A code moves through four states:

    UNBORN        no record
    PENDING_PORT  record exists, host port not yet known (port == 0)
    READY         host port known
    CONSUMED      the joining peer received the host endpoint; record removed

``connect_transition`` is pure: given the live room (or None) and a request it
returns the Transition to apply. RoomStore.apply runs it under the store lock.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from backend import Room, RoomError
from codes import generate_token

ROLE_HOST = 1
ROLE_GUEST = 2


class RoomState(str, Enum):
    UNBORN = "unborn"
    PENDING_PORT = "pending_port"
    READY = "ready"
    CONSUMED = "consumed"


def room_state(room: Optional[Room]) -> RoomState:
    if room is None:
        return RoomState.UNBORN
    return room_state_for_port(room.port)


def room_state_for_port(port: int) -> RoomState:
    return RoomState.PENDING_PORT if port == 0 else RoomState.READY


def valid_port(value) -> int:
    """Return the port as an int if it is in 1..65535, else 0."""
    try:
        port = int(value)
    except (TypeError, ValueError):
        return 0
    return port if 1 <= port <= 65535 else 0


@dataclass
class ConnectRequest:
    code: str
    pw_hash: str
    port: int = 0
    ttl_seconds: Optional[int] = None
    local_ip: str = ""  # caller-declared LAN address, already sanitized
    creator_token: str = ""
    you_ip: str = ""  # requester's public address after resolution
    fallback_local_ip: str = ""  # LAN address derived from the request source


@dataclass
class Transition:
    action: str  # create | finalize | join
    state: RoomState
    role: int
    waiting: bool
    created: bool = False
    creator_token: Optional[str] = None
    upsert: Optional[dict] = field(default=None)

    @property
    def consumed(self) -> bool:
        return self.state is RoomState.CONSUMED


def _create(req: ConnectRequest, token_factory: Callable[[], str]) -> Transition:
    token = token_factory()
    local_ip = req.local_ip or req.fallback_local_ip
    return Transition(
        action="create",
        state=room_state_for_port(req.port),
        role=ROLE_HOST,
        waiting=req.port == 0,
        created=True,
        creator_token=token,
        upsert=dict(ip=req.you_ip, local_ip=local_ip, port=req.port, ttl_seconds=req.ttl_seconds,
                    pw_hash=req.pw_hash, creator_token=token),
    )


def _finalize(room: Room, req: ConnectRequest) -> Transition:
    local_ip = room.local_ip or req.local_ip
    return Transition(
        action="finalize",
        state=RoomState.READY,
        role=ROLE_HOST,
        waiting=False,
        upsert=dict(ip=room.ip, local_ip=local_ip, port=req.port, ttl_seconds=req.ttl_seconds,
                    pw_hash=room.pw_hash, creator_token=room.creator_token),
    )


def _join(room: Room, req: ConnectRequest, is_creator: bool) -> Transition:
    state = room_state(room)
    waiting = state is RoomState.PENDING_PORT
    if is_creator:
        # host polling again: restart the room's current lifetime, change nothing else
        ttl_seconds = req.ttl_seconds if req.ttl_seconds is not None else room.expires_at - room.updated_at
        return Transition(
            action="join",
            state=state,
            role=ROLE_HOST,
            waiting=waiting,
            upsert=dict(ip=room.ip, local_ip=room.local_ip, port=room.port, ttl_seconds=ttl_seconds,
                        pw_hash=room.pw_hash, creator_token=room.creator_token),
        )
    return Transition(
        action="join",
        state=state if waiting else RoomState.CONSUMED,
        role=ROLE_GUEST,
        waiting=waiting,
    )


def connect_transition(room: Optional[Room], req: ConnectRequest,
                       token_factory: Callable[[], str] = generate_token) -> Transition:
    if room is None:
        return _create(req, token_factory)

    if room.pw_hash and room.pw_hash != req.pw_hash:
        raise RoomError(403, "wrong_password")

    is_creator = bool(req.creator_token) and bool(room.creator_token) and req.creator_token == room.creator_token
    if is_creator and room.port == 0 and req.port:
        return _finalize(room, req)
    return _join(room, req, is_creator)


def expose_local_ip(room: Room, you_ip: str) -> bool:
    """A LAN address is only useful to a peer behind the same public address."""
    return bool(you_ip) and bool(room.ip) and you_ip == room.ip
