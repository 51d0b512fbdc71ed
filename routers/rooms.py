import asyncio
from typing import Tuple

from fastapi import APIRouter, Depends, HTTPException, Request

from backend import PunchStore, RoomStore
from codes import generate_code, generate_token, hash_password, is_valid_code, normalize_code
from constants import LEGACY_DEFAULT_PORT, Settings
from dependencies import get_punch_store, get_resolver, get_room_store, get_settings
from logging_config import get_logger
from netutils import cached_server_lan_ipv4, client_ip, is_loopback, is_private_or_loopback, sanitize_client_local_ip
from public_ip import PublicIpResolver
from rendezvous import ConnectRequest, connect_transition, expose_local_ip, valid_port
from schemas.rooms import (
    ConnectResponse,
    ConnectRoomRequest,
    CreateRoomRequest,
    DeleteRoomResponse,
    RoomResponse,
    RoomView,
    UpdateRoomRequest,
)

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


async def resolve_requester(request: Request, resolver: PublicIpResolver) -> Tuple[str, str]:
    """Return (observed source address, public address to record for it)."""
    req_ip = client_ip(request)
    you_ip = req_ip
    if is_private_or_loopback(req_ip):
        public = await resolver.resolve()
        if public:
            you_ip = public
    return req_ip, you_ip


async def lan_fallback(req_ip: str) -> str:
    """LAN address implied by the request source: the source itself, or the server's LAN address for loopback."""
    if not is_private_or_loopback(req_ip):
        return ""
    if is_loopback(req_ip):
        # hostname lookup may block, keep it off the event loop
        return await asyncio.get_running_loop().run_in_executor(None, cached_server_lan_ipv4)
    return req_ip


def require_api_key(request: Request, settings: Settings = Depends(get_settings)):
    if settings.api_key and request.headers.get("x-api-key") != settings.api_key:
        logger.warning(f"Rejected unauthorized {request.method} {request.url.path} from {client_ip(request)}")
        raise HTTPException(status_code=401, detail="unauthorized")


def legacy_port(value) -> int:
    if value is None:
        return LEGACY_DEFAULT_PORT
    port = valid_port(value)
    if not port:
        raise HTTPException(status_code=400, detail="invalid_port")
    return port


def path_code(code: str) -> str:
    code = normalize_code(code)
    if not is_valid_code(code):
        raise HTTPException(status_code=400, detail="invalid_code")
    return code


@rooms_router.post("/connect", response_model=ConnectResponse, response_model_exclude_none=True)
async def connect_room(
    body: ConnectRoomRequest,
    request: Request,
    rooms: RoomStore = Depends(get_room_store),
    punches: PunchStore = Depends(get_punch_store),
    resolver: PublicIpResolver = Depends(get_resolver),
    settings: Settings = Depends(get_settings),
):
    # First caller for a code becomes the host (role 1). A host that does not
    # know its public port yet creates the room with port 0, learns the port
    # over UDP WHOAMI, then calls again with its creatorToken and port.
    # The second device (role 2) polls until the port is known; the response
    # that hands it the host endpoint also retires the room.
    pw_hash = hash_password(body.password)
    if not pw_hash:
        raise HTTPException(status_code=400, detail="password_required")

    req_ip, you_ip = await resolve_requester(request, resolver)

    code = normalize_code(body.code) or generate_code(body.codeLength)
    if not is_valid_code(code):
        raise HTTPException(status_code=400, detail="invalid_code")

    connect = ConnectRequest(
        code=code,
        pw_hash=pw_hash,
        port=valid_port(body.port),
        ttl_seconds=body.ttlSeconds,
        local_ip=sanitize_client_local_ip(body.localIp),
        creator_token=(body.creatorToken or "").strip(),
        you_ip=you_ip,
        fallback_local_ip=await lan_fallback(req_ip),
    )
    transition, room = rooms.apply(code, lambda current: connect_transition(current, connect))

    if settings.log_connections:
        logger.info(
            f"[connect] {transition.action} code={code} by={req_ip} youIp={you_ip} role={transition.role} "
            f"waiting={transition.waiting} host={room.ip}:{room.port} localIp={room.local_ip or '-'}"
        )

    if transition.consumed:
        punches.delete(code)
        if settings.log_connections:
            logger.info(f"[connect] clear code={code} (player2_received_endpoint)")

    expose = transition.created or expose_local_ip(room, you_ip)
    return ConnectResponse(
        created=transition.created,
        role=transition.role,
        waiting=transition.waiting,
        creatorToken=transition.creator_token,
        youIp=you_ip,
        room=RoomView(**room.view(expose_local_ip=expose)),
    )


@rooms_router.post("", response_model=RoomResponse, dependencies=[Depends(require_api_key)])
async def create_room(
    body: CreateRoomRequest,
    request: Request,
    rooms: RoomStore = Depends(get_room_store),
    resolver: PublicIpResolver = Depends(get_resolver),
):
    pw_hash = hash_password(body.password)
    if not pw_hash:
        raise HTTPException(status_code=400, detail="password_required")

    code = normalize_code(body.code) or generate_code(body.codeLength)
    if not is_valid_code(code):
        raise HTTPException(status_code=400, detail="invalid_code")
    port = legacy_port(body.port)

    req_ip, you_ip = await resolve_requester(request, resolver)
    room = rooms.upsert(
        code,
        ip=you_ip,
        local_ip=await lan_fallback(req_ip),
        port=port,
        ttl_seconds=body.ttlSeconds,
        pw_hash=pw_hash,
        creator_token=generate_token(),
    )
    logger.info(f"Room {code} created via legacy endpoint by {req_ip}: ip={room.ip} port={room.port}")
    return RoomResponse(room=RoomView(**room.view()))


@rooms_router.get("/{code}", response_model=RoomResponse)
async def get_room(code: str, request: Request, rooms: RoomStore = Depends(get_room_store)):
    code = path_code(code)
    raw = request.headers.get("x-room-password") or request.headers.get("x-room-pass") or ""
    room, error = rooms.get_if_authorized(code, hash_password(raw))
    if error:
        status = {"wrong_password": 403, "password_required": 400}.get(error, 404)
        logger.debug(f"Room lookup for {code} from {client_ip(request)} failed: {error}")
        raise HTTPException(status_code=status, detail=error)
    return RoomResponse(room=RoomView(**room.view()))


@rooms_router.put("/{code}", response_model=RoomResponse, dependencies=[Depends(require_api_key)])
async def update_room(
    code: str,
    body: UpdateRoomRequest,
    request: Request,
    rooms: RoomStore = Depends(get_room_store),
    resolver: PublicIpResolver = Depends(get_resolver),
):
    code = path_code(code)
    pw_hash = hash_password(body.password)
    if not pw_hash:
        raise HTTPException(status_code=400, detail="password_required")
    port = legacy_port(body.port)

    req_ip, you_ip = await resolve_requester(request, resolver)
    room = rooms.upsert(
        code,
        ip=you_ip,
        local_ip=await lan_fallback(req_ip),
        port=port,
        ttl_seconds=body.ttlSeconds,
        pw_hash=pw_hash,
    )
    logger.info(f"Room {code} updated via legacy endpoint by {req_ip}: ip={room.ip} port={room.port}")
    return RoomResponse(room=RoomView(**room.view()))


@rooms_router.delete("/{code}", response_model=DeleteRoomResponse, dependencies=[Depends(require_api_key)])
async def delete_room(
    code: str,
    rooms: RoomStore = Depends(get_room_store),
    punches: PunchStore = Depends(get_punch_store),
):
    code = path_code(code)
    deleted = rooms.delete(code)
    punches.delete(code)
    logger.info(f"Room {code} delete via legacy endpoint: deleted={deleted}")
    return DeleteRoomResponse(deleted=deleted)
