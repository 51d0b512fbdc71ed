"""UDP endpoint discovery and hole-punch pairing.

Datagrams are single ASCII lines:

    SNO_WHOAMI1          -> SNO_SELF1 <ip> <port>
    SNO_PUNCH1 <CODE>    -> SNO_WAIT | SNO_PEER1 <ip> <port> | SNO_NOROOM

Anything else is dropped without a reply.
"""
import asyncio
from typing import List, Optional, Tuple

from backend import PunchStore, RoomStore
from codes import is_valid_code, normalize_code
from logging_config import get_logger

logger = get_logger(__name__)

Address = Tuple[str, int]

WHOAMI = "SNO_WHOAMI1"
PUNCH = "SNO_PUNCH1"
MAX_DATAGRAM = 512


def parse_message(data: bytes) -> Optional[Tuple[str, Optional[str]]]:
    """Return ("whoami", None), ("punch", code) or None for anything unrecognized."""
    if not data or len(data) > MAX_DATAGRAM:
        return None
    parts = data.decode("ascii", "replace").split()
    if not parts:
        return None
    if parts[0] == WHOAMI:
        return "whoami", None
    if parts[0] != PUNCH or len(parts) < 2:
        return None
    code = normalize_code(parts[1])
    if not is_valid_code(code):
        return None
    return "punch", code


def encode_self(ip: str, port: int) -> bytes:
    return f"SNO_SELF1 {ip} {port}\n".encode("ascii")


def encode_peer(ip: str, port: int) -> bytes:
    return f"SNO_PEER1 {ip} {port}\n".encode("ascii")


WAIT_MESSAGE = b"SNO_WAIT\n"
NOROOM_MESSAGE = b"SNO_NOROOM\n"


class PunchHandler:
    """Maps one incoming datagram to the replies it triggers, without touching a socket."""

    def __init__(self, rooms: RoomStore, punches: PunchStore, log_connections: bool = False):
        self.rooms = rooms
        self.punches = punches
        self.log_connections = log_connections

    def handle(self, data: bytes, addr: Address) -> List[Tuple[bytes, Address]]:
        msg = parse_message(data)
        if msg is None:
            logger.debug(f"Dropping unrecognized datagram from {addr[0]}:{addr[1]}")
            return []
        kind, code = msg
        ip, port = addr[0], addr[1]

        if kind == "whoami":
            if self.log_connections:
                logger.info(f"[udp] whoami from={ip}:{port}")
            return [(encode_self(ip, port), addr)]

        if self.rooms.get(code) is None:
            if self.log_connections:
                logger.info(f"[udp] punch code={code} from={ip}:{port} -> noroom")
            return [(NOROOM_MESSAGE, addr)]

        if self.log_connections:
            logger.info(f"[udp] punch code={code} from={ip}:{port}")

        slot, peer = self.punches.upsert_endpoint(code, ip, port)
        if peer is None:
            return [(WAIT_MESSAGE, addr)]
        return [
            (encode_peer(peer.address, peer.port), addr),
            (encode_peer(ip, port), (peer.address, peer.port)),
        ]


class PunchProtocol(asyncio.DatagramProtocol):
    def __init__(self, handler: PunchHandler):
        super().__init__()
        self.handler = handler
        self.transport = None

    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data: bytes, addr):
        try:
            replies = self.handler.handle(data, addr)
        except Exception as e:
            logger.error(f"Error handling datagram from {addr}: {e}", exc_info=True)
            return
        for payload, target in replies:
            try:
                self.transport.sendto(payload, target)
            except OSError as e:
                logger.debug(f"UDP send to {target} failed: {e}")

    def error_received(self, exc):
        logger.warning(f"UDP socket error: {exc}")


async def start_udp_server(handler: PunchHandler, host: str, port: int):
    loop = asyncio.get_running_loop()
    transport, protocol = await loop.create_datagram_endpoint(
        lambda: PunchProtocol(handler), local_addr=(host, port)
    )
    logger.info(f"UDP punch helper listening on udp://{host}:{port}")
    return transport, protocol
