import dataclasses
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from codes import clamp
from constants import DEFAULT_TTL_SECONDS, MAX_TTL_SECONDS, MIN_TTL_SECONDS, PUNCH_TTL_SECONDS
from logging_config import get_logger

logger = get_logger(__name__)

Clock = Callable[[], float]


class RoomError(Exception):
    """A request-level failure carrying an HTTP status and a stable error tag."""

    def __init__(self, status_code: int, error: str):
        super().__init__(error)
        self.status_code = status_code
        self.error = error


@dataclass(frozen=True)
class Room:
    code: str
    ip: str
    local_ip: str
    port: int
    pw_hash: str
    creator_token: str
    created_at: int
    updated_at: int
    expires_at: int

    def view(self, expose_local_ip: bool = True) -> dict:
        """Public shape of a room as sent to clients."""
        return {
            "code": self.code,
            "ip": self.ip,
            "localIp": self.local_ip if expose_local_ip else "",
            "port": self.port,
            "expiresAt": self.expires_at,
        }


class RoomStore:
    """In-memory registry of rooms keyed by code, with TTL expiry.

    All mutations happen under a single lock. Returned Room objects are
    immutable snapshots, so callers never alias stored state.
    """

    def __init__(self, default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
                 max_ttl_seconds: int = MAX_TTL_SECONDS, clock: Clock = time.time):
        self.default_ttl_seconds = default_ttl_seconds
        self.max_ttl_seconds = max_ttl_seconds
        self._clock = clock
        self._rooms: Dict[str, Room] = {}
        self._lock = threading.RLock()
        logger.info(f"Initializing RoomStore (default_ttl={default_ttl_seconds}s, max_ttl={max_ttl_seconds}s)")

    def now(self) -> int:
        return int(self._clock())

    def effective_ttl(self, ttl_seconds=None) -> int:
        try:
            ttl = int(ttl_seconds) if ttl_seconds is not None else 0
        except (TypeError, ValueError):
            ttl = 0
        if ttl == 0:
            ttl = self.default_ttl_seconds
        return clamp(ttl, MIN_TTL_SECONDS, self.max_ttl_seconds)

    def upsert(self, code: str, ip: str, local_ip: str = "", port: int = 0, ttl_seconds=None,
               pw_hash: str = "", creator_token: str = "") -> Room:
        with self._lock:
            t = self.now()
            prev = self._rooms.get(code)
            room = Room(
                code=code,
                ip=ip,
                local_ip=local_ip or "",
                port=int(port or 0),
                pw_hash=pw_hash or "",
                creator_token=creator_token or (prev.creator_token if prev else ""),
                created_at=prev.created_at if prev else t,
                updated_at=t,
                expires_at=t + self.effective_ttl(ttl_seconds),
            )
            self._rooms[code] = room
        logger.debug(f"Room {code} stored: ip={room.ip} port={room.port} expires_at={room.expires_at}")
        return room

    def _live(self, code: str) -> Optional[Room]:
        room = self._rooms.get(code)
        if room is None:
            return None
        if room.expires_at <= self.now():
            logger.debug(f"Room {code} expired on read")
            del self._rooms[code]
            return None
        return room

    def get(self, code: str) -> Optional[Room]:
        with self._lock:
            return self._live(code)

    def get_if_authorized(self, code: str, pw_hash: str) -> Tuple[Optional[Room], Optional[str]]:
        room = self.get(code)
        if room is None:
            return None, "not_found"
        if not pw_hash:
            return None, "password_required"
        if room.pw_hash and room.pw_hash != pw_hash:
            return None, "wrong_password"
        return room, None

    def apply(self, code: str, transition_fn):
        """Run a state transition for one code atomically.

        ``transition_fn`` receives the live room (or None) and returns a
        rendezvous Transition. Its ``upsert`` fields are written back, or the
        room is deleted when the transition consumes it. Returns the
        transition together with the room the response should describe.
        """
        with self._lock:
            current = self._live(code)
            transition = transition_fn(current)
            if transition.upsert is not None:
                room = self.upsert(code, **transition.upsert)
            elif transition.consumed:
                self._rooms.pop(code, None)
                room = current
            else:
                room = current
            return transition, room

    def delete(self, code: str) -> bool:
        with self._lock:
            deleted = self._rooms.pop(code, None) is not None
        logger.debug(f"Room {code} delete requested: deleted={deleted}")
        return deleted

    def purge_expired(self) -> int:
        with self._lock:
            t = self.now()
            expired = [code for code, room in self._rooms.items() if room.expires_at <= t]
            for code in expired:
                del self._rooms[code]
        if expired:
            logger.debug(f"Purged {len(expired)} expired rooms")
        return len(expired)

    def count(self) -> int:
        with self._lock:
            return len(self._rooms)


@dataclass
class Endpoint:
    address: str
    port: int
    last_seen: int

    @property
    def key(self) -> Tuple[str, int]:
        return self.address, self.port


@dataclass
class PunchEntry:
    expires_at: int
    a: Optional[Endpoint] = None
    b: Optional[Endpoint] = None


class PunchStore:
    """Pairs at most two UDP endpoints per room code. Entries live for a short TTL after the last upsert."""

    def __init__(self, ttl_seconds: int = PUNCH_TTL_SECONDS, clock: Clock = time.time):
        self.ttl_seconds = max(5, int(ttl_seconds or PUNCH_TTL_SECONDS))
        self._clock = clock
        self._entries: Dict[str, PunchEntry] = {}
        self._lock = threading.Lock()
        logger.info(f"Initializing PunchStore (ttl={self.ttl_seconds}s)")

    def now(self) -> int:
        return int(self._clock())

    def upsert_endpoint(self, code: str, address: str, port: int) -> Tuple[Optional[str], Optional[Endpoint]]:
        """Register an endpoint for ``code``.

        Returns ``(slot, peer)``: the slot ("a" or "b") the endpoint occupies
        and a copy of the other occupant, if any. When both slots already hold
        other endpoints the newcomer is ignored and ``(None, None)`` returned.
        """
        with self._lock:
            t = self.now()
            entry = self._entries.get(code)
            if entry is not None and entry.expires_at <= t:
                entry = None
            if entry is None:
                entry = PunchEntry(expires_at=t + self.ttl_seconds)
                self._entries[code] = entry
            entry.expires_at = t + self.ttl_seconds

            key = (address, port)
            if entry.a is not None and entry.a.key == key:
                entry.a.last_seen = t
                return "a", _copy(entry.b)
            if entry.b is not None and entry.b.key == key:
                entry.b.last_seen = t
                return "b", _copy(entry.a)
            if entry.a is None:
                entry.a = Endpoint(address, port, t)
                return "a", _copy(entry.b)
            if entry.b is None:
                entry.b = Endpoint(address, port, t)
                return "b", _copy(entry.a)
            return None, None

    def get(self, code: str) -> Optional[PunchEntry]:
        with self._lock:
            entry = self._entries.get(code)
            if entry is None or entry.expires_at <= self.now():
                return None
            return dataclasses.replace(entry, a=_copy(entry.a), b=_copy(entry.b))

    def delete(self, code: str) -> bool:
        with self._lock:
            return self._entries.pop(code, None) is not None

    def purge_expired(self) -> int:
        with self._lock:
            t = self.now()
            expired = [code for code, entry in self._entries.items() if entry.expires_at <= t]
            for code in expired:
                del self._entries[code]
        if expired:
            logger.debug(f"Purged {len(expired)} expired punch entries")
        return len(expired)

    def count(self) -> int:
        with self._lock:
            return len(self._entries)


def _copy(endpoint: Optional[Endpoint]) -> Optional[Endpoint]:
    return dataclasses.replace(endpoint) if endpoint is not None else None
