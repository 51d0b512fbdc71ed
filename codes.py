import hashlib
import secrets

from constants import (
    PASSWORD_MAX_LENGTH,
    PASSWORD_MIN_LENGTH,
    ROOM_CODE_ALPHABET,
    ROOM_CODE_DEFAULT_LENGTH,
    ROOM_CODE_MAX_LENGTH,
    ROOM_CODE_MIN_LENGTH,
)


def clamp(value, lo, hi):
    return max(lo, min(hi, value))


def normalize_code(code) -> str:
    """Uppercase and keep only characters of the room code alphabet."""
    s = str(code or "").strip().upper()
    return "".join(ch for ch in s if ch in ROOM_CODE_ALPHABET)


def is_valid_code(code: str) -> bool:
    return ROOM_CODE_MIN_LENGTH <= len(code) <= ROOM_CODE_MAX_LENGTH


def normalize_password(password) -> str:
    s = str(password or "").strip()
    if len(s) < PASSWORD_MIN_LENGTH or len(s) > PASSWORD_MAX_LENGTH:
        return ""
    return s


def hash_password(password) -> str:
    """SHA-256 hex digest of the trimmed password, or "" when the password is unusable."""
    s = normalize_password(password)
    if not s:
        return ""
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def generate_code(length=None) -> str:
    try:
        n = int(length) if length else ROOM_CODE_DEFAULT_LENGTH
    except (TypeError, ValueError):
        n = ROOM_CODE_DEFAULT_LENGTH
    n = clamp(n, ROOM_CODE_MIN_LENGTH, ROOM_CODE_MAX_LENGTH)
    return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(n))


def generate_token() -> str:
    return secrets.token_hex(16)
