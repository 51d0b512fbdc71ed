import os
from dataclasses import dataclass


def _truthy(value) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


HOST = os.getenv("HOST", "0.0.0.0")
PORT = _int_env("PORT", 8787)
UDP_PORT = _int_env("UDP_PORT", 0)  # 0 = same number as the HTTP port

DEFAULT_TTL_SECONDS = _int_env("DEFAULT_TTL_SECONDS", 600)
MAX_TTL_SECONDS = _int_env("MAX_TTL_SECONDS", 86400)
MIN_TTL_SECONDS = 30
PUNCH_TTL_SECONDS = _int_env("PUNCH_TTL_SECONDS", 15)

API_KEY = os.getenv("API_KEY", "")
LOG_CONNECTIONS = any(
    _truthy(os.getenv(name))
    for name in ("LOG_CONNECTIONS", "SNO_LOG_CONNECTIONS", "ROOM_SERVER_LOG_CONNECTIONS")
)

PUBLIC_IP_URL = os.getenv("PUBLIC_IP_URL", "https://api.ipify.org")
PUBLIC_IP_TIMEOUT = _float_env("PUBLIC_IP_TIMEOUT", 2.5)
PUBLIC_IP_CACHE_SECONDS = 300

ROOM_REAP_INTERVAL = 10.0
PUNCH_REAP_INTERVAL = 5.0

APK_PATH = os.getenv("APK_PATH", "")
ZIP_PATH = os.getenv("ZIP_PATH", "")

ROOM_CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
ROOM_CODE_MIN_LENGTH = 8
ROOM_CODE_MAX_LENGTH = 12
ROOM_CODE_DEFAULT_LENGTH = 10

PASSWORD_MIN_LENGTH = 4
PASSWORD_MAX_LENGTH = 64

LEGACY_DEFAULT_PORT = 7000


@dataclass
class Settings:
    host: str = HOST
    port: int = PORT
    udp_port: int = UDP_PORT
    default_ttl_seconds: int = DEFAULT_TTL_SECONDS
    max_ttl_seconds: int = MAX_TTL_SECONDS
    punch_ttl_seconds: int = PUNCH_TTL_SECONDS
    api_key: str = API_KEY
    log_connections: bool = LOG_CONNECTIONS
    public_ip_url: str = PUBLIC_IP_URL
    public_ip_timeout: float = PUBLIC_IP_TIMEOUT
    apk_path: str = APK_PATH
    zip_path: str = ZIP_PATH

    def __post_init__(self):
        self.default_ttl_seconds = max(MIN_TTL_SECONDS, int(self.default_ttl_seconds))
        self.max_ttl_seconds = max(60, int(self.max_ttl_seconds))
        self.punch_ttl_seconds = max(5, int(self.punch_ttl_seconds))
        self.api_key = (self.api_key or "").strip()

    @property
    def effective_udp_port(self) -> int:
        return self.udp_port or self.port
