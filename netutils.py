import functools
import ipaddress
import socket

from fastapi import Request

from logging_config import get_logger

logger = get_logger(__name__)

PRIVATE_NETWORKS = [
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
]


def strip_mapped_prefix(ip: str) -> str:
    s = str(ip or "").strip()
    if s.lower().startswith("::ffff:"):
        return s[7:]
    return s


def _parse(ip: str):
    try:
        return ipaddress.ip_address(strip_mapped_prefix(ip))
    except ValueError:
        return None


def is_private_or_loopback(ip: str) -> bool:
    """True for private, link-local and loopback addresses, and for an empty address.

    Anything that does not parse as an IP address is treated as public.
    """
    if not strip_mapped_prefix(ip):
        return True
    addr = _parse(ip)
    if addr is None:
        return False
    return any(addr.version == net.version and addr in net for net in PRIVATE_NETWORKS)


def is_loopback(ip: str) -> bool:
    addr = _parse(ip)
    return addr is not None and addr.is_loopback


def sanitize_client_local_ip(value) -> str:
    """Accept a caller-declared LAN address only if it is private and not loopback."""
    s = strip_mapped_prefix(value)
    if not s:
        return ""
    if not is_private_or_loopback(s) or is_loopback(s):
        return ""
    return s


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "").strip()
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return strip_mapped_prefix(first)
    host = request.client.host if request.client else ""
    return strip_mapped_prefix(host)


def best_server_lan_ipv4() -> str:
    """Best-effort guess of this host's LAN address, used when a client connects over loopback."""
    candidates = []
    try:
        candidates.append(socket.gethostbyname(socket.gethostname()))
    except OSError as e:
        logger.debug(f"Hostname lookup failed: {e}")

    # connect() on a UDP socket sends nothing; it only selects the outbound interface
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.connect(("8.8.8.8", 80))
        candidates.insert(0, s.getsockname()[0])
    except OSError as e:
        logger.debug(f"Outbound interface probe failed: {e}")
    finally:
        s.close()

    for addr in candidates:
        if addr and is_private_or_loopback(addr) and not is_loopback(addr):
            return addr
    return ""


@functools.lru_cache(maxsize=1)
def cached_server_lan_ipv4() -> str:
    """best_server_lan_ipv4, computed once per process. Blocking on first call."""
    addr = best_server_lan_ipv4()
    logger.info(f"Server LAN address guess: {addr or '-'}")
    return addr
