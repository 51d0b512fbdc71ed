import asyncio
import time
from typing import Callable, Optional

import requests

from constants import PUBLIC_IP_CACHE_SECONDS, PUBLIC_IP_TIMEOUT, PUBLIC_IP_URL
from logging_config import get_logger

logger = get_logger(__name__)

USER_AGENT = "snes-online-room-server/1.0"


def fetch_public_ip(url: str = PUBLIC_IP_URL, timeout: float = PUBLIC_IP_TIMEOUT) -> str:
    """Ask an external echo service for this host's public address. Returns "" on any failure."""
    try:
        resp = requests.get(url, timeout=timeout, headers={"User-Agent": USER_AGENT})
        resp.raise_for_status()
    except requests.RequestException as e:
        logger.warning(f"Public IP lookup via {url} failed: {e}")
        return ""
    ip = resp.text.strip()
    if not ip or len(ip) > 64:
        logger.warning(f"Public IP lookup via {url} returned an unusable body")
        return ""
    return ip


class PublicIpResolver:
    """Caches the server's public IP and collapses concurrent lookups into one request.

    ``fetcher`` is a blocking callable returning the address or "". It runs in
    the default executor so the event loop is never blocked on the network.
    """

    def __init__(self, fetcher: Optional[Callable[[], str]] = None,
                 cache_seconds: int = PUBLIC_IP_CACHE_SECONDS, clock: Callable[[], float] = time.time):
        self._fetcher = fetcher or fetch_public_ip
        self._cache_seconds = cache_seconds
        self._clock = clock
        self._cached_ip = ""
        self._cached_at = 0.0
        self._inflight: Optional[asyncio.Future] = None

    def cached(self) -> str:
        if self._cached_ip and (self._clock() - self._cached_at) < self._cache_seconds:
            return self._cached_ip
        return ""

    async def resolve(self) -> str:
        ip = self.cached()
        if ip:
            return ip
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._fetch())
        # shield: a cancelled caller must not cancel the lookup other callers are waiting on
        return await asyncio.shield(self._inflight)

    async def _fetch(self) -> str:
        loop = asyncio.get_running_loop()
        try:
            ip = await loop.run_in_executor(None, self._fetcher)
        except Exception as e:
            logger.error(f"Public IP fetcher raised: {e}", exc_info=True)
            ip = ""
        finally:
            self._inflight = None
        ip = (ip or "").strip()
        if ip:
            self._cached_ip = ip
            self._cached_at = self._clock()
            logger.info(f"Resolved server public IP: {ip}")
        return ip
