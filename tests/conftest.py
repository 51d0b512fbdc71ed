import pytest
from fastapi.testclient import TestClient

from app import create_app
from backend import PunchStore, RoomStore
from constants import Settings
from public_ip import PublicIpResolver

SERVER_PUBLIC_IP = "203.0.113.9"


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class CountingFetcher:
    def __init__(self, result: str = SERVER_PUBLIC_IP):
        self.result = result
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        return self.result


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fetcher():
    return CountingFetcher()


@pytest.fixture
def settings():
    return Settings(default_ttl_seconds=600, max_ttl_seconds=86400, api_key="", log_connections=True)


@pytest.fixture
def app(settings, clock, fetcher):
    return create_app(settings, clock=clock, resolver=PublicIpResolver(fetcher, clock=clock), serve_udp=False)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def rooms(clock):
    return RoomStore(default_ttl_seconds=600, max_ttl_seconds=3600, clock=clock)


@pytest.fixture
def punches(clock):
    return PunchStore(ttl_seconds=15, clock=clock)
