import threading

import pytest
from fastapi.testclient import TestClient

from app import create_app
from codes import hash_password
from constants import Settings
from public_ip import PublicIpResolver
import routers.rooms

HOST_IP = "203.0.113.5"
GUEST_IP = "198.51.100.7"
SERVER_PUBLIC_IP = "203.0.113.9"


def from_ip(ip):
    return {"X-Forwarded-For": ip}


def connect(client, ip=HOST_IP, **body):
    return client.post("/rooms/connect", json=body, headers=from_ip(ip))


def test_health(client, app, clock):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "ts": int(clock()), "rooms": 0}
    app.state.rooms.upsert("ROOMCODE1", ip=HOST_IP, port=7000, pw_hash="x")
    assert client.get("/health").json()["rooms"] == 1


def test_full_rendezvous_flow(client, app):
    created = connect(client, password="abcd")
    assert created.status_code == 200
    data = created.json()
    assert data["ok"] is True
    assert data["created"] is True
    assert data["role"] == 1
    assert data["waiting"] is True
    assert data["youIp"] == HOST_IP
    token = data["creatorToken"]
    code = data["room"]["code"]
    assert 8 <= len(code) <= 12
    assert data["room"]["port"] == 0

    finalized = connect(client, code=code, creatorToken=token, password="abcd", port=7000).json()
    assert finalized["waiting"] is False
    assert finalized["role"] == 1
    assert finalized["created"] is False
    assert "creatorToken" not in finalized
    assert finalized["room"]["port"] == 7000

    app.state.punches.upsert_endpoint(code, HOST_IP, 7000)

    joined = connect(client, ip=GUEST_IP, code=code, password="abcd").json()
    assert joined["role"] == 2
    assert joined["waiting"] is False
    assert joined["room"]["port"] == 7000
    assert joined["room"]["ip"] == HOST_IP

    resp = client.get(f"/rooms/{code}", headers={"X-Room-Password": "abcd"})
    assert resp.status_code == 404
    assert resp.json() == {"ok": False, "error": "not_found"}
    assert app.state.punches.get(code) is None

    # the code is free again
    again = connect(client, ip=GUEST_IP, code=code, password="abcd").json()
    assert again["created"] is True


def test_guest_polls_until_host_finalizes(client):
    data = connect(client, password="abcd", code="pollroom1").json()
    code, token = data["room"]["code"], data["creatorToken"]
    assert code == "POLLROOM1"

    for _ in range(3):
        waiting = connect(client, ip=GUEST_IP, code=code, password="abcd").json()
        assert (waiting["role"], waiting["waiting"]) == (2, True)
    assert client.get(f"/rooms/{code}", headers={"X-Room-Password": "abcd"}).status_code == 200

    connect(client, code=code, creatorToken=token, password="abcd", port=40000)
    joined = connect(client, ip=GUEST_IP, code=code, password="abcd").json()
    assert (joined["role"], joined["waiting"], joined["room"]["port"]) == (2, False, 40000)


def test_create_with_port_is_ready_immediately(client):
    data = connect(client, password="abcd", port=7000, codeLength=8).json()
    assert data["waiting"] is False
    assert len(data["room"]["code"]) == 8


def test_creator_poll_does_not_consume(client):
    data = connect(client, password="abcd", port=7000).json()
    code, token = data["room"]["code"], data["creatorToken"]
    again = connect(client, code=code, creatorToken=token, password="abcd").json()
    assert (again["role"], again["waiting"], again["created"]) == (1, False, False)
    assert client.get(f"/rooms/{code}", headers={"X-Room-Password": "abcd"}).status_code == 200


@pytest.mark.parametrize("token", [None, "creator"])
def test_wrong_password_is_forbidden(client, token):
    data = connect(client, password="abcd").json()
    body = {"code": data["room"]["code"], "password": "zzzz"}
    if token:
        body["creatorToken"] = data["creatorToken"]
    resp = connect(client, **body)
    assert resp.status_code == 403
    assert resp.json() == {"ok": False, "error": "wrong_password"}


@pytest.mark.parametrize("password", [None, "", "abc", "x" * 65])
def test_connect_requires_password(client, password):
    resp = connect(client, password=password)
    assert resp.status_code == 400
    assert resp.json()["error"] == "password_required"


def test_connect_rejects_short_code(client):
    resp = connect(client, password="abcd", code="ab-c")
    assert resp.status_code == 400
    assert resp.json() == {"ok": False, "error": "invalid_code"}


def test_connect_rejects_malformed_body(client):
    resp = client.post("/rooms/connect", json={"password": "abcd", "port": "not-a-port"})
    assert resp.status_code == 400
    assert resp.json() == {"ok": False, "error": "invalid_request"}


def test_expired_room_is_recreated(client, clock):
    data = connect(client, password="abcd", ttlSeconds=30).json()
    code = data["room"]["code"]
    clock.advance(31)
    again = connect(client, ip=GUEST_IP, code=code, password="abcd").json()
    assert again["created"] is True
    assert again["role"] == 1


def test_private_requester_uses_server_public_ip(client, fetcher):
    data = connect(client, ip="192.168.1.20", password="abcd").json()
    assert data["youIp"] == SERVER_PUBLIC_IP
    assert data["room"]["ip"] == SERVER_PUBLIC_IP
    assert data["room"]["localIp"] == "192.168.1.20"
    code, token = data["room"]["code"], data["creatorToken"]
    connect(client, ip="192.168.1.20", code=code, creatorToken=token, password="abcd", port=7000)

    lan_guest = connect(client, ip="192.168.1.30", code=code, password="abcd").json()
    assert lan_guest["room"]["localIp"] == "192.168.1.20"
    assert fetcher.calls == 1


def test_local_ip_hidden_from_wan_guest(client):
    data = connect(client, password="abcd", port=7000, localIp="10.0.0.8").json()
    assert data["room"]["localIp"] == "10.0.0.8"
    joined = connect(client, ip=GUEST_IP, code=data["room"]["code"], password="abcd").json()
    assert joined["room"]["localIp"] == ""


def test_public_local_ip_claim_is_ignored(client):
    data = connect(client, password="abcd", localIp="8.8.8.8").json()
    assert data["room"]["localIp"] == ""


def test_resolver_failure_falls_back_to_observed_ip(settings, clock):
    app = create_app(settings, clock=clock, resolver=PublicIpResolver(lambda: "", clock=clock), serve_udp=False)
    data = connect(TestClient(app), ip="10.1.1.1", password="abcd").json()
    assert data["youIp"] == "10.1.1.1"


class TestLegacyEndpoints:
    @pytest.fixture
    def settings(self):
        return Settings(api_key="secret")

    def test_create_requires_api_key(self, client):
        resp = client.post("/rooms", json={"password": "abcd"}, headers=from_ip(HOST_IP))
        assert resp.status_code == 401
        assert resp.json() == {"ok": False, "error": "unauthorized"}

    def test_create_get_update_delete(self, client, app):
        auth = {"X-API-Key": "secret", **from_ip(HOST_IP)}
        created = client.post("/rooms", json={"password": "abcd", "code": "legacy01"}, headers=auth)
        assert created.status_code == 200
        room = created.json()["room"]
        assert room["code"] == "LEGACY01"
        assert room["port"] == 7000
        token = app.state.rooms.get("LEGACY01").creator_token
        assert token

        got = client.get("/rooms/legacy01", headers={"X-Room-Password": "abcd"})
        assert got.status_code == 200
        assert got.json()["room"]["ip"] == HOST_IP

        assert client.get("/rooms/LEGACY01").status_code == 400
        assert client.get("/rooms/LEGACY01", headers={"X-Room-Pass": "wxyz"}).status_code == 403

        updated = client.put("/rooms/LEGACY01", json={"password": "abcd", "port": 7100}, headers=auth)
        assert updated.json()["room"]["port"] == 7100
        stored = app.state.rooms.get("LEGACY01")
        assert stored.creator_token == token
        assert stored.pw_hash == hash_password("abcd")

        deleted = client.delete("/rooms/LEGACY01", headers=auth)
        assert deleted.json() == {"ok": True, "deleted": True}
        assert client.delete("/rooms/LEGACY01", headers=auth).json()["deleted"] is False

    def test_invalid_port(self, client):
        auth = {"X-API-Key": "secret"}
        resp = client.post("/rooms", json={"password": "abcd", "port": 70000}, headers=auth)
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_port"

    def test_put_and_delete_require_key(self, client):
        assert client.put("/rooms/LEGACY01", json={"password": "abcd"}).status_code == 401
        assert client.delete("/rooms/LEGACY01").status_code == 401

    def test_invalid_path_code(self, client):
        resp = client.get("/rooms/abc", headers={"X-Room-Password": "abcd"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_code"


def test_legacy_endpoints_open_without_api_key(client):
    resp = client.post("/rooms", json={"password": "abcd", "port": 7000})
    assert resp.status_code == 200


def test_unknown_route(client):
    resp = client.get("/nope")
    assert resp.status_code == 404
    assert resp.json() == {"ok": False, "error": "not_found"}


def test_download_missing_file(settings, clock, tmp_path):
    settings.apk_path = str(tmp_path / "missing.apk")
    app = create_app(settings, clock=clock, serve_udp=False)
    resp = TestClient(app).get("/download/apk")
    assert resp.status_code == 404
    assert resp.json() == {"ok": False, "error": "file_not_found"}


def test_download_zip(settings, clock, tmp_path):
    path = tmp_path / "snes-online-1.2-win64-portable.zip"
    path.write_bytes(b"PK\x03\x04")
    settings.zip_path = str(path)
    app = create_app(settings, clock=clock, serve_udp=False)
    resp = TestClient(app).get("/download/zip")
    assert resp.status_code == 200
    assert resp.content == b"PK\x03\x04"
    assert resp.headers["cache-control"] == "no-store"
    assert path.name in resp.headers["content-disposition"]


def test_creator_poll_does_not_shorten_ttl(client, clock):
    data = connect(client, password="abcd", port=7000, ttlSeconds=3600).json()
    assert data["room"]["expiresAt"] == int(clock()) + 3600
    code, token = data["room"]["code"], data["creatorToken"]

    clock.advance(100)
    again = connect(client, code=code, creatorToken=token, password="abcd").json()
    assert again["room"]["expiresAt"] == int(clock()) + 3600


def test_numeric_code_and_password_are_accepted(client):
    data = connect(client, code=12345678, password=987654).json()
    assert data["created"] is True
    assert data["room"]["code"] == "12345678"
    joined = connect(client, ip=GUEST_IP, code="12345678", password="987654").json()
    assert joined["created"] is False
    assert joined["role"] == 2


def test_loopback_requester_gets_server_lan_ip(client, monkeypatch):
    threads = []

    def fake_lan_ip():
        threads.append(threading.current_thread().name)
        return "192.168.50.2"

    monkeypatch.setattr(routers.rooms, "cached_server_lan_ipv4", fake_lan_ip)
    data = connect(client, ip="127.0.0.1", password="abcd").json()
    assert data["youIp"] == SERVER_PUBLIC_IP
    assert data["room"]["localIp"] == "192.168.50.2"
    # looked up in the default executor, not on the event loop thread
    assert len(threads) == 1
    assert threads[0].startswith("asyncio")
