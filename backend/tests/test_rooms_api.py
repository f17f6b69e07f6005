import re

import httpx
from fastapi.testclient import TestClient

from watchparty.main import create_app

from conftest import create_room, make_settings


def test_create_room(client):
    response = client.post("/api/create-room")

    assert response.status_code == 200
    assert re.fullmatch(r"[0-9A-Z]{6}", response.json()["roomCode"])


def test_room_info(client):
    code = create_room(client)

    response = client.get(f"/api/room/{code}")

    assert response.status_code == 200
    assert response.json() == {"roomCode": code, "userCount": 0, "hasVideo": False}


def test_room_lookup_is_case_insensitive(client):
    code = create_room(client)
    assert client.get(f"/api/room/{code.lower()}").status_code == 200


def test_unknown_room_returns_standard_error_body(client):
    response = client.get("/api/room/ZZZZZZ")

    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "ROOM_001"
    assert body["message"] == "Room not found"


def test_room_code_exhaustion_is_a_500(app, client):
    registry = app.state.registry
    registry._code_factory = lambda: "FIXED1"
    assert client.post("/api/create-room").status_code == 200

    response = client.post("/api/create-room")

    assert response.status_code == 500
    assert response.json()["error"] == "ROOM_012"
    assert response.json()["details"]["attempts"] == 10


def test_health(client):
    create_room(client)
    body = client.get("/health").json()

    assert body["status"] == "healthy"
    assert body["rooms"] == 1
    assert body["connections"] == 0


def test_ice_servers_static_fallback(client):
    response = client.get("/api/ice-servers")

    assert response.status_code == 200
    servers = response.json()["iceServers"]
    assert {"urls": "stun:stun.l.google.com:19302"} in servers


def test_ice_servers_include_configured_turn():
    app = create_app(make_settings(TURN_SERVER="turn:turn.example.com:3478", TURN_USERNAME="u", TURN_CREDENTIAL="p"))
    with TestClient(app) as client:
        servers = client.get("/api/ice-servers").json()["iceServers"]

    assert {"urls": "turn:turn.example.com:3478", "username": "u", "credential": "p"} in servers


def test_ice_servers_fall_back_when_metered_is_unreachable(monkeypatch):
    def unreachable(request):
        raise httpx.ConnectError("down", request=request)

    transport = httpx.MockTransport(unreachable)
    real_client = httpx.AsyncClient
    monkeypatch.setattr(httpx, "AsyncClient", lambda **kwargs: real_client(transport=transport, **kwargs))

    app = create_app(make_settings(METERED_API_KEY="secret"))
    with TestClient(app) as client:
        response = client.get("/api/ice-servers")

    assert response.status_code == 200
    assert {"urls": "stun:stun.l.google.com:19302"} in response.json()["iceServers"]


def test_ice_servers_from_metered(monkeypatch):
    credentials = [{"urls": "turn:relay.metered.ca:80", "username": "x", "credential": "y"}]

    def handler(request):
        assert request.url.params["apiKey"] == "secret"
        return httpx.Response(200, json=credentials)

    transport = httpx.MockTransport(handler)
    real_client = httpx.AsyncClient
    monkeypatch.setattr(httpx, "AsyncClient", lambda **kwargs: real_client(transport=transport, **kwargs))

    app = create_app(make_settings(METERED_API_KEY="secret"))
    with TestClient(app) as client:
        response = client.get("/api/ice-servers")

    assert response.json() == {"iceServers": credentials}


def test_debug_rooms_hidden_unless_debug(client):
    assert client.get("/api/debug/rooms").status_code == 404


def test_debug_rooms_snapshot():
    with TestClient(create_app(make_settings(DEBUG=True))) as client:
        code = create_room(client)
        body = client.get("/api/debug/rooms").json()

    assert body["totalRooms"] == 1
    assert body["rooms"][0]["roomCode"] == code


def test_create_room_is_rate_limited():
    with TestClient(create_app(make_settings(RATE_LIMIT_ENABLED=True))) as client:
        statuses = [client.post("/api/create-room") for _ in range(11)]

    assert [r.status_code for r in statuses[:10]] == [200] * 10
    limited = statuses[10]
    assert limited.status_code == 429
    assert limited.json()["error"] == "GEN_003"
    assert limited.headers["Retry-After"] == "60"
    assert statuses[0].headers["X-RateLimit-Limit"] == "10"
