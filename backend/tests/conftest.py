import threading
import time
from typing import Any, Callable

import pytest
from fastapi.testclient import TestClient

from watchparty.config import Settings
from watchparty.main import create_app
from watchparty.services.membership import MembershipService
from watchparty.services.registry import RoomRegistry


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingScheduler:
    """Collects timer callbacks instead of arming them"""

    def __init__(self):
        self.calls: list[tuple[float, Callable[[], Any]]] = []

    def __call__(self, delay: float, callback: Callable[[], Any]) -> None:
        self.calls.append((delay, callback))
        return None

    def fire_next(self) -> Any:
        _, callback = self.calls.pop(0)
        return callback()


def make_settings(**overrides) -> Settings:
    values = {
        "LOG_TO_FILE": False,
        "LOG_LEVEL": "WARNING",
        "INITIAL_SYNC_DELAY_SECONDS": 0,
        "RATE_LIMIT_ENABLED": False,
        "METERED_API_KEY": "",
        "DEBUG": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture
def registry(settings, clock, scheduler) -> RoomRegistry:
    return RoomRegistry(settings, clock=clock, scheduler=scheduler)


@pytest.fixture
def membership(registry) -> MembershipService:
    return MembershipService(registry)


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


# ==================== WebSocket helpers ====================

def wait_until(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Poll server-side state that changes after a disconnect"""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


RECEIVE_TIMEOUT_SECONDS = 5.0


def receive_json(ws, timeout: float = RECEIVE_TIMEOUT_SECONDS) -> dict:
    """ws.receive_json with a deadline, so a frame that never comes fails the test"""
    received: dict[str, Any] = {}

    def receive():
        try:
            received["message"] = ws.receive_json()
        except BaseException as exc:
            received["error"] = exc

    reader = threading.Thread(target=receive, daemon=True)
    reader.start()
    reader.join(timeout)
    if reader.is_alive():
        raise AssertionError(f"no frame received within {timeout}s")
    if "error" in received:
        raise received["error"]
    return received["message"]


def receive_until(ws, event_type: str, limit: int = 50) -> dict:
    """Drain frames until one of the given type arrives"""
    seen = []
    for _ in range(limit):
        message = receive_json(ws)
        if message["type"] == event_type:
            return message
        seen.append(message["type"])
    raise AssertionError(f"{event_type} not received, got {seen}")


def create_room(client: TestClient) -> str:
    response = client.post("/api/create-room")
    assert response.status_code == 200
    return response.json()["roomCode"]


def join_room(ws, room_code: str, username: str) -> dict:
    ws.send_json({"type": "join-room", "roomCode": room_code, "username": username})
    return receive_until(ws, "room-joined")
