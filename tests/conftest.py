import random

import pytest
from fastapi.testclient import TestClient

from tugofwar.core.config import Settings
from tugofwar.main import create_app
from tugofwar.services.rules import GameRules


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture()
def rules():
    return GameRules()


@pytest.fixture()
def rng():
    return random.Random(1234)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def app():
    settings = Settings(_env_file=None, store_backend="memory", log_level="WARNING")
    return create_app(settings)


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def recv_until(ws, predicate, max_messages=50):
    """Receive WS messages until one satisfies `predicate`."""
    for _ in range(max_messages):
        msg = ws.receive_json()
        if predicate(msg):
            return msg
    raise AssertionError(f"no matching message after {max_messages} messages")


def view_where(predicate):
    return lambda msg: msg.get("type") == "view" and predicate(msg["data"])
