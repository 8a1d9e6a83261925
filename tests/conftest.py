"""Shared test fixtures."""

from collections.abc import Callable, Generator
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import homeguard.database as db_module
from homeguard.config import Settings
from homeguard.controller import Controller, build_controller
from homeguard.database import get_session
from homeguard.main import app
from homeguard.peer.auth import RollingCodeGenerator
from homeguard.peer.client import PeerClient
from homeguard.peer.mock import MockPeer
from homeguard.peer.requests import RequestBuilder
from homeguard.peer.retry import RetryPolicy
from homeguard.peer.transport import TransportClient

TOKEN = "test-token"
SECRET = "12345678901234567890"
PEER_URL = "http://peer.test"


class FakeClock:
    """Settable wall clock shared by the client and the simulated peer."""

    def __init__(self, now: float = 1_700_000_003.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def engine():
    """In-memory SQLite engine with all tables created.

    StaticPool ensures every session uses the same connection,
    so the in-memory database is shared across the test.
    """
    import homeguard.events.log  # noqa: F401
    import homeguard.registry.models  # noqa: F401
    import homeguard.rules.models  # noqa: F401

    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(eng)
    return eng


@pytest.fixture
def session(engine) -> Generator[Session, None, None]:
    with Session(engine) as s:
        yield s


@pytest.fixture
def session_factory(engine) -> Callable[[], Session]:
    return lambda: Session(engine)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mock_peer(clock) -> MockPeer:
    return MockPeer(TOKEN, SECRET, clock=clock)


@pytest.fixture
def retry_sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def peer_client(mock_peer, clock, retry_sleep) -> PeerClient:
    """PeerClient wired to the simulated peer; retry waits are recorded, not slept."""
    builder = RequestBuilder(TOKEN, RollingCodeGenerator(SECRET, clock=clock))
    transport = TransportClient(PEER_URL, timeout=2.0, transport=mock_peer.transport())
    return PeerClient(builder, transport, RetryPolicy(attempts=3, sleep=retry_sleep))


@pytest.fixture
def controller(peer_client, mock_peer, session_factory) -> Controller:
    built = build_controller(
        Settings(peer_mode="none"), session_factory, client=peer_client, mock=mock_peer
    )
    assert built is not None
    return built


@pytest.fixture
def client(engine) -> Generator[TestClient, None, None]:
    """FastAPI TestClient with overridden DB engine and session."""
    # Patch the module-level engine so lifespan's init_db() and
    # background components both use the test engine.
    original_engine = db_module.engine
    db_module.engine = engine

    def _override_session() -> Generator[Session, None, None]:
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = _override_session
    # Lifespan builds no peer controller; tests install their own.
    with (
        patch("homeguard.main.load_config", return_value=Settings(peer_mode="none")),
        TestClient(app) as c,
    ):
        yield c
    app.dependency_overrides.clear()
    db_module.engine = original_engine


@pytest.fixture
def api(client, controller) -> Generator[TestClient, None, None]:
    """TestClient with a controller on the simulated peer (loops not started)."""
    previous = getattr(app.state, "controller", None)
    app.state.controller = controller
    yield client
    app.state.controller = previous
