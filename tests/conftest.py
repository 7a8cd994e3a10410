"""Shared fakes and fixtures."""

import asyncio
import os
from datetime import datetime, timezone
from typing import Optional

# Keep the suite hermetic: no Redis rate limiting, no outside .env values
os.environ["REDIS_URL"] = ""
os.environ["API_KEY"] = ""
os.environ["REALTIME_TOKEN"] = ""
os.environ["SESSION_HANDLE_FACTORY"] = ""

import pytest
import pytest_asyncio

from gateway.core.session.broadcaster import StatusBroadcaster
from gateway.core.session.manager import SessionLifecycleManager
from gateway.infra.credentials import CredentialStore
from gateway.infra.protocol import NumberLookup, SentMessage, SessionEvent

CANONICAL_ID = "51987654321@s.whatsapp.net"


def fake_qr_renderer(payload: str) -> str:
    return f"data:image/png;base64,{payload}"


class FakeHandle:
    """In-memory protocol handle. Events are pushed with ``emit``."""

    def __init__(self, on_event):
        self.on_event = on_event
        self.lookup_result = NumberLookup(exists=True, canonical_id=CANONICAL_ID)
        self.lookup_error: Optional[Exception] = None
        self.send_error: Optional[Exception] = None
        self.logout_error: Optional[Exception] = None
        self.remove_listeners_error: Optional[Exception] = None
        self.lookups: list[str] = []
        self.sent: list[tuple[str, bytes, str]] = []
        self.logged_out = False
        self.closed = False
        self.listeners_removed = False

    async def emit(self, event: SessionEvent) -> None:
        # Deliberately ignores listeners_removed, like an adapter that keeps firing
        await self.on_event(event)

    async def lookup_number(self, identifier: str) -> NumberLookup:
        self.lookups.append(identifier)
        if self.lookup_error is not None:
            raise self.lookup_error
        return self.lookup_result

    async def send_image(self, canonical_id: str, image: bytes, caption: str) -> SentMessage:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((canonical_id, image, caption))
        return SentMessage(
            id=f"MSG{len(self.sent)}",
            timestamp=datetime(2026, 3, 1, 15, 30, tzinfo=timezone.utc),
        )

    async def logout(self) -> None:
        self.logged_out = True
        if self.logout_error is not None:
            raise self.logout_error

    async def close(self) -> None:
        self.closed = True

    def remove_listeners(self) -> None:
        if self.remove_listeners_error is not None:
            raise self.remove_listeners_error
        self.listeners_removed = True


class FakeHandleFactory:
    """Opens FakeHandles. ``gate`` holds open() until set; ``fail`` makes it raise."""

    def __init__(self):
        self.handles: list[FakeHandle] = []
        self.open_calls = 0
        self.fail: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None

    async def open(self, credentials, on_event) -> FakeHandle:
        self.open_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail is not None:
            raise self.fail
        handle = FakeHandle(on_event)
        self.handles.append(handle)
        return handle

    @property
    def last(self) -> FakeHandle:
        return self.handles[-1]


class FakeTemplateStore:
    def __init__(self, templates: Optional[dict[str, str]] = None, error: Optional[Exception] = None):
        self.templates = templates or {}
        self.error = error
        self.lookups: list[str] = []

    async def lookup(self, name: str) -> Optional[str]:
        self.lookups.append(name)
        if self.error is not None:
            raise self.error
        return self.templates.get(name)


async def wait_for(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` on the event loop until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


async def connect(manager: SessionLifecycleManager, factory: FakeHandleFactory) -> FakeHandle:
    """Drive the manager to connected through a fake handle."""
    await manager.initialize()
    handle = factory.last
    await handle.emit(SessionEvent.opened())
    await manager.wait_idle()
    return handle


@pytest.fixture
def factory() -> FakeHandleFactory:
    return FakeHandleFactory()


@pytest.fixture
def broadcaster() -> StatusBroadcaster:
    return StatusBroadcaster(max_subscribers=3, queue_size=8)


@pytest.fixture
def credentials(tmp_path) -> CredentialStore:
    return CredentialStore(tmp_path / "auth_info")


@pytest_asyncio.fixture
async def manager(factory, credentials, broadcaster):
    """Lifecycle manager with short timers."""
    manager = SessionLifecycleManager(
        factory,
        credentials,
        broadcaster,
        qr_timeout=5.0,
        reconnect_delay=0.05,
        settle_delay=0,
        cleanup_retry_delay=0,
        qr_renderer=fake_qr_renderer,
    )
    await manager.start()
    yield manager
    await manager.stop()
