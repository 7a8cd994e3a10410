"""
Messaging protocol boundary.

The gateway never speaks the messaging network's wire protocol itself. A
protocol adapter implements ``HandleFactory``: it opens one connection using
the persisted credentials and reports lifecycle changes by calling the
``on_event`` callback it was given. The adapter is selected at runtime from
``SESSION_HANDLE_FACTORY`` (``package.module:attribute``).
"""

import importlib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Protocol

if TYPE_CHECKING:
    from gateway.infra.credentials import CredentialStore

logger = logging.getLogger(__name__)


class SessionEventType(str, Enum):
    """Lifecycle events a protocol handle can emit."""

    QR = "qr"
    OPEN = "open"
    CLOSE = "close"
    CREDENTIALS = "credentials"


@dataclass(frozen=True)
class SessionEvent:
    """One lifecycle event emitted by a protocol handle."""

    type: SessionEventType
    qr: Optional[str] = None
    logged_out: bool = False
    reason: Optional[str] = None
    credentials: dict[str, bytes] = field(default_factory=dict)

    @classmethod
    def qr_issued(cls, qr: str) -> "SessionEvent":
        return cls(type=SessionEventType.QR, qr=qr)

    @classmethod
    def opened(cls) -> "SessionEvent":
        return cls(type=SessionEventType.OPEN)

    @classmethod
    def closed(cls, reason: Optional[str] = None, logged_out: bool = False) -> "SessionEvent":
        return cls(type=SessionEventType.CLOSE, reason=reason, logged_out=logged_out)

    @classmethod
    def credentials_updated(cls, files: dict[str, bytes]) -> "SessionEvent":
        return cls(type=SessionEventType.CREDENTIALS, credentials=dict(files))


@dataclass(frozen=True)
class NumberLookup:
    """Result of asking the network whether a number has an account."""

    exists: bool
    canonical_id: Optional[str] = None


@dataclass(frozen=True)
class SentMessage:
    """Acknowledgment returned by the network for a delivered message."""

    id: str
    timestamp: datetime


EventCallback = Callable[[SessionEvent], Awaitable[None]]


class SessionHandle(Protocol):
    """One open connection to the messaging network."""

    async def lookup_number(self, identifier: str) -> NumberLookup: ...

    async def send_image(self, canonical_id: str, image: bytes, caption: str) -> SentMessage: ...

    async def logout(self) -> None: ...

    async def close(self) -> None:
        """Drop the connection without unpairing the device."""
        ...

    def remove_listeners(self) -> None: ...


class HandleFactory(Protocol):
    """Opens protocol handles."""

    async def open(
        self,
        credentials: "CredentialStore",
        on_event: EventCallback,
    ) -> SessionHandle: ...


class HandleFactoryNotConfigured(RuntimeError):
    """Raised when no protocol adapter has been configured."""


class UnconfiguredHandleFactory:
    """Placeholder used when SESSION_HANDLE_FACTORY is empty."""

    async def open(self, credentials, on_event) -> SessionHandle:
        raise HandleFactoryNotConfigured(
            "SESSION_HANDLE_FACTORY is not set; no messaging adapter available"
        )


def load_handle_factory(path: str) -> HandleFactory:
    """
    Resolve a protocol adapter from a dotted path.

    Args:
        path: ``package.module:attribute`` (or ``package.module.attribute``)

    Returns:
        The HandleFactory, or an UnconfiguredHandleFactory when path is empty
    """
    if not path:
        logger.warning("No session handle factory configured - sessions cannot be opened")
        return UnconfiguredHandleFactory()

    if ":" in path:
        module_path, attribute = path.split(":", 1)
    else:
        module_path, attribute = path.rsplit(".", 1)

    module = importlib.import_module(module_path)
    factory = getattr(module, attribute)

    # Classes and plain factory functions are called to build the instance
    if isinstance(factory, type) or not hasattr(factory, "open"):
        factory = factory()

    logger.info(f"Loaded session handle factory {path}")
    return factory
