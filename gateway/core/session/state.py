"""Messaging session state machine."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional, Set

from gateway.infra.protocol import SessionHandle


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class ConnectionStatus(str, Enum):
    """Connection states of the single messaging session."""

    DISCONNECTED = "disconnected"
    INITIALIZING = "initializing"
    QR_READY = "qr-ready"
    CONNECTED = "connected"


# Valid state transitions
VALID_TRANSITIONS: dict[ConnectionStatus, Set[ConnectionStatus]] = {
    ConnectionStatus.DISCONNECTED: {
        ConnectionStatus.INITIALIZING,
        ConnectionStatus.DISCONNECTED,  # destroy() is idempotent
    },
    ConnectionStatus.INITIALIZING: {
        ConnectionStatus.QR_READY,
        ConnectionStatus.CONNECTED,
        ConnectionStatus.DISCONNECTED,
    },
    ConnectionStatus.QR_READY: {
        ConnectionStatus.QR_READY,  # replacement QR
        ConnectionStatus.INITIALIZING,  # QR expired, handle still waiting
        ConnectionStatus.CONNECTED,
        ConnectionStatus.DISCONNECTED,
    },
    ConnectionStatus.CONNECTED: {
        ConnectionStatus.DISCONNECTED,
    },
}


def can_transition(from_state: ConnectionStatus, to_state: ConnectionStatus) -> bool:
    """Check if a state transition is valid."""
    return to_state in VALID_TRANSITIONS.get(from_state, set())


def get_valid_transitions(state: ConnectionStatus) -> Set[ConnectionStatus]:
    """Get all valid transitions from a state."""
    return VALID_TRANSITIONS.get(state, set())


@dataclass(frozen=True)
class ActiveQr:
    """A pairing QR currently offered to the user."""

    image: str  # data URL of the rendered QR
    created_at: datetime
    expires_at: datetime

    @classmethod
    def issue(cls, image: str, lifetime_seconds: float) -> "ActiveQr":
        now = _utcnow()
        return cls(
            image=image,
            created_at=now,
            expires_at=now + timedelta(seconds=lifetime_seconds),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "image": self.image,
            "createdAt": self.created_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
        }


@dataclass(frozen=True)
class StatusSnapshot:
    """Immutable view of the session state handed to callers and subscribers."""

    connection_status: ConnectionStatus
    qr: Optional[ActiveQr] = None

    @property
    def is_connected(self) -> bool:
        return self.connection_status == ConnectionStatus.CONNECTED

    @property
    def has_active_qr(self) -> bool:
        return self.qr is not None

    def to_dict(self) -> dict[str, Any]:
        """Wire format shared by the status route and the realtime channel."""
        return {
            "isConnected": self.is_connected,
            "hasActiveQR": self.has_active_qr,
            "qrData": self.qr.to_dict() if self.qr else None,
            "connectionStatus": self.connection_status.value,
        }


@dataclass
class SessionState:
    """
    Process-lifetime state of the messaging session.

    Mutated only by SessionLifecycleManager. A reset reinitializes the
    fields in place; the object itself lives as long as the manager.
    """

    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    active_qr: Optional[ActiveQr] = None
    handle: Optional[SessionHandle] = None
    operation_lock: bool = False

    def snapshot(self) -> StatusSnapshot:
        return StatusSnapshot(connection_status=self.status, qr=self.active_qr)

    def check_invariants(self) -> list[str]:
        """Return descriptions of violated invariants (empty when consistent)."""
        problems = []
        if (self.active_qr is not None) != (self.status == ConnectionStatus.QR_READY):
            problems.append(
                f"active QR present={self.active_qr is not None} with status={self.status.value}"
            )
        if self.handle is not None and self.status == ConnectionStatus.DISCONNECTED:
            problems.append("handle retained while disconnected")
        return problems
