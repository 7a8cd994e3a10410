"""
Messaging session module.

One SessionLifecycleManager owns the session state and the protocol handle;
StatusBroadcaster delivers its snapshots to realtime subscribers.
"""

from gateway.core.session.broadcaster import StatusBroadcaster, Subscription
from gateway.core.session.manager import SessionLifecycleManager
from gateway.core.session.state import (
    ActiveQr,
    ConnectionStatus,
    SessionState,
    StatusSnapshot,
    can_transition,
)

__all__ = [
    # Manager
    "SessionLifecycleManager",
    # Broadcaster
    "StatusBroadcaster",
    "Subscription",
    # State
    "ConnectionStatus",
    "SessionState",
    "StatusSnapshot",
    "ActiveQr",
    "can_transition",
]
