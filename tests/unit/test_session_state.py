"""Tests for the session state machine."""

from datetime import timedelta

from gateway.core.session.state import (
    ActiveQr,
    ConnectionStatus,
    SessionState,
    StatusSnapshot,
    can_transition,
    get_valid_transitions,
)


class TestTransitions:
    """Test state transition rules."""

    def test_valid_transitions(self):
        """Test valid transitions."""
        assert can_transition(ConnectionStatus.DISCONNECTED, ConnectionStatus.INITIALIZING)
        assert can_transition(ConnectionStatus.INITIALIZING, ConnectionStatus.QR_READY)
        assert can_transition(ConnectionStatus.INITIALIZING, ConnectionStatus.CONNECTED)
        assert can_transition(ConnectionStatus.QR_READY, ConnectionStatus.QR_READY)
        assert can_transition(ConnectionStatus.QR_READY, ConnectionStatus.CONNECTED)
        assert can_transition(ConnectionStatus.CONNECTED, ConnectionStatus.DISCONNECTED)

    def test_invalid_transitions(self):
        """Test invalid transitions."""
        assert not can_transition(ConnectionStatus.DISCONNECTED, ConnectionStatus.CONNECTED)
        assert not can_transition(ConnectionStatus.DISCONNECTED, ConnectionStatus.QR_READY)
        assert not can_transition(ConnectionStatus.CONNECTED, ConnectionStatus.QR_READY)
        assert not can_transition(ConnectionStatus.CONNECTED, ConnectionStatus.INITIALIZING)

    def test_every_state_can_disconnect(self):
        """Test every state can disconnect."""
        for status in ConnectionStatus:
            assert ConnectionStatus.DISCONNECTED in get_valid_transitions(status)


class TestSnapshot:
    """Test the wire format of status snapshots."""

    def test_disconnected_snapshot(self):
        """Test disconnected snapshot."""
        snapshot = StatusSnapshot(connection_status=ConnectionStatus.DISCONNECTED)

        assert snapshot.to_dict() == {
            "isConnected": False,
            "hasActiveQR": False,
            "qrData": None,
            "connectionStatus": "disconnected",
        }

    def test_qr_snapshot(self):
        """Test qr snapshot."""
        qr = ActiveQr.issue("data:image/png;base64,AAAA", 120)
        snapshot = StatusSnapshot(connection_status=ConnectionStatus.QR_READY, qr=qr)

        data = snapshot.to_dict()

        assert data["hasActiveQR"] is True
        assert data["connectionStatus"] == "qr-ready"
        assert data["qrData"]["image"] == "data:image/png;base64,AAAA"
        assert qr.expires_at - qr.created_at == timedelta(seconds=120)


class TestInvariants:
    """Test SessionState invariant checks."""

    def test_consistent_state(self):
        """Test consistent state."""
        state = SessionState(
            status=ConnectionStatus.QR_READY,
            active_qr=ActiveQr.issue("img", 60),
            handle=object(),
        )
        assert state.check_invariants() == []

    def test_qr_without_qr_ready(self):
        """Test qr without qr ready."""
        state = SessionState(
            status=ConnectionStatus.CONNECTED,
            active_qr=ActiveQr.issue("img", 60),
            handle=object(),
        )
        assert len(state.check_invariants()) == 1

    def test_handle_while_disconnected(self):
        """Test handle while disconnected."""
        state = SessionState(status=ConnectionStatus.DISCONNECTED, handle=object())
        assert state.check_invariants() == ["handle retained while disconnected"]
