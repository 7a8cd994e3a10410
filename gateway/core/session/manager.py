"""
Session Lifecycle Manager

Owns the single messaging session. Lifecycle operations (initialize,
request_qr, reset) are single-flight: a check-and-set operation lock rejects
concurrent requests instead of queueing them. Protocol callbacks only enqueue
events; one consumer task applies them to the state machine in arrival order,
so transitions never interleave.

Events carry the generation of the handle that emitted them. Replacing or
dropping the handle bumps the generation, which is how the callbacks of a
destroyed handle are deregistered even if the adapter keeps firing them.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from gateway.core.errors import (
    AlreadyActive,
    AlreadyConnected,
    CredentialCleanupFailed,
    DeliveryFailed,
    NotConnected,
    OperationInProgress,
)
from gateway.core.session.broadcaster import StatusBroadcaster
from gateway.core.session.qr import render_qr_data_url
from gateway.core.session.state import (
    ActiveQr,
    ConnectionStatus,
    SessionState,
    StatusSnapshot,
    can_transition,
)
from gateway.infra.credentials import CredentialStore
from gateway.infra.protocol import (
    HandleFactory,
    SentMessage,
    SessionEvent,
    SessionEventType,
    SessionHandle,
)

logger = logging.getLogger(__name__)


class SessionLifecycleManager:
    """
    Single-flight lifecycle manager for the messaging session.

    Usage:
        manager = SessionLifecycleManager(factory, CredentialStore("./auth_info"), broadcaster)
        await manager.start()
        await manager.initialize()
        snapshot = manager.get_status()
    """

    def __init__(
        self,
        handle_factory: HandleFactory,
        credentials: CredentialStore,
        broadcaster: StatusBroadcaster,
        *,
        qr_timeout: float = 120.0,
        reconnect_delay: float = 3.0,
        settle_delay: float = 1.0,
        cleanup_retry_delay: float = 1.0,
        qr_renderer: Callable[[str], str] = render_qr_data_url,
    ):
        self._factory = handle_factory
        self._credentials = credentials
        self._broadcaster = broadcaster
        self._qr_timeout = qr_timeout
        self._reconnect_delay = reconnect_delay
        self._settle_delay = settle_delay
        self._cleanup_retry_delay = cleanup_retry_delay
        self._render_qr = qr_renderer

        self._state = SessionState()
        self._generation = 0
        self._events: asyncio.Queue[tuple[int, SessionEvent]] = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None
        self._qr_timer: Optional[asyncio.Task] = None
        self._reconnect_timer: Optional[asyncio.Task] = None

        self._broadcaster.publish(self._state.snapshot())

    # === Read side ===

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    @property
    def has_handle(self) -> bool:
        return self._state.handle is not None

    @property
    def operation_in_progress(self) -> bool:
        return self._state.operation_lock

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_timer is not None and not self._reconnect_timer.done()

    @property
    def qr_timer_pending(self) -> bool:
        return self._qr_timer is not None and not self._qr_timer.done()

    def get_status(self) -> StatusSnapshot:
        """Current snapshot. Never blocks and never takes the lock."""
        return self._state.snapshot()

    def check_invariants(self) -> list[str]:
        return self._state.check_invariants()

    # === Service lifecycle ===

    async def start(self) -> None:
        """Start consuming protocol events."""
        self._ensure_consumer()
        logger.info("Session lifecycle manager started")

    async def stop(self) -> None:
        """
        Stop timers and the event consumer.

        The handle is not logged out, so the paired credentials remain
        usable after a restart.
        """
        tasks = [self._qr_timer, self._reconnect_timer, self._consumer]
        self._qr_timer = None
        self._reconnect_timer = None
        self._consumer = None

        for task in tasks:
            if task is not None and not task.done():
                task.cancel()
        for task in tasks:
            if task is None:
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning(f"Error stopping session task: {e}")

        logger.info("Session lifecycle manager stopped")

    async def wait_idle(self) -> None:
        """Wait until every queued protocol event has been applied."""
        self._ensure_consumer()
        await self._events.join()

    # === Lifecycle operations ===

    @asynccontextmanager
    async def _operation(self, name: str) -> AsyncIterator[None]:
        """Hold the operation lock, rejecting if another operation holds it."""
        if self._state.operation_lock:
            logger.warning(f"Rejected {name}: another session operation is in progress")
            raise OperationInProgress(f"{name} rejected while locked")

        self._state.operation_lock = True
        try:
            yield
        finally:
            self._state.operation_lock = False

    async def initialize(self) -> None:
        """
        Open a new protocol handle.

        Returns as soon as the handle is open; pairing and connection
        progress arrive later as events.

        Raises:
            AlreadyActive: a handle already exists
            OperationInProgress: another lifecycle operation is running
        """
        if self._state.handle is not None:
            logger.warning("Initialize skipped: a session handle already exists")
            raise AlreadyActive()

        async with self._operation("initialize"):
            await self._open_session()

    async def request_qr(self) -> None:
        """
        Start a fresh pairing, replacing any handle that is not connected.

        Raises:
            AlreadyConnected: the session is already connected
            OperationInProgress: another lifecycle operation is running
        """
        if self._state.status == ConnectionStatus.CONNECTED:
            raise AlreadyConnected()

        async with self._operation("request_qr"):
            if self._state.handle is not None:
                await self.destroy()
            await self._open_session()

    async def destroy(self) -> None:
        """
        Tear down the current handle and force the disconnected state.

        Idempotent; safe to call with no handle. State is reset even if the
        protocol logout fails, in which case the logout error propagates.
        """
        self._cancel_reconnect()
        self._cancel_qr_timer()

        handle = self._state.handle
        self._state.handle = None
        self._generation += 1

        try:
            if handle is not None:
                self._detach(handle)
                await handle.logout()
                logger.info("Messaging session logged out")
        finally:
            self._transition(ConnectionStatus.DISCONNECTED)

    async def reset_session(self) -> None:
        """
        Log out, delete persisted credentials and return to disconnected.

        Credential deletion is best effort: it is retried once and a second
        failure is only logged. Any other failure triggers a best-effort
        initialize() before the error is re-raised.

        Raises:
            OperationInProgress: another lifecycle operation is running
        """
        try:
            async with self._operation("reset"):
                await self.destroy()
                await asyncio.sleep(self._settle_delay)
                await self._purge_credentials()
        except OperationInProgress:
            raise
        except Exception as e:
            logger.error(f"Session reset failed: {e}")
            try:
                await self.initialize()
            except Exception as init_error:
                logger.error(f"Re-initialize after failed reset also failed: {init_error}")
            raise

        logger.info("Session reset completed")

    # === Messaging primitives ===

    async def validate_number(self, identifier: str) -> Optional[str]:
        """
        Resolve a recipient identifier to its canonical network id.

        Returns:
            Canonical id, or None when unregistered or the lookup failed

        Raises:
            NotConnected: the session is not connected
        """
        handle = self._state.handle
        if self._state.status != ConnectionStatus.CONNECTED or handle is None:
            raise NotConnected(f"validate_number({identifier}) while {self._state.status.value}")

        try:
            result = await handle.lookup_number(identifier)
        except Exception as e:
            logger.error(f"Number lookup failed | Recipient: {identifier} | Error: {e}")
            return None

        if result.exists and result.canonical_id:
            return result.canonical_id
        return None

    async def deliver_image(self, canonical_id: str, image: bytes, caption: str) -> SentMessage:
        """
        Send an image with caption through the current handle.

        Raises:
            DeliveryFailed: no handle, or the handle rejected the message
        """
        handle = self._state.handle
        if handle is None:
            raise DeliveryFailed(f"no session handle to deliver to {canonical_id}")

        try:
            sent = await handle.send_image(canonical_id, image, caption)
        except Exception as e:
            logger.error(f"Image delivery failed | Recipient: {canonical_id} | Error: {e}")
            raise DeliveryFailed(str(e)) from e

        logger.info(f"Image delivered | Recipient: {canonical_id} | Message: {sent.id}")
        return sent

    # === Internals: handle management ===

    async def _open_session(self) -> None:
        """Open a handle. Caller holds the operation lock."""
        self._cancel_reconnect()
        self._transition(ConnectionStatus.INITIALIZING)

        self._generation += 1
        generation = self._generation

        async def on_event(event: SessionEvent) -> None:
            self._events.put_nowait((generation, event))

        self._ensure_consumer()

        try:
            await asyncio.to_thread(self._credentials.ensure)
            handle = await self._factory.open(self._credentials, on_event)
        except Exception as e:
            logger.error(f"Failed to open messaging session: {e}")
            self._generation += 1
            self._state.handle = None
            self._transition(ConnectionStatus.DISCONNECTED)
            raise

        if generation != self._generation:
            # Closed while the handshake was starting
            self._detach(handle)
            try:
                await handle.close()
            except Exception as e:
                logger.warning(f"Failed to close orphaned session handle: {e}")
            return

        self._state.handle = handle
        logger.info("Messaging session handle opened")

    @staticmethod
    def _detach(handle: SessionHandle) -> None:
        """Deregister adapter callbacks. Adapter errors are logged, not raised."""
        try:
            handle.remove_listeners()
        except Exception as e:
            logger.warning(f"Failed to remove session listeners: {e}")

    async def _purge_credentials(self) -> None:
        """Delete credential files, retrying once after a delay."""
        try:
            await asyncio.to_thread(self._credentials.clear)
            return
        except CredentialCleanupFailed as e:
            logger.warning(f"Credential cleanup failed, retrying: {e.detail}")

        await asyncio.sleep(self._cleanup_retry_delay)

        try:
            await asyncio.to_thread(self._credentials.clear)
        except CredentialCleanupFailed as e:
            logger.error(f"Credential cleanup failed after retry: {e.detail}")

    # === Internals: events ===

    def _ensure_consumer(self) -> None:
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(
                self._consume_events(), name="session-event-consumer"
            )

    async def _consume_events(self) -> None:
        while True:
            generation, event = await self._events.get()
            try:
                await self._apply_event(generation, event)
            except Exception:
                logger.exception(f"Error applying session event {event.type.value}")
            finally:
                self._events.task_done()

    async def _apply_event(self, generation: int, event: SessionEvent) -> None:
        """State transition function for protocol events."""
        if generation != self._generation:
            logger.debug(f"Ignoring {event.type.value} event from a replaced handle")
            return

        if event.type == SessionEventType.QR:
            await self._on_qr(generation, event.qr or "")
        elif event.type == SessionEventType.OPEN:
            self._on_open()
        elif event.type == SessionEventType.CLOSE:
            self._on_close(event)
        elif event.type == SessionEventType.CREDENTIALS:
            await self._on_credentials(event.credentials)

    async def _on_qr(self, generation: int, payload: str) -> None:
        if not can_transition(self._state.status, ConnectionStatus.QR_READY):
            logger.warning(f"Ignoring QR event while {self._state.status.value}")
            return

        try:
            image = await asyncio.to_thread(self._render_qr, payload)
        except Exception as e:
            logger.error(f"Failed to render QR code: {e}")
            return

        if generation != self._generation:
            return

        qr = ActiveQr.issue(image, self._qr_timeout)
        if self._transition(ConnectionStatus.QR_READY, qr=qr):
            self._cancel_qr_timer()
            self._qr_timer = asyncio.create_task(self._expire_qr(qr), name="session-qr-expiry")
            logger.info(f"QR code issued | Expires: {qr.expires_at.isoformat()}")

    def _on_open(self) -> None:
        if self._transition(ConnectionStatus.CONNECTED):
            self._cancel_qr_timer()
            logger.info("Messaging session connected")

    def _on_close(self, event: SessionEvent) -> None:
        logger.warning(
            f"Messaging session closed | Reason: {event.reason} | "
            f"Logged out: {event.logged_out}"
        )
        self._cancel_qr_timer()

        handle = self._state.handle
        self._state.handle = None
        self._generation += 1
        if handle is not None:
            self._detach(handle)

        self._transition(ConnectionStatus.DISCONNECTED)

        if event.logged_out:
            logger.info("Session logged out; waiting for a new pairing request")
        else:
            self._schedule_reconnect()

    async def _on_credentials(self, files: dict[str, bytes]) -> None:
        try:
            await asyncio.to_thread(self._credentials.save_many, files)
        except Exception as e:
            logger.error(f"Failed to persist updated credentials: {e}")

    def _transition(self, status: ConnectionStatus, qr: Optional[ActiveQr] = None) -> bool:
        """Apply a status change and broadcast it. Returns False if rejected."""
        current = self._state.status
        if not can_transition(current, status):
            logger.warning(f"Invalid session transition {current.value} -> {status.value}")
            return False

        self._state.status = status
        self._state.active_qr = qr if status == ConnectionStatus.QR_READY else None
        self._broadcaster.publish(self._state.snapshot())

        if current != status:
            logger.info(f"Session status: {current.value} -> {status.value}")
        return True

    # === Internals: timers ===

    async def _expire_qr(self, qr: ActiveQr) -> None:
        await asyncio.sleep(self._qr_timeout)
        self._qr_timer = None
        if self._state.status != ConnectionStatus.CONNECTED and self._state.active_qr is qr:
            logger.info("QR code expired without being scanned")
            self._transition(ConnectionStatus.INITIALIZING)

    def _schedule_reconnect(self) -> None:
        self._cancel_reconnect()
        self._reconnect_timer = asyncio.create_task(
            self._reconnect_after_delay(), name="session-reconnect"
        )
        logger.info(f"Reconnect scheduled in {self._reconnect_delay}s")

    async def _reconnect_after_delay(self) -> None:
        await asyncio.sleep(self._reconnect_delay)
        self._reconnect_timer = None
        logger.info("Reconnecting messaging session")
        try:
            await self.initialize()
        except (AlreadyActive, OperationInProgress) as e:
            logger.info(f"Reconnect skipped: {e.public_message}")
        except Exception as e:
            logger.error(f"Reconnect failed: {e}")

    def _cancel_qr_timer(self) -> None:
        if self._qr_timer is not None and not self._qr_timer.done():
            self._qr_timer.cancel()
        self._qr_timer = None

    def _cancel_reconnect(self) -> None:
        if self._reconnect_timer is not None and not self._reconnect_timer.done():
            self._reconnect_timer.cancel()
        self._reconnect_timer = None
