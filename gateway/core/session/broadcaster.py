"""
Status Broadcaster

Fans session snapshots out to realtime subscribers. Each subscriber owns a
bounded asyncio.Queue; publishing never awaits, and a slow subscriber loses
its oldest queued snapshot rather than delaying the state transition that
produced the new one. The latest snapshot is retained and replayed to every
new subscriber.
"""

import asyncio
import logging
from asyncio import QueueEmpty
from dataclasses import dataclass, field
from typing import Optional
from uuid import uuid4

from gateway.core.errors import SubscriberLimitReached
from gateway.core.session.state import StatusSnapshot

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Subscription:
    """One connected realtime subscriber."""

    queue: asyncio.Queue
    id: str = field(default_factory=lambda: uuid4().hex)
    user_id: Optional[str] = None


class StatusBroadcaster:
    """Retains the latest snapshot and delivers it to subscribers."""

    def __init__(self, max_subscribers: int = 10, queue_size: int = 8):
        self.max_subscribers = max_subscribers
        self.queue_size = queue_size
        self._subscribers: dict[str, Subscription] = {}
        self._latest: Optional[StatusSnapshot] = None

    @property
    def latest(self) -> Optional[StatusSnapshot]:
        return self._latest

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        """
        Register a new subscriber.

        The retained snapshot, if any, is queued immediately so late joiners
        start from the current state.

        Raises:
            SubscriberLimitReached: when the subscriber ceiling is reached
        """
        if len(self._subscribers) >= self.max_subscribers:
            logger.warning(
                f"Realtime subscriber rejected | Active: {len(self._subscribers)} | "
                f"Limit: {self.max_subscribers}"
            )
            raise SubscriberLimitReached(f"limit {self.max_subscribers} reached")

        subscription = Subscription(queue=asyncio.Queue(maxsize=self.queue_size))
        self._subscribers[subscription.id] = subscription

        if self._latest is not None:
            self._offer(subscription, self._latest)

        logger.info(
            f"Realtime subscriber connected | Id: {subscription.id} | "
            f"Active: {len(self._subscribers)}"
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if self._subscribers.pop(subscription.id, None) is not None:
            logger.info(
                f"Realtime subscriber disconnected | Id: {subscription.id} | "
                f"Active: {len(self._subscribers)}"
            )

    def identify(self, subscription: Subscription, user_id: str) -> None:
        """Attach a user identity to a subscriber for targeted delivery."""
        subscription.user_id = str(user_id)
        logger.debug(f"Subscriber {subscription.id} identified as user {user_id}")

    def publish(self, snapshot: StatusSnapshot) -> int:
        """
        Retain ``snapshot`` and deliver it to every subscriber.

        Returns:
            Number of subscribers the snapshot was queued for
        """
        self._latest = snapshot
        delivered = 0
        for subscription in list(self._subscribers.values()):
            if self._offer(subscription, snapshot):
                delivered += 1
        return delivered

    def send_to(self, user_id: str, snapshot: Optional[StatusSnapshot] = None) -> int:
        """
        Deliver a snapshot only to subscribers identified as ``user_id``.

        Defaults to the retained snapshot.

        Returns:
            Number of subscribers the snapshot was queued for
        """
        snapshot = snapshot or self._latest
        if snapshot is None:
            return 0

        delivered = 0
        for subscription in list(self._subscribers.values()):
            if subscription.user_id == str(user_id) and self._offer(subscription, snapshot):
                delivered += 1
        return delivered

    def _offer(self, subscription: Subscription, snapshot: StatusSnapshot) -> bool:
        """Queue without blocking, dropping the oldest entry when full."""
        queue = subscription.queue
        try:
            if queue.full():
                try:
                    queue.get_nowait()
                except QueueEmpty:
                    pass
            queue.put_nowait(snapshot)
            return True
        except Exception as e:
            logger.warning(f"Failed to queue snapshot for subscriber {subscription.id}: {e}")
            return False
