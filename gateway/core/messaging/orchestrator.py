"""
Outbound Send Orchestrator

Validates a product-info request, resolves recipient, image and caption,
and hands the message to the lifecycle manager for delivery.

Flow:
1. Readiness gate (session must be connected)
2. Phone normalization and length check
3. Registration lookup on the network
4. Image resolution (URL / data URL / raw base64)
5. Caption from template store or built-in template
6. Delivery through the session handle

The orchestrator never takes the lifecycle operation lock. A reset that
lands mid-send makes the delivery fail at the handle (DeliveryFailed).
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from gateway.core.errors import NotConnected, NotReady, UnregisteredRecipient
from gateway.core.messaging.media import MediaResolver
from gateway.core.messaging.recipient import normalize_phone, to_user_id
from gateway.core.messaging.templates import CaptionBuilder, CaptionContext
from gateway.core.session.manager import SessionLifecycleManager
from gateway.core.session.state import ConnectionStatus

logger = logging.getLogger(__name__)


@dataclass
class ProductMessage:
    """Inbound request to send product details with an image."""

    phone: str
    image_data: Optional[str]
    product_name: str = ""
    description: str = ""
    email: str = ""
    template_context: Optional[str] = None


@dataclass
class PendingSend:
    """Per-request working set; discarded once the send resolves."""

    recipient_phone: str
    digits: str
    canonical_id: str
    image: bytes = b""
    caption: str = ""


@dataclass
class DeliveryReceipt:
    """Acknowledgment returned to the caller after a successful send."""

    message_id: str
    recipient_id: str
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API response."""
        return {
            "success": True,
            "messageId": self.message_id,
            "chatId": self.recipient_id,
            "timestamp": self.timestamp.astimezone(timezone.utc).isoformat(),
        }


class SendOrchestrator:
    """Runs the send pipeline against the lifecycle manager."""

    def __init__(
        self,
        manager: SessionLifecycleManager,
        media: MediaResolver,
        captions: CaptionBuilder,
    ):
        self.manager = manager
        self.media = media
        self.captions = captions

    async def send_product_image(self, message: ProductMessage) -> DeliveryReceipt:
        """
        Send a product image with its caption.

        Raises:
            NotReady: session not connected
            InvalidRecipient: phone missing or malformed
            UnregisteredRecipient: number has no account on the network
            InvalidImageFormat / ImageTooLarge / ImageFetchFailed: image problems
            DeliveryFailed: the handle could not deliver the message
        """
        if self.manager.status != ConnectionStatus.CONNECTED:
            raise NotReady(f"send to {message.phone!r} while {self.manager.status.value}")

        digits = normalize_phone(message.phone)

        try:
            canonical_id = await self.manager.validate_number(to_user_id(digits))
        except NotConnected as e:
            raise NotReady(e.detail) from e

        if canonical_id is None:
            logger.info(f"Recipient not registered | Phone: {digits}")
            raise UnregisteredRecipient(digits)

        pending = PendingSend(
            recipient_phone=message.phone,
            digits=digits,
            canonical_id=canonical_id,
        )
        pending.image = await self.media.resolve(message.image_data)
        pending.caption = await self.captions.build(
            CaptionContext(
                product_name=message.product_name,
                description=message.description,
                phone=message.phone,
                email=message.email,
            ),
            template_name=message.template_context,
        )

        sent = await self.manager.deliver_image(
            pending.canonical_id, pending.image, pending.caption
        )
        return DeliveryReceipt(
            message_id=sent.id,
            recipient_id=pending.canonical_id,
            timestamp=sent.timestamp,
        )
