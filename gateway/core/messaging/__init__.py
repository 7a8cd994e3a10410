"""
Outbound messaging module.

Usage:
    from gateway.core.messaging import SendOrchestrator, ProductMessage

    receipt = await orchestrator.send_product_image(
        ProductMessage(phone="+51 987654321", image_data=url, product_name="Drill")
    )
    print(receipt.message_id)
"""

from gateway.core.messaging.media import ALLOWED_IMAGE_TYPES, MediaResolver, estimate_decoded_size
from gateway.core.messaging.orchestrator import (
    DeliveryReceipt,
    PendingSend,
    ProductMessage,
    SendOrchestrator,
)
from gateway.core.messaging.recipient import normalize_phone, to_user_id
from gateway.core.messaging.templates import (
    DEFAULT_PRODUCT_TEMPLATE,
    CaptionBuilder,
    CaptionContext,
    SqlTemplateStore,
    TemplateStore,
    render_template,
)

__all__ = [
    # Orchestrator
    "SendOrchestrator",
    "ProductMessage",
    "PendingSend",
    "DeliveryReceipt",
    # Media
    "MediaResolver",
    "ALLOWED_IMAGE_TYPES",
    "estimate_decoded_size",
    # Recipient
    "normalize_phone",
    "to_user_id",
    # Templates
    "CaptionBuilder",
    "CaptionContext",
    "TemplateStore",
    "SqlTemplateStore",
    "render_template",
    "DEFAULT_PRODUCT_TEMPLATE",
]
