"""Tests for the outbound send orchestrator."""

from datetime import timezone

import pytest

from gateway.core.errors import (
    DeliveryFailed,
    ImageTooLarge,
    InvalidImageFormat,
    InvalidRecipient,
    NotReady,
    UnregisteredRecipient,
)
from gateway.core.messaging.media import MediaResolver
from gateway.core.messaging.orchestrator import ProductMessage, SendOrchestrator
from gateway.core.messaging.templates import CaptionBuilder
from gateway.infra.protocol import NumberLookup
from tests.conftest import CANONICAL_ID, FakeTemplateStore, connect

PNG_B64 = "iVBORw0KGgo="


@pytest.fixture
def orchestrator(manager):
    captions = CaptionBuilder(FakeTemplateStore({"product_details": "{{productName}}: {{description}}"}))
    return SendOrchestrator(manager, MediaResolver(max_bytes=1024), captions)


def product(**overrides) -> ProductMessage:
    values = {
        "phone": "+51 987 654 321",
        "image_data": PNG_B64,
        "product_name": "Taladro",
        "description": "Percutor 800W",
        "email": "cliente@example.com",
    }
    values.update(overrides)
    return ProductMessage(**values)


class TestSendProductImage:

    @pytest.mark.asyncio
    async def test_success(self, manager, factory, orchestrator):
        """Test a successful product image send."""
        handle = await connect(manager, factory)

        receipt = await orchestrator.send_product_image(product())

        assert receipt.message_id == "MSG1"
        assert receipt.recipient_id == CANONICAL_ID
        assert handle.lookups == ["51987654321@s.whatsapp.net"]
        assert handle.sent == [(CANONICAL_ID, b"\x89PNG\r\n\x1a\n", "Taladro: Percutor 800W")]

        body = receipt.to_dict()
        assert body["success"] is True
        assert body["messageId"] == "MSG1"
        assert body["chatId"] == CANONICAL_ID
        assert body["timestamp"] == receipt.timestamp.astimezone(timezone.utc).isoformat()

    @pytest.mark.asyncio
    async def test_not_connected(self, manager, factory, orchestrator):
        """Test not connected."""
        await manager.initialize()

        with pytest.raises(NotReady):
            await orchestrator.send_product_image(product())
        assert factory.last.lookups == []

    @pytest.mark.asyncio
    async def test_invalid_phone_checked_before_lookup(self, manager, factory, orchestrator):
        """Test invalid phone checked before lookup."""
        handle = await connect(manager, factory)

        with pytest.raises(InvalidRecipient):
            await orchestrator.send_product_image(product(phone="12345"))
        assert handle.lookups == []

    @pytest.mark.asyncio
    async def test_unregistered_recipient(self, manager, factory, orchestrator):
        """Test unregistered recipient."""
        handle = await connect(manager, factory)
        handle.lookup_result = NumberLookup(exists=False)

        with pytest.raises(UnregisteredRecipient):
            await orchestrator.send_product_image(product())
        assert handle.sent == []

    @pytest.mark.asyncio
    async def test_recipient_checked_before_image(self, manager, factory, orchestrator):
        """Test recipient checked before image."""
        handle = await connect(manager, factory)
        handle.lookup_result = NumberLookup(exists=False)

        with pytest.raises(UnregisteredRecipient):
            await orchestrator.send_product_image(product(image_data=None))

    @pytest.mark.asyncio
    async def test_missing_image(self, manager, factory, orchestrator):
        """Test missing image."""
        await connect(manager, factory)

        with pytest.raises(InvalidImageFormat):
            await orchestrator.send_product_image(product(image_data=None))

    @pytest.mark.asyncio
    async def test_image_too_large(self, manager, factory, orchestrator):
        """Test image too large."""
        handle = await connect(manager, factory)

        with pytest.raises(ImageTooLarge):
            await orchestrator.send_product_image(product(image_data="A" * 4000))
        assert handle.sent == []

    @pytest.mark.asyncio
    async def test_delivery_failure(self, manager, factory, orchestrator):
        """Test delivery failure."""
        handle = await connect(manager, factory)
        handle.send_error = RuntimeError("media upload failed")

        with pytest.raises(DeliveryFailed):
            await orchestrator.send_product_image(product())
