"""Tests for caption templates."""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from gateway.core.messaging.templates import (
    CaptionBuilder,
    CaptionContext,
    SqlTemplateStore,
    localized_date_time,
    render_template,
)
from tests.conftest import FakeTemplateStore

# 10:30 in Lima
MORNING = datetime(2026, 3, 1, 15, 30, tzinfo=timezone.utc)


class TestRenderTemplate:

    def test_known_and_unknown_keys(self):
        """Test known and unknown keys."""
        assert render_template("Hi {{productName}}, {{unknown}}", {"productName": "Drill"}) == (
            "Hi Drill, {{unknown}}"
        )

    def test_none_value_left_verbatim(self):
        """Test None values stay as placeholders."""
        assert render_template("Mail: {{email}}", {"email": None}) == "Mail: {{email}}"

    def test_empty_string_substituted(self):
        """Test empty string substituted."""
        assert render_template("[{{description}}]", {"description": ""}) == "[]"

    def test_repeated_keys(self):
        """Test repeated keys."""
        assert render_template("{{a}}-{{a}}", {"a": "x"}) == "x-x"


class TestLocalizedDateTime:

    def test_morning(self):
        """Test morning."""
        assert localized_date_time(MORNING, "America/Lima") == ("01/03/2026", "10:30 a. m.")

    def test_afternoon(self):
        """Test afternoon."""
        afternoon = datetime(2026, 3, 1, 20, 5, tzinfo=timezone.utc)
        assert localized_date_time(afternoon, "America/Lima") == ("01/03/2026", "03:05 p. m.")

    def test_date_rolls_back_across_midnight(self):
        """Test date rolls back across midnight."""
        early_utc = datetime(2026, 3, 2, 2, 0, tzinfo=timezone.utc)
        assert localized_date_time(early_utc, "America/Lima")[0] == "01/03/2026"


class TestCaptionBuilder:
    """Template lookup and fallback."""

    @pytest.fixture
    def context(self):
        return CaptionContext(
            product_name="Taladro",
            description="Percutor 800W",
            phone="+51 987 654 321",
            email="cliente@example.com",
        )

    @pytest.mark.asyncio
    async def test_stored_template(self, context):
        """Test stored template."""
        store = FakeTemplateStore({"product_details": "{{productName}} | {{fecha}} {{hora}} | {{email}}"})
        builder = CaptionBuilder(store)

        caption = await builder.build(context, now=MORNING)

        assert caption == "Taladro | 01/03/2026 10:30 a. m. | cliente@example.com"
        assert store.lookups == ["product_details"]

    @pytest.mark.asyncio
    async def test_template_context_selects_template(self, context):
        """Test template context selects template."""
        store = FakeTemplateStore({"promo": "Oferta: {{productName}}"})
        builder = CaptionBuilder(store)

        assert await builder.build(context, template_name="promo", now=MORNING) == "Oferta: Taladro"

    @pytest.mark.asyncio
    async def test_missing_template_uses_default(self, context):
        """Test missing template uses default."""
        builder = CaptionBuilder(
            FakeTemplateStore(),
            business_name="Tami Maquinarias",
            signature="Yuntas Publicidad",
        )

        caption = await builder.build(context, now=MORNING)

        assert "Bienvenido a Tami Maquinarias" in caption
        assert "Nombre del Producto: Taladro" in caption
        assert "Descripción: Percutor 800W" in caption
        assert "Fecha: 01/03/2026" in caption
        assert "Hora: 10:30 a. m." in caption
        assert "cliente@example.com" in caption
        assert caption.rstrip().endswith("Yuntas Publicidad")
        assert "{{" not in caption

    @pytest.mark.asyncio
    async def test_store_error_uses_default(self, context):
        """Test store error uses default."""
        builder = CaptionBuilder(FakeTemplateStore(error=ConnectionError("db down")))

        caption = await builder.build(context, now=MORNING)

        assert "Nombre del Producto: Taladro" in caption

    @pytest.mark.asyncio
    async def test_no_store(self, context):
        """Test no store."""
        caption = await CaptionBuilder(None).build(context, now=MORNING)
        assert "Taladro" in caption


class TestSqlTemplateStore:

    @pytest.mark.asyncio
    async def test_lookup(self):
        """Test reading a template body from the database."""
        result = MagicMock()
        result.scalar_one_or_none.return_value = "Hola {{productName}}"
        db = AsyncMock()
        db.execute = AsyncMock(return_value=result)

        @asynccontextmanager
        async def fake_db_context():
            yield db

        with patch(
            "gateway.core.messaging.templates.get_db_context",
            fake_db_context,
        ):
            assert await SqlTemplateStore().lookup("product_details") == "Hola {{productName}}"

        db.execute.assert_called_once()
