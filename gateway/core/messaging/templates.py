"""
Caption templates.

Captions come from the template table when available and fall back to the
built-in product template otherwise. Both go through the same ``{{key}}``
substitution; keys without a value are left in the text verbatim.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol
from zoneinfo import ZoneInfo

from sqlalchemy import select

from gateway.infra.database import get_db_context
from gateway.models.database import MessageTemplate

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")

DEFAULT_PRODUCT_TEMPLATE = """📢 Bienvenido a {{businessName}} 📢

Gracias por su interés en nuestros productos. A continuación, le proporcionamos los detalles del producto que ha consultado:

📝 Producto Consultado:
    • Nombre del Producto: {{productName}}
    • Descripción: {{description}}

📅 Fecha y Hora de Consulta:
    • Fecha: {{fecha}}
    • Hora: {{hora}}

📧 Información Adicional:
Le informamos que en breve recibirá un correo electrónico a {{email}} con más detalles sobre el producto consultado. Le recomendamos revisar su bandeja de entrada.

Si tiene alguna otra consulta o desea más información, no dude en contactarnos.

¡Gracias por elegirnos!

Atentamente,
{{signature}}
"""


class TemplateStore(Protocol):
    """Source of caption templates."""

    async def lookup(self, name: str) -> Optional[str]: ...


class SqlTemplateStore:
    """Reads templates from the ``whatsapp_templates`` table."""

    async def lookup(self, name: str) -> Optional[str]:
        async with get_db_context() as db:
            result = await db.execute(
                select(MessageTemplate.content).where(MessageTemplate.name == name)
            )
            return result.scalar_one_or_none()


def render_template(template: str, variables: dict[str, Optional[str]]) -> str:
    """
    Replace ``{{key}}`` tokens with values from ``variables``.

    Unknown keys and keys whose value is None are left untouched.

    Example:
        >>> render_template("Hi {{productName}}, {{unknown}}", {"productName": "Drill"})
        'Hi Drill, {{unknown}}'
    """

    def _replace(match: re.Match) -> str:
        value = variables.get(match.group(1))
        return match.group(0) if value is None else str(value)

    return _PLACEHOLDER.sub(_replace, template)


def localized_date_time(now: datetime, tz_name: str) -> tuple[str, str]:
    """
    Format a moment as local date and time, e.g. ("19/10/2026", "02:30 p. m.").

    Uses the day/month/year order and 12-hour clock with "a. m."/"p. m."
    suffixes customary in Peruvian Spanish.
    """
    local = now.astimezone(ZoneInfo(tz_name))
    suffix = "a. m." if local.hour < 12 else "p. m."
    return local.strftime("%d/%m/%Y"), f"{local.strftime('%I:%M')} {suffix}"


@dataclass
class CaptionContext:
    """Values available to caption placeholders."""

    product_name: str = ""
    description: str = ""
    phone: str = ""
    email: str = ""

    def variables(self, now: datetime, tz_name: str) -> dict[str, Optional[str]]:
        fecha, hora = localized_date_time(now, tz_name)
        return {
            "productName": self.product_name,
            "description": self.description,
            "phone": self.phone,
            "email": self.email,
            "fecha": fecha,
            "hora": hora,
            "date": fecha,
            "time": hora,
        }


class CaptionBuilder:
    """Resolves and renders the caption for an outbound message."""

    def __init__(
        self,
        store: Optional[TemplateStore],
        default_template_name: str = "product_details",
        timezone_name: str = "America/Lima",
        business_name: str = "",
        signature: str = "",
    ):
        self.store = store
        self.default_template_name = default_template_name
        self.timezone_name = timezone_name
        self.business_name = business_name
        self.signature = signature

    async def build(
        self,
        context: CaptionContext,
        template_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """
        Render the caption for ``context``.

        Looks up ``template_name`` (or the default name) in the store; a miss
        or a store error falls back to the built-in template.
        """
        name = template_name or self.default_template_name
        template = await self._lookup(name)

        variables = context.variables(now or datetime.now().astimezone(), self.timezone_name)
        if template is None:
            variables = {
                **variables,
                "businessName": self.business_name,
                "signature": self.signature,
            }
            template = DEFAULT_PRODUCT_TEMPLATE

        return render_template(template, variables)

    async def _lookup(self, name: str) -> Optional[str]:
        if self.store is None:
            return None
        try:
            template = await self.store.lookup(name)
        except Exception as e:
            logger.error(f"Template lookup failed, using default | Template: {name} | Error: {e}")
            return None

        if not template:
            logger.info(f"Template {name} not found, using default")
            return None
        return template
