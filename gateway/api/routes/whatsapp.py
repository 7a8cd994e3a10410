"""
WhatsApp API Endpoints.

Session status, pairing, reset and product-info sends. Gateway errors are
converted to responses by the exception handler registered in main.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from gateway.api.deps import get_orchestrator, get_session_manager
from gateway.api.middleware.auth import require_api_key
from gateway.api.middleware.rate_limit import rate_limit
from gateway.core.errors import GatewayError
from gateway.core.messaging.orchestrator import ProductMessage, SendOrchestrator
from gateway.core.session.manager import SessionLifecycleManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/whatsapp", tags=["WhatsApp"])


class StatusResponse(BaseModel):
    """Connection status snapshot."""

    model_config = ConfigDict(populate_by_name=True)

    is_connected: bool = Field(..., alias="isConnected")
    has_active_qr: bool = Field(..., alias="hasActiveQR")
    qr_data: Optional[dict] = Field(
        default=None,
        alias="qrData",
        description="Active QR image (data URL) with creation and expiry times",
    )
    connection_status: str = Field(
        ...,
        alias="connectionStatus",
        examples=["qr-ready"],
    )


class ActionResponse(BaseModel):
    """Outcome of a lifecycle action."""

    success: bool
    message: str


class SendProductInfoRequest(BaseModel):
    """Product details to send with an image."""

    model_config = ConfigDict(populate_by_name=True)

    product_name: str = Field(default="", alias="productName", max_length=500)
    description: str = Field(default="", max_length=4000)
    phone: Optional[str] = Field(
        default=None,
        description="Recipient phone, any formatting",
        examples=["+51 987 654 321"],
    )
    email: str = Field(default="", max_length=320)
    image_data: Optional[str] = Field(
        default=None,
        alias="imageData",
        description="http(s) URL, data:image/...;base64 URL or raw base64",
    )
    template_context: Optional[str] = Field(
        default=None,
        alias="templateContext",
        description="Template name to look up instead of the default",
    )


class SendProductInfoResponse(BaseModel):
    """Delivery receipt."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message_id: str = Field(..., alias="messageId")
    chat_id: str = Field(..., alias="chatId")
    timestamp: str


def _failure(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "message": message},
    )


@router.get(
    "/status",
    response_model=StatusResponse,
    response_model_by_alias=True,
    summary="Connection status",
)
async def get_status(
    manager: SessionLifecycleManager = Depends(get_session_manager),
) -> dict:
    """Current snapshot. Never waits for an in-flight operation."""
    return manager.get_status().to_dict()


@router.post(
    "/request-qr",
    response_model=ActionResponse,
    summary="Start a new pairing",
    responses={
        400: {"description": "Already connected"},
        409: {"description": "Another session operation is in progress"},
    },
    dependencies=[Depends(require_api_key), Depends(rate_limit("general"))],
)
async def request_qr(
    manager: SessionLifecycleManager = Depends(get_session_manager),
):
    """
    Discard any unpaired session and open a new one.

    The QR arrives asynchronously through the status endpoint and the
    realtime channel.
    """
    try:
        await manager.request_qr()
    except GatewayError:
        raise
    except Exception as e:
        logger.error(f"Request QR failed: {e}")
        return _failure("Error generating QR")

    return ActionResponse(success=True, message="Generating new QR...")


@router.post(
    "/send-product-info",
    response_model=SendProductInfoResponse,
    response_model_by_alias=True,
    summary="Send product details with an image",
    responses={
        400: {"description": "Not connected, invalid phone or invalid image"},
        404: {"description": "Number not registered"},
        500: {"description": "Delivery failed"},
    },
    dependencies=[Depends(require_api_key), Depends(rate_limit("send"))],
)
async def send_product_info(
    body: SendProductInfoRequest,
    orchestrator: SendOrchestrator = Depends(get_orchestrator),
):
    message = ProductMessage(
        phone=body.phone or "",
        image_data=body.image_data,
        product_name=body.product_name,
        description=body.description,
        email=body.email,
        template_context=body.template_context,
    )

    try:
        receipt = await orchestrator.send_product_image(message)
    except GatewayError:
        raise
    except Exception as e:
        logger.error(f"Send product info failed | Phone: {body.phone} | Error: {e}")
        return _failure("Unknown error sending the image")

    return receipt.to_dict()


@router.post(
    "/reset",
    response_model=ActionResponse,
    summary="Log out and delete the paired session",
    responses={
        409: {"description": "Another session operation is in progress"},
        500: {"description": "Reset failed and no new session could be opened"},
    },
    dependencies=[Depends(require_api_key), Depends(rate_limit("general"))],
)
async def reset_session(
    manager: SessionLifecycleManager = Depends(get_session_manager),
):
    """
    Reset the session.

    A reset that fails after the recovery already opened a new handle still
    answers 200, with a warning message.
    """
    try:
        await manager.reset_session()
    except GatewayError as e:
        if e.status_code == status.HTTP_409_CONFLICT:
            raise
        return _reset_failed(manager, e)
    except Exception as e:
        return _reset_failed(manager, e)

    return ActionResponse(success=True, message="Session reset")


def _reset_failed(manager: SessionLifecycleManager, error: Exception):
    logger.error(f"Reset session failed: {error}")
    if manager.has_handle:
        return ActionResponse(
            success=True,
            message="Session restarted with warnings. Generating QR...",
        )
    return _failure("Error resetting session")
