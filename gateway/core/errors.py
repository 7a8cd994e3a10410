"""
Gateway error taxonomy.

Every error carries the HTTP status it maps to, a stable error code tag and
a generic message that is safe to show to API callers. The underlying detail
(exception text, recipient, URL) stays in ``detail`` and only reaches logs.
"""

from typing import Optional


class GatewayError(Exception):
    """Base class for all gateway errors."""

    status_code: int = 500
    error_code: str = "internal_error"
    public_message: str = "Internal server error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.public_message
        super().__init__(self.detail)

    def to_response(self) -> dict:
        """Caller-facing body; never includes ``detail``."""
        return {
            "success": False,
            "error": self.error_code,
            "message": self.public_message,
        }


# === Lifecycle ===


class AlreadyActive(GatewayError):
    """initialize() called while a session handle already exists."""

    status_code = 409
    error_code = "already_active"
    public_message = "A messaging session is already active"


class AlreadyConnected(GatewayError):
    """A new QR was requested while the session is connected."""

    status_code = 400
    error_code = "already_connected"
    public_message = "WhatsApp is already connected"


class OperationInProgress(GatewayError):
    """Another lifecycle operation holds the operation lock."""

    status_code = 409
    error_code = "operation_in_progress"
    public_message = "Another session operation is in progress"


class NotConnected(GatewayError):
    """The session is not connected."""

    status_code = 400
    error_code = "not_connected"
    public_message = "WhatsApp is not connected"


class NotReady(NotConnected):
    """A send was attempted while the session is not connected."""

    error_code = "not_ready"


class CredentialCleanupFailed(GatewayError):
    """Persisted credentials could not be deleted. Logged, never returned."""

    error_code = "credential_cleanup_failed"
    public_message = "Could not delete session credentials"


# === Outbound messages ===


class InvalidRecipient(GatewayError):
    status_code = 400
    error_code = "invalid_recipient"
    public_message = "The phone number format is not valid"


class UnregisteredRecipient(GatewayError):
    status_code = 404
    error_code = "unregistered_recipient"
    public_message = "The number is not registered on WhatsApp"


class InvalidImageFormat(GatewayError):
    status_code = 400
    error_code = "invalid_image_format"
    public_message = "The image format is not valid"


class ImageTooLarge(GatewayError):
    status_code = 400
    error_code = "image_too_large"
    public_message = "The image exceeds the maximum allowed size"


class ImageFetchFailed(GatewayError):
    status_code = 400
    error_code = "image_fetch_failed"
    public_message = "The image could not be downloaded from the given URL"


class DeliveryFailed(GatewayError):
    status_code = 500
    error_code = "delivery_failed"
    public_message = "The message could not be delivered"


# === Realtime ===


class SubscriberLimitReached(GatewayError):
    status_code = 503
    error_code = "too_many_connections"
    public_message = "Server has too many connections, try again later"
