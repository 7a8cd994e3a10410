"""
Image payload resolution.

Accepts three input forms:
- Remote URL (http/https): downloaded with httpx
- Data URL (data:image/<type>;base64,...): type restricted to ALLOWED_IMAGE_TYPES
- Raw base64: validated against the strict base64 alphabet

Base64 sizes are computed from the encoded length (3 bytes per 4 chars, less
padding) before decoding, and downloads are streamed, so oversize payloads
are rejected without allocating them.
"""

import base64
import binascii
import logging
import re
from typing import Optional

import httpx

from gateway.core.errors import ImageFetchFailed, ImageTooLarge, InvalidImageFormat

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = frozenset({"png", "jpeg", "jpg", "gif", "webp"})

_DATA_URL = re.compile(r"^data:image/([A-Za-z0-9.+-]+);base64,(.*)$", re.DOTALL)
_BASE64 = re.compile(r"^[A-Za-z0-9+/]+={0,2}$")
_WHITESPACE = re.compile(r"\s")


def estimate_decoded_size(encoded: str) -> int:
    """Decoded byte count from a base64 string's length, less its padding."""
    return len(encoded) * 3 // 4 - encoded[-2:].count("=")


class MediaResolver:
    """Turns an image reference from an API request into bytes."""

    def __init__(
        self,
        max_bytes: int = 2 * 1024 * 1024,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize resolver.

        Args:
            max_bytes: Largest accepted decoded image
            timeout: Download timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.max_bytes = max_bytes
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def resolve(self, image_data: Optional[str]) -> bytes:
        """
        Resolve an image reference to raw bytes.

        Raises:
            InvalidImageFormat: missing, malformed or disallowed input
            ImageTooLarge: payload above the configured ceiling
            ImageFetchFailed: remote download failed
        """
        if not isinstance(image_data, str) or not image_data.strip():
            raise InvalidImageFormat("no image provided")

        image_data = image_data.strip()

        if image_data.startswith(("http://", "https://")):
            return await self._fetch(image_data)
        if image_data.startswith("data:"):
            return self._decode_data_url(image_data)
        return self._decode_raw(image_data)

    async def _fetch(self, url: str) -> bytes:
        client = await self._get_client()
        chunks: list[bytes] = []
        received = 0
        try:
            async with client.stream("GET", url) as response:
                response.raise_for_status()

                # Reject early when the server declares the size
                declared = response.headers.get("content-length", "")
                if declared.isdigit():
                    self._check_size(int(declared))

                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    self._check_size(received)
                    chunks.append(chunk)
        except httpx.HTTPError as e:
            logger.error(f"Image download failed | URL: {url} | Error: {e}")
            raise ImageFetchFailed(f"{url}: {e}") from e

        if not received:
            raise ImageFetchFailed(f"{url}: empty body")
        return b"".join(chunks)

    def _decode_data_url(self, image_data: str) -> bytes:
        match = _DATA_URL.match(image_data)
        if not match:
            raise InvalidImageFormat("malformed data URL")

        image_type = match.group(1).lower()
        if image_type not in ALLOWED_IMAGE_TYPES:
            raise InvalidImageFormat(f"image type {image_type!r} not allowed")

        payload = _WHITESPACE.sub("", match.group(2))
        if not payload:
            raise InvalidImageFormat("empty image data")
        return self._decode_base64(payload)

    def _decode_raw(self, image_data: str) -> bytes:
        payload = _WHITESPACE.sub("", image_data)
        if not _BASE64.match(payload):
            raise InvalidImageFormat("invalid base64 alphabet")
        return self._decode_base64(payload)

    def _decode_base64(self, payload: str) -> bytes:
        self._check_size(estimate_decoded_size(payload))
        try:
            return base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidImageFormat(f"undecodable base64: {e}") from e

    def _check_size(self, size: int) -> None:
        if size > self.max_bytes:
            raise ImageTooLarge(
                f"{size / (1024 * 1024):.2f}MB exceeds {self.max_bytes / (1024 * 1024):.2f}MB"
            )
