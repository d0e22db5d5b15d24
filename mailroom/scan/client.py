"""
HTTP client for the scan endpoints.

smart_match()/smart_match_batch() never raise: transport, quota and rate
limit failures come back as a SmartMatchResult carrying ``error`` so the
session can fall back to OCR without special-casing exceptions.
"""

from __future__ import annotations

import base64
from io import BytesIO
from typing import Any

import httpx
from PIL import Image

from mailroom.config import SCAN_COMPRESS_MAX_WIDTH, SCAN_COMPRESS_QUALITY, SCAN_MAX_UPLOAD_BYTES
from mailroom.observability.logging import get_logger
from mailroom.observability.telemetry import counter
from mailroom.scan.types import Photo, ScanSubmitError, SmartMatchResult

logger = get_logger(__name__)

QUOTA_MESSAGE = "Daily AI quota exhausted - falling back to backup OCR"
BUSY_MESSAGE = "AI is busy - please wait a moment and try again"


def classify_error(message: str) -> str:
    """Map a raw failure message to what the operator should see."""
    lowered = message.lower()
    if "quota" in lowered or "limit: 0" in message or "budget" in lowered or "402" in message:
        return QUOTA_MESSAGE
    if "429" in message or "too many requests" in lowered or "busy" in lowered:
        return BUSY_MESSAGE
    return message


def compress_image(photo: Photo) -> Photo:
    """Re-encode photos over the upload limit as JPEG, at most 1600px wide."""
    if len(photo.data) <= SCAN_MAX_UPLOAD_BYTES:
        return photo

    image = Image.open(BytesIO(photo.data)).convert("RGB")
    if image.width > SCAN_COMPRESS_MAX_WIDTH:
        height = round(image.height * SCAN_COMPRESS_MAX_WIDTH / image.width)
        image = image.resize((SCAN_COMPRESS_MAX_WIDTH, height))

    buffer = BytesIO()
    image.save(buffer, format="JPEG", quality=SCAN_COMPRESS_QUALITY)
    logger.debug("Compressed photo %d -> %d bytes", len(photo.data), buffer.tell())
    return Photo(data=buffer.getvalue(), mime_type="image/jpeg")


def simplify_contacts(contacts: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {
            "contact_id": contact.get("contact_id"),
            "contact_person": contact.get("contact_person"),
            "company_name": contact.get("company_name"),
            "mailbox_number": contact.get("mailbox_number"),
        }
        for contact in contacts
    ]


def _error_message(exc: Exception) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        response = exc.response
        try:
            body = response.json()
        except ValueError:
            body = None
        detail = (body.get("detail") or body.get("error")) if isinstance(body, dict) else response.text
        return f"{response.status_code} {response.reason_phrase}: {detail}"
    return str(exc) or exc.__class__.__name__


class SmartMatchClient:
    """
    Async client for the mailroom API's scan routes.

    Args:
        base_url: API root, e.g. "http://localhost:8000"
        token: Google OAuth bearer token of the staff user
        http_client: Pre-built AsyncClient (tests pass one with a MockTransport)
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = http_client or httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, payload: dict[str, Any]) -> Any:
        response = await self._client.post(path, json=payload)
        response.raise_for_status()
        return response.json()

    async def list_contacts(self) -> list[dict[str, Any]]:
        response = await self._client.get("/api/contacts")
        response.raise_for_status()
        return response.json()

    async def smart_match(self, photo: Photo, contacts: list[dict[str, Any]]) -> SmartMatchResult:
        try:
            upload = compress_image(photo)
            data = await self._post(
                "/api/scan/smart-match",
                {
                    "image": base64.b64encode(upload.data).decode(),
                    "mimeType": upload.mime_type,
                    "contacts": simplify_contacts(contacts),
                },
            )
        except Exception as e:
            message = _error_message(e)
            logger.warning("Smart match failed: %s", message)
            counter("scan.smart_match.error")
            return SmartMatchResult.failure(classify_error(message))

        return SmartMatchResult.from_api(data)

    async def smart_match_batch(self, photos: list[Photo], contacts: list[dict[str, Any]]) -> list[SmartMatchResult]:
        """One result per photo, in photo order; a failed call fails every photo."""
        try:
            images = []
            for photo in photos:
                upload = compress_image(photo)
                images.append({"image": base64.b64encode(upload.data).decode(), "mimeType": upload.mime_type})
            data = await self._post(
                "/api/scan/smart-match-batch",
                {"images": images, "contacts": simplify_contacts(contacts)},
            )
        except Exception as e:
            message = classify_error(_error_message(e))
            logger.warning("Batch smart match failed: %s", message)
            counter("scan.smart_match_batch.error")
            return [SmartMatchResult.failure(message) for _ in photos]

        results = [SmartMatchResult.from_api(item) for item in data.get("results", [])]
        # Short answers are padded so indexes keep lining up with photos
        while len(results) < len(photos):
            results.append(SmartMatchResult.failure("No result for this photo"))
        return results[: len(photos)]

    async def bulk_submit(
        self,
        items: list[dict[str, Any]],
        performed_by: str,
        skip_notification: bool = False,
    ) -> dict[str, Any]:
        """
        Raises:
            ScanSubmitError: Any transport or HTTP failure
        """
        try:
            return await self._post(
                "/api/scan/bulk-submit",
                {"items": items, "performed_by": performed_by, "skip_notification": skip_notification},
            )
        except Exception as e:
            raise ScanSubmitError(_error_message(e)) from e
