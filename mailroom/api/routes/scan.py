"""
Scan session endpoints.

smart-match and smart-match-batch read mail photos with Gemini; bulk-submit
logs a finished session and emails the customers. The AI routes are plain
``def`` so FastAPI runs the blocking model call in its threadpool.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from mailroom.api.middleware.user_auth import AuthenticatedUser, get_current_user
from mailroom.api.models import BatchImage, BulkSubmitRequest, SmartMatchBatchRequest, SmartMatchRequest
from mailroom.llm.gemini import GeminiInitializationError
from mailroom.llm.smart_match import QuotaExceededError, decode_image, smart_match, smart_match_batch
from mailroom.observability.logging import get_logger
from mailroom.ocr.extractor import OCRError, UnreadableImageError, get_ocr_extractor
from mailroom.scan.bulk import ScanBulkSubmitter
from mailroom.utils.error_sanitizer import sanitize_error_message

router = APIRouter(prefix="/api/scan", tags=["scan"])
logger = get_logger(__name__)


def get_bulk_submitter() -> ScanBulkSubmitter:
    return ScanBulkSubmitter()


def _ai_error(e: Exception, action: str) -> HTTPException:
    """Map smart-match failures to statuses the scan station can classify."""
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=sanitize_error_message(str(e), 400))
    if isinstance(e, QuotaExceededError):
        # 402 plus the QUOTA_EXCEEDED marker makes the station switch to OCR
        return HTTPException(status_code=402, detail=str(e))
    if isinstance(e, GeminiInitializationError):
        logger.error("Gemini not configured: %s", e)
        return HTTPException(status_code=503, detail="AI matching is not configured")
    logger.error("Failed to %s: %s", action, e)
    return HTTPException(status_code=500, detail="Failed to process image with AI")


@router.post("/smart-match")
def smart_match_photo(
    request: SmartMatchRequest,
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    contacts = [contact.model_dump() for contact in request.contacts]
    try:
        return smart_match(user.id, request.image, request.mimeType, contacts)
    except Exception as e:
        raise _ai_error(e, "smart match photo") from None


@router.post("/smart-match-batch")
def smart_match_photos(
    request: SmartMatchBatchRequest,
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    contacts = [contact.model_dump() for contact in request.contacts]
    images = [image.model_dump() for image in request.images]
    try:
        return {"results": smart_match_batch(user.id, images, contacts)}
    except Exception as e:
        raise _ai_error(e, "smart match batch") from None


@router.post("/ocr")
def ocr_photo(
    request: BatchImage,
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    """Server-side Tesseract read, for stations without a local OCR engine."""
    try:
        result = get_ocr_extractor().extract_recipient_name(decode_image(request.image))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=sanitize_error_message(str(e), 400)) from None
    except UnreadableImageError:
        raise HTTPException(status_code=400, detail="Image could not be read") from None
    except OCRError as e:
        logger.warning("OCR failed: %s", e)
        raise HTTPException(status_code=503, detail="OCR is not available") from None
    return {"text": result.text, "confidence": result.confidence}


@router.post("/bulk-submit")
def bulk_submit(
    request: BulkSubmitRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    submitter: ScanBulkSubmitter = Depends(get_bulk_submitter),
) -> dict[str, Any]:
    try:
        return submitter.submit(
            user.id,
            [item.model_dump() for item in request.items],
            request.performed_by,
            skip_notification=request.skip_notification,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=sanitize_error_message(str(e), 400)) from None
    except Exception as e:
        logger.error("Bulk submit failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to submit scan session") from None
