"""Health check endpoint for the Mailroom API."""

from __future__ import annotations

import os
import shutil
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter

from mailroom.config import APP_VERSION
from mailroom.infrastructure.database import get_pool_stats

router = APIRouter(tags=["health"])


@router.get("/api/health")
async def health_check() -> dict[str, Any]:
    """Liveness check.

    Reports whether the AI and OCR backends are configured; it does not
    call either of them.
    """
    has_api_key = bool(os.getenv("GOOGLE_API_KEY"))
    has_project = bool(os.getenv("GOOGLE_CLOUD_PROJECT"))

    return {
        "status": "healthy",
        "service": "Mailroom API",
        "version": APP_VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
        "database": get_pool_stats(),
        "llm": {
            "ready": has_api_key or has_project,
            "google_api_key": has_api_key,
            "google_cloud_project": has_project,
        },
        "ocr": {"tesseract": shutil.which("tesseract") is not None},
    }
