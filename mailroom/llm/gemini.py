"""
Gemini Model Manager - Singleton for shared model instance.

Supports two backends:
  1. Vertex AI SDK (production, Cloud Run) - uses GOOGLE_CLOUD_PROJECT + service account
  2. google-generativeai (local dev) - uses GOOGLE_API_KEY

Smart-match prompts carry a photo, so this module also builds the image
part in whichever shape the active backend expects.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Any

from mailroom.infrastructure.settings import GEMINI_LOCATION, GEMINI_MODEL, GOOGLE_CLOUD_PROJECT
from mailroom.observability.logging import get_logger

logger = get_logger(__name__)


class GeminiInitializationError(RuntimeError):
    """Raised when Gemini model cannot be initialized."""


@lru_cache(maxsize=1)
def get_gemini_model():
    """
    Get or create shared Gemini model instance.

    Tries Vertex AI SDK first (production). Falls back to google-generativeai
    with GOOGLE_API_KEY for local development.

    Returns:
        GenerativeModel: Shared Gemini model

    Raises:
        GeminiInitializationError: If model cannot be initialized
    """
    try:
        import vertexai
        from vertexai.generative_models import GenerativeModel

        project = GOOGLE_CLOUD_PROJECT or os.getenv("GOOGLE_CLOUD_PROJECT")
        location = GEMINI_LOCATION or "us-central1"

        if project:
            vertexai.init(project=project, location=location)
            model = GenerativeModel(GEMINI_MODEL)
            logger.info(
                "Initialized Gemini model (Vertex AI): project=%s, location=%s, model=%s",
                project,
                location,
                GEMINI_MODEL,
            )
            return model

        logger.info("GOOGLE_CLOUD_PROJECT not set, trying google-generativeai with API key")

    except ImportError:
        logger.info("Vertex AI SDK not installed, trying google-generativeai fallback")

    try:
        import google.generativeai as genai

        api_key = os.getenv("GOOGLE_API_KEY")
        if not api_key:
            raise GeminiInitializationError(
                "Neither GOOGLE_CLOUD_PROJECT nor GOOGLE_API_KEY is set. "
                "Configure Vertex AI or set GOOGLE_API_KEY."
            )

        genai.configure(api_key=api_key)
        model = genai.GenerativeModel(GEMINI_MODEL)

        logger.info("Initialized Gemini model (google-generativeai): model=%s", GEMINI_MODEL)
        return model

    except GeminiInitializationError:
        raise
    except ImportError as e:
        raise GeminiInitializationError(
            "No Gemini SDK available. Install google-cloud-aiplatform or google-generativeai."
        ) from e
    except Exception as e:
        logger.error("Failed to initialize Gemini model: %s", e)
        raise GeminiInitializationError(f"Failed to initialize Gemini: {e}") from e


def is_vertex_model(model: Any) -> bool:
    return type(model).__module__.startswith("vertexai")


def build_image_part(model: Any, image_bytes: bytes, mime_type: str = "image/jpeg") -> Any:
    """Inline image content for generate_content, shaped for the model's SDK."""
    if is_vertex_model(model):
        from vertexai.generative_models import Part

        return Part.from_data(data=image_bytes, mime_type=mime_type)
    return {"mime_type": mime_type, "data": image_bytes}


def clear_model_cache() -> None:
    """
    Clear the cached model instance.

    Useful for testing or when reconfiguration is needed.
    """
    get_gemini_model.cache_clear()
    logger.info("Cleared Gemini model cache")
