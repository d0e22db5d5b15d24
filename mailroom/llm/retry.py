"""Shared LLM call with retry logic.

Retries up to LLM_MAX_RETRIES times with exponential backoff. Google API
exceptions are converted to builtin types so the retry predicate stays
SDK-agnostic: DeadlineExceeded -> TimeoutError, ServiceUnavailable and
InternalServerError -> ConnectionError, ResourceExhausted -> OSError.
"""

from __future__ import annotations

from typing import Any

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from mailroom.config import LLM_MAX_RETRIES, LLM_TIMEOUT_SECONDS
from mailroom.infrastructure.settings import GEMINI_MAX_TOKENS, GEMINI_TEMPERATURE
from mailroom.llm.gemini import get_gemini_model
from mailroom.observability.logging import get_logger
from mailroom.observability.telemetry import counter

logger = get_logger(__name__)


@retry(
    stop=stop_after_attempt(LLM_MAX_RETRIES),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((TimeoutError, ConnectionError, OSError)),
    reraise=True,
)
def call_llm(contents: list[Any], counter_prefix: str = "llm") -> str:
    """Call Gemini with retry and Google API exception conversion.

    Args:
        contents: Prompt parts (text first, then image parts from build_image_part).
        counter_prefix: Telemetry counter prefix (e.g. "smart_match").

    Returns:
        The model's response text.

    Raises:
        TimeoutError: On deadline exceeded (retryable).
        ConnectionError: On service unavailable or internal error (retryable).
        OSError: On resource exhausted / rate limited (retryable).
        Exception: On other errors (not retried, caller handles).
    """
    from google.api_core.exceptions import (
        DeadlineExceeded,
        InternalServerError,
        ResourceExhausted,
        ServiceUnavailable,
    )

    model = get_gemini_model()
    generation_config = {
        "temperature": GEMINI_TEMPERATURE,
        "max_output_tokens": GEMINI_MAX_TOKENS,
    }

    try:
        response = model.generate_content(contents, generation_config=generation_config)
        counter(f"{counter_prefix}.llm_call")
        return response.text
    except DeadlineExceeded as e:
        counter(f"{counter_prefix}.timeout")
        logger.warning("LLM call timed out after %ds", LLM_TIMEOUT_SECONDS)
        raise TimeoutError(f"LLM call timed out: {e}") from e
    except ServiceUnavailable as e:
        counter(f"{counter_prefix}.service_unavailable")
        logger.warning("LLM service unavailable, will retry: %s", e)
        raise ConnectionError(f"LLM service unavailable: {e}") from e
    except ResourceExhausted as e:
        counter(f"{counter_prefix}.rate_limited")
        logger.warning("LLM rate limited (429), will retry: %s", e)
        raise OSError(f"429 Too Many Requests: {e}") from e
    except InternalServerError as e:
        counter(f"{counter_prefix}.internal_error")
        logger.warning("LLM internal error (500), will retry: %s", e)
        raise ConnectionError(f"LLM internal error: {e}") from e
    except Exception as e:
        logger.error("LLM call failed: %s", e)
        raise
