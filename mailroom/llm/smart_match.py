"""
Smart match: Gemini reads a mail photo and picks the recipient from the
contact list in one call.

The model answers in a fixed line format:

    EXTRACTED: <recipient name>
    MATCHED: <1-based customer number | NONE>
    CONFIDENCE: <0-100>
    REASON: <short explanation>

The batch variant asks for one ``PHOTO n:`` block per image.
"""

from __future__ import annotations

import base64
import binascii
import re
from typing import Any

from mailroom.config import SCAN_BATCH_MAX_PHOTOS
from mailroom.infrastructure.llm_budget import check_budget, record_llm_call
from mailroom.llm.gemini import build_image_part, get_gemini_model
from mailroom.llm.retry import call_llm
from mailroom.observability.logging import get_logger
from mailroom.observability.telemetry import counter, log_event
from mailroom.utils.validators import ValidationError

logger = get_logger(__name__)

_EXTRACTED = re.compile(r"EXTRACTED:\s*(.+)", re.IGNORECASE)
_MATCHED = re.compile(r"MATCHED:\s*(.+)", re.IGNORECASE)
_CONFIDENCE = re.compile(r"CONFIDENCE:\s*(\d+)", re.IGNORECASE)
_REASON = re.compile(r"REASON:\s*(.+)", re.IGNORECASE)
_INDEX = re.compile(r"#?\s*(\d+)")
_PHOTO_HEADER = re.compile(r"^[ \t*#]*PHOTO\s+(\d+)[ \t*]*:?", re.IGNORECASE | re.MULTILINE)


class QuotaExceededError(Exception):
    """The user's (or the global) daily AI budget is spent."""


_EXTRACTION_RULES = """INSTRUCTIONS FOR TEXT EXTRACTION:
- Look carefully at the ENTIRE image for the recipient's name
- The name is usually:
  * Near the center or top of the label
  * After keywords like "TO:", "ATTN:", "ATTENTION:", "RECIPIENT:", "DELIVER TO:"
  * The largest or most prominent text
  * Above the address lines
- Extract the COMPLETE name, not just initials or partial text
- Ignore address lines, city names, zip codes, sender information

INSTRUCTIONS FOR MATCHING:
- Compare the extracted name to the customer list
- Handle variations like:
  * First name / last name order (e.g., "Chen Houyu" vs "Houyu Chen")
  * Missing spaces (e.g., "HouYu Chen" vs "Hou Yu Chen")
  * Partial names (e.g., "H. Chen" -> "Houyu Chen")
  * Abbreviations or nicknames
  * Different capitalization"""

_ANSWER_FORMAT = """EXTRACTED: [the complete recipient name you found]
MATCHED: [customer number from list, or "NONE" if no match]
CONFIDENCE: [0-100, how confident you are in the match]
REASON: [brief explanation of your match or why no match]"""


def build_contact_list(contacts: list[dict[str, Any]]) -> str:
    lines = []
    for number, contact in enumerate(contacts, start=1):
        name = contact.get("contact_person") or contact.get("company_name") or "Unknown"
        mailbox = contact.get("mailbox_number") or "N/A"
        lines.append(f"{number}. {name} (Mailbox: {mailbox})")
    return "\n".join(lines)


def build_prompt(contacts: list[dict[str, Any]]) -> str:
    return f"""You are analyzing a photograph of a mail label or envelope. Your task is to:
1. Find and extract the RECIPIENT'S FULL NAME from the image
2. Match it to one of the customers in the list below

CUSTOMER LIST:
{build_contact_list(contacts)}

{_EXTRACTION_RULES}

RETURN FORMAT (must be EXACT):
{_ANSWER_FORMAT}

Example response:
EXTRACTED: CHEN HOUYU
MATCHED: 5
CONFIDENCE: 95
REASON: Name matches customer #5 "Houyu Chen", just reversed order (last name first)

Now analyze the image and provide your response:"""


def build_batch_prompt(contacts: list[dict[str, Any]], photo_count: int) -> str:
    return f"""You are analyzing {photo_count} photographs of mail labels or envelopes, given in order.
For EACH photo:
1. Find and extract the RECIPIENT'S FULL NAME
2. Match it to one of the customers in the list below

CUSTOMER LIST:
{build_contact_list(contacts)}

{_EXTRACTION_RULES}

RETURN FORMAT (must be EXACT, one block per photo, numbered from 1 to {photo_count}):
PHOTO 1:
{_ANSWER_FORMAT}

PHOTO 2:
...

Now analyze the images and provide your response:"""


def empty_result(reason: str = "") -> dict[str, Any]:
    return {"extractedText": "", "matchedContact": None, "confidence": 0.0, "reason": reason}


def parse_match_response(text: str, contacts: list[dict[str, Any]]) -> dict[str, Any]:
    """
    Parse one EXTRACTED/MATCHED/CONFIDENCE/REASON answer.

    The matched number is 1-based; NONE, unparseable or out-of-range numbers
    mean no contact. Confidence is the reported percentage as a fraction,
    clamped to [0, 1].
    """
    extracted = _EXTRACTED.search(text)
    matched = _MATCHED.search(text)
    confidence = _CONFIDENCE.search(text)
    reason = _REASON.search(text)

    matched_contact = None
    matched_value = matched.group(1).strip() if matched else "NONE"
    if matched_value.upper() != "NONE":
        index = _INDEX.match(matched_value)
        if index:
            number = int(index.group(1))
            if 1 <= number <= len(contacts):
                matched_contact = contacts[number - 1]

    confidence_value = int(confidence.group(1)) / 100 if confidence else 0.0

    return {
        "extractedText": extracted.group(1).strip() if extracted else "",
        "matchedContact": matched_contact,
        "confidence": min(max(confidence_value, 0.0), 1.0),
        "reason": reason.group(1).strip() if reason else "",
    }


def parse_batch_response(text: str, contacts: list[dict[str, Any]], photo_count: int) -> list[dict[str, Any]]:
    """Split a batch answer into PHOTO blocks; photos without a block get an empty result."""
    headers = list(_PHOTO_HEADER.finditer(text))
    blocks: dict[int, str] = {}
    for position, header in enumerate(headers):
        end = headers[position + 1].start() if position + 1 < len(headers) else len(text)
        blocks.setdefault(int(header.group(1)), text[header.end() : end])

    results = []
    for number in range(1, photo_count + 1):
        block = blocks.get(number)
        if block is None:
            results.append(empty_result("No answer for this photo"))
        else:
            results.append(parse_match_response(block, contacts))
    return results


def decode_image(image_b64: str) -> bytes:
    if not image_b64:
        raise ValidationError("Image data is required")
    # data URLs from browsers carry a "data:image/jpeg;base64," prefix
    if image_b64.startswith("data:") and "," in image_b64:
        image_b64 = image_b64.split(",", 1)[1]
    try:
        return base64.b64decode(image_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("Image data is not valid base64") from e


def _charge(user_id: str, calls: int, call_type: str = "smart_match") -> None:
    budget = check_budget(user_id, calls=calls)
    if not budget.is_allowed:
        counter("smart_match.quota_exceeded")
        raise QuotaExceededError(f"{budget.reason} (QUOTA_EXCEEDED)")
    record_llm_call(user_id, call_type=call_type, calls=calls)


def smart_match(user_id: str, image_b64: str, mime_type: str | None, contacts: list[dict[str, Any]]) -> dict[str, Any]:
    """
    Extract the recipient from one photo and match it against contacts.

    Raises:
        ValidationError: Missing/invalid image
        QuotaExceededError: Daily budget spent
    """
    image_bytes = decode_image(image_b64)
    _charge(user_id, 1)

    model = get_gemini_model()
    response_text = call_llm(
        [build_prompt(contacts), build_image_part(model, image_bytes, mime_type or "image/jpeg")],
        counter_prefix="smart_match",
    )
    result = parse_match_response(response_text.strip(), contacts)

    log_event(
        "smart_match.result",
        matched=result["matchedContact"] is not None,
        confidence=result["confidence"],
    )
    return result


def smart_match_batch(user_id: str, images: list[dict[str, Any]], contacts: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    One Gemini call for up to SCAN_BATCH_MAX_PHOTOS photos.

    Args:
        images: [{"image": base64, "mimeType": str}, ...] in photo order

    Returns:
        One result per image, in the same order
    """
    if not images:
        raise ValidationError("Images array is required")
    if len(images) > SCAN_BATCH_MAX_PHOTOS:
        raise ValidationError(f"At most {SCAN_BATCH_MAX_PHOTOS} images per batch")

    decoded = [(decode_image(image.get("image", "")), image.get("mimeType") or "image/jpeg") for image in images]
    _charge(user_id, len(decoded), call_type="smart_match_batch")

    model = get_gemini_model()
    contents: list[Any] = [build_batch_prompt(contacts, len(decoded))]
    for number, (image_bytes, mime_type) in enumerate(decoded, start=1):
        contents.append(f"PHOTO {number}:")
        contents.append(build_image_part(model, image_bytes, mime_type))

    response_text = call_llm(contents, counter_prefix="smart_match_batch")
    results = parse_batch_response(response_text, contacts, len(decoded))

    log_event(
        "smart_match.batch_result",
        photos=len(decoded),
        matched=sum(1 for result in results if result["matchedContact"] is not None),
    )
    return results
