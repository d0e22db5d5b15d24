"""Unit tests for Gemini smart match

Tests cover:
- Answer parsing (1-based numbers, NONE, out of range, confidence clamp)
- PHOTO block splitting for batch answers
- Base64 / data URL decoding
- Budget enforcement and usage recording
- Retry on transient Gemini errors
"""

from __future__ import annotations

import base64
from unittest.mock import Mock, patch

import pytest
from google.api_core.exceptions import ServiceUnavailable

from mailroom.config import LLM_USER_DAILY_LIMIT
from mailroom.infrastructure.llm_budget import BudgetStatus, check_budget, record_llm_call
from mailroom.llm.gemini import GeminiInitializationError, build_image_part, clear_model_cache, get_gemini_model
from mailroom.llm.retry import call_llm
from mailroom.llm.smart_match import (
    QuotaExceededError,
    build_prompt,
    decode_image,
    parse_batch_response,
    parse_match_response,
    smart_match,
    smart_match_batch,
)
from mailroom.utils.validators import ValidationError

CONTACTS = [
    {"contact_id": "c1", "contact_person": "Jane Smith", "company_name": None, "mailbox_number": "101"},
    {"contact_id": "c2", "contact_person": "Houyu Chen", "company_name": None, "mailbox_number": "A12"},
]

IMAGE_B64 = base64.b64encode(b"fake-jpeg-bytes").decode()


class TestParseMatchResponse:
    def test_full_answer(self):
        result = parse_match_response(
            "EXTRACTED: CHEN HOUYU\nMATCHED: 2\nCONFIDENCE: 95\nREASON: reversed order",
            CONTACTS,
        )
        assert result == {
            "extractedText": "CHEN HOUYU",
            "matchedContact": CONTACTS[1],
            "confidence": 0.95,
            "reason": "reversed order",
        }

    def test_none_match(self):
        result = parse_match_response("EXTRACTED: Nobody\nMATCHED: NONE\nCONFIDENCE: 10\nREASON: -", CONTACTS)
        assert result["matchedContact"] is None
        assert result["confidence"] == 0.1

    def test_hash_prefixed_number(self):
        result = parse_match_response("EXTRACTED: Jane\nMATCHED: #1\nCONFIDENCE: 80", CONTACTS)
        assert result["matchedContact"] == CONTACTS[0]

    def test_out_of_range_number(self):
        result = parse_match_response("EXTRACTED: X\nMATCHED: 7\nCONFIDENCE: 80", CONTACTS)
        assert result["matchedContact"] is None

    def test_confidence_is_clamped(self):
        result = parse_match_response("EXTRACTED: X\nMATCHED: 1\nCONFIDENCE: 250", CONTACTS)
        assert result["confidence"] == 1.0

    def test_garbage_answer(self):
        result = parse_match_response("I cannot read this image.", CONTACTS)
        assert result == {"extractedText": "", "matchedContact": None, "confidence": 0.0, "reason": ""}


class TestParseBatchResponse:
    def test_blocks_in_order(self):
        text = (
            "PHOTO 1:\nEXTRACTED: Jane Smith\nMATCHED: 1\nCONFIDENCE: 90\nREASON: exact\n\n"
            "**PHOTO 2:**\nEXTRACTED: Houyu\nMATCHED: 2\nCONFIDENCE: 60\nREASON: partial\n"
        )
        results = parse_batch_response(text, CONTACTS, 2)
        assert [r["matchedContact"]["contact_id"] for r in results] == ["c1", "c2"]
        assert results[1]["confidence"] == 0.6

    def test_missing_block_gets_empty_result(self):
        text = "PHOTO 2:\nEXTRACTED: Houyu\nMATCHED: 2\nCONFIDENCE: 60\n"
        results = parse_batch_response(text, CONTACTS, 3)
        assert results[0]["matchedContact"] is None
        assert results[0]["reason"] == "No answer for this photo"
        assert results[1]["matchedContact"] == CONTACTS[1]
        assert results[2]["extractedText"] == ""


class TestDecodeImage:
    def test_plain_base64(self):
        assert decode_image(IMAGE_B64) == b"fake-jpeg-bytes"

    def test_data_url(self):
        assert decode_image(f"data:image/jpeg;base64,{IMAGE_B64}") == b"fake-jpeg-bytes"

    def test_empty(self):
        with pytest.raises(ValidationError, match="required"):
            decode_image("")

    def test_invalid(self):
        with pytest.raises(ValidationError, match="not valid base64"):
            decode_image("***not base64***")


def test_prompt_lists_contacts_one_based():
    prompt = build_prompt(CONTACTS)
    assert "1. Jane Smith (Mailbox: 101)" in prompt
    assert "2. Houyu Chen (Mailbox: A12)" in prompt


class TestSmartMatch:
    def test_records_usage_and_parses(self, temp_db):
        answer = "EXTRACTED: Jane Smith\nMATCHED: 1\nCONFIDENCE: 92\nREASON: exact"
        with (
            patch("mailroom.llm.smart_match.get_gemini_model", return_value=Mock()),
            patch("mailroom.llm.smart_match.call_llm", return_value=answer) as llm,
        ):
            result = smart_match("user-1", IMAGE_B64, "image/png", CONTACTS)

        assert result["matchedContact"] == CONTACTS[0]
        contents = llm.call_args.args[0]
        assert contents[1] == {"mime_type": "image/png", "data": b"fake-jpeg-bytes"}
        assert check_budget("user-1").user_calls_today == 1

    def test_quota_exceeded(self, temp_db):
        spent = BudgetStatus(500, 500, 500, 5000, False, "User daily quota exceeded (500/500)")
        with patch("mailroom.llm.smart_match.check_budget", return_value=spent):
            with pytest.raises(QuotaExceededError, match="QUOTA_EXCEEDED"):
                smart_match("user-1", IMAGE_B64, None, CONTACTS)

    def test_invalid_image_is_not_charged(self, temp_db):
        with pytest.raises(ValidationError):
            smart_match("user-1", "", None, CONTACTS)
        assert check_budget("user-1").user_calls_today == 0

    def test_batch_charges_per_image(self, temp_db):
        answer = "PHOTO 1:\nEXTRACTED: Jane\nMATCHED: 1\nCONFIDENCE: 90\nPHOTO 2:\nEXTRACTED: ?\nMATCHED: NONE\nCONFIDENCE: 0"
        images = [{"image": IMAGE_B64, "mimeType": "image/jpeg"}] * 2
        with (
            patch("mailroom.llm.smart_match.get_gemini_model", return_value=Mock()),
            patch("mailroom.llm.smart_match.call_llm", return_value=answer) as llm,
        ):
            results = smart_match_batch("user-1", images, CONTACTS)

        assert len(results) == 2
        assert results[1]["matchedContact"] is None
        contents = llm.call_args.args[0]
        assert contents[1] == "PHOTO 1:"
        assert contents[3] == "PHOTO 2:"
        assert check_budget("user-1").user_calls_today == 2

    def test_batch_cannot_overshoot_budget(self, temp_db):
        record_llm_call("user-1", calls=LLM_USER_DAILY_LIMIT - 1)
        images = [{"image": IMAGE_B64, "mimeType": "image/jpeg"}] * 2
        with patch("mailroom.llm.smart_match.call_llm") as llm:
            with pytest.raises(QuotaExceededError, match="QUOTA_EXCEEDED"):
                smart_match_batch("user-1", images, CONTACTS)

        llm.assert_not_called()
        assert check_budget("user-1").user_calls_today == LLM_USER_DAILY_LIMIT - 1

    def test_batch_limits(self, temp_db):
        with pytest.raises(ValidationError):
            smart_match_batch("user-1", [], CONTACTS)
        with pytest.raises(ValidationError, match="At most 10"):
            smart_match_batch("user-1", [{"image": IMAGE_B64}] * 11, CONTACTS)


class TestCallLlm:
    def test_retries_service_unavailable(self, monkeypatch):
        model = Mock()
        model.generate_content.side_effect = [ServiceUnavailable("down"), Mock(text="EXTRACTED: ok")]
        monkeypatch.setattr(call_llm.retry, "sleep", lambda seconds: None)

        with patch("mailroom.llm.retry.get_gemini_model", return_value=model):
            assert call_llm(["prompt"]) == "EXTRACTED: ok"
        assert model.generate_content.call_count == 2

    def test_other_errors_are_not_retried(self, monkeypatch):
        model = Mock()
        model.generate_content.side_effect = ValueError("blocked by safety filter")
        monkeypatch.setattr(call_llm.retry, "sleep", lambda seconds: None)

        with patch("mailroom.llm.retry.get_gemini_model", return_value=model):
            with pytest.raises(ValueError, match="safety"):
                call_llm(["prompt"])
        assert model.generate_content.call_count == 1


class TestGeminiModel:
    def test_missing_credentials(self, monkeypatch):
        monkeypatch.setattr("mailroom.llm.gemini.GOOGLE_CLOUD_PROJECT", None)
        monkeypatch.delenv("GOOGLE_CLOUD_PROJECT", raising=False)
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        clear_model_cache()

        with pytest.raises(GeminiInitializationError):
            get_gemini_model()

    def test_image_part_for_api_key_backend(self):
        part = build_image_part(Mock(), b"jpeg", "image/png")
        assert part == {"mime_type": "image/png", "data": b"jpeg"}
