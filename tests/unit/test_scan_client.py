"""Unit tests for the scan station HTTP client (httpx MockTransport)"""

from __future__ import annotations

import asyncio
import base64
import json
from io import BytesIO

import httpx
import pytest
from PIL import Image

from mailroom.scan.client import (
    BUSY_MESSAGE,
    QUOTA_MESSAGE,
    SmartMatchClient,
    classify_error,
    compress_image,
)
from mailroom.scan.storage import JsonFileStorage
from mailroom.scan.types import Photo, ScanSubmitError

CONTACTS = [
    {
        "contact_id": "c1",
        "contact_person": "Jane Smith",
        "company_name": None,
        "mailbox_number": "101",
        "email": "jane@example.com",
        "status": "Active",
    },
]


def make_client(handler):
    transport = httpx.MockTransport(handler)
    http_client = httpx.AsyncClient(transport=transport, base_url="http://mailroom.test")
    return SmartMatchClient("http://mailroom.test", http_client=http_client)


def run(coro):
    return asyncio.run(coro)


class TestClassifyError:
    @pytest.mark.parametrize(
        "message",
        [
            "402 Payment Required: User daily quota exceeded (500/500) (QUOTA_EXCEEDED)",
            "Quota exceeded for metric generate_content, limit: 0",
        ],
    )
    def test_quota(self, message):
        assert classify_error(message) == QUOTA_MESSAGE

    def test_rate_limited(self):
        assert classify_error("429 Too Many Requests: slow down") == BUSY_MESSAGE

    def test_other_messages_pass_through(self):
        assert classify_error("500 Internal Server Error: boom") == "500 Internal Server Error: boom"


class TestCompressImage:
    def test_small_photos_untouched(self):
        photo = Photo(data=b"tiny", mime_type="image/png")
        assert compress_image(photo) is photo

    def test_large_photos_become_smaller_jpeg(self, monkeypatch):
        monkeypatch.setattr("mailroom.scan.client.SCAN_MAX_UPLOAD_BYTES", 1000)
        buffer = BytesIO()
        Image.new("RGB", (3200, 1000), "red").save(buffer, format="PNG")

        compressed = compress_image(Photo(data=buffer.getvalue(), mime_type="image/png"))

        assert compressed.mime_type == "image/jpeg"
        assert Image.open(BytesIO(compressed.data)).size == (1600, 500)


class TestSmartMatchClient:
    def test_smart_match_posts_simplified_contacts(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={"extractedText": "JANE SMITH", "matchedContact": CONTACTS[0], "confidence": 0.9, "reason": "ok"},
            )

        result = run(make_client(handler).smart_match(Photo(b"jpeg"), CONTACTS))

        assert seen["path"] == "/api/scan/smart-match"
        assert base64.b64decode(seen["body"]["image"]) == b"jpeg"
        assert seen["body"]["contacts"] == [
            {"contact_id": "c1", "contact_person": "Jane Smith", "company_name": None, "mailbox_number": "101"}
        ]
        assert result.extracted_text == "JANE SMITH"
        assert result.confidence == 0.9
        assert result.error is None

    def test_quota_error_is_returned_not_raised(self):
        def handler(request):
            return httpx.Response(402, json={"detail": "User daily quota exceeded (500/500) (QUOTA_EXCEEDED)"})

        result = run(make_client(handler).smart_match(Photo(b"jpeg"), CONTACTS))

        assert result.error == QUOTA_MESSAGE
        assert result.matched_contact is None

    def test_transport_error_is_returned(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        result = run(make_client(handler).smart_match(Photo(b"jpeg"), CONTACTS))
        assert result.error == "connection refused"

    def test_batch_pads_short_answers(self):
        def handler(request):
            assert len(json.loads(request.content)["images"]) == 3
            return httpx.Response(200, json={"results": [{"extractedText": "A", "confidence": 0.8}]})

        results = run(make_client(handler).smart_match_batch([Photo(b"1"), Photo(b"2"), Photo(b"3")], CONTACTS))

        assert [r.extracted_text for r in results] == ["A", "", ""]
        assert results[1].error == "No result for this photo"

    def test_batch_failure_fails_every_photo(self):
        def handler(request):
            return httpx.Response(429, json={"detail": "Rate limit exceeded"})

        results = run(make_client(handler).smart_match_batch([Photo(b"1"), Photo(b"2")], CONTACTS))
        assert [r.error for r in results] == [BUSY_MESSAGE, BUSY_MESSAGE]

    def test_bulk_submit_raises_on_failure(self):
        def handler(request):
            return httpx.Response(500, json={"detail": "Failed to submit scan session"})

        with pytest.raises(ScanSubmitError, match="Failed to submit scan session"):
            run(make_client(handler).bulk_submit([{"contact_id": "c1", "item_type": "Letter"}], "Merlin"))

    def test_bulk_submit_payload(self):
        seen = {}

        def handler(request):
            seen.update(json.loads(request.content))
            return httpx.Response(200, json={"success": True, "itemsCreated": 1})

        response = run(make_client(handler).bulk_submit([{"contact_id": "c1"}], "Merlin", skip_notification=True))

        assert response["itemsCreated"] == 1
        assert seen == {"items": [{"contact_id": "c1"}], "performed_by": "Merlin", "skip_notification": True}


class TestJsonFileStorage:
    def test_round_trip_and_remove(self, tmp_path):
        storage = JsonFileStorage(tmp_path / "state" / "scan.json")
        assert storage.get("scanSession") is None

        storage.set("scanSession", '{"a": 1}')
        assert JsonFileStorage(tmp_path / "state" / "scan.json").get("scanSession") == '{"a": 1}'

        storage.remove("scanSession")
        assert storage.get("scanSession") is None

    def test_corrupt_file_reads_as_empty(self, tmp_path):
        path = tmp_path / "scan.json"
        path.write_text("{broken")
        assert JsonFileStorage(path).get("scanSession") is None
