"""
Scan session orchestration.

A session moves NO_SESSION -> ACTIVE_CAPTURE -> REVIEWING -> SUBMITTED.
Photos are matched by the AI endpoint first; weak or failed answers fall
back to local OCR plus the fuzzy contact matcher. The session (minus photo
bytes) is written to local storage after every change so a crashed or
reloaded operator station picks up where it left off, for up to 4 hours.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from mailroom.config import (
    SCAN_BATCH_CONFIDENCE_THRESHOLD,
    SCAN_BATCH_MAX_PHOTOS,
    SCAN_CONFIDENCE_THRESHOLD,
    SCAN_MIN_CALL_INTERVAL_SECONDS,
    SCAN_RESUMED_TOAST_KEY,
    SCAN_SESSION_STORAGE_KEY,
    SCAN_SESSION_TIMEOUT_HOURS,
)
from mailroom.matching.matcher import ContactIndex
from mailroom.observability.logging import get_logger
from mailroom.observability.telemetry import counter
from mailroom.ocr.extractor import OCRError, OCRExtractor, get_ocr_extractor
from mailroom.scan.client import SmartMatchClient
from mailroom.scan.rate_limit import CallRateLimiter
from mailroom.scan.storage import KeyValueStorage, MemoryStorage
from mailroom.scan.types import (
    BatchFullError,
    Celebration,
    GroupedScanResult,
    Photo,
    ScanItemStatus,
    ScannedItem,
    ScanSession,
    ScanSessionError,
    ScanState,
    ScanSubmitError,
    SmartMatchResult,
)

logger = get_logger(__name__)

MIN_TEXT_LENGTH = 2

Notifier = Callable[[str, str], None]


def _log_notifier(level: str, message: str) -> None:
    logger.info("[%s] %s", level, message)


def _contact_name(contact: dict[str, Any] | None) -> str:
    if not contact:
        return "Unknown"
    return contact.get("contact_person") or contact.get("company_name") or "Unknown"


def item_status(contact: dict[str, Any] | None, confidence: float, threshold: float) -> ScanItemStatus:
    if contact and confidence >= threshold:
        return ScanItemStatus.MATCHED
    if contact:
        return ScanItemStatus.UNCERTAIN
    return ScanItemStatus.FAILED


class ScanSessionController:
    """
    Drives one operator's scan session.

    Args:
        client: SmartMatchClient (or anything with the same coroutines)
        contacts: Contact dicts to match against; archived contacts are ignored
        local_storage: Durable store for the session (survives restarts)
        session_storage: Per-run store for the "resumed" toast flag
        notify: Callback receiving (level, message) for operator toasts
        ocr: Extractor used for the fallback path
        clock: Returns the current aware datetime
        rate_limiter: Spacing between smart-match calls
    """

    def __init__(
        self,
        client: SmartMatchClient,
        contacts: list[dict[str, Any]],
        local_storage: KeyValueStorage | None = None,
        session_storage: KeyValueStorage | None = None,
        notify: Notifier | None = None,
        ocr: OCRExtractor | None = None,
        clock: Callable[[], datetime] | None = None,
        rate_limiter: CallRateLimiter | None = None,
        confidence_threshold: float = SCAN_CONFIDENCE_THRESHOLD,
        batch_confidence_threshold: float = SCAN_BATCH_CONFIDENCE_THRESHOLD,
        batch_max_photos: int = SCAN_BATCH_MAX_PHOTOS,
    ):
        self.client = client
        self.contacts = [contact for contact in contacts if contact.get("status") != "No"]
        self.local_storage = local_storage if local_storage is not None else MemoryStorage()
        self.session_storage = session_storage if session_storage is not None else MemoryStorage()
        self.notify = notify if notify is not None else _log_notifier
        self._ocr = ocr
        self._clock = clock or (lambda: datetime.now(UTC))
        self.rate_limiter = rate_limiter or CallRateLimiter(SCAN_MIN_CALL_INTERVAL_SECONDS)
        self.confidence_threshold = confidence_threshold
        self.batch_confidence_threshold = batch_confidence_threshold
        self.batch_max_photos = batch_max_photos

        self._index = ContactIndex(self.contacts)
        self.state = ScanState.NO_SESSION
        self.session: ScanSession | None = None
        self.review_queue: deque[ScannedItem] = deque()
        self.batch: list[Photo] = []
        self.processing_count = 0
        self._celebration: Celebration | None = None

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    @property
    def pending_item(self) -> ScannedItem | None:
        return self.review_queue[0] if self.review_queue else None

    @property
    def items(self) -> list[ScannedItem]:
        return self.session.items if self.session else []

    def _persist(self) -> None:
        if self.session is not None:
            self.local_storage.set(SCAN_SESSION_STORAGE_KEY, json.dumps(self.session.to_dict()))

    def _clear(self) -> None:
        self.local_storage.remove(SCAN_SESSION_STORAGE_KEY)
        for item in self.items:
            item.photo = None
        self.session = None
        self.review_queue.clear()
        self.batch = []

    def load_existing_session(self) -> ScanSession | None:
        """Resume a stored session if it has not expired."""
        raw = self.local_storage.get(SCAN_SESSION_STORAGE_KEY)
        if raw is None:
            return None

        try:
            session = ScanSession.from_dict(json.loads(raw))
            expired = session.is_expired(self._clock())
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding unreadable scan session: %s", e)
            self.local_storage.remove(SCAN_SESSION_STORAGE_KEY)
            return None

        if expired:
            logger.info("Scan session %s expired", session.session_id)
            self.local_storage.remove(SCAN_SESSION_STORAGE_KEY)
            self.session_storage.remove(SCAN_RESUMED_TOAST_KEY)
            self.notify("error", f"Previous session expired ({SCAN_SESSION_TIMEOUT_HOURS} hours)")
            return None

        self.session = session
        self.state = ScanState.ACTIVE_CAPTURE
        if self.session_storage.get(SCAN_RESUMED_TOAST_KEY) != session.session_id:
            self.session_storage.set(SCAN_RESUMED_TOAST_KEY, session.session_id)
            self.notify("success", "Resumed previous scan session")
        logger.info("Resumed scan session %s with %d items", session.session_id, len(session.items))
        return session

    def start_session(self) -> ScanSession:
        if self.state in (ScanState.ACTIVE_CAPTURE, ScanState.REVIEWING):
            raise ScanSessionError("A scan session is already in progress")

        now = self._clock()
        self.session = ScanSession(
            session_id=f"scan-{int(now.timestamp() * 1000)}",
            started_at=now.isoformat(),
            expires_at=(now + timedelta(hours=SCAN_SESSION_TIMEOUT_HOURS)).isoformat(),
        )
        self.review_queue.clear()
        self.batch = []
        self.state = ScanState.ACTIVE_CAPTURE
        self._persist()
        counter("scan.session.started")
        self.notify("success", "Scan session started!")
        return self.session

    def _require_state(self, *states: ScanState) -> ScanSession:
        if self.state not in states or self.session is None:
            raise ScanSessionError("No active scan session")
        if self.session.is_expired(self._clock()):
            self._clear()
            self.state = ScanState.NO_SESSION
            message = f"Previous session expired ({SCAN_SESSION_TIMEOUT_HOURS} hours)"
            self.notify("error", message)
            raise ScanSessionError(message)
        return self.session

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    async def _ocr_fallback(self, photo: Photo) -> tuple[str, dict[str, Any] | None, float] | None:
        ocr = self._ocr or get_ocr_extractor()
        try:
            result = await asyncio.to_thread(ocr.extract_recipient_name, photo.data)
        except OCRError as e:
            logger.warning("OCR fallback failed: %s", e)
            counter("scan.ocr_fallback.error")
            return None

        match = self._index.match(result.text)
        counter("scan.ocr_fallback.count")
        if match is None:
            return result.text, None, 0.0
        return result.text, match.contact, match.confidence

    async def _resolve(self, photo: Photo, answer: SmartMatchResult, threshold: float) -> ScannedItem | None:
        """Combine the AI answer with the OCR fallback into a scanned item."""
        text = answer.extracted_text
        contact = answer.matched_contact
        confidence = answer.confidence

        if answer.error:
            self.notify("warning", answer.error)

        if contact is None or confidence < threshold or answer.error:
            fallback = await self._ocr_fallback(photo)
            if fallback is not None:
                ocr_text, ocr_contact, ocr_confidence = fallback
                if ocr_contact is not None and ocr_confidence > confidence:
                    text, contact, confidence = ocr_text, ocr_contact, ocr_confidence
                elif not text.strip():
                    text = ocr_text

        if len(text.strip()) < MIN_TEXT_LENGTH:
            counter("scan.capture.no_text")
            self.notify("error", "No text extracted from photo - keep scanning")
            return None

        if contact is not None:
            contact = self._canonical_contact(contact)

        return ScannedItem(
            item_id=uuid.uuid4().hex,
            extracted_text=text.strip(),
            matched_contact=contact,
            confidence=confidence,
            status=item_status(contact, confidence, threshold),
            scanned_at=self._clock().isoformat(),
            photo=photo,
        )

    def _canonical_contact(self, contact: dict[str, Any]) -> dict[str, Any]:
        """Prefer the full contact record over the simplified one the AI echoes back."""
        contact_id = contact.get("contact_id")
        for candidate in self.contacts:
            if contact_id and candidate.get("contact_id") == contact_id:
                return candidate
        return contact

    def _accept(self, session: ScanSession, item: ScannedItem) -> None:
        session.items.append(item)
        self._persist()
        counter("scan.item.accepted")
        self.notify("success", f"Added {_contact_name(item.matched_contact)}")

    def _queue_for_review(self, item: ScannedItem) -> None:
        self.review_queue.append(item)
        counter("scan.item.queued")

    def _is_stale(self, session: ScanSession) -> bool:
        """True when the session a match was started for has since been closed or replaced."""
        if self.session is session:
            return False
        logger.info("Ignoring match result for closed scan session %s", session.session_id)
        counter("scan.capture.stale")
        return True

    async def capture(self, photo: Photo) -> ScannedItem | None:
        """
        Match one photo.

        Confident matches are added to the session; everything else becomes
        (or queues behind) the pending item. Returns None when the photo was
        dropped, or when the session was closed while the match was running.
        """
        session = self._require_state(ScanState.ACTIVE_CAPTURE)
        self.processing_count += 1
        try:
            await self.rate_limiter.acquire()
            answer = await self.client.smart_match(photo, self.contacts)
            if self._is_stale(session):
                return None
            item = await self._resolve(photo, answer, self.confidence_threshold)
        finally:
            self.processing_count -= 1

        if item is None or self._is_stale(session):
            return None
        if item.status is ScanItemStatus.MATCHED:
            self._accept(session, item)
        else:
            self._queue_for_review(item)
        return item

    def add_to_batch(self, photo: Photo) -> int:
        """
        Queue a photo for the next batch call.

        Raises:
            BatchFullError: The batch already holds the maximum number of photos
        """
        self._require_state(ScanState.ACTIVE_CAPTURE)
        if len(self.batch) >= self.batch_max_photos:
            raise BatchFullError(
                f"Batch is full ({self.batch_max_photos} photos) - process it before adding more"
            )
        self.batch.append(photo)
        return len(self.batch)

    async def process_batch(self) -> list[ScannedItem]:
        session = self._require_state(ScanState.ACTIVE_CAPTURE)
        if not self.batch:
            raise ScanSessionError("Batch is empty")

        photos, self.batch = self.batch, []
        self.processing_count += len(photos)
        try:
            await self.rate_limiter.acquire()
            answers = await self.client.smart_match_batch(photos, self.contacts)
            items = []
            for photo, answer in zip(photos, answers):
                if self._is_stale(session):
                    return []
                item = await self._resolve(photo, answer, self.batch_confidence_threshold)
                if item is not None:
                    items.append(item)
        finally:
            self.processing_count -= len(photos)

        if self._is_stale(session):
            return []
        for item in items:
            if item.status is ScanItemStatus.MATCHED:
                self._accept(session, item)
            else:
                self._queue_for_review(item)

        logger.info("Processed batch of %d photos: %d items", len(photos), len(items))
        return items

    # ------------------------------------------------------------------
    # Review edits
    # ------------------------------------------------------------------

    def confirm_pending(
        self,
        contact: dict[str, Any] | None = None,
        item_type: str | None = None,
    ) -> ScannedItem:
        """Add the pending item to the session, optionally correcting it first."""
        session = self._require_state(ScanState.ACTIVE_CAPTURE)
        item = self.pending_item
        if item is None:
            raise ScanSessionError("Nothing to confirm")

        chosen = contact or item.matched_contact
        if not chosen:
            raise ScanSessionError("Select a contact before confirming")

        item.matched_contact = chosen
        if item_type:
            item.item_type = item_type
        self.review_queue.popleft()
        session.items.append(item)
        self._persist()
        self.notify("success", f"Added {_contact_name(chosen)}")
        return item

    def discard_pending(self) -> ScannedItem | None:
        """Drop the pending item; returns the next one waiting for review."""
        self._require_state(ScanState.ACTIVE_CAPTURE)
        if not self.review_queue:
            raise ScanSessionError("Nothing to discard")
        dropped = self.review_queue.popleft()
        dropped.photo = None
        return self.pending_item

    def _find(self, item_id: str) -> ScannedItem:
        for item in self.items:
            if item.item_id == item_id:
                return item
        raise ScanSessionError(f"Item {item_id} not found")

    def remove_item(self, item_id: str) -> None:
        session = self._require_state(ScanState.ACTIVE_CAPTURE, ScanState.REVIEWING)
        item = self._find(item_id)
        session.items.remove(item)
        item.photo = None
        self._persist()

    def update_item(
        self,
        item_id: str,
        contact: dict[str, Any] | None = None,
        item_type: str | None = None,
    ) -> ScannedItem:
        self._require_state(ScanState.ACTIVE_CAPTURE, ScanState.REVIEWING)
        item = self._find(item_id)
        if contact is not None:
            item.matched_contact = contact
        if item_type:
            item.item_type = item_type
        self._persist()
        return item

    # ------------------------------------------------------------------
    # Review and submit
    # ------------------------------------------------------------------

    def group_items_by_contact(self) -> list[GroupedScanResult]:
        groups: dict[str, GroupedScanResult] = {}
        for item in self.items:
            if not item.matched_contact:
                continue
            contact_id = item.matched_contact.get("contact_id")
            if contact_id not in groups:
                groups[contact_id] = GroupedScanResult(contact=item.matched_contact)
            groups[contact_id].items.append(item)
        return list(groups.values())

    def end_session(self) -> list[GroupedScanResult]:
        session = self._require_state(ScanState.ACTIVE_CAPTURE)
        if not session.items:
            self.notify("error", "No items to review")
            raise ScanSessionError("No items to review")
        self.state = ScanState.REVIEWING
        return self.group_items_by_contact()

    def resume_capture(self) -> None:
        self._require_state(ScanState.REVIEWING)
        self.state = ScanState.ACTIVE_CAPTURE

    async def submit(self, performed_by: str, skip_notification: bool = False) -> dict[str, Any]:
        """
        Log every item that has a contact and notify the customers.

        Raises:
            ScanSessionError: Not reviewing, or no staff member given
            ScanSubmitError: The backend rejected the submit; the session is kept
        """
        session = self._require_state(ScanState.REVIEWING)
        if not performed_by or not performed_by.strip():
            raise ScanSessionError("Select who is logging this mail")

        payload = [
            {
                "contact_id": item.matched_contact["contact_id"],
                "item_type": item.item_type,
                "scanned_at": item.scanned_at,
            }
            for item in session.items
            if item.matched_contact and item.matched_contact.get("contact_id")
        ]
        if not payload:
            raise ScanSessionError("No matched items to submit")

        try:
            response = await self.client.bulk_submit(payload, performed_by.strip(), skip_notification)
            if not response.get("success"):
                raise ScanSubmitError(response.get("error") or "Bulk submit was not accepted")
        except ScanSubmitError as e:
            logger.warning("Bulk submit failed for session %s: %s", session.session_id, e)
            counter("scan.submit.error")
            self.notify("error", "Failed to submit items. Please try again.")
            raise

        items_created = int(response.get("itemsCreated", 0))
        notifications_sent = int(response.get("notificationsSent", 0))
        self._celebration = Celebration(items_created, notifications_sent)
        self._clear()
        self.session_storage.remove(SCAN_RESUMED_TOAST_KEY)
        self.state = ScanState.SUBMITTED
        counter("scan.submit.count")

        message = f"{items_created} items logged"
        if not skip_notification:
            message += f", {notifications_sent} customers notified"
        self.notify("success", message + "!")
        return response

    def celebrate(self) -> Celebration | None:
        """Hand out the counts of the last submit, once."""
        celebration, self._celebration = self._celebration, None
        return celebration

    def close_session(self) -> None:
        """Forget the current session and release photo data."""
        self._clear()
        self.session_storage.remove(SCAN_RESUMED_TOAST_KEY)
        self.state = ScanState.NO_SESSION
