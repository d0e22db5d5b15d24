"""
Scan session data types.

ScanSession is what gets persisted for crash recovery; photo bytes are held
in memory only and are never written to storage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from mailroom.utils.timezone import parse_timestamp


class ScanSessionError(ValueError):
    """An operation is not valid in the session's current state."""


class BatchFullError(ScanSessionError):
    """The batch queue already holds the maximum number of photos."""


class ScanSubmitError(RuntimeError):
    """Bulk submit failed; the session is kept so it can be retried."""


class ScanState(str, Enum):
    NO_SESSION = "no_session"
    ACTIVE_CAPTURE = "active_capture"
    REVIEWING = "reviewing"
    SUBMITTED = "submitted"


class ScanItemStatus(str, Enum):
    MATCHED = "matched"
    UNCERTAIN = "uncertain"
    FAILED = "failed"


@dataclass
class Photo:
    data: bytes
    mime_type: str = "image/jpeg"


@dataclass
class SmartMatchResult:
    """Answer from the smart-match endpoint, or the reason it failed."""

    extracted_text: str = ""
    matched_contact: dict[str, Any] | None = None
    confidence: float = 0.0
    reason: str | None = None
    error: str | None = None

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> SmartMatchResult:
        return cls(
            extracted_text=payload.get("extractedText") or "",
            matched_contact=payload.get("matchedContact") or None,
            confidence=float(payload.get("confidence") or 0.0),
            reason=payload.get("reason"),
        )

    @classmethod
    def failure(cls, error: str) -> SmartMatchResult:
        return cls(error=error)


@dataclass
class ScannedItem:
    item_id: str
    extracted_text: str
    matched_contact: dict[str, Any] | None
    confidence: float
    status: ScanItemStatus
    scanned_at: str
    item_type: str = "Letter"
    photo: Photo | None = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "extracted_text": self.extracted_text,
            "matched_contact": self.matched_contact,
            "confidence": self.confidence,
            "status": self.status.value,
            "scanned_at": self.scanned_at,
            "item_type": self.item_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScannedItem:
        return cls(
            item_id=data["item_id"],
            extracted_text=data.get("extracted_text", ""),
            matched_contact=data.get("matched_contact"),
            confidence=float(data.get("confidence", 0.0)),
            status=ScanItemStatus(data.get("status", ScanItemStatus.FAILED.value)),
            scanned_at=data["scanned_at"],
            item_type=data.get("item_type", "Letter"),
        )


@dataclass
class ScanSession:
    session_id: str
    started_at: str
    expires_at: str
    items: list[ScannedItem] = field(default_factory=list)

    def is_expired(self, now: datetime) -> bool:
        return now >= parse_timestamp(self.expires_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "started_at": self.started_at,
            "expires_at": self.expires_at,
            "items": [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScanSession:
        return cls(
            session_id=data["session_id"],
            started_at=data["started_at"],
            expires_at=data["expires_at"],
            items=[ScannedItem.from_dict(item) for item in data.get("items", [])],
        )


@dataclass(frozen=True)
class Celebration:
    """Counts from a successful submit, shown when the operator asks for it."""

    items_created: int
    notifications_sent: int


@dataclass
class GroupedScanResult:
    """Items of one contact, as shown on the review screen before submit."""

    contact: dict[str, Any]
    items: list[ScannedItem] = field(default_factory=list)

    @property
    def letter_count(self) -> int:
        return sum(1 for item in self.items if item.item_type == "Letter")

    @property
    def package_count(self) -> int:
        return sum(1 for item in self.items if item.item_type == "Package")
