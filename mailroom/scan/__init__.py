"""Scan sessions - photo capture, AI/OCR matching, review and bulk submit"""

from mailroom.scan.client import SmartMatchClient, classify_error
from mailroom.scan.rate_limit import CallRateLimiter
from mailroom.scan.session import ScanSessionController
from mailroom.scan.storage import JsonFileStorage, KeyValueStorage, MemoryStorage
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

__all__ = [
    "BatchFullError",
    "CallRateLimiter",
    "Celebration",
    "GroupedScanResult",
    "JsonFileStorage",
    "KeyValueStorage",
    "MemoryStorage",
    "Photo",
    "ScanItemStatus",
    "ScanSession",
    "ScanSessionController",
    "ScanSessionError",
    "ScanState",
    "ScanSubmitError",
    "ScannedItem",
    "SmartMatchClient",
    "SmartMatchResult",
    "classify_error",
]
