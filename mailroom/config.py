"""Centralized configuration for the Mailroom backend.

Re-exports everything from mailroom.infrastructure.settings, then adds typed
constants for database, LLM, rate-limiting, API, and scan-session settings.
Environment variable overrides use safe defaults so the app starts without
extra env configuration.
"""

from __future__ import annotations

import os

from mailroom.infrastructure.settings import *  # noqa: F401, F403

# --- App ---
APP_VERSION: str = "1.0.0"

# --- Database ---
DB_POOL_SIZE: int = int(os.getenv("MAILROOM_DB_POOL_SIZE", "5"))
DB_POOL_TIMEOUT: float = float(os.getenv("MAILROOM_DB_POOL_TIMEOUT", "5.0"))
DB_CONNECT_TIMEOUT: float = float(os.getenv("MAILROOM_DB_CONNECT_TIMEOUT", "30.0"))
DB_TEMP_CONN_MAX: int = int(os.getenv("MAILROOM_DB_TEMP_CONN_MAX", "10"))
DB_RETRY_MAX: int = int(os.getenv("MAILROOM_DB_RETRY_MAX", "5"))
DB_RETRY_BASE_DELAY: float = float(os.getenv("MAILROOM_DB_RETRY_BASE_DELAY", "0.1"))
DB_RETRY_MAX_DELAY: float = float(os.getenv("MAILROOM_DB_RETRY_MAX_DELAY", "2.0"))
DB_RETRY_JITTER: float = float(os.getenv("MAILROOM_DB_RETRY_JITTER", "0.1"))

# --- LLM ---
LLM_TIMEOUT_SECONDS: int = int(os.getenv("MAILROOM_LLM_TIMEOUT", "30"))
LLM_MAX_RETRIES: int = int(os.getenv("MAILROOM_LLM_MAX_RETRIES", "3"))

# --- LLM Budget ---
LLM_USER_DAILY_LIMIT: int = int(os.getenv("MAILROOM_LLM_USER_DAILY_LIMIT", "500"))
LLM_GLOBAL_DAILY_LIMIT: int = int(os.getenv("MAILROOM_LLM_GLOBAL_DAILY_LIMIT", "5000"))

# --- Rate Limiting ---
RATE_LIMIT_RPM: int = int(os.getenv("MAILROOM_RATE_LIMIT_RPM", "120"))
RATE_LIMIT_RPH: int = int(os.getenv("MAILROOM_RATE_LIMIT_RPH", "3000"))
RATE_LIMIT_IMAGES_PM: int = 60
RATE_LIMIT_IMAGES_PH: int = 1000
RATE_LIMIT_MAX_IPS: int = 10000

# --- API ---
API_LIST_LIMIT_DEFAULT: int = 500
API_LIST_LIMIT_MAX: int = 2000
API_BATCH_SIZE_MAX: int = 500

# --- Fuzzy matching ---
MATCH_MIN_CONFIDENCE: float = 0.5
MATCH_FIELD_THRESHOLD: float = 0.5
MATCH_MIN_QUERY_LENGTH: int = 2
MATCH_PERSON_WEIGHT: float = 0.7
MATCH_COMPANY_WEIGHT: float = 0.3

# --- OCR ---
OCR_MAX_WIDTH: int = 800
OCR_MAX_HEIGHT: int = 600

# --- Scan session ---
SCAN_SESSION_TIMEOUT_HOURS: int = 4
SCAN_CONFIDENCE_THRESHOLD: float = 0.7
SCAN_BATCH_CONFIDENCE_THRESHOLD: float = 0.5
SCAN_BATCH_MAX_PHOTOS: int = 10
SCAN_MIN_CALL_INTERVAL_SECONDS: float = float(os.getenv("MAILROOM_SCAN_MIN_CALL_INTERVAL", "2.0"))
SCAN_MAX_UPLOAD_BYTES: int = 2 * 1024 * 1024
SCAN_COMPRESS_MAX_WIDTH: int = 1600
SCAN_COMPRESS_QUALITY: int = 90
SCAN_SESSION_STORAGE_KEY: str = "scanSession"
SCAN_RESUMED_TOAST_KEY: str = "scanSessionResumedToast"
