"""
Application-wide settings and environment configuration
"""

from __future__ import annotations

import os
from pathlib import Path

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent.parent
MAILROOM_ROOT = Path(__file__).parent.parent

# Environment
ENV = os.getenv("MAILROOM_ENV", "development")
DEBUG = ENV == "development"

# API Configuration
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))

# Google Cloud / Gemini
GOOGLE_CLOUD_PROJECT = os.getenv("GOOGLE_CLOUD_PROJECT", "")
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash-lite")
GEMINI_LOCATION = os.getenv("GEMINI_LOCATION", "us-central1")
GEMINI_MAX_TOKENS = int(os.getenv("GEMINI_MAX_TOKENS", "1024"))
GEMINI_TEMPERATURE = float(os.getenv("GEMINI_TEMPERATURE", "0.2"))

# Frontend (OAuth callback redirects land here)
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

# Gmail OAuth
GMAIL_OAUTH_CLIENT_SECRETS = os.getenv("GMAIL_OAUTH_CLIENT_SECRETS", "credentials/credentials.json")
GMAIL_OAUTH_REDIRECT_URI = os.getenv(
    "GMAIL_OAUTH_REDIRECT_URI", "http://localhost:8000/api/oauth/gmail/callback"
)

# Mailroom business timezone (mail log days are calendar days here)
BUSINESS_TIMEZONE = os.getenv("MAILROOM_TIMEZONE", "America/New_York")


def is_production() -> bool:
    """Check if running in production"""
    return ENV == "production"


def is_development() -> bool:
    """Check if running in development"""
    return ENV == "development"
