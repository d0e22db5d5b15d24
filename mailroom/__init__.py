"""Mailroom - mail logging, customer notification, and scan-session matching."""

__version__ = "1.0.0"
