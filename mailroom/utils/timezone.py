"""Business-timezone helpers.

The mailroom operates on New York calendar days: an item received at
11pm Eastern belongs to that day even though it is already tomorrow in UTC.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo

from mailroom.config import BUSINESS_TIMEZONE

BUSINESS_TZ = ZoneInfo(BUSINESS_TIMEZONE)


def parse_timestamp(value: str | datetime) -> datetime:
    """
    Parse an ISO timestamp (a trailing ``Z`` is accepted).

    Naive values are taken as UTC, matching how every table stores time.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def to_business_date(value: str | datetime) -> date:
    """Calendar day of a timestamp in the business timezone."""
    return parse_timestamp(value).astimezone(BUSINESS_TZ).date()


def format_display_date(value: str | datetime | None = None) -> str:
    """M/D/YYYY in the business timezone, as used in customer emails."""
    moment = parse_timestamp(value) if value is not None else datetime.now(UTC)
    local = moment.astimezone(BUSINESS_TZ)
    return f"{local.month}/{local.day}/{local.year}"


def is_date_only(value: str) -> bool:
    """True for bare YYYY-MM-DD strings (no time component)."""
    try:
        date.fromisoformat(value.strip())
    except ValueError:
        return False
    return "T" not in value and len(value.strip()) == 10
