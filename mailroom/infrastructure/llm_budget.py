"""
LLM budget tracking for the smart-match endpoints.

Every Gemini call made on behalf of a staff user is counted per day. When the
per-user or global daily limit is reached, smart-match answers with a quota
error and the scanning client falls back to OCR + fuzzy matching.
"""

from __future__ import annotations

from datetime import date
from typing import NamedTuple

from mailroom.config import LLM_GLOBAL_DAILY_LIMIT, LLM_USER_DAILY_LIMIT
from mailroom.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock
from mailroom.observability.logging import get_logger
from mailroom.observability.telemetry import counter

logger = get_logger(__name__)


class BudgetStatus(NamedTuple):
    """Current budget status for a user."""

    user_calls_today: int
    user_limit: int
    global_calls_today: int
    global_limit: int
    is_allowed: bool
    reason: str | None


@retry_on_db_lock()
def check_budget(
    user_id: str,
    user_limit: int = LLM_USER_DAILY_LIMIT,
    global_limit: int = LLM_GLOBAL_DAILY_LIMIT,
    calls: int = 1,
) -> BudgetStatus:
    """
    Check whether the user may make ``calls`` more LLM calls today.

    Args:
        user_id: Staff user making the call
        user_limit: Max calls per user per day
        global_limit: Max calls per day across all users
        calls: Calls the pending request will make (one per photo in a batch)

    Returns:
        BudgetStatus with current usage and whether the call is allowed
    """
    today = date.today().isoformat()

    with get_db_connection() as conn:
        user_calls = conn.execute(
            "SELECT COALESCE(SUM(call_count), 0) FROM llm_usage WHERE user_id = ? AND call_date = ?",
            (user_id, today),
        ).fetchone()[0]
        global_calls = conn.execute(
            "SELECT COALESCE(SUM(call_count), 0) FROM llm_usage WHERE call_date = ?",
            (today,),
        ).fetchone()[0]

    reason = None
    if user_calls + calls > user_limit:
        reason = f"User daily quota exceeded ({user_calls}/{user_limit})"
    elif global_calls + calls > global_limit:
        reason = f"Global daily quota exceeded ({global_calls}/{global_limit})"

    return BudgetStatus(
        user_calls_today=user_calls,
        user_limit=user_limit,
        global_calls_today=global_calls,
        global_limit=global_limit,
        is_allowed=reason is None,
        reason=reason,
    )


@retry_on_db_lock()
def record_llm_call(user_id: str, call_type: str = "smart_match", calls: int = 1) -> None:
    """
    Record LLM usage for budget tracking.

    Args:
        user_id: Staff user who made the call
        call_type: "smart_match" or "smart_match_batch"
        calls: Number of calls to charge

    Side Effects:
        - Upserts the (user, type, day) row in llm_usage
    """
    today = date.today().isoformat()

    with db_transaction() as conn:
        conn.execute(
            """
            INSERT INTO llm_usage (user_id, call_type, call_date, call_count)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id, call_type, call_date)
            DO UPDATE SET call_count = call_count + excluded.call_count
            """,
            (user_id, call_type, today, calls),
        )

    counter(f"llm.budget.call.{call_type}", calls)
    logger.debug("Recorded LLM call: user=%s, type=%s", user_id, call_type)
