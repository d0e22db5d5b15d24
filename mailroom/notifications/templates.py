"""Message template rendering and scan-notification wording."""

from __future__ import annotations

import re
from typing import Any

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")

FALLBACK_TEMPLATE = "New Mail Notification"


def render_template(text: str, variables: dict[str, Any]) -> str:
    """
    Replace ``{{Key}}`` placeholders.

    Unknown placeholders are left as-is so a missing variable is visible in
    the sent message instead of silently becoming empty.
    """

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in variables or variables[key] is None:
            return match.group(0)
        return str(variables[key])

    return _PLACEHOLDER.sub(_replace, text or "")


def pluralize(count: int, singular: str) -> str:
    return singular if count == 1 else f"{singular}s"


def scan_template_name(letter_count: int, package_count: int) -> str:
    if letter_count and package_count:
        return "Scan: Mixed Items"
    if package_count:
        return "Scan: Packages Only"
    return "Scan: Letters Only"


def item_type_summary(letter_count: int, package_count: int) -> str:
    """e.g. "2 Letters and 1 Package" for the generic template's {{Type}}."""
    parts = []
    if letter_count:
        parts.append(f"{letter_count} {pluralize(letter_count, 'Letter')}")
    if package_count:
        parts.append(f"{package_count} {pluralize(package_count, 'Package')}")
    return " and ".join(parts)
