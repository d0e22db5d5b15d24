"""Name normalisation and OCR-split name variations."""

from __future__ import annotations


def normalize_text(text: str | None) -> str:
    """Lower-case, collapse runs of whitespace, trim."""
    return " ".join((text or "").lower().split())


def generate_name_variations(name: str) -> list[str]:
    """
    Alternate token groupings for names OCR may have split.

    "hou yu chen" -> ["houyu chen", "hou yuchen"]

    The first two tokens are merged whenever there are at least two; the last
    two are also merged when there are at least three.
    """
    parts = name.split()
    variations: list[str] = []

    if len(parts) >= 2:
        variations.append(" ".join([parts[0] + parts[1], *parts[2:]]))
        if len(parts) >= 3:
            variations.append(" ".join([*parts[:-2], parts[-2] + parts[-1]]))

    # dict preserves first-seen order
    return list(dict.fromkeys(variations))
