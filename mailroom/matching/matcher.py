"""
Fuzzy contact matcher.

Maps noisy OCR/photo text to a contact. Scoring follows the weighted-key
model of Fuse-style search indexes:

    field distance  d = 1 - max(WRatio, partial_ratio) / 100   (hit when d <= threshold)
    contact score   s = prod(max(d, EPS) ** weight)         over hit fields
    confidence        = 1 - s

WRatio tolerates reordered tokens ("chen houyu" vs "houyu chen") and partial
matches; partial_ratio scores a query found verbatim inside a field (or a
field inside the query) as an exact hit, so "Acme" finds "Acme Widgets".
"""

from __future__ import annotations

import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from rapidfuzz import fuzz

from mailroom.config import (
    MATCH_COMPANY_WEIGHT,
    MATCH_FIELD_THRESHOLD,
    MATCH_MIN_CONFIDENCE,
    MATCH_MIN_QUERY_LENGTH,
    MATCH_PERSON_WEIGHT,
)
from mailroom.matching.similarity import calculate_similarity
from mailroom.matching.variations import generate_name_variations, normalize_text
from mailroom.observability.logging import get_logger

logger = get_logger(__name__)

_EPSILON = sys.float_info.epsilon

FIELD_WEIGHTS: dict[str, float] = {
    "contact_person": MATCH_PERSON_WEIGHT,
    "company_name": MATCH_COMPANY_WEIGHT,
}


def _get(contact: Any, name: str) -> str | None:
    if isinstance(contact, Mapping):
        value = contact.get(name)
    else:
        value = getattr(contact, name, None)
    return value or None


def _field_distance(query: str, value: str) -> float:
    """0.0 for an exact (or contained) match, 1.0 for nothing in common."""
    return 1.0 - max(fuzz.WRatio(query, value), fuzz.partial_ratio(query, value)) / 100.0


@dataclass(frozen=True)
class ContactMatch:
    contact: Any
    confidence: float
    matched_field: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "contact": self.contact if isinstance(self.contact, Mapping) else self.contact.to_dict(),
            "confidence": self.confidence,
            "matchedField": self.matched_field,
        }


class ContactIndex:
    """
    Prepared search index over a contact list.

    Contacts may be dicts or objects exposing contact_person, company_name
    and mailbox_number. Field values are normalised once at build time.
    """

    def __init__(
        self,
        contacts: Sequence[Any],
        threshold: float = MATCH_FIELD_THRESHOLD,
        min_query_length: int = MATCH_MIN_QUERY_LENGTH,
    ):
        self.contacts = list(contacts)
        self.threshold = threshold
        self.min_query_length = min_query_length
        self._fields: list[dict[str, str]] = []
        self._mailboxes: dict[str, int] = {}

        for position, contact in enumerate(self.contacts):
            self._fields.append(
                {
                    name: normalize_text(_get(contact, name))
                    for name in FIELD_WEIGHTS
                    if _get(contact, name)
                }
            )
            mailbox = _get(contact, "mailbox_number")
            if mailbox:
                self._mailboxes.setdefault(str(mailbox).strip().lower(), position)

    def __len__(self) -> int:
        return len(self.contacts)

    def find_mailbox(self, text: str) -> Any | None:
        position = self._mailboxes.get(text.strip().lower())
        return None if position is None else self.contacts[position]

    def search(self, query: str) -> tuple[Any, float] | None:
        """
        Best (contact, confidence) for one query string, or None without a hit.

        Ties keep the earlier contact.
        """
        if len(query) < self.min_query_length:
            return None

        best: tuple[Any, float] | None = None
        best_score = 1.0

        for position, fields in enumerate(self._fields):
            score = 1.0
            hit = False
            for name, value in fields.items():
                distance = _field_distance(query, value)
                if distance > self.threshold:
                    continue
                hit = True
                score *= max(distance, _EPSILON) ** FIELD_WEIGHTS[name]

            if hit and score < best_score:
                best_score = score
                best = (self.contacts[position], 1.0 - score)

        return best

    def match(self, extracted_text: str, min_confidence: float = MATCH_MIN_CONFIDENCE) -> ContactMatch | None:
        normalized = normalize_text(extracted_text)
        if not normalized or not self.contacts:
            return None

        mailbox_contact = self.find_mailbox(normalized)
        if mailbox_contact is not None:
            logger.debug("Exact mailbox match for %r", extracted_text)
            return ContactMatch(mailbox_contact, 1.0, "mailbox_number")

        queries = [normalized, normalized.replace(" ", ""), *generate_name_variations(normalized)]

        best: tuple[Any, float] | None = None
        for query in dict.fromkeys(queries):
            result = self.search(query)
            if result is not None and (best is None or result[1] > best[1]):
                best = result

        if best is None:
            logger.debug("No fuzzy hit for %r", extracted_text)
            return None

        contact, confidence = best
        if confidence < min_confidence:
            logger.debug("Best hit for %r below %.2f (%.2f)", extracted_text, min_confidence, confidence)
            return None

        return ContactMatch(contact, confidence, _matched_field(normalized, contact))


def _matched_field(normalized: str, contact: Any) -> str:
    person = _get(contact, "contact_person")
    company = _get(contact, "company_name")
    if company and not person:
        return "company_name"
    if person and company:
        person_similarity = calculate_similarity(normalized, person)
        company_similarity = calculate_similarity(normalized, company)
        if company_similarity > person_similarity:
            return "company_name"
    return "contact_person"


def match_contact_by_name(extracted_text: str, contacts: Sequence[Any]) -> ContactMatch | None:
    """
    Match extracted text to a contact.

    Returns:
        ContactMatch, or None for empty input, no contacts, no hit, or a
        best hit below the minimum confidence
    """
    if not extracted_text or not extracted_text.strip() or not contacts:
        return None
    return ContactIndex(contacts).match(extracted_text)


def batch_match_contacts(texts: Sequence[str], contacts: Sequence[Any]) -> list[ContactMatch | None]:
    """Match many texts against one shared index."""
    index = ContactIndex(contacts)
    return [index.match(text) if text else None for text in texts]
