"""Matching - map scanned recipient text to contacts"""

from mailroom.matching.matcher import ContactIndex, ContactMatch, batch_match_contacts, match_contact_by_name
from mailroom.matching.similarity import calculate_similarity, levenshtein_distance
from mailroom.matching.variations import generate_name_variations, normalize_text

__all__ = [
    "ContactIndex",
    "ContactMatch",
    "batch_match_contacts",
    "calculate_similarity",
    "generate_name_variations",
    "levenshtein_distance",
    "match_contact_by_name",
    "normalize_text",
]
