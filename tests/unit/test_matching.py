"""Unit tests for contact matching

Tests cover:
- Levenshtein similarity (identity, symmetry, empty strings, case)
- Name variations for OCR-split names
- Mailbox short-circuit
- Reversed and run-together names
- Minimum confidence cut-off
- matched_field disambiguation
- Batch matching with a shared index
"""

from __future__ import annotations

import pytest

from mailroom.matching import (
    ContactIndex,
    batch_match_contacts,
    calculate_similarity,
    generate_name_variations,
    levenshtein_distance,
    match_contact_by_name,
    normalize_text,
)


@pytest.fixture
def contacts():
    return [
        {"contact_id": "c1", "contact_person": "Houyu Chen", "company_name": None, "mailbox_number": "A12"},
        {"contact_id": "c2", "contact_person": "Jane Smith", "company_name": "Acme Widgets", "mailbox_number": "101"},
        {"contact_id": "c3", "contact_person": None, "company_name": "Blue Harbor Studio", "mailbox_number": "202"},
    ]


class TestSimilarity:
    def test_identical_strings(self):
        assert calculate_similarity("Jane Smith", "Jane Smith") == 1.0

    def test_case_insensitive(self):
        assert calculate_similarity("JANE", "jane") == 1.0

    def test_symmetric(self):
        pairs = [("kitten", "sitting"), ("Houyu", "Chen"), ("", "abc"), ("abc", "abd")]
        for a, b in pairs:
            assert calculate_similarity(a, b) == calculate_similarity(b, a)

    def test_empty_against_non_empty(self):
        assert calculate_similarity("", "abc") == 0.0

    def test_both_empty(self):
        assert calculate_similarity("", "") == 1.0

    def test_normalized_by_longer_string(self):
        assert levenshtein_distance("kitten", "sitting") == 3
        assert calculate_similarity("kitten", "sitting") == pytest.approx(1 - 3 / 7)


class TestNameVariations:
    def test_three_tokens_merge_first_and_last_pairs(self):
        assert generate_name_variations("hou yu chen") == ["houyu chen", "hou yuchen"]

    def test_two_tokens_merge_once(self):
        assert generate_name_variations("jane smith") == ["janesmith"]

    def test_single_token_has_no_variations(self):
        assert generate_name_variations("madonna") == []

    def test_normalize_text(self):
        assert normalize_text("  Jane   SMITH \n") == "jane smith"
        assert normalize_text(None) == ""


class TestMatchContactByName:
    def test_empty_text_returns_none(self, contacts):
        assert match_contact_by_name("", contacts) is None
        assert match_contact_by_name("   ", contacts) is None

    def test_no_contacts_returns_none(self):
        assert match_contact_by_name("Jane Smith", []) is None

    def test_mailbox_number_exact_match(self, contacts):
        for contact in contacts:
            match = match_contact_by_name(contact["mailbox_number"], contacts)
            assert match is not None
            assert match.contact is contact
            assert match.confidence == 1.0
            assert match.matched_field == "mailbox_number"

    def test_mailbox_match_is_case_insensitive(self, contacts):
        match = match_contact_by_name("a12", contacts)
        assert match.contact["contact_id"] == "c1"
        assert match.matched_field == "mailbox_number"

    def test_reversed_name_order(self, contacts):
        match = match_contact_by_name("Chen Houyu", contacts)
        assert match is not None
        assert match.contact["contact_id"] == "c1"
        assert match.matched_field == "contact_person"
        assert match.confidence >= 0.5

    def test_missing_space(self):
        match = match_contact_by_name("JaneSmith", [{"contact_id": "c2", "contact_person": "Jane Smith"}])
        assert match is not None
        assert match.contact["contact_id"] == "c2"

    def test_ocr_split_first_name(self, contacts):
        match = match_contact_by_name("Hou Yu Chen", contacts)
        assert match.contact["contact_id"] == "c1"

    def test_unrelated_text_returns_none(self, contacts):
        assert match_contact_by_name("qqqq", contacts) is None

    def test_company_only_contact(self, contacts):
        match = match_contact_by_name("Blue Harbor Studio", contacts)
        assert match.contact["contact_id"] == "c3"
        assert match.matched_field == "company_name"

    def test_company_wins_when_closer_than_person(self, contacts):
        match = match_contact_by_name("Acme Widgets", contacts)
        assert match.contact["contact_id"] == "c2"
        assert match.matched_field == "company_name"

    def test_company_name_prefix(self):
        contacts = [{"contact_id": "c9", "contact_person": None, "company_name": "Blue Harbor Consulting"}]
        match = match_contact_by_name("Blue Harbor", contacts)
        assert match is not None
        assert match.contact["contact_id"] == "c9"
        assert match.matched_field == "company_name"
        assert match.confidence > 0.99

    def test_short_company_name_inside_longer_one(self, contacts):
        match = match_contact_by_name("Acme", contacts)
        assert match.contact["contact_id"] == "c2"
        assert match.matched_field == "company_name"

    def test_company_name_with_suffix(self, contacts):
        match = match_contact_by_name("ACME WIDGETS LLC", contacts)
        assert match.contact["contact_id"] == "c2"
        assert match.confidence > 0.99

    def test_accepts_contact_objects(self, contacts):
        from mailroom.contacts.models import Contact

        objects = [Contact.from_dict(contact) for contact in contacts]
        match = match_contact_by_name("Jane Smith", objects)
        assert match.contact.contact_id == "c2"
        assert match.to_dict()["contact"]["contact_id"] == "c2"
        assert match.to_dict()["matchedField"] == "contact_person"


class TestContactIndex:
    def test_below_min_confidence_is_none(self):
        index = ContactIndex([{"contact_id": "c2", "contact_person": "Jane Smith"}])
        assert index.match("Jane Smyth") is not None
        assert index.match("Jane Smyth", min_confidence=0.99) is None

    def test_exact_name_is_near_certain(self):
        index = ContactIndex([{"contact_id": "c2", "contact_person": "Jane Smith"}])
        assert index.match("jane smith").confidence > 0.99

    def test_ties_keep_first_contact(self):
        twins = [
            {"contact_id": "first", "contact_person": "Sam Lee"},
            {"contact_id": "second", "contact_person": "Sam Lee"},
        ]
        assert ContactIndex(twins).match("Sam Lee").contact["contact_id"] == "first"

    def test_short_query_is_ignored(self):
        index = ContactIndex([{"contact_id": "c1", "contact_person": "J"}])
        assert index.search("j") is None

    def test_len(self, contacts):
        assert len(ContactIndex(contacts)) == 3


def test_batch_match_contacts(contacts):
    results = batch_match_contacts(["101", "", "qqqq", "Chen Houyu"], contacts)
    assert results[0].contact["contact_id"] == "c2"
    assert results[1] is None
    assert results[2] is None
    assert results[3].contact["contact_id"] == "c1"
