"""
Input validation for contact records.

Strips markup and dangerous characters, then checks each field's format.
Every validator returns the cleaned value (None for empty optional input) or
raises ValidationError with a message safe to show the operator.
"""

from __future__ import annotations

import re

MARKUP_PATTERN = re.compile(r"<[^>]*>")
DANGEROUS_CHARS_PATTERN = re.compile(r"[<>{}\[\]\\/`|~^]")

CONTACT_PERSON_PATTERN = re.compile(r"^[A-Za-z\s\-'.]+$")
COMPANY_NAME_PATTERN = re.compile(r"^[A-Za-z0-9\s&\-'.,()]+$")
EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
UNIT_NUMBER_PATTERN = re.compile(r"^[A-Za-z0-9\-]+$")

DISPLAY_NAME_PREFERENCES = {"company", "person", "both", "auto"}
MAX_EMAIL_LENGTH = 100
MAX_PHONE_LENGTH = 20
MIN_PHONE_DIGITS = 10


class ValidationError(ValueError):
    """Raised when input validation fails."""


def sanitize_string(value: str | None, max_length: int = 200) -> str | None:
    """Trim, drop HTML tags and XSS-prone characters, truncate."""
    if value is None:
        return None
    cleaned = MARKUP_PATTERN.sub("", value.strip())
    cleaned = DANGEROUS_CHARS_PATTERN.sub("", cleaned)
    return cleaned[:max_length]


def validate_contact_person(name: str | None) -> str | None:
    cleaned = sanitize_string(name, max_length=100)
    if not cleaned:
        return None
    if len(cleaned) < 2:
        raise ValidationError("Contact person name must be at least 2 characters")
    if not CONTACT_PERSON_PATTERN.match(cleaned):
        raise ValidationError(
            "Contact person name can only contain letters, spaces, hyphens, apostrophes, and periods"
        )
    return cleaned


def validate_company_name(name: str | None) -> str | None:
    cleaned = sanitize_string(name, max_length=150)
    if not cleaned:
        return None
    if len(cleaned) < 2:
        raise ValidationError("Company name must be at least 2 characters")
    if not COMPANY_NAME_PATTERN.match(cleaned):
        raise ValidationError("Company name contains invalid characters")
    return cleaned


def validate_email(email: str | None) -> str | None:
    if not email or not email.strip():
        return None
    cleaned = email.strip().lower()
    if len(cleaned) > MAX_EMAIL_LENGTH:
        raise ValidationError("Email is too long (max 100 characters)")
    if not EMAIL_PATTERN.match(cleaned):
        raise ValidationError("Invalid email format")
    return cleaned


def validate_phone_number(phone: str | None) -> str | None:
    if not phone or not phone.strip():
        return None
    cleaned = re.sub(r"[^0-9+\-\s()]", "", phone.strip())
    if len(re.sub(r"\D", "", cleaned)) < MIN_PHONE_DIGITS:
        raise ValidationError("Phone number must have at least 10 digits")
    if len(cleaned) > MAX_PHONE_LENGTH:
        raise ValidationError("Phone number is too long")
    return cleaned


def validate_unit_number(unit_number: str | None) -> str | None:
    """Unit or mailbox number: letters, digits and hyphens, no spaces."""
    if unit_number is None or not unit_number.strip():
        return None
    if re.search(r"\s", unit_number.strip()):
        raise ValidationError("Unit/Mailbox number cannot contain spaces")
    cleaned = sanitize_string(unit_number, max_length=20)
    if not cleaned or not UNIT_NUMBER_PATTERN.match(cleaned):
        raise ValidationError("Unit/Mailbox number can only contain letters, numbers, and hyphens")
    return cleaned


def validate_display_name_preference(value: str | None) -> str:
    if value is None:
        return "auto"
    if value not in DISPLAY_NAME_PREFERENCES:
        raise ValidationError("display_name_preference must be one of: company, person, both, auto")
    return value


_FIELD_VALIDATORS = {
    "contact_person": validate_contact_person,
    "company_name": validate_company_name,
    "email": validate_email,
    "phone_number": validate_phone_number,
    "unit_number": validate_unit_number,
    "mailbox_number": validate_unit_number,
}


def validate_contact_data(data: dict, partial: bool = False) -> dict:
    """
    Clean every contact field present in ``data``.

    A new contact (partial=False) needs a contact person or a company name;
    an update only has to keep at least one of them when it touches both.
    """
    cleaned = dict(data)
    for key, validator in _FIELD_VALIDATORS.items():
        if key in cleaned:
            cleaned[key] = validator(cleaned[key])
    if "display_name_preference" in cleaned or not partial:
        cleaned["display_name_preference"] = validate_display_name_preference(
            cleaned.get("display_name_preference")
        )

    touches_both = "contact_person" in cleaned and "company_name" in cleaned
    if (not partial or touches_both) and not cleaned.get("contact_person") and not cleaned.get("company_name"):
        raise ValidationError("Either contact person or company name is required")
    return cleaned
