"""
Input validation utilities for the QRIS Checkout backend.

Provides reusable validators for customer contact details.
"""
import re

from domain.errors import InvalidEmail, ValidationError

# One "@", a dot in the domain, no whitespace
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(email: str) -> str:
    """
    Validate an email address and return its canonical (lower-cased) form.

    Raises:
        InvalidEmail if the address is malformed
    """
    candidate = (email or "").strip().lower()
    if len(candidate) > 320 or not _EMAIL_RE.match(candidate):
        raise InvalidEmail(email)
    return candidate


def normalize_name(name: str) -> str:
    """Collapse whitespace; reject empty names."""
    cleaned = " ".join((name or "").split())
    if not cleaned:
        raise ValidationError("Name is required", field="name")
    return cleaned[:200]
