"""Field rules for user and task documents.

Request schemas only check shape; these functions enforce content and raise
``ValidationError`` carrying the offending field, before anything is hashed
or persisted.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Any, Optional

from taskkeep.service.errors import ValidationError

MIN_PASSWORD_LENGTH = 7
MAX_PASSWORD_LENGTH = 128
MAX_NAME_LENGTH = 128
MAX_DESCRIPTION_LENGTH = 4096

_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")
_ZERO_WIDTH = "\u200b\u200c\u200d\ufeff"
_BIDI_OVERRIDES = frozenset(
    [chr(c) for c in range(0x202A, 0x202F)] + [chr(c) for c in range(0x2066, 0x206A)]
)


def _normalize_unicode(value: str) -> str:
    """Strip zero-width and bidi override characters, then apply NFKC."""
    cleaned = "".join(
        c for c in value if c not in _ZERO_WIDTH and c not in _BIDI_OVERRIDES
    )
    return unicodedata.normalize("NFKC", cleaned)


def normalize_email(value: str) -> str:
    return _normalize_unicode(value.strip().lower())


def validate_email(value: Any) -> str:
    if not isinstance(value, str):
        raise ValidationError("email must be a string", field="email")
    normalized = normalize_email(value)
    if len(normalized) > 254:
        raise ValidationError("email address too long", field="email")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValidationError("email is invalid", field="email")
    if len(local) > 64 or not _EMAIL_LOCAL_PART.match(local):
        raise ValidationError("email is invalid", field="email")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValidationError("email is invalid", field="email")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValidationError("email is invalid", field="email")
    return normalized


def validate_name(value: Any) -> str:
    if not isinstance(value, str):
        raise ValidationError("name must be a string", field="name")
    trimmed = _normalize_unicode(value).strip()
    if not trimmed:
        raise ValidationError("name is required", field="name")
    if len(trimmed) > MAX_NAME_LENGTH:
        raise ValidationError(
            f"name must be at most {MAX_NAME_LENGTH} characters", field="name"
        )
    return trimmed


def validate_password(value: Any) -> str:
    """Return the trimmed password or raise.

    Passwords shorter than seven characters after trimming, or containing
    the word "password" in any case, are refused.
    """
    if not isinstance(value, str):
        raise ValidationError("password must be a string", field="password")
    trimmed = value.strip()
    if len(trimmed) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"password must be at least {MIN_PASSWORD_LENGTH} characters",
            field="password",
        )
    if len(trimmed) > MAX_PASSWORD_LENGTH:
        raise ValidationError(
            f"password must be at most {MAX_PASSWORD_LENGTH} characters",
            field="password",
        )
    if "password" in trimmed.lower():
        raise ValidationError('password cannot contain "password"', field="password")
    return trimmed


def validate_age(value: Any) -> Optional[int]:
    if value is None:
        return None
    # bool is an int subclass; true/false is not an age
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("age must be an integer", field="age")
    if value < 0:
        raise ValidationError("age must be a positive number", field="age")
    return value


def validate_description(value: Any) -> str:
    if not isinstance(value, str):
        raise ValidationError("description must be a string", field="description")
    trimmed = value.strip()
    if not trimmed:
        raise ValidationError("description is required", field="description")
    if len(trimmed) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(
            f"description must be at most {MAX_DESCRIPTION_LENGTH} characters",
            field="description",
        )
    return trimmed


def validate_completed(value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValidationError("completed must be a boolean", field="completed")
    return value


__all__ = [
    "MIN_PASSWORD_LENGTH",
    "normalize_email",
    "validate_age",
    "validate_completed",
    "validate_description",
    "validate_email",
    "validate_name",
    "validate_password",
]
