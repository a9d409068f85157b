"""Username, principal name and mail address derivation."""
from __future__ import annotations

import re
import unicodedata
from typing import Tuple

COLLISION_SUFFIX = "1"


def slugify_name(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value or "")
    ascii_value = normalized.encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9]", "", ascii_value.lower())


def derive_username(first_name: str, last_name: str) -> str:
    """First initial plus last name, lowercased, alphanumerics only.

    >>> derive_username("John", "Smith")
    'jsmith'
    >>> derive_username("Zoë", "O'Brien-Kelly")
    'zobrienkelly'
    """

    first = slugify_name(first_name)
    return f"{first[:1]}{slugify_name(last_name)}"


def with_collision_suffix(username: str) -> str:
    return f"{username}{COLLISION_SUFFIX}"


def principal_and_email(username: str, domain: str, email_domain: str) -> Tuple[str, str]:
    return f"{username}@{domain}", f"{username}@{email_domain}"


def netbios_name(domain: str) -> str:
    """Short domain used in ``DOMAIN\\user`` ACL principals."""

    return (domain or "").split(".", 1)[0].upper()


__all__ = [
    "COLLISION_SUFFIX",
    "derive_username",
    "netbios_name",
    "principal_and_email",
    "slugify_name",
    "with_collision_suffix",
]
