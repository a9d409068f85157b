"""Random credential generation for new and retired accounts."""
from __future__ import annotations

import secrets
import string

SYMBOLS = "!@#$%^&*()-_=+[]{}?"
_CLASSES = (string.ascii_lowercase, string.ascii_uppercase, string.digits, SYMBOLS)
_ALPHABET = "".join(_CLASSES)


def generate_secret(length: int = 16) -> str:
    """Return a random password containing every character class AD complexity checks for."""

    if length < len(_CLASSES):
        raise ValueError(f"Password length must be at least {len(_CLASSES)}.")
    chars = [secrets.choice(charset) for charset in _CLASSES]
    chars.extend(secrets.choice(_ALPHABET) for _ in range(length - len(chars)))
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


__all__ = ["SYMBOLS", "generate_secret"]
