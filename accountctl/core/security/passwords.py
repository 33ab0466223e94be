"""
Initial password generation.

Generated credentials satisfy the complexity policy (length ≥ 12 and at
least one upper, lower, digit and symbol) and come from the OS CSPRNG.
Callers must treat the returned value as a secret: it belongs in
``Result.metadata`` only and never in a log record.
"""

from __future__ import annotations

import secrets
import string

MIN_LENGTH = 12
DEFAULT_LENGTH = 16

UPPERCASE = string.ascii_uppercase
LOWERCASE = string.ascii_lowercase
DIGITS = string.digits
SYMBOLS = "!@#$%^&*()_+-=[]{}|;:,.<>?"

_CLASSES = (UPPERCASE, LOWERCASE, DIGITS, SYMBOLS)
_ALPHABET = "".join(_CLASSES)

_rng = secrets.SystemRandom()


def generate_password(length: int = DEFAULT_LENGTH) -> str:
    """Generate a random password meeting the complexity policy.

    Raises:
        ValueError: If ``length`` is below the policy minimum.
    """
    if length < MIN_LENGTH:
        raise ValueError(f"Password length must be at least {MIN_LENGTH}, got {length}")

    chars = [secrets.choice(cls) for cls in _CLASSES]
    chars.extend(secrets.choice(_ALPHABET) for _ in range(length - len(chars)))
    _rng.shuffle(chars)
    return "".join(chars)


def meets_policy(password: str, min_length: int = MIN_LENGTH) -> bool:
    """Whether ``password`` satisfies length and character-class rules."""
    if len(password) < min_length:
        return False
    return all(any(c in cls for c in password) for cls in _CLASSES)
