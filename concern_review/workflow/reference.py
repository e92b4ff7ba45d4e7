"""Human-readable concern reference codes."""

import secrets
import string
import time
from typing import Callable, Optional

ALPHABET = string.digits + string.ascii_uppercase
PREFIX = "SC"
RANDOM_LENGTH = 4


def to_base36(number: int) -> str:
    """Encode a non-negative integer in upper-case base 36."""
    if number < 0:
        raise ValueError("number must be non-negative")
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_reference(clock: Optional[Callable[[], float]] = None) -> str:
    """
    Generate a reference such as ``SC-MLCGEX8B-5W3W``.

    The middle part is the current time in milliseconds, the suffix is
    random, so two codes only collide when both parts do.

    Args:
        clock: Seconds-since-epoch source, defaults to time.time

    Returns:
        Reference code
    """
    millis = int((clock or time.time)() * 1000)
    suffix = "".join(secrets.choice(ALPHABET) for _ in range(RANDOM_LENGTH))
    return f"{PREFIX}-{to_base36(millis)}-{suffix}"


def is_reference(value: str) -> bool:
    """Check that a string has the shape of a generated reference."""
    parts = value.split("-")
    if len(parts) != 3 or parts[0] != PREFIX:
        return False
    return (
        bool(parts[1])
        and all(ch in ALPHABET for ch in parts[1])
        and len(parts[2]) == RANDOM_LENGTH
        and all(ch in ALPHABET for ch in parts[2])
    )
