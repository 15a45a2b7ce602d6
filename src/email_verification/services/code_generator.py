"""Verification code generation and format checks."""

import re
import secrets


def generate_verification_code(length: int = 6) -> str:
    """Return a random numeric code of *length* digits with no leading zero."""
    if length < 1:
        raise ValueError("code length must be at least 1")
    first = secrets.choice("123456789")
    rest = "".join(secrets.choice("0123456789") for _ in range(length - 1))
    return first + rest


def is_valid_verification_code(code: str, length: int = 6) -> bool:
    """``True`` if *code* is exactly *length* ASCII digits."""
    return bool(re.fullmatch(rf"[0-9]{{{length}}}", code or ""))
