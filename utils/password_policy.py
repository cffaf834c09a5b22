# utils/password_policy.py
"""
SECURITY: strong password policy.

Rules applied on registration, password change and password reset:
- Minimum/maximum length
- Mixed case and digits
- Blocklist of common passwords
- Repeated/sequential patterns

References:
- NIST SP 800-63B: Digital Identity Guidelines
- OWASP Password Security Cheat Sheet
"""

import re
from typing import Tuple, List

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128
REQUIRE_UPPERCASE = True
REQUIRE_LOWERCASE = True
REQUIRE_DIGIT = True

COMMON_PASSWORDS = {
    "123456", "password", "123456789", "12345678", "12345", "1234567",
    "1234567890", "qwerty", "abc123", "111111", "123123", "admin",
    "letmein", "welcome", "monkey", "dragon", "master", "password1",
    "qwerty123", "password123", "iloveyou", "passw0rd", "p@ssword",
    "p@ssw0rd", "welcome1", "changeme", "azerty", "azerty123",
    "wachtwoord", "motdepasse", "belgie", "belgique", "brussel",
    "bruxelles", "dokus", "dokus123",
}

WEAK_PATTERNS = [
    r'^(.)\1+$',  # aaaaaa
    r'^(012|123|234|345|456|567|678|789|890)+$',
    r'^(abc|bcd|cde|def|efg|fgh|ghi|hij|ijk|jkl|klm|lmn|mno|nop|opq|pqr|qrs|rst|stu|tuv|uvw|vwx|wxy|xyz)+$',
    r'^(qwe|wer|ert|rty|tyu|yui|uio|iop|asd|sdf|dfg|fgh|ghj|hjk|jkl|zxc|xcv|cvb|vbn|bnm|aze|zer)+$',
]


def check_password_strength(password: str) -> Tuple[bool, List[str]]:
    """
    SECURITY: checks the strength of a password.

    Returns:
        Tuple (is_valid, list_of_errors)

    Example:
        is_valid, errors = check_password_strength("Factuur2024")
    """
    errors = []

    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")

    if len(password) > MAX_PASSWORD_LENGTH:
        errors.append(f"Password must be at most {MAX_PASSWORD_LENGTH} characters long")

    if REQUIRE_UPPERCASE and not re.search(r'[A-Z]', password):
        errors.append("Password must contain at least one uppercase letter")

    if REQUIRE_LOWERCASE and not re.search(r'[a-z]', password):
        errors.append("Password must contain at least one lowercase letter")

    if REQUIRE_DIGIT and not re.search(r'\d', password):
        errors.append("Password must contain at least one digit")

    password_lower = password.lower()
    if password_lower in COMMON_PASSWORDS:
        errors.append("This password is too common")

    for pattern in WEAK_PATTERNS:
        if re.match(pattern, password_lower):
            errors.append("Password contains a weak pattern (sequence or repetition)")
            break

    return len(errors) == 0, errors


def validate_password(password: str) -> str:
    """
    SECURITY: returns the password when valid, raises ValueError otherwise.

    Usable as a Pydantic validator.
    """
    is_valid, errors = check_password_strength(password)

    if not is_valid:
        raise ValueError("; ".join(errors))

    return password


def get_password_requirements() -> dict:
    """Password requirements in a form the frontend can display."""
    return {
        "min_length": MIN_PASSWORD_LENGTH,
        "max_length": MAX_PASSWORD_LENGTH,
        "require_uppercase": REQUIRE_UPPERCASE,
        "require_lowercase": REQUIRE_LOWERCASE,
        "require_digit": REQUIRE_DIGIT,
    }
