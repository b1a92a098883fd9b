from __future__ import annotations

import re
import secrets
import string

from werkzeug.security import check_password_hash, generate_password_hash

from utils import ApiError


MIN_PASSWORD_LENGTH = 12
MAX_PASSWORD_LENGTH = 256

_HAS_LOWER = re.compile(r"[a-z]")
_HAS_UPPER = re.compile(r"[A-Z]")
_HAS_DIGIT = re.compile(r"\d")
_HAS_SPECIAL = re.compile(r"[^A-Za-z0-9]")


def validate_password_policy(password: str, *, field: str = "password") -> str:
    pwd = str(password or "")
    if not pwd:
        raise ApiError("BAD_REQUEST", f"Missing {field}")
    if len(pwd) < MIN_PASSWORD_LENGTH:
        raise ApiError("BAD_REQUEST", f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(pwd) > MAX_PASSWORD_LENGTH:
        raise ApiError("BAD_REQUEST", "Password is too long")
    if not _HAS_LOWER.search(pwd) or not _HAS_UPPER.search(pwd) or not _HAS_DIGIT.search(pwd) or not _HAS_SPECIAL.search(pwd):
        raise ApiError("BAD_REQUEST", "Password must include uppercase, lowercase, number, and special character")
    return pwd


def hash_password(password: str, *, field: str = "password") -> str:
    pwd = validate_password_policy(password, field=field)
    # Werkzeug 3 defaults to scrypt; pin explicitly for stability.
    return generate_password_hash(pwd, method="scrypt", salt_length=16)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return check_password_hash(str(password_hash), str(password or ""))
    except ValueError:
        return False


def generate_initial_password(length: int = 16) -> str:
    """Random password that satisfies the policy, for invited users."""
    alphabet = string.ascii_letters + string.digits + "!@#$%^&*"
    while True:
        pwd = "".join(secrets.choice(alphabet) for _ in range(max(MIN_PASSWORD_LENGTH, length)))
        try:
            return validate_password_policy(pwd)
        except ApiError:
            continue
