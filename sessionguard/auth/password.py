# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""Password policy checks and bcrypt hashing (direct, no passlib)."""

from __future__ import annotations

import re

import bcrypt

MIN_PASSWORD_LENGTH = 8
INVALID_EMAIL_MESSAGE = "Please enter a valid email address."

_HAS_LOWER = re.compile(r"[a-z]")
_HAS_UPPER = re.compile(r"[A-Z]")
_HAS_DIGIT = re.compile(r"\d")
_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def check_password_length(password: str) -> str | None:
    """Return an error message if the password is too short."""
    if len(password) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters long."
    return None


def check_password_policy(password: str) -> str | None:
    """Return an error message if the password fails the sign-up policy."""
    error = check_password_length(password)
    if error:
        return error
    if not (_HAS_LOWER.search(password) and _HAS_UPPER.search(password) and _HAS_DIGIT.search(password)):
        return (
            "Password must contain at least one uppercase letter, "
            "one lowercase letter, and one number."
        )
    return None


def normalize_email(email: str) -> str:
    """Lower-case and trim an email address."""
    return email.strip().lower()


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL.match(email))


def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password with bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Verify a password against its bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False
