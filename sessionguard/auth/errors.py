# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""Auth error taxonomy and provider-message classification."""

from __future__ import annotations

from enum import Enum
from typing import Optional

INVALID_CREDENTIALS_MESSAGE = (
    "Invalid email or password. Please check your credentials and try again."
)
EMAIL_NOT_CONFIRMED_MESSAGE = (
    "Please check your email and click the confirmation link before signing in."
)
ALREADY_REGISTERED_MESSAGE = (
    "An account with this email already exists. Please sign in instead."
)
UNEXPECTED_MESSAGE = "An unexpected error occurred. Please try again."
IN_PROGRESS_MESSAGE = "Another authentication request is already in progress."


class AuthErrorKind(str, Enum):
    """Classified failure reasons returned by the session guard."""

    LOCKED_OUT = "locked_out"
    INVALID_CREDENTIALS = "invalid_credentials"
    EMAIL_NOT_CONFIRMED = "email_not_confirmed"
    VALIDATION = "validation"
    NETWORK_OR_PROVIDER = "network_or_provider"
    ALREADY_REGISTERED = "already_registered"
    OPERATION_IN_PROGRESS = "operation_in_progress"


class AuthError(Exception):
    """A classified auth failure with a user-facing message."""

    def __init__(
        self,
        kind: AuthErrorKind,
        message: str,
        retry_after: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.retry_after = retry_after

    def __repr__(self) -> str:
        return f"AuthError(kind={self.kind.value!r}, message={self.message!r})"

    @classmethod
    def locked_out(cls, minutes: int) -> AuthError:
        return cls(
            AuthErrorKind.LOCKED_OUT,
            f"Account locked due to too many failed attempts. Try again in {minutes} minutes.",
            retry_after=minutes * 60,
        )

    @classmethod
    def validation(cls, message: str) -> AuthError:
        return cls(AuthErrorKind.VALIDATION, message)

    @classmethod
    def unexpected(cls) -> AuthError:
        return cls(AuthErrorKind.NETWORK_OR_PROVIDER, UNEXPECTED_MESSAGE)

    @classmethod
    def in_progress(cls) -> AuthError:
        return cls(AuthErrorKind.OPERATION_IN_PROGRESS, IN_PROGRESS_MESSAGE)


class ProviderError(Exception):
    """Raised by an auth provider when a remote call fails."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


def classify_sign_in_error(exc: ProviderError) -> AuthError:
    """Map a provider sign-in failure to a user-facing error.

    Only invalid credentials and unconfirmed email are recognised;
    anything else is reported as a provider error with the provider's
    message.
    """
    text = exc.message.lower()
    if "invalid login credentials" in text or "invalid credentials" in text:
        return AuthError(AuthErrorKind.INVALID_CREDENTIALS, INVALID_CREDENTIALS_MESSAGE)
    if "email not confirmed" in text:
        return AuthError(AuthErrorKind.EMAIL_NOT_CONFIRMED, EMAIL_NOT_CONFIRMED_MESSAGE)
    return AuthError(AuthErrorKind.NETWORK_OR_PROVIDER, exc.message or UNEXPECTED_MESSAGE)


def classify_sign_up_error(exc: ProviderError) -> AuthError:
    """Map a provider sign-up failure to a user-facing error."""
    text = exc.message.lower()
    if "already registered" in text or "already exists" in text:
        return AuthError(AuthErrorKind.ALREADY_REGISTERED, ALREADY_REGISTERED_MESSAGE)
    return AuthError(AuthErrorKind.NETWORK_OR_PROVIDER, exc.message or UNEXPECTED_MESSAGE)
