# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""Models for sessions, provider responses and the session API."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from sessionguard.auth.errors import AuthError


# ===================== Provider boundary =====================


class User(BaseModel):
    """User identity as reported by the auth provider."""

    id: str
    email: str
    email_confirmed: bool = True


class ProviderSession(BaseModel):
    """Provider-side session. Tokens are opaque and only forwarded."""

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    user: User


class ProviderAuthResponse(BaseModel):
    """Result of a provider sign-in, sign-up or refresh."""

    user: Optional[User] = None
    session: Optional[ProviderSession] = None


class UserPreferences(BaseModel):
    """Display-only echo of the last sign-in, persisted next to the session."""

    model_config = ConfigDict(populate_by_name=True)

    email: str
    last_login: str = Field(alias="lastLogin")


# ===================== Guard-side session =====================


@dataclass
class ActiveSession:
    """The client-side record of one authenticated login."""

    user: User
    provider_session: ProviderSession
    issued_at: datetime
    expires_at: datetime
    last_activity_at: Optional[datetime] = None

    @property
    def access_token(self) -> str:
        return self.provider_session.access_token


@dataclass
class AuthResult:
    """Outcome of a guard operation. Exactly one of success/error holds."""

    error: Optional[AuthError] = None
    user: Optional[User] = None
    confirmation_required: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, error: AuthError) -> AuthResult:
        return cls(error=error)


# ===================== Session API =====================


class CredentialsRequest(BaseModel):
    """Sign-in / sign-up request body."""

    email: str = Field(..., min_length=3, max_length=320)
    password: str = Field(..., min_length=1, max_length=128)


class EmailRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)


class PasswordRequest(BaseModel):
    password: str = Field(..., min_length=1, max_length=128)


class ActivityRequest(BaseModel):
    event: str = "click"


class SessionStatus(BaseModel):
    """Snapshot of the guard for a UI."""

    state: str
    is_authenticated: bool
    email: Optional[str] = None
    session_expiry: Optional[datetime] = None
    last_activity: Optional[datetime] = None
    is_locked: bool = False
    lockout_minutes_remaining: int = 0


class OperationResponse(BaseModel):
    detail: str
    confirmation_required: bool = False


class ErrorResponse(BaseModel):
    """Auth error response."""

    detail: str
    kind: str
    retry_after: Optional[int] = None
