# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""Auth provider boundary.

The provider (Supabase GoTrue, or the in-process provider) is an opaque
collaborator. Remote failures raise ProviderError. Providers push
auth-state events to subscribers; the session guard treats these as
authoritative as its own calls.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Optional

from sessionguard.auth.models import ProviderAuthResponse, ProviderSession

logger = logging.getLogger("sessionguard.provider")


class AuthEvent(str, Enum):
    """Auth-state changes pushed by a provider."""

    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


AuthStateCallback = Callable[[AuthEvent, Optional[ProviderSession]], None]


class Subscription:
    """Handle returned by on_auth_state_change. Unsubscribing twice is a no-op."""

    def __init__(self, provider: AuthProvider, callback: AuthStateCallback) -> None:
        self._provider = provider
        self._callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if self._active:
            self._provider._listeners.remove(self._callback)
            self._active = False

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.unsubscribe()


class AuthProvider(ABC):
    """Abstract base class for auth backends."""

    def __init__(self) -> None:
        self._listeners: list[AuthStateCallback] = []

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the provider name (e.g. 'supabase', 'memory')."""

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> ProviderAuthResponse:
        """Authenticate with email + password. Must return a session."""

    @abstractmethod
    async def sign_up(self, email: str, password: str, redirect_url: str) -> ProviderAuthResponse:
        """Register a user. The session is absent when email confirmation is required."""

    @abstractmethod
    async def refresh_session(self) -> ProviderAuthResponse:
        """Renew the current session."""

    @abstractmethod
    async def sign_out(self) -> None:
        """End the current session on the provider side."""

    @abstractmethod
    async def get_current_session(self) -> Optional[ProviderSession]:
        """Return the session the provider has stored, if any."""

    @abstractmethod
    async def reset_password_for_email(self, email: str, redirect_url: str) -> None:
        """Send a password recovery email."""

    @abstractmethod
    async def update_user_password(self, password: str) -> None:
        """Change the password of the signed-in user."""

    def on_auth_state_change(self, callback: AuthStateCallback) -> Subscription:
        """Subscribe to auth-state events."""
        self._listeners.append(callback)
        return Subscription(self, callback)

    def _emit(self, event: AuthEvent, session: Optional[ProviderSession]) -> None:
        """Notify all subscribers. A failing subscriber does not stop the others."""
        logger.debug("Auth state changed: %s", event.value)
        for callback in list(self._listeners):
            try:
                callback(event, session)
            except Exception as exc:
                logger.error("Auth state listener failed on %s: %s", event.value, exc)
