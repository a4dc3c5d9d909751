# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""In-process auth provider for local development and tests.

Stores bcrypt password hashes and issues JWT access/refresh tokens.
Supports an email-confirmation requirement, artificial latency and
one-shot failure injection, and counts calls per operation.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import Counter
from dataclasses import dataclass
from typing import Optional

from sessionguard.auth.errors import ProviderError
from sessionguard.auth.models import ProviderAuthResponse, ProviderSession, User
from sessionguard.auth.password import hash_password, verify_password
from sessionguard.auth.provider import AuthEvent, AuthProvider
from sessionguard.auth.tokens import TokenMinter

logger = logging.getLogger("sessionguard.provider.memory")


@dataclass
class _Account:
    id: str
    email: str
    password_hash: str
    confirmed: bool


class InMemoryAuthProvider(AuthProvider):
    """Auth provider that keeps accounts and the current session in memory."""

    def __init__(
        self,
        require_email_confirmation: bool = False,
        latency: float = 0.0,
        bcrypt_rounds: int = 12,
    ) -> None:
        super().__init__()
        self._rounds = bcrypt_rounds
        self._accounts: dict[str, _Account] = {}
        self._current: Optional[ProviderSession] = None
        self._live_refresh_ids: set[str] = set()
        self.tokens = TokenMinter()
        self._require_confirmation = require_email_confirmation
        self._latency = latency
        self._failures: dict[str, ProviderError] = {}
        self.calls: Counter[str] = Counter()
        self.recovery_requests: list[tuple[str, str]] = []

    @property
    def name(self) -> str:
        return "memory"

    # -----------------------------------------------------------------
    # Test / dev helpers
    # -----------------------------------------------------------------

    def add_user(self, email: str, password: str, confirmed: bool = True) -> User:
        """Register an account directly, bypassing sign-up."""
        account = _Account(
            id=str(uuid.uuid4()),
            email=email,
            password_hash=hash_password(password, self._rounds),
            confirmed=confirmed,
        )
        self._accounts[email] = account
        return self._user(account)

    def confirm_email(self, email: str) -> None:
        self._accounts[email].confirmed = True

    def fail_next(self, operation: str, error: ProviderError) -> None:
        """Make the next call of ``operation`` raise ``error``."""
        self._failures[operation] = error

    def revoke_externally(self) -> None:
        """Simulate a sign-out performed elsewhere (another tab, an admin)."""
        self._drop_current()
        self._emit(AuthEvent.SIGNED_OUT, None)

    # -----------------------------------------------------------------
    # AuthProvider interface
    # -----------------------------------------------------------------

    async def sign_in_with_password(self, email: str, password: str) -> ProviderAuthResponse:
        await self._enter("sign_in")
        account = self._accounts.get(email)
        if account is None or not verify_password(password, account.password_hash):
            raise ProviderError("Invalid login credentials", status=400)
        if not account.confirmed:
            raise ProviderError("Email not confirmed", status=400)
        session = self._issue(account)
        self._emit(AuthEvent.SIGNED_IN, session)
        return ProviderAuthResponse(user=session.user, session=session)

    async def sign_up(self, email: str, password: str, redirect_url: str) -> ProviderAuthResponse:
        await self._enter("sign_up")
        if email in self._accounts:
            raise ProviderError("User already registered", status=422)
        account = _Account(
            id=str(uuid.uuid4()),
            email=email,
            password_hash=hash_password(password, self._rounds),
            confirmed=not self._require_confirmation,
        )
        self._accounts[email] = account
        if not account.confirmed:
            logger.info("Confirmation pending for new account, redirect %s", redirect_url)
            return ProviderAuthResponse(user=self._user(account), session=None)
        session = self._issue(account)
        self._emit(AuthEvent.SIGNED_IN, session)
        return ProviderAuthResponse(user=session.user, session=session)

    async def refresh_session(self) -> ProviderAuthResponse:
        await self._enter("refresh")
        current = self._current
        if current is None or current.refresh_token is None:
            raise ProviderError("Auth session missing!", status=400)
        token_id = self.tokens.refresh_token_id(current.refresh_token)
        if token_id is None or token_id not in self._live_refresh_ids:
            raise ProviderError("Invalid Refresh Token: Refresh Token Not Found", status=400)
        self._live_refresh_ids.discard(token_id)
        account = self._accounts.get(current.user.email)
        if account is None:
            raise ProviderError("User not found", status=404)
        session = self._issue(account)
        self._emit(AuthEvent.TOKEN_REFRESHED, session)
        return ProviderAuthResponse(user=session.user, session=session)

    async def sign_out(self) -> None:
        await self._enter("sign_out")
        had_session = self._current is not None
        self._drop_current()
        if had_session:
            self._emit(AuthEvent.SIGNED_OUT, None)

    async def get_current_session(self) -> Optional[ProviderSession]:
        await self._enter("get_session")
        return self._current

    async def reset_password_for_email(self, email: str, redirect_url: str) -> None:
        await self._enter("reset_password")
        # Unknown addresses succeed silently so accounts cannot be enumerated
        if email in self._accounts:
            self.recovery_requests.append((email, redirect_url))

    async def update_user_password(self, password: str) -> None:
        await self._enter("update_password")
        if self._current is None:
            raise ProviderError("Auth session missing!", status=401)
        account = self._accounts[self._current.user.email]
        account.password_hash = hash_password(password, self._rounds)

    # -----------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------

    async def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        if self._latency:
            await asyncio.sleep(self._latency)
        error = self._failures.pop(operation, None)
        if error is not None:
            raise error

    @staticmethod
    def _user(account: _Account) -> User:
        return User(id=account.id, email=account.email, email_confirmed=account.confirmed)

    def _issue(self, account: _Account) -> ProviderSession:
        token_id, refresh_token = self.tokens.refresh_token(account.id)
        self._live_refresh_ids.add(token_id)
        self._current = ProviderSession(
            access_token=self.tokens.access_token(account.id, account.email),
            refresh_token=refresh_token,
            expires_in=self.tokens.access_lifetime,
            user=self._user(account),
        )
        return self._current

    def _drop_current(self) -> None:
        if self._current is not None and self._current.refresh_token:
            token_id = self.tokens.refresh_token_id(self._current.refresh_token)
            if token_id:
                self._live_refresh_ids.discard(token_id)
        self._current = None
