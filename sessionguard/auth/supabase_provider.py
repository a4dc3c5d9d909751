# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""Supabase (GoTrue) auth provider over the REST API.

Blocking requests run in a worker thread so the event loop is never
blocked. The provider keeps the current session in memory and emits
auth-state events for its own sign-in, refresh and sign-out calls.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import requests as _requests

from sessionguard.auth.errors import ProviderError
from sessionguard.auth.models import ProviderAuthResponse, ProviderSession, User
from sessionguard.auth.provider import AuthEvent, AuthProvider

logger = logging.getLogger("sessionguard.provider.supabase")

REQUEST_TIMEOUT = 15


class SupabaseAuthProvider(AuthProvider):
    """GoTrue client for a Supabase project."""

    def __init__(
        self,
        url: str,
        anon_key: str,
        session: Optional[_requests.Session] = None,
        timeout: int = REQUEST_TIMEOUT,
    ) -> None:
        super().__init__()
        if not url or not anon_key:
            raise ValueError("Supabase URL and anon key are required")
        self._base = url.rstrip("/") + "/auth/v1"
        self._anon_key = anon_key
        self._http = session or _requests.Session()
        self._timeout = timeout
        self._current: Optional[ProviderSession] = None

    @property
    def name(self) -> str:
        return "supabase"

    # -----------------------------------------------------------------
    # AuthProvider interface
    # -----------------------------------------------------------------

    async def sign_in_with_password(self, email: str, password: str) -> ProviderAuthResponse:
        data = await self._call(
            "POST", "/token", params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        session = self._parse_session(data)
        self._current = session
        self._emit(AuthEvent.SIGNED_IN, session)
        return ProviderAuthResponse(user=session.user, session=session)

    async def sign_up(self, email: str, password: str, redirect_url: str) -> ProviderAuthResponse:
        data = await self._call(
            "POST", "/signup", params={"redirect_to": redirect_url},
            json={"email": email, "password": password},
        )
        if data.get("access_token"):
            session = self._parse_session(data)
            self._current = session
            self._emit(AuthEvent.SIGNED_IN, session)
            return ProviderAuthResponse(user=session.user, session=session)
        # Confirmation required: GoTrue returns the bare user object
        user_data = data.get("user") or data
        return ProviderAuthResponse(user=self._parse_user(user_data), session=None)

    async def refresh_session(self) -> ProviderAuthResponse:
        current = self._current
        if current is None or not current.refresh_token:
            raise ProviderError("Auth session missing!", status=400)
        data = await self._call(
            "POST", "/token", params={"grant_type": "refresh_token"},
            json={"refresh_token": current.refresh_token},
        )
        if self._current is not current:
            # Signed out (or replaced) while the request was in flight
            raise ProviderError("Auth session missing!", status=400)
        session = self._parse_session(data)
        self._current = session
        self._emit(AuthEvent.TOKEN_REFRESHED, session)
        return ProviderAuthResponse(user=session.user, session=session)

    async def sign_out(self) -> None:
        current = self._current
        self._current = None
        if current is None:
            return
        try:
            await self._call("POST", "/logout", bearer=current.access_token)
        finally:
            self._emit(AuthEvent.SIGNED_OUT, None)

    async def get_current_session(self) -> Optional[ProviderSession]:
        return self._current

    def restore(self, session: ProviderSession) -> None:
        """Adopt a session persisted by the host application."""
        self._current = session

    async def reset_password_for_email(self, email: str, redirect_url: str) -> None:
        await self._call(
            "POST", "/recover", params={"redirect_to": redirect_url},
            json={"email": email},
        )

    async def update_user_password(self, password: str) -> None:
        current = self._current
        if current is None:
            raise ProviderError("Auth session missing!", status=401)
        await self._call("PUT", "/user", json={"password": password}, bearer=current.access_token)

    # -----------------------------------------------------------------
    # HTTP
    # -----------------------------------------------------------------

    async def _call(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
        bearer: Optional[str] = None,
    ) -> dict[str, Any]:
        headers = {
            "apikey": self._anon_key,
            "Content-Type": "application/json",
            "Authorization": f"Bearer {bearer or self._anon_key}",
        }

        def _do_request() -> _requests.Response:
            return self._http.request(
                method, self._base + path,
                params=params, json=json, headers=headers, timeout=self._timeout,
            )

        try:
            resp = await asyncio.to_thread(_do_request)
        except _requests.RequestException as exc:
            logger.warning("Supabase %s %s failed: %s", method, path, exc)
            raise ProviderError(f"Network error: {exc}") from exc

        if resp.status_code >= 400:
            raise ProviderError(self._error_message(resp), status=resp.status_code)
        if not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderError("Malformed response from auth server", status=resp.status_code) from exc
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _error_message(resp: _requests.Response) -> str:
        try:
            body = resp.json()
        except ValueError:
            return resp.text or f"HTTP {resp.status_code}"
        if isinstance(body, dict):
            for key in ("error_description", "msg", "message", "error"):
                if body.get(key):
                    return str(body[key])
        return f"HTTP {resp.status_code}"

    @staticmethod
    def _parse_user(data: dict[str, Any]) -> User:
        if not data.get("id"):
            raise ProviderError("Auth server returned no user")
        return User(
            id=str(data["id"]),
            email=str(data.get("email", "")),
            email_confirmed=bool(data.get("email_confirmed_at") or data.get("confirmed_at")),
        )

    def _parse_session(self, data: dict[str, Any]) -> ProviderSession:
        if not data.get("access_token"):
            raise ProviderError("Auth server returned no session")
        return ProviderSession(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            token_type=data.get("token_type", "bearer"),
            expires_in=data.get("expires_in"),
            user=self._parse_user(data.get("user") or {}),
        )
