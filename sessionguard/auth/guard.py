# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""Session guard: the client-side authenticated-session state machine.

States: UNAUTHENTICATED, AUTHENTICATING, AUTHENTICATED, EXPIRING (transient,
resolved by a refresh) and EXPIRED (transient, resolved by a forced sign-out).

The expiry clock is wall time since the last refresh. Activity only
updates last_activity_at; a periodic check refreshes the session once
expiry is within the refresh threshold and signs out once it has passed.
A failed refresh always ends the session.

All public operations return an AuthResult; provider failures never
escape as exceptions.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from sessionguard.alerts.manager import NoticeManager, Severity
from sessionguard.auth.errors import (
    AuthError,
    AuthErrorKind,
    ProviderError,
    classify_sign_in_error,
    classify_sign_up_error,
)
from sessionguard.auth.lockout import LockoutTracker
from sessionguard.auth.models import (
    ActiveSession,
    AuthResult,
    ProviderSession,
    User,
    UserPreferences,
)
from sessionguard.auth.password import (
    INVALID_EMAIL_MESSAGE,
    check_password_length,
    check_password_policy,
    is_valid_email,
    normalize_email,
)
from sessionguard.auth.provider import AuthEvent, AuthProvider, Subscription
from sessionguard.core.clock import Clock, SystemClock, from_iso, to_iso
from sessionguard.core.config import SessionTimings
from sessionguard.core.logger import SecurityLog, mask_email
from sessionguard.storage.secure_store import (
    LAST_ACTIVITY,
    SESSION_EXPIRY,
    USER_PREFERENCES,
    SecureStore,
)

logger = logging.getLogger("sessionguard.auth")

_CREDENTIALS = "credentials"
_PASSWORD = "password"

# Minimum gap between lastActivity writes; the in-memory value is always current
ACTIVITY_PERSIST_INTERVAL = timedelta(seconds=30)


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    EXPIRING = "expiring"
    EXPIRED = "expired"


class SessionGuard:
    """Owns the authenticated session and its lifecycle.

    Dependencies are injected so the guard can run against any provider
    and a controllable clock. Use ``async with guard`` (or start/close)
    to run the periodic check loop and listen to provider events.
    """

    def __init__(
        self,
        provider: AuthProvider,
        storage: Optional[SecureStore] = None,
        clock: Optional[Clock] = None,
        lockout: Optional[LockoutTracker] = None,
        notices: Optional[NoticeManager] = None,
        timings: Optional[SessionTimings] = None,
        security_log: Optional[SecurityLog] = None,
        redirect_base_url: str = "http://localhost:8080",
    ) -> None:
        self._provider = provider
        self._storage = storage or SecureStore()
        self._clock = clock or SystemClock()
        self._lockout = lockout or LockoutTracker()
        self._notices = notices or NoticeManager()
        self._timings = timings or SessionTimings()
        self._security_log = security_log or SecurityLog(clock=self._clock)
        self._redirect_base = redirect_base_url.rstrip("/")

        self._state = SessionState.UNAUTHENTICATED
        self._session: Optional[ActiveSession] = None
        self._generation = 0
        self._activity_persisted_at: Optional[datetime] = None
        self._in_flight: set[str] = set()
        self._refresh_task: Optional[asyncio.Task[AuthResult]] = None
        self._check_task: Optional[asyncio.Task[None]] = None
        self._subscription: Optional[Subscription] = None
        self._closers: list[Callable[[], None]] = []
        self._running = False

    # -----------------------------------------------------------------
    # Derived state
    # -----------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[ActiveSession]:
        return self._session

    @property
    def user(self) -> Optional[User]:
        return self._session.user if self._session else None

    @property
    def session_expiry(self) -> Optional[datetime]:
        return self._session.expires_at if self._session else None

    @property
    def last_activity(self) -> Optional[datetime]:
        return self._session.last_activity_at if self._session else None

    @property
    def is_authenticated(self) -> bool:
        return self._session is not None and not self._is_expired(self._clock.now())

    @property
    def is_locked(self) -> bool:
        return self._lockout.is_locked(self._clock.now())

    @property
    def lockout_minutes_remaining(self) -> int:
        return self._lockout.remaining_minutes(self._clock.now())

    @property
    def loading(self) -> bool:
        refreshing = self._refresh_task is not None and not self._refresh_task.done()
        return bool(self._in_flight) or refreshing

    @property
    def timings(self) -> SessionTimings:
        return self._timings

    # -----------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------

    async def start(self) -> None:
        """Subscribe to provider events, restore state and start the check loop."""
        if self._running:
            return
        self._running = True
        self._subscription = self._provider.on_auth_state_change(self._on_auth_event)
        await self.initialize()
        if self._session is not None:
            self._start_checks()

    async def close(self) -> None:
        """Stop timers and release every subscription. Session state is kept."""
        self._running = False
        self._stop_checks()
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        closers, self._closers = self._closers, []
        for closer in closers:
            try:
                closer()
            except Exception as exc:
                logger.error("Teardown callback failed: %s", exc)

    async def __aenter__(self) -> SessionGuard:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def on_close(self, callback: Callable[[], None]) -> None:
        """Register a teardown callback run by close()."""
        self._closers.append(callback)

    async def initialize(self) -> None:
        """Restore a persisted session from the provider and secure storage."""
        try:
            provider_session = await self._provider.get_current_session()
        except ProviderError as exc:
            logger.error("Failed to get session: %s", exc.message)
            return
        if provider_session is None:
            return

        now = self._clock.now()
        stored_expiry = self._storage.retrieve(SESSION_EXPIRY)
        expires_at = from_iso(stored_expiry) if isinstance(stored_expiry, str) else None
        if expires_at is not None and expires_at <= now:
            logger.info("Persisted session expired at %s, signing out", to_iso(expires_at))
            self._session = self._new_session(provider_session, now, expires_at)
            self._state = SessionState.EXPIRED
            await self._force_sign_out("Session expired", "Session expired. Please sign in again.")
            return

        if expires_at is None:
            expires_at = now + timedelta(seconds=self._timings.session_timeout)
            self._storage.store(SESSION_EXPIRY, to_iso(expires_at))

        self._session = self._new_session(provider_session, now, expires_at)
        stored_activity = self._storage.retrieve(LAST_ACTIVITY)
        if isinstance(stored_activity, str):
            self._session.last_activity_at = from_iso(stored_activity)
        self._state = SessionState.AUTHENTICATED
        self._touch(now, persist=True)
        logger.info("Restored session for %s", mask_email(provider_session.user.email))

    # -----------------------------------------------------------------
    # Operations
    # -----------------------------------------------------------------

    async def sign_in(self, email: str, password: str) -> AuthResult:
        """Sign in with email and password, honouring the lockout policy."""
        if _CREDENTIALS in self._in_flight:
            return AuthResult.failure(AuthError.in_progress())

        now = self._clock.now()
        if self._lockout.is_locked(now):
            minutes = self._lockout.remaining_minutes(now)
            self._security_log.sign_in_blocked(normalize_email(email), minutes)
            self._notify_locked(minutes)
            return AuthResult.failure(AuthError.locked_out(minutes))

        email = normalize_email(email)
        self._in_flight.add(_CREDENTIALS)
        previous = self._state
        self._state = SessionState.AUTHENTICATING
        try:
            response = await self._provider.sign_in_with_password(email, password)
        except ProviderError as exc:
            self._lockout.record_failure(self._clock.now())
            self._state = self._settled_state(previous)
            error = classify_sign_in_error(exc)
            logger.warning("Failed sign-in for %s: %s", mask_email(email), error.kind.value)
            if self._lockout.is_locked(self._clock.now()):
                self._security_log.lockout(email, self._lockout.state.failed_attempts)
            return AuthResult.failure(error)
        except Exception as exc:
            logger.error("Sign in error: %s", exc)
            self._state = self._settled_state(previous)
            return AuthResult.failure(AuthError.unexpected())
        finally:
            self._in_flight.discard(_CREDENTIALS)

        if response.session is None:
            self._state = self._settled_state(previous)
            logger.error("Provider accepted sign-in for %s without a session", mask_email(email))
            return AuthResult.failure(AuthError.unexpected())

        self._complete_sign_in(response.session)
        logger.info("Sign-in success: %s", mask_email(email))
        return AuthResult(user=response.session.user)

    async def sign_up(self, email: str, password: str) -> AuthResult:
        """Register a new account. Password policy is checked before any network call."""
        if _CREDENTIALS in self._in_flight:
            return AuthResult.failure(AuthError.in_progress())

        email = normalize_email(email)
        if not is_valid_email(email):
            return AuthResult.failure(AuthError.validation(INVALID_EMAIL_MESSAGE))
        policy_error = check_password_policy(password)
        if policy_error:
            return AuthResult.failure(AuthError.validation(policy_error))

        self._in_flight.add(_CREDENTIALS)
        try:
            response = await self._provider.sign_up(
                email, password, redirect_url=f"{self._redirect_base}/auth/callback",
            )
        except ProviderError as exc:
            error = classify_sign_up_error(exc)
            logger.warning("Failed sign-up for %s: %s", mask_email(email), error.kind.value)
            return AuthResult.failure(error)
        except Exception as exc:
            logger.error("Sign up error: %s", exc)
            return AuthResult.failure(AuthError.unexpected())
        finally:
            self._in_flight.discard(_CREDENTIALS)

        if response.session is None:
            self._notices.notify(
                Severity.SUCCESS, "Confirm your email",
                "Please check your email and click the confirmation link to complete your registration.",
            )
            return AuthResult(user=response.user, confirmation_required=True)

        self._complete_sign_in(response.session)
        logger.info("Sign-up complete and signed in: %s", mask_email(email))
        return AuthResult(user=response.session.user)

    async def sign_out(self) -> AuthResult:
        """Sign out locally and on the provider. Lockout counters are kept."""
        await self._sign_out()
        self._notices.notify(Severity.SUCCESS, "Signed out", "Successfully signed out")
        return AuthResult()

    async def refresh(self) -> AuthResult:
        """Renew the session. Concurrent callers share one provider call."""
        if self._refresh_task is None or self._refresh_task.done():
            if self._session is None:
                return AuthResult.failure(
                    AuthError(AuthErrorKind.NETWORK_OR_PROVIDER, "No active session to refresh.")
                )
            self._refresh_task = asyncio.ensure_future(self._do_refresh())
        task = self._refresh_task
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # close() cancelled the shared task, not this caller
            if not task.cancelled():
                raise
            return AuthResult.failure(
                AuthError(AuthErrorKind.NETWORK_OR_PROVIDER, "Session refresh was cancelled.")
            )

    async def check(self) -> None:
        """Run one periodic check cycle against the current clock."""
        session = self._session
        if session is None:
            return
        remaining = (session.expires_at - self._clock.now()).total_seconds()

        if remaining <= 0:
            self._state = SessionState.EXPIRED
            await self._force_sign_out("Session expired", "Session expired. Please sign in again.")
        elif remaining <= self._timings.session_warning:
            self._state = SessionState.EXPIRING
            self._notices.notify(
                Severity.WARNING, "Session expiring",
                "Your session will expire soon. Activity detected - extending session.",
            )
            await self.refresh()
        elif remaining <= self._timings.refresh_threshold:
            await self.refresh()

    def record_activity(self) -> None:
        """Timestamp user activity. No-op unless signed in and not expired."""
        now = self._clock.now()
        if self._session is None or self._is_expired(now):
            return
        self._touch(now)

    async def reset_password(self, email: str) -> AuthResult:
        """Request a password recovery email."""
        email = normalize_email(email)
        try:
            await self._provider.reset_password_for_email(
                email, redirect_url=f"{self._redirect_base}/auth/reset-password",
            )
        except ProviderError as exc:
            return AuthResult.failure(AuthError(AuthErrorKind.NETWORK_OR_PROVIDER, exc.message))
        except Exception as exc:
            logger.error("Password reset error: %s", exc)
            return AuthResult.failure(
                AuthError(
                    AuthErrorKind.NETWORK_OR_PROVIDER,
                    "Failed to send password reset email. Please try again.",
                )
            )
        self._notices.notify(
            Severity.SUCCESS, "Password reset",
            "Password reset email sent. Please check your inbox.",
        )
        return AuthResult()

    async def update_password(self, password: str) -> AuthResult:
        """Change the signed-in user's password."""
        length_error = check_password_length(password)
        if length_error:
            return AuthResult.failure(AuthError.validation(length_error))
        if _PASSWORD in self._in_flight:
            return AuthResult.failure(AuthError.in_progress())

        self._in_flight.add(_PASSWORD)
        try:
            await self._provider.update_user_password(password)
        except ProviderError as exc:
            return AuthResult.failure(AuthError(AuthErrorKind.NETWORK_OR_PROVIDER, exc.message))
        except Exception as exc:
            logger.error("Password update error: %s", exc)
            return AuthResult.failure(
                AuthError(AuthErrorKind.NETWORK_OR_PROVIDER, "Failed to update password. Please try again.")
            )
        finally:
            self._in_flight.discard(_PASSWORD)

        self._notices.notify(Severity.SUCCESS, "Password updated", "Password updated successfully")
        return AuthResult(user=self.user)

    # -----------------------------------------------------------------
    # Provider events
    # -----------------------------------------------------------------

    def _on_auth_event(self, event: AuthEvent, session: Optional[ProviderSession]) -> None:
        logger.info("Auth state changed: %s", event.value)
        if event is AuthEvent.SIGNED_OUT:
            if self._session is not None or self._state is not SessionState.UNAUTHENTICATED:
                self._clear_local()
        elif event is AuthEvent.SIGNED_IN and session is not None:
            self._establish(session)
        elif event is AuthEvent.TOKEN_REFRESHED and session is not None and self._session is not None:
            self._establish(session)

    # -----------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------

    async def _do_refresh(self) -> AuthResult:
        generation = self._generation
        try:
            response = await self._provider.refresh_session()
            if response.session is None:
                raise ProviderError("Refresh returned no session")
        except ProviderError as exc:
            if generation != self._generation:
                return self._refresh_discarded()
            logger.error("Session refresh failed: %s", exc.message)
            await self._refresh_failed()
            return AuthResult.failure(AuthError(AuthErrorKind.NETWORK_OR_PROVIDER, exc.message))
        except Exception as exc:
            if generation != self._generation:
                return self._refresh_discarded()
            logger.error("Failed to refresh session: %s", exc)
            await self._refresh_failed()
            return AuthResult.failure(AuthError.unexpected())

        if generation != self._generation:
            return self._refresh_discarded()
        self._establish(response.session)
        logger.info("Session refreshed, expires %s", to_iso(self._session.expires_at))
        return AuthResult(user=response.session.user)

    @staticmethod
    def _refresh_discarded() -> AuthResult:
        logger.info("Session ended during refresh, discarding the result")
        return AuthResult.failure(
            AuthError(AuthErrorKind.NETWORK_OR_PROVIDER, "Session ended during refresh.")
        )

    async def _refresh_failed(self) -> None:
        if self._session is not None and self._is_expired(self._clock.now()):
            self._state = SessionState.EXPIRED
        await self._force_sign_out(
            "Session ended", "Your session could not be refreshed. Please sign in again.",
        )

    def _establish(self, provider_session: ProviderSession) -> None:
        """Adopt a provider session with a fresh expiry and persist it."""
        now = self._clock.now()
        expires_at = now + timedelta(seconds=self._timings.session_timeout)
        if self._session is not None and self._session.user.id == provider_session.user.id:
            self._session.provider_session = provider_session
            self._session.user = provider_session.user
            self._session.expires_at = expires_at
        else:
            self._generation += 1
            self._session = self._new_session(provider_session, now, expires_at)
        self._storage.store(SESSION_EXPIRY, to_iso(expires_at))
        self._state = SessionState.AUTHENTICATED
        self._touch(now, persist=True)
        self._start_checks()

    def _complete_sign_in(self, provider_session: ProviderSession) -> None:
        """Shared success path of sign-in and a sign-up that returns a session."""
        self._lockout.record_success()
        self._establish(provider_session)
        self._storage.store(
            USER_PREFERENCES,
            UserPreferences(email=provider_session.user.email, last_login=to_iso(self._clock.now()))
            .model_dump(by_alias=True),
        )
        self._notices.notify(Severity.SUCCESS, "Signed in", "Successfully signed in!")

    @staticmethod
    def _new_session(provider_session: ProviderSession, now: datetime, expires_at: datetime) -> ActiveSession:
        return ActiveSession(
            user=provider_session.user,
            provider_session=provider_session,
            issued_at=now,
            expires_at=expires_at,
        )

    def _touch(self, now: datetime, persist: bool = False) -> None:
        session = self._session
        if session is None:
            return
        session.last_activity_at = now
        last_write = self._activity_persisted_at
        if persist or last_write is None or now - last_write >= ACTIVITY_PERSIST_INTERVAL:
            self._storage.store(LAST_ACTIVITY, to_iso(now))
            self._activity_persisted_at = now

    def _is_expired(self, now: datetime) -> bool:
        return self._session is not None and now >= self._session.expires_at

    def _settled_state(self, previous: SessionState) -> SessionState:
        if self._session is not None:
            return SessionState.AUTHENTICATED
        return previous if previous is not SessionState.AUTHENTICATING else SessionState.UNAUTHENTICATED

    async def _force_sign_out(self, title: str, message: str) -> None:
        self._security_log.forced_sign_out(self.user.email if self.user else None, title)
        self._notices.notify(Severity.ERROR, title, message)
        await self._sign_out()

    async def _sign_out(self) -> None:
        self._clear_local()
        try:
            await self._provider.sign_out()
        except ProviderError as exc:
            logger.error("Sign out error: %s", exc.message)
        except Exception as exc:
            logger.error("Sign out error: %s", exc)

    def _clear_local(self) -> None:
        self._storage.clear_all()
        self._stop_checks()
        self._session = None
        self._generation += 1
        self._activity_persisted_at = None
        self._state = SessionState.UNAUTHENTICATED

    def _notify_locked(self, minutes: int) -> None:
        self._notices.notify(
            Severity.ERROR, "Account Locked",
            "Your account has been locked due to too many failed login attempts. "
            f"Please try again in {minutes} minutes.",
            dismissible=False,
        )

    def _start_checks(self) -> None:
        if not self._running:
            return
        if self._check_task is not None and not self._check_task.done():
            return
        self._check_task = asyncio.get_running_loop().create_task(self._check_loop())

    def _stop_checks(self) -> None:
        task, self._check_task = self._check_task, None
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        # The loop exits on its own when the stop comes from inside a check
        if task is not current:
            task.cancel()

    async def _check_loop(self) -> None:
        interval = self._timings.check_interval
        logger.debug("Session check loop started (interval: %ss)", interval)
        while self._running and self._session is not None:
            await asyncio.sleep(interval)
            try:
                await self.check()
            except Exception as exc:
                logger.error("Session check error: %s", exc)
        logger.debug("Session check loop stopped")
