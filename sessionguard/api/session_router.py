# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""Session API router: /api/v1/session/.

Thin HTTP surface over a SessionGuard for a local dashboard UI. Errors
are returned as {detail, kind, retry_after}; the UI only displays them.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter

from sessionguard.alerts.channels import InboxChannel
from sessionguard.auth.activity import ActivityEvent, LocalActivitySource
from sessionguard.auth.errors import AuthErrorKind
from sessionguard.auth.guard import SessionGuard
from sessionguard.auth.models import (
    ActivityRequest,
    AuthResult,
    CredentialsRequest,
    EmailRequest,
    ErrorResponse,
    OperationResponse,
    PasswordRequest,
    SessionStatus,
)

logger = logging.getLogger("sessionguard.api.session")

_STATUS_CODES: dict[AuthErrorKind, int] = {
    AuthErrorKind.LOCKED_OUT: 423,
    AuthErrorKind.INVALID_CREDENTIALS: 401,
    AuthErrorKind.EMAIL_NOT_CONFIRMED: 401,
    AuthErrorKind.VALIDATION: 422,
    AuthErrorKind.ALREADY_REGISTERED: 409,
    AuthErrorKind.OPERATION_IN_PROGRESS: 409,
    AuthErrorKind.NETWORK_OR_PROVIDER: 502,
}


def status_snapshot(guard: SessionGuard) -> SessionStatus:
    """Build the status payload a UI polls."""
    user = guard.user
    locked = guard.is_locked
    return SessionStatus(
        state=guard.state.value,
        is_authenticated=guard.is_authenticated,
        email=user.email if user else None,
        session_expiry=guard.session_expiry,
        last_activity=guard.last_activity,
        is_locked=locked,
        lockout_minutes_remaining=guard.lockout_minutes_remaining if locked else 0,
    )


def _respond(result: AuthResult, detail: str) -> JSONResponse | OperationResponse:
    if result.error is None:
        return OperationResponse(detail=detail, confirmation_required=result.confirmation_required)
    error = result.error
    content = ErrorResponse(detail=error.message, kind=error.kind.value, retry_after=error.retry_after)
    headers = {"Retry-After": str(error.retry_after)} if error.retry_after else None
    return JSONResponse(status_code=_STATUS_CODES[error.kind], content=content.model_dump(), headers=headers)


def create_session_router(
    guard: SessionGuard,
    inbox: InboxChannel,
    activity: LocalActivitySource,
    limiter: Limiter,
) -> APIRouter:
    """Build the session router bound to one guard instance."""
    router = APIRouter(prefix="/api/v1/session", tags=["session"])

    @router.get("/status", response_model=SessionStatus)
    async def get_status(request: Request):
        """Current session state, expiry and lockout status."""
        return status_snapshot(guard)

    @router.post("/sign-in")
    @limiter.limit("30/minute")
    async def sign_in(req: CredentialsRequest, request: Request):
        result = await guard.sign_in(req.email, req.password)
        return _respond(result, "Signed in")

    @router.post("/sign-up")
    @limiter.limit("10/minute")
    async def sign_up(req: CredentialsRequest, request: Request):
        result = await guard.sign_up(req.email, req.password)
        detail = "Confirmation email sent" if result.confirmation_required else "Signed up"
        return _respond(result, detail)

    @router.post("/sign-out")
    async def sign_out(request: Request):
        return _respond(await guard.sign_out(), "Signed out")

    @router.post("/refresh")
    async def refresh(request: Request):
        return _respond(await guard.refresh(), "Session refreshed")

    @router.post("/activity", response_model=SessionStatus)
    async def activity_event(req: ActivityRequest, request: Request):
        """Forward a UI interaction event to the activity monitor."""
        try:
            event = ActivityEvent(req.event)
        except ValueError:
            return JSONResponse(
                status_code=422,
                content=ErrorResponse(
                    detail=f"Unknown activity event: {req.event}",
                    kind=AuthErrorKind.VALIDATION.value,
                ).model_dump(),
            )
        activity.emit(event)
        return status_snapshot(guard)

    @router.post("/password/reset")
    @limiter.limit("5/minute")
    async def reset_password(req: EmailRequest, request: Request):
        return _respond(await guard.reset_password(req.email), "Password reset email sent")

    @router.post("/password/update")
    async def update_password(req: PasswordRequest, request: Request):
        if not guard.is_authenticated:
            return JSONResponse(status_code=401, content={"detail": "Not authenticated"})
        return _respond(await guard.update_password(req.password), "Password updated")

    @router.get("/notices")
    async def get_notices(request: Request):
        """Pending toasts for the UI. Reading them dismisses them."""
        return {"notices": [n.to_dict() for n in inbox.drain()]}

    return router
