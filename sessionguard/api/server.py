# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""SessionGuard API server.

Wires configuration, storage, provider, notices and the session guard
together and exposes them to a local dashboard UI over HTTP.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from sessionguard.alerts.channels import InboxChannel, LogChannel
from sessionguard.alerts.manager import NoticeManager
from sessionguard.api.session_router import create_session_router
from sessionguard.auth.activity import ActivityMonitor, LocalActivitySource
from sessionguard.auth.guard import SessionGuard
from sessionguard.auth.lockout import LockoutTracker
from sessionguard.auth.memory_provider import InMemoryAuthProvider
from sessionguard.auth.provider import AuthProvider
from sessionguard.auth.supabase_provider import SupabaseAuthProvider
from sessionguard.core.clock import Clock
from sessionguard.core.config import GuardConfig
from sessionguard.core.logger import SecurityLog, configure_logging
from sessionguard.storage.backends import FileBackend, MemoryBackend, StorageBackend
from sessionguard.storage.secure_store import SecureStore

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

logger = logging.getLogger("sessionguard.api")


@dataclass
class GuardComponents:
    """Everything create_app wires together, exposed for embedding and tests."""

    config: GuardConfig
    guard: SessionGuard
    provider: AuthProvider
    storage: SecureStore
    notices: NoticeManager
    inbox: InboxChannel
    activity: LocalActivitySource
    monitor: ActivityMonitor


def build_provider(config: GuardConfig) -> AuthProvider:
    """Create the auth provider named by ``provider.kind``."""
    kind = config.get("provider.kind", "memory")
    if kind == "supabase":
        return SupabaseAuthProvider(config.supabase_url, config.supabase_anon_key)
    if kind == "memory":
        return InMemoryAuthProvider(
            require_email_confirmation=bool(config.get("provider.require_email_confirmation", False)),
        )
    raise ValueError(f"Invalid provider.kind: {kind!r} (expected memory/supabase)")


def build_components(
    config: GuardConfig,
    provider: Optional[AuthProvider] = None,
    clock: Optional[Clock] = None,
) -> GuardComponents:
    """Assemble a guard and its collaborators from configuration."""
    log_dir = config.get("sessionguard.log_dir")
    log_path = Path(log_dir) if log_dir else None
    configure_logging(config.get("sessionguard.log_level", "INFO"), log_path)
    security_log = SecurityLog(log_dir=log_path, clock=clock)

    backend: StorageBackend
    if config.get("storage.backend", "memory") == "file" and config.storage_path:
        backend = FileBackend(config.storage_path)
    else:
        backend = MemoryBackend()
    storage = SecureStore(backend=backend, key=config.storage_key, security_log=security_log)

    inbox = InboxChannel()
    notices = NoticeManager([LogChannel(), inbox])
    policy = config.lockout
    provider = provider or build_provider(config)

    guard = SessionGuard(
        provider=provider,
        storage=storage,
        clock=clock,
        lockout=LockoutTracker(policy.max_attempts, policy.lockout_duration),
        notices=notices,
        timings=config.timings,
        security_log=security_log,
        redirect_base_url=config.redirect_base_url,
    )
    activity = LocalActivitySource()
    monitor = ActivityMonitor(guard, activity)
    return GuardComponents(
        config=config,
        guard=guard,
        provider=provider,
        storage=storage,
        notices=notices,
        inbox=inbox,
        activity=activity,
        monitor=monitor,
    )


def create_app(
    config_path: str | Path = PROJECT_ROOT / "config" / "default.yaml",
    provider: Optional[AuthProvider] = None,
    clock: Optional[Clock] = None,
) -> FastAPI:
    """Create the FastAPI app. The guard runs for the lifetime of the app."""
    load_dotenv(PROJECT_ROOT / ".env")
    config = GuardConfig(config_path)
    components = build_components(config, provider=provider, clock=clock)
    limiter = Limiter(key_func=get_remote_address)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup: restore the session and attach activity tracking."""
        async with components.guard:
            components.monitor.attach()
            logger.info("SessionGuard started with provider %s", components.provider.name)
            yield
        logger.info("SessionGuard stopped")

    app = FastAPI(
        title="SessionGuard API",
        description="Client-side session lifecycle and authentication guard",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.limiter = limiter
    app.state.components = components
    app.include_router(
        create_session_router(components.guard, components.inbox, components.activity, limiter)
    )

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        logger.warning(
            "RATE LIMIT from %s on %s",
            request.client.host if request.client else "unknown",
            request.url.path,
        )
        return JSONResponse(
            status_code=429,
            content={"detail": "Rate limit exceeded. Try again later.", "retry_after": str(exc.detail)},
        )

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app
