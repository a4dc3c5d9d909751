# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""Logging setup and the session security log.

configure_logging() installs the handlers for the ``sessionguard``
logger tree once per process. SecurityLog writes session security
events (blocked sign-ins, lockouts, forced sign-outs, tampered storage)
as one JSON object per line to ``sessionguard.security`` and, when a
log directory is given, to ``security_events.jsonl``. Emails are
masked and secrets redacted before anything is written.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from sessionguard.core.clock import Clock, SystemClock, to_iso

ROOT_LOGGER = "sessionguard"
SECURITY_LOGGER = "sessionguard.security"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
REDACTED = "[REDACTED]"

# Token-shaped values, redacted wherever they appear
_TOKEN_SHAPES = re.compile(
    r"(?:eyJ[A-Za-z0-9_\-]{20,}(?:\.[A-Za-z0-9_\-]+){0,2})"  # JWTs
    r"|(?:sb_(?:publishable|secret)_[A-Za-z0-9_\-]{16,})"    # Supabase API keys
    r"|(?:gAAAAA[A-Za-z0-9_\-=]{40,})"                       # Fernet tokens
)

_SECRET_FIELDS = frozenset({
    "password", "access_token", "refresh_token", "token", "authorization",
    "apikey", "anon_key", "storage_key", "secret",
})

_SEVERITY_LEVELS = {
    "low": logging.INFO,
    "medium": logging.WARNING,
    "high": logging.ERROR,
    "critical": logging.CRITICAL,
}


def mask_email(email: Optional[str]) -> str:
    """Pseudonymise an email for logs: first character and domain."""
    local, sep, domain = (email or "").partition("@")
    if not sep or not local:
        return "***"
    return f"{local[0]}***@{domain}"


def redact(field: str, value: Any) -> Any:
    """Scrub secrets from a field value, descending into dicts and lists."""
    if field.lower() in _SECRET_FIELDS and value not in (None, ""):
        return REDACTED
    if isinstance(value, str):
        return _TOKEN_SHAPES.sub(REDACTED, value)
    if isinstance(value, dict):
        return {k: redact(str(k), v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact(field, v) for v in value]
    return value


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB
    backup_count: int = 5,
) -> logging.Logger:
    """Attach console (and optional rotating file) handlers to ``sessionguard``.

    Calling it again only updates the level; handlers are added once.
    """
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if root.handlers:
        return root

    fmt = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    console = logging.StreamHandler()
    console.setFormatter(fmt)
    root.addHandler(console)

    if log_dir:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / "sessionguard.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(fmt)
        root.addHandler(file_handler)
    return root


class SecurityLog:
    """JSON-lines log of session security events.

    Each helper takes the raw email; masking happens here so callers
    cannot leak an address by forgetting to.
    """

    def __init__(
        self,
        log_dir: Optional[Path] = None,
        clock: Optional[Clock] = None,
        component: str = "guard",
        max_bytes: int = 10 * 1024 * 1024,
        backup_count: int = 5,
    ) -> None:
        self._component = component
        self._clock = clock or SystemClock()
        self._logger = logging.getLogger(SECURITY_LOGGER)
        self._sink: Optional[RotatingFileHandler] = None
        if log_dir:
            log_dir = Path(log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)
            self._sink = RotatingFileHandler(
                log_dir / "security_events.jsonl",
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
            self._sink.setFormatter(logging.Formatter("%(message)s"))

    def sign_in_blocked(self, email: str, minutes_remaining: int) -> dict[str, Any]:
        return self.event(
            "sign_in_blocked", "medium",
            email=mask_email(email), minutes_remaining=minutes_remaining,
        )

    def lockout(self, email: str, failed_attempts: int) -> dict[str, Any]:
        return self.event("lockout", "high", email=mask_email(email), failed_attempts=failed_attempts)

    def forced_sign_out(self, email: Optional[str], reason: str) -> dict[str, Any]:
        return self.event(
            "forced_sign_out", "medium",
            email=mask_email(email) if email else None, reason=reason,
        )

    def storage_tampered(self, key: str) -> dict[str, Any]:
        return self.event("storage_tampered", "medium", key=key)

    def event(self, event_type: str, severity: str, **fields: Any) -> dict[str, Any]:
        """Write one security event and return the record that was written."""
        record = {
            "event_id": str(uuid.uuid4()),
            "timestamp": to_iso(self._clock.now()),
            "component": self._component,
            "event_type": event_type,
            "severity": severity.upper(),
            **{k: redact(k, v) for k, v in fields.items()},
        }
        level = _SEVERITY_LEVELS.get(severity.lower(), logging.WARNING)
        line = json.dumps(record, ensure_ascii=False, default=str)
        self._logger.log(level, line)
        if self._sink is not None:
            self._sink.emit(logging.makeLogRecord({
                "name": SECURITY_LOGGER,
                "levelno": level,
                "levelname": logging.getLevelName(level),
                "msg": line,
            }))
        return record

    def close(self) -> None:
        if self._sink is not None:
            self._sink.close()
            self._sink = None
