# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""SessionGuard configuration loader and manager.

Loads YAML configuration files and provides typed access
to session timing, lockout policy, storage and provider settings.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("sessionguard.config")

SESSION_TIMEOUT = 30 * 60  # 30 minutes
SESSION_WARNING = 5 * 60  # warn 5 minutes before expiry
REFRESH_THRESHOLD = 10 * 60  # refresh if expiry is within 10 minutes
CHECK_INTERVAL = 60  # periodic check every minute
MAX_ATTEMPTS = 5
LOCKOUT_DURATION = 15 * 60  # 15 minutes


@dataclass(frozen=True)
class SessionTimings:
    """Session lifecycle constants, all in seconds."""

    session_timeout: int = SESSION_TIMEOUT
    session_warning: int = SESSION_WARNING
    refresh_threshold: int = REFRESH_THRESHOLD
    check_interval: float = CHECK_INTERVAL


@dataclass(frozen=True)
class LockoutPolicy:
    """Failed sign-in policy."""

    max_attempts: int = MAX_ATTEMPTS
    lockout_duration: int = LOCKOUT_DURATION


class GuardConfig:
    """Central configuration manager for SessionGuard.

    Loads and validates configuration from a YAML file and
    provides typed access. A missing file yields the built-in defaults.
    """

    # Required top-level keys in config
    _REQUIRED_KEYS = {"sessionguard", "session", "lockout", "storage"}

    def __init__(self, config_path: str | Path = "config/default.yaml") -> None:
        """Load configuration from the given YAML file.

        Args:
            config_path: Path to the main configuration YAML.
        """
        self._config_path = Path(config_path)
        self._data: dict[str, Any] = {}
        self._load()

    def _load(self) -> None:
        """Load the YAML config file into _data."""
        if not self._config_path.exists():
            logger.warning("Config file not found: %s", self._config_path)
            return
        raw = self._config_path.read_text(encoding="utf-8")
        self._data = yaml.safe_load(raw) or {}

    def get(self, key: str, default: Any = None) -> Any:
        """Retrieve a configuration value by dotted key path.

        Args:
            key: Dotted key path (e.g. 'session.timeout_seconds').
            default: Fallback value if key is not found.

        Returns:
            The configuration value or the default.
        """
        parts = key.split(".")
        current: Any = self._data
        for part in parts:
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default
        return current

    @property
    def timings(self) -> SessionTimings:
        return SessionTimings(
            session_timeout=int(self.get("session.timeout_seconds", SESSION_TIMEOUT)),
            session_warning=int(self.get("session.warning_seconds", SESSION_WARNING)),
            refresh_threshold=int(self.get("session.refresh_threshold_seconds", REFRESH_THRESHOLD)),
            check_interval=float(self.get("session.check_interval_seconds", CHECK_INTERVAL)),
        )

    @property
    def lockout(self) -> LockoutPolicy:
        return LockoutPolicy(
            max_attempts=int(self.get("lockout.max_attempts", MAX_ATTEMPTS)),
            lockout_duration=int(self.get("lockout.duration_seconds", LOCKOUT_DURATION)),
        )

    @property
    def storage_key(self) -> str:
        """Fernet key for the secure store. Environment wins over the file."""
        return os.environ.get("SESSIONGUARD_STORAGE_KEY", "") or self.get("storage.key", "") or ""

    @property
    def storage_path(self) -> Path | None:
        raw = self.get("storage.path")
        return Path(raw).expanduser() if raw else None

    @property
    def supabase_url(self) -> str:
        return os.environ.get("SUPABASE_URL", "") or self.get("provider.supabase_url", "") or ""

    @property
    def supabase_anon_key(self) -> str:
        return os.environ.get("SUPABASE_ANON_KEY", "") or self.get("provider.anon_key", "") or ""

    @property
    def redirect_base_url(self) -> str:
        return self.get("provider.redirect_base_url", "http://localhost:8080")

    def reload(self) -> None:
        """Hot-reload configuration from disk.

        Validates the new config before applying. On validation failure,
        keeps the previous config and logs an error.
        """
        old_data = self._data.copy()
        self._load()
        try:
            self.validate()
            logger.info("Configuration reloaded from %s", self._config_path)
        except ValueError as e:
            logger.error("Config reload failed validation: %s, keeping previous config", e)
            self._data = old_data

    def validate(self) -> bool:
        """Validate the current configuration for completeness and consistency.

        Returns:
            True if configuration is valid.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self._data:
            raise ValueError("Configuration is empty or not loaded")

        missing = self._REQUIRED_KEYS - set(self._data.keys())
        if missing:
            raise ValueError(f"Missing required config sections: {', '.join(sorted(missing))}")

        log_level = self.get("sessionguard.log_level", "")
        if log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log_level: {log_level!r}")

        t = self.timings
        if min(t.session_timeout, t.session_warning, t.refresh_threshold, t.check_interval) <= 0:
            raise ValueError("Session timings must be positive")
        if not t.session_warning <= t.refresh_threshold < t.session_timeout:
            raise ValueError(
                "Expected warning <= refresh_threshold < timeout, got "
                f"{t.session_warning}/{t.refresh_threshold}/{t.session_timeout}"
            )

        policy = self.lockout
        if policy.max_attempts < 1 or policy.lockout_duration <= 0:
            raise ValueError("Lockout policy needs max_attempts >= 1 and a positive duration")

        backend = self.get("storage.backend", "memory")
        if backend not in ("memory", "file"):
            raise ValueError(f"Invalid storage.backend: {backend!r} (expected memory/file)")

        return True
