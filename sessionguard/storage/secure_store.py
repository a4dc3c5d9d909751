# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""Secure storage adapter for small security-relevant values.

Values are JSON-serialised and encrypted with Fernet, so anything
modified at rest fails authentication and reads back as absent.
Writes are best-effort: a storage failure is logged and swallowed,
because the in-memory session stays authoritative while the process
is alive.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from cryptography.fernet import Fernet, InvalidToken

from sessionguard.core.logger import SecurityLog
from sessionguard.storage.backends import MemoryBackend, StorageBackend

logger = logging.getLogger("sessionguard.storage")

KEY_PREFIX = "secure_"

# Persisted keys used by the session guard
SESSION_EXPIRY = "sessionExpiry"
LAST_ACTIVITY = "lastActivity"
USER_PREFERENCES = "userPreferences"


class SecureStore:
    """Encrypted key/value store over a pluggable backend.

    The Fernet key comes from the caller (config or
    SESSIONGUARD_STORAGE_KEY). Without one a fresh key is generated,
    so values from a previous process cannot be read back.
    """

    def __init__(
        self,
        backend: Optional[StorageBackend] = None,
        key: str | bytes = "",
        security_log: Optional[SecurityLog] = None,
    ) -> None:
        self._backend: StorageBackend = backend if backend is not None else MemoryBackend()
        if isinstance(key, str):
            key = key.encode("utf-8")
        if not key:
            logger.info("No storage key configured, generating an ephemeral one")
            key = Fernet.generate_key()
        self._fernet = Fernet(key)
        self._security_log = security_log

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    def store(self, key: str, value: Any) -> None:
        """Encrypt and persist a JSON-serialisable value."""
        try:
            payload = json.dumps(value, ensure_ascii=False).encode("utf-8")
            token = self._fernet.encrypt(payload).decode("ascii")
            self._backend.set_item(KEY_PREFIX + key, token)
        except Exception as exc:
            logger.error("Failed to store secure value %r: %s", key, exc)

    def retrieve(self, key: str) -> Any:
        """Return the stored value, or None if missing, unreadable or tampered."""
        try:
            token = self._backend.get_item(KEY_PREFIX + key)
        except Exception as exc:
            logger.error("Failed to read secure value %r: %s", key, exc)
            return None
        if not token:
            return None
        try:
            payload = self._fernet.decrypt(token.encode("ascii"))
        except (InvalidToken, UnicodeEncodeError):
            logger.warning("Secure value %r failed integrity check, ignoring", key)
            if self._security_log:
                self._security_log.storage_tampered(key)
            return None
        try:
            return json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.error("Secure value %r is not valid JSON: %s", key, exc)
            return None

    def remove(self, key: str) -> None:
        try:
            self._backend.remove_item(KEY_PREFIX + key)
        except Exception as exc:
            logger.error("Failed to remove secure value %r: %s", key, exc)

    def clear_all(self) -> None:
        """Remove every value written by a SecureStore, leaving other keys alone."""
        try:
            keys = [k for k in self._backend.keys() if k.startswith(KEY_PREFIX)]
            for k in keys:
                self._backend.remove_item(k)
        except Exception as exc:
            logger.error("Failed to clear secure storage: %s", exc)
