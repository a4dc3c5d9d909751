# SPDX-License-Identifier: AGPL-3.0-only OR LicenseRef-Moltr-Commercial
# Copyright (C) 2026 Walter Troska / moltrHQ <hello@moltr.tech>
# See LICENSE (AGPL-3.0) or LICENSE-COMMERCIAL for licensing terms.

"""Signed tokens for the in-process auth provider.

Every provider instance owns a TokenMinter with its own HS256 secret, so
tokens from one provider are meaningless to another. Refresh tokens only
carry an id (``jti``); the provider decides which ids are still live.
"""

from __future__ import annotations

import secrets
import time
from typing import Any, Optional

import jwt

ALGORITHM = "HS256"
ACCESS_TOKEN_LIFETIME = 60 * 60  # provider-side, unrelated to the guard's session timeout


class TokenMinter:
    """Mints and reads the provider's access and refresh tokens."""

    def __init__(self, secret: Optional[str] = None, access_lifetime: int = ACCESS_TOKEN_LIFETIME) -> None:
        self._secret = secret or secrets.token_urlsafe(48)
        self.access_lifetime = access_lifetime

    def access_token(self, user_id: str, email: str) -> str:
        issued = int(time.time())
        return self._sign({
            "sub": user_id,
            "email": email,
            "iat": issued,
            "exp": issued + self.access_lifetime,
            "type": "access",
        })

    def refresh_token(self, user_id: str) -> tuple[str, str]:
        """Return ``(jti, token)`` for a new refresh token."""
        jti = secrets.token_urlsafe(32)
        return jti, self._sign({"sub": user_id, "jti": jti, "type": "refresh"})

    def refresh_token_id(self, token: str) -> Optional[str]:
        """The jti of a refresh token minted here, or None for anything else."""
        claims = self.claims(token, token_type="refresh")
        return claims.get("jti") if claims else None

    def claims(self, token: str, token_type: str = "access") -> Optional[dict[str, Any]]:
        """Decode a token of the given type. Refresh tokens never expire here."""
        try:
            payload = jwt.decode(
                token, self._secret, algorithms=[ALGORITHM],
                options={"verify_exp": token_type == "access"},
            )
        except jwt.InvalidTokenError:
            return None
        return payload if payload.get("type") == token_type else None

    def _sign(self, payload: dict[str, Any]) -> str:
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)
