"""Per-plugin request authentication (HTTP Basic and static Bearer tokens).

Credentials are compared with ``hmac.compare_digest``; raw credentials are
never logged, only a truncated SHA-256.
"""
from __future__ import annotations
import base64
import binascii
import hashlib
import hmac
import logging
from typing import Optional, Protocol

from scimgate.config.settings import AuthConfig
from scimgate.core.errors import UnauthorizedError

logger = logging.getLogger(__name__)


class Authenticator(Protocol):
    scheme: str

    def authenticate(self, authorization: Optional[str]) -> None:
        """Raise UnauthorizedError unless the Authorization header is acceptable."""


def credential_fingerprint(secret: str) -> str:
    return hashlib.sha256(secret.encode()).hexdigest()[:12]


class BasicAuthenticator:
    scheme = "Basic"

    def __init__(self, username: str, password: str):
        self.username = username
        self.password = password

    def authenticate(self, authorization: Optional[str]) -> None:
        if not authorization:
            raise UnauthorizedError("Authorization header missing")
        if not authorization.startswith("Basic "):
            raise UnauthorizedError("Authorization header must use the Basic scheme")
        try:
            decoded = base64.b64decode(authorization[6:].strip(), validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            raise UnauthorizedError("Invalid Basic credentials encoding") from None
        username, sep, password = decoded.partition(":")
        if not sep:
            raise UnauthorizedError("Invalid Basic credentials format")

        # Both comparisons always run.
        user_ok = hmac.compare_digest(username.encode(), self.username.encode())
        password_ok = hmac.compare_digest(password.encode(), self.password.encode())
        if not (user_ok and password_ok):
            logger.info(f"❌ FAILED basic auth | user={username!r} | password_hash={credential_fingerprint(password)}")
            raise UnauthorizedError("Invalid credentials")


class BearerAuthenticator:
    scheme = "Bearer"

    def __init__(self, token: str):
        self.token = token

    def authenticate(self, authorization: Optional[str]) -> None:
        if not authorization:
            raise UnauthorizedError("Authorization header missing")
        if not authorization.startswith("Bearer "):
            raise UnauthorizedError("Authorization header must use the Bearer scheme")
        token = authorization[7:].strip()
        if not token:
            raise UnauthorizedError("Bearer token is empty")
        if not hmac.compare_digest(token.encode(), self.token.encode()):
            logger.info(f"❌ FAILED bearer auth | token_hash={credential_fingerprint(token)}")
            raise UnauthorizedError("Invalid token")


def build_authenticator(auth: Optional[AuthConfig]) -> Optional[Authenticator]:
    """Create the authenticator for a plugin; None means the plugin is open."""
    if auth is None or auth.type in ("", "none"):
        return None
    if auth.type == "basic":
        return BasicAuthenticator(auth.username, auth.password)
    if auth.type == "bearer":
        return BearerAuthenticator(auth.token)
    raise ValueError(f"Unknown auth type '{auth.type}'")
