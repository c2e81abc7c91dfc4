"""Bearer token lookup for backend calls.

gridsync does not issue tokens. It looks one up, in order of precedence:
1. the ``token`` constructor parameter
2. the GRIDSYNC_AUTH_TOKEN environment variable (via settings)
3. a token previously saved to the OS keyring with :meth:`TokenProvider.save_token`
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import keyring
from keyring.errors import KeyringError, PasswordDeleteError
from loguru import logger

if TYPE_CHECKING:
    from gridsync.config import Settings

# Keyring service name for storing tokens
KEYRING_SERVICE = "gridsync"
KEYRING_USERNAME = "token"


@dataclass
class Token:
    """A bearer token with an optional expiry.

    Attributes:
        access_token: The token sent as ``Authorization: Bearer``.
        expires_at: Unix timestamp when the token expires, or None if unknown.
    """

    access_token: str
    expires_at: float | None = None

    def is_valid(self, buffer_seconds: int = 60) -> bool:
        """Check if token is still valid with a safety buffer."""
        if self.expires_at is None:
            return True
        return time.time() < self.expires_at - buffer_seconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "expires_at": self.expires_at,
            "token_type": "Bearer",
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Token:
        return cls(
            access_token=data["access_token"],
            expires_at=data.get("expires_at"),
        )


class TokenProvider:
    """Callable returning the current bearer token, or None when there is none.

    Args:
        token: Explicit token; takes precedence over everything else.
        settings: Settings supplying GRIDSYNC_AUTH_TOKEN.
        use_keyring: Whether to fall back to a token saved in the OS keyring.
    """

    def __init__(
        self,
        token: str | None = None,
        settings: Settings | None = None,
        use_keyring: bool = True,
    ) -> None:
        self._token = token or (settings.auth_token if settings else None)
        self._use_keyring = use_keyring

    def __call__(self) -> str | None:
        return self.get_token()

    def get_token(self) -> str | None:
        if self._token:
            return self._token
        if not self._use_keyring:
            return None
        cached = self._load_cached_token()
        return cached.access_token if cached else None

    def save_token(self, token: Token) -> None:
        """Save token securely to OS keyring."""
        keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, json.dumps(token.to_dict()))
        logger.info("Token saved to OS keyring")

    def clear_token(self) -> None:
        try:
            keyring.delete_password(KEYRING_SERVICE, KEYRING_USERNAME)
        except PasswordDeleteError:
            pass  # Nothing stored

    def _load_cached_token(self) -> Token | None:
        """Load cached token from OS keyring if it exists and is still valid."""
        try:
            token_json = keyring.get_password(KEYRING_SERVICE, KEYRING_USERNAME)
        except KeyringError as e:
            logger.warning("OS keyring unavailable: {}", e)
            return None
        if not token_json:
            return None

        try:
            token = Token.from_dict(json.loads(token_json))
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.warning("Invalid cached token: {}", e)
            return None

        if token.is_valid():
            return token
        logger.info("Cached token expired, a new one is required")
        return None
