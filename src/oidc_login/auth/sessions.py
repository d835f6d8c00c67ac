"""Session tokens marking a browser as logged in.

After a successful callback the hosting layer stores a signed JWT in a
cookie. Only the local user ID travels in the token; provider tokens are
never persisted.
"""

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt as pyjwt
from loguru import logger

from oidc_login.auth.users import Identity, UserRepository
from oidc_login.settings import SessionSettings


class SessionManager:
    """HMAC-signed session tokens for local users."""

    def __init__(self, session_settings: SessionSettings, repository: UserRepository):
        """Initialize session manager.

        Args:
            session_settings: Secret, algorithm, cookie name and lifetime
            repository: Used to load the identity behind a token
        """
        self.settings = session_settings
        self.repository = repository

    @property
    def cookie_name(self) -> str:
        return self.settings.cookie_name

    @property
    def max_age(self) -> int:
        return self.settings.expire_minutes * 60

    def create_token(self, identity: Identity, **extra_claims: Any) -> str:
        """Create a session token for ``identity``.

        Example:
            >>> token = manager.create_token(identity)
            >>> manager.load_identity(token).username
            'jdoe'
        """
        now = datetime.now(timezone.utc)
        payload = {
            "sub": identity.id,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(minutes=self.settings.expire_minutes)).timestamp()),
            **extra_claims,
        }
        return pyjwt.encode(payload, self.settings.secret, algorithm=self.settings.algorithm)

    def decode_token(self, token: str) -> dict[str, Any]:
        """Decode and verify a session token.

        Raises:
            jwt.ExpiredSignatureError: Token expired
            jwt.InvalidTokenError: Token invalid
        """
        return pyjwt.decode(
            token,
            self.settings.secret,
            algorithms=[self.settings.algorithm],
            options={"verify_exp": True},
        )

    def load_identity(self, token: str | None) -> Identity | None:
        """Identity for a session token, or None if missing/invalid/expired."""
        if not token:
            return None
        try:
            payload = self.decode_token(token)
        except pyjwt.InvalidTokenError as e:
            logger.debug(f"Ignoring invalid session token: {type(e).__name__}")
            return None
        user_id = payload.get("sub")
        if not isinstance(user_id, str):
            return None
        return self.repository.get(user_id)
