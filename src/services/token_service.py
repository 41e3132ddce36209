"""Signed token issuance and validation (HS256 JWT)."""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import structlog

from src.config import Settings, get_settings
from src.models.user import Account
from src.services.exceptions import InvalidTokenError

logger = structlog.get_logger(__name__)

# Constants
JWT_ALGORITHM = "HS256"
EMAIL_CONFIRMATION_CLAIM = "EmailConfirmation"
PASSWORD_RESET_CLAIM = "PasswordReset"


class TokenService:
    """Issues and validates session tokens and single-purpose action tokens.

    Session (auth) tokens carry the account identity; action tokens carry an
    email address plus a purpose marker and are embedded in confirmation and
    password-reset links. Both share the signing key, issuer and audience.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._key = self.settings.jwt_key
        self._issuer = self.settings.jwt_issuer

    @property
    def access_token_lifetime(self) -> timedelta:
        return timedelta(minutes=self.settings.access_token_expire_minutes)

    def _encode(self, claims: dict, ttl: timedelta) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            **claims,
            "iss": self._issuer,
            "aud": self._issuer,
            "jti": secrets.token_urlsafe(16),
            "iat": now,
            "exp": now + ttl,
        }
        return jwt.encode(payload, self._key, algorithm=JWT_ALGORITHM)

    def issue_auth_token(self, account: Account) -> str:
        """Create a signed session token for an authenticated account.

        Args:
            account: The account that just logged in

        Returns:
            Encoded JWT string
        """
        claims = {
            "sub": str(account.id),
            "name": account.name,
            "email": account.email,
        }
        if account.role:
            claims["role"] = account.role

        token = self._encode(claims, self.access_token_lifetime)
        logger.debug(
            "auth_token_issued",
            user_id=str(account.id),
            expires_minutes=self.settings.access_token_expire_minutes,
        )
        return token

    def issue_action_token(self, email: str, purpose: str, ttl: timedelta) -> str:
        """Create a short-lived token for a confirmation or reset link.

        Args:
            email: Address the link is sent to
            purpose: Purpose claim name, e.g. ``PasswordReset``
            ttl: Token lifetime

        Returns:
            Encoded JWT string
        """
        token = self._encode({"email": email, purpose: "true"}, ttl)
        logger.debug("action_token_issued", purpose=purpose, ttl_seconds=int(ttl.total_seconds()))
        return token

    def validate(self, token: str, require_lifetime: bool = True) -> dict:
        """Decode and validate a signed token.

        Args:
            token: Encoded JWT string
            require_lifetime: Whether to enforce the ``exp`` claim

        Returns:
            Decoded claims

        Raises:
            InvalidTokenError: If the token is expired, tampered or malformed
        """
        if not token or not isinstance(token, str):
            raise InvalidTokenError("malformed")

        try:
            return jwt.decode(
                token,
                self._key,
                algorithms=[JWT_ALGORITHM],
                audience=self._issuer,
                issuer=self._issuer,
                leeway=0,
                options={
                    "verify_exp": require_lifetime,
                    "require": ["exp", "iat", "iss", "aud"] if require_lifetime else ["iss", "aud"],
                },
            )
        except jwt.ExpiredSignatureError:
            logger.info("token_rejected", reason="expired")
            raise InvalidTokenError("expired")
        except jwt.InvalidTokenError as e:
            logger.info("token_rejected", reason="malformed", error=str(e))
            raise InvalidTokenError("malformed")

    def validate_action_token(self, token: str, purpose: str) -> dict:
        """Validate a token and require it to carry the given purpose claim.

        Raises:
            InvalidTokenError: If the token is invalid, expired, lacks an
                email claim, or was issued for a different purpose
        """
        claims = self.validate(token)
        if claims.get(purpose) != "true" or not claims.get("email"):
            logger.info("token_rejected", reason="wrong_purpose", expected=purpose)
            raise InvalidTokenError("malformed")
        return claims
