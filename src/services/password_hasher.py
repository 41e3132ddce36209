"""Bcrypt password hashing."""

import bcrypt
import structlog

from src.services.exceptions import ValidationError

logger = structlog.get_logger(__name__)

DEFAULT_ROUNDS = 12
# bcrypt ignores (or rejects) input beyond this many bytes
MAX_PASSWORD_BYTES = 72


class PasswordHasher:
    """Salted one-way hashing and constant-time verification of passwords."""

    def __init__(self, rounds: int = DEFAULT_ROUNDS):
        self.rounds = rounds
        # Verified against when the account is unknown, so a failed login
        # costs one bcrypt check either way.
        self._dummy_hash = bcrypt.hashpw(b"not-a-real-password", bcrypt.gensalt(rounds=rounds))

    def hash(self, password: str) -> str:
        """Hash a password using bcrypt.

        Args:
            password: Plain-text password to hash

        Returns:
            Bcrypt hash string embedding salt and cost factor

        Raises:
            ValidationError: If the password is empty
        """
        if not password:
            raise ValidationError("Password cannot be empty.")
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValidationError("Password is too long.")

        salt = bcrypt.gensalt(rounds=self.rounds)
        hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
        return hashed.decode("utf-8")

    def verify(self, password: str, password_hash: str) -> bool:
        """Verify a password against a bcrypt hash.

        Never raises: a malformed hash or empty input verifies as False.
        """
        if not password or not password_hash:
            return False
        try:
            return bcrypt.checkpw(
                password.encode("utf-8"),
                password_hash.encode("utf-8"),
            )
        except ValueError as e:
            logger.warning("password_hash_malformed", error=str(e))
            return False

    def verify_dummy(self, password: str) -> bool:
        """Burn one bcrypt verification for an unknown account. Always False."""
        bcrypt.checkpw((password or "x").encode("utf-8")[:MAX_PASSWORD_BYTES], self._dummy_hash)
        return False

    def needs_rehash(self, password_hash: str) -> bool:
        """Check if a stored hash uses fewer rounds than currently configured."""
        parts = password_hash.split("$")
        if len(parts) < 4 or not parts[2].isdigit():
            return False
        return int(parts[2]) < self.rounds
