"""Account lifecycle: registration, email confirmation, login and password reset.

Account states are ``Unregistered -> PendingConfirmation -> Confirmed``.
Password reset runs alongside and never changes that state.

At most one action token (confirmation or reset) is outstanding per account;
it is stored in ``email_confirmation_token`` and every new request overwrites
it. Confirmation tokens are always matched against the stored value, so each
is usable once. Reset tokens are matched the same way while
``reset_token_single_use`` is on; with it off they are checked by signature,
purpose and expiry only and can be replayed until they expire.
"""

import asyncio
import functools
import hmac
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID, uuid4

import structlog

from src.config import Settings, get_settings
from src.models.user import DEFAULT_ROLE, Account, CallerIdentity
from src.services.account_directory import AccountDirectory
from src.services.email_validator_service import EmailValidator
from src.services.exceptions import (
    AuthError,
    ConflictError,
    DeliveryError,
    InternalError,
    InvalidTokenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from src.services.notifier import Notifier
from src.services.password_hasher import PasswordHasher
from src.services.token_service import (
    EMAIL_CONFIRMATION_CLAIM,
    PASSWORD_RESET_CLAIM,
    TokenService,
)

logger = structlog.get_logger(__name__)

DEFAULT_FRONTEND_BASE_URL = "http://localhost:5173"
CONFIRM_EMAIL_PATH = "/confirmar-email"
RESET_PASSWORD_PATH = "/redefinir-senha"

MAX_NAME_LENGTH = 100
MAX_EMAIL_LENGTH = 150

INVALID_CREDENTIALS = "Invalid email or password."


def workflow_operation(func):
    """Turn unexpected failures inside an operation into an opaque InternalError.

    ``AuthError`` subclasses propagate unchanged. Anything else is logged with
    its traceback and replaced, so no internal detail reaches the caller.
    """

    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except AuthError:
            raise
        except Exception as e:
            logger.exception("auth_operation_failed", operation=func.__name__, error=str(e))
            raise InternalError() from e

    return wrapper


class AuthWorkflow:
    """Orchestrates the account authentication lifecycle."""

    def __init__(
        self,
        directory: AccountDirectory,
        notifier: Notifier,
        tokens: Optional[TokenService] = None,
        hasher: Optional[PasswordHasher] = None,
        email_validator: Optional[EmailValidator] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.directory = directory
        self.notifier = notifier
        self.tokens = tokens or TokenService(self.settings)
        self.hasher = hasher or PasswordHasher(rounds=self.settings.bcrypt_rounds)
        self.email_validator = email_validator or EmailValidator(
            blocked_keywords=self.settings.blocked_keywords_list,
            check_deliverability=self.settings.email_check_deliverability,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _frontend_base_url(self) -> str:
        url = (self.settings.frontend_base_url or "").strip()
        if not url:
            logger.warning("frontend_base_url_not_set", fallback=DEFAULT_FRONTEND_BASE_URL)
            return DEFAULT_FRONTEND_BASE_URL
        return url.rstrip("/")

    def _check_password_policy(self, password: str) -> None:
        if len(password) < self.settings.password_min_length:
            raise ValidationError(
                f"Password must be at least {self.settings.password_min_length} characters."
            )

    async def _checked_email(self, email: str) -> str:
        """Validate format and domain; return the normalized address."""
        if len(email.strip()) > MAX_EMAIL_LENGTH:
            raise ValidationError(f"Email must be at most {MAX_EMAIL_LENGTH} characters.")
        if not self.email_validator.is_valid_format(email):
            raise ValidationError("Invalid email format.")
        if not await self.email_validator.has_acceptable_domain(email):
            logger.warning("email_domain_rejected", email=email)
            raise ValidationError(
                "The email domain is not accepted. Only real email addresses are allowed."
            )
        return self.email_validator.normalize(email)

    async def _hash(self, password: str) -> str:
        return await asyncio.to_thread(self.hasher.hash, password)

    def _with_action_token(
        self, account: Account, purpose: str, ttl: timedelta
    ) -> tuple[Account, str]:
        """Issue an action token and record it as the account's only outstanding one."""
        token = self.tokens.issue_action_token(account.email, purpose, ttl)
        updated = account.model_copy(
            update={
                "email_confirmation_token": token,
                "email_token_expiration": datetime.now(timezone.utc) + ttl,
            }
        )
        return updated, token

    @staticmethod
    def _token_expired(account: Account) -> bool:
        expiration = account.email_token_expiration
        return expiration is not None and expiration <= datetime.now(timezone.utc)

    async def _deliver(self, to_address: str, subject: str, body: str, kind: str) -> None:
        """Send a message, waiting at most ``notification_timeout_seconds``.

        Raises:
            DeliveryError: If the notifier reports failure or times out
        """
        timeout = self.settings.notification_timeout_seconds
        try:
            sent = await asyncio.wait_for(
                self.notifier.send(to_address, subject, body), timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.error("notification_timed_out", kind=kind, to=to_address, timeout_seconds=timeout)
            raise DeliveryError()

        if not sent:
            logger.error("notification_failed", kind=kind, to=to_address)
            raise DeliveryError()

        logger.info("notification_sent", kind=kind, to=to_address)

    async def _send_confirmation(self, account: Account, token: str) -> None:
        link = f"{self._frontend_base_url()}{CONFIRM_EMAIL_PATH}?token={token}"
        await self._deliver(
            account.email,
            "Email confirmation",
            f"Click the link to confirm your email address: {link}",
            kind="email_confirmation",
        )

    async def _send_reset(self, account: Account, token: str) -> None:
        link = f"{self._frontend_base_url()}{RESET_PASSWORD_PATH}?token={token}"
        minutes = self.settings.reset_token_ttl_minutes
        await self._deliver(
            account.email,
            "Password reset",
            f"Click the link to reset your password: {link}\n\n"
            f"The link expires in {minutes} minutes. "
            f"If you did not request a reset, you can ignore this email.",
            kind="password_reset",
        )

    async def _caller_account(self, identity: Optional[CallerIdentity]) -> Account:
        user_id = self.get_user_id(identity)
        if user_id is None:
            raise UnauthorizedError("Authorization failed. Token is missing or invalid.")
        account = await self.directory.find_by_id(user_id)
        if account is None:
            raise NotFoundError("User not found.")
        return account

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    @workflow_operation
    async def register(self, name: str, email: str, password: str) -> Account:
        """Create an account in the pending-confirmation state and mail its token.

        Args:
            name: Display name
            email: Email address (stored lowercased)
            password: Plain-text password

        Returns:
            The created account. No session token is granted until the email
            is confirmed.

        Raises:
            ValidationError: Missing fields, bad password or unacceptable email
            ConflictError: An account with this email already exists
            DeliveryError: The account was created but the email was not sent
        """
        if not (name or "").strip() or not (email or "").strip() or not password:
            raise ValidationError("Name, email and password are required.")
        if len(name.strip()) > MAX_NAME_LENGTH:
            raise ValidationError(f"Name must be at most {MAX_NAME_LENGTH} characters.")
        self._check_password_policy(password)
        normalized = await self._checked_email(email)

        password_hash = await self._hash(password)

        if await self.directory.find_by_email(normalized) is not None:
            logger.warning("registration_conflict", email=normalized)
            raise ConflictError("An account with this email already exists.")

        now = datetime.now(timezone.utc)
        account = Account(
            id=uuid4(),
            name=name.strip(),
            email=normalized,
            password_hash=password_hash,
            role=DEFAULT_ROLE,
            email_confirmed=False,
            created_at=now,
            updated_at=now,
        )
        account, token = self._with_action_token(
            account,
            EMAIL_CONFIRMATION_CLAIM,
            timedelta(minutes=self.settings.confirmation_token_ttl_minutes),
        )

        # The unique index is authoritative; create() raises ConflictError.
        account = await self.directory.create(account)
        await self.directory.commit()

        logger.info("user_registered", user_id=str(account.id), email=normalized)

        await self._send_confirmation(account, token)
        return account

    @workflow_operation
    async def confirm_email(self, token: str) -> Account:
        """Mark the account holding ``token`` as confirmed and consume the token.

        Raises:
            InvalidTokenError: Token is malformed, expired or not a confirmation token
            NotFoundError: No account holds this token (never issued or already used)
        """
        claims = self.tokens.validate_action_token(token, EMAIL_CONFIRMATION_CLAIM)

        account = await self.directory.find_by_confirmation_token(token, for_update=True)
        if account is None or account.email != claims["email"]:
            logger.warning("email_confirmation_token_not_found")
            raise NotFoundError("Invalid or already used confirmation token.")

        if self._token_expired(account):
            logger.info("email_confirmation_token_expired", user_id=str(account.id))
            raise InvalidTokenError("expired")

        confirmed = account.model_copy(
            update={
                "email_confirmed": True,
                "email_confirmation_token": None,
                "email_token_expiration": None,
            }
        )
        confirmed = await self.directory.update(confirmed)
        await self.directory.commit()

        logger.info("email_confirmed", user_id=str(account.id))
        return confirmed

    @workflow_operation
    async def resend_confirmation(self, email: str) -> None:
        """Issue and mail a fresh confirmation token, invalidating the previous one.

        Raises:
            NotFoundError: No account with this email
            ValidationError: The email is already confirmed
        """
        normalized = self.email_validator.normalize(email)
        if not normalized:
            raise ValidationError("Email is required.")

        account = await self.directory.find_by_email(normalized)
        if account is None:
            raise NotFoundError("User not found.")
        if account.email_confirmed:
            raise ValidationError("Email is already confirmed.")

        account, token = self._with_action_token(
            account,
            EMAIL_CONFIRMATION_CLAIM,
            timedelta(minutes=self.settings.confirmation_token_ttl_minutes),
        )
        account = await self.directory.update(account)
        await self.directory.commit()

        logger.info("email_confirmation_reissued", user_id=str(account.id))
        await self._send_confirmation(account, token)

    @workflow_operation
    async def login(self, email: str, password: str) -> str:
        """Verify credentials and issue a session token.

        Unknown email and wrong password fail identically.

        Returns:
            Signed session token

        Raises:
            ValidationError: Missing email or password
            UnauthorizedError: Bad credentials, or email not yet confirmed
        """
        normalized = self.email_validator.normalize(email)
        if not normalized or not password:
            raise ValidationError("Email and password are required.")

        account = await self.directory.find_by_email(normalized)
        if account is None:
            await asyncio.to_thread(self.hasher.verify_dummy, password)
            logger.warning("login_failed", reason="unknown_email", email=normalized)
            raise UnauthorizedError(INVALID_CREDENTIALS)

        if not await asyncio.to_thread(self.hasher.verify, password, account.password_hash):
            logger.warning("login_failed", reason="wrong_password", user_id=str(account.id))
            raise UnauthorizedError(INVALID_CREDENTIALS)

        if self.settings.require_confirmed_email and not account.email_confirmed:
            logger.warning("login_failed", reason="email_not_confirmed", user_id=str(account.id))
            raise UnauthorizedError("Email address has not been confirmed.")

        if self.hasher.needs_rehash(account.password_hash):
            account = account.model_copy(update={"password_hash": await self._hash(password)})
            account = await self.directory.update(account)
            await self.directory.commit()
            logger.info("password_rehashed", user_id=str(account.id))

        token = self.tokens.issue_auth_token(account)
        logger.info("user_logged_in", user_id=str(account.id))
        return token

    @workflow_operation
    async def forgot_password(self, email: str) -> None:
        """Mail a short-lived password reset link.

        Raises:
            ValidationError: Unacceptable email
            NotFoundError: No account with this email (unless masking is enabled)
        """
        if not (email or "").strip():
            raise ValidationError("Email is required.")
        normalized = await self._checked_email(email)

        account = await self.directory.find_by_email(normalized)
        if account is None:
            if self.settings.mask_unknown_email_on_forgot:
                logger.info("password_reset_unknown_email_masked")
                return
            raise NotFoundError("User not found.")

        ttl = timedelta(minutes=self.settings.reset_token_ttl_minutes)
        if self.settings.reset_token_single_use:
            account, token = self._with_action_token(account, PASSWORD_RESET_CLAIM, ttl)
            account = await self.directory.update(account)
            await self.directory.commit()
        else:
            token = self.tokens.issue_action_token(account.email, PASSWORD_RESET_CLAIM, ttl)

        logger.info("password_reset_requested", user_id=str(account.id))
        await self._send_reset(account, token)

    @workflow_operation
    async def reset_password(self, token: str, new_password: str) -> None:
        """Replace the password of the account named in a reset token.

        The old password is not required.

        Raises:
            ValidationError: Missing token or unacceptable new password
            InvalidTokenError: Token is malformed, expired or not a reset token
            NotFoundError: Unknown account, or the token was already used or
                superseded (single-use policy)
        """
        if not token or not new_password:
            raise ValidationError("Token and new password are required.")
        self._check_password_policy(new_password)

        claims = self.tokens.validate_action_token(token, PASSWORD_RESET_CLAIM)
        password_hash = await self._hash(new_password)

        account = await self.directory.find_by_email(claims["email"], for_update=True)
        if account is None:
            raise NotFoundError("User not found.")

        changes = {"password_hash": password_hash}
        if self.settings.reset_token_single_use:
            stored = account.email_confirmation_token
            if not stored or not hmac.compare_digest(stored, token):
                logger.warning("password_reset_token_not_current", user_id=str(account.id))
                raise NotFoundError("Invalid or already used reset token.")
            if self._token_expired(account):
                raise InvalidTokenError("expired")
            changes.update(email_confirmation_token=None, email_token_expiration=None)

        await self.directory.update(account.model_copy(update=changes))
        await self.directory.commit()

        logger.info("password_reset_completed", user_id=str(account.id))

    @staticmethod
    def get_user_id(identity: Optional[CallerIdentity]) -> Optional[UUID]:
        """Resolve the caller's account id from a validated identity.

        Returns None when the identity has no subject or it is not a UUID.
        """
        if identity is None or not identity.subject:
            return None
        try:
            return UUID(identity.subject)
        except ValueError:
            return None

    @workflow_operation
    async def get_account(self, identity: Optional[CallerIdentity]) -> Account:
        """Return the caller's own account."""
        return await self._caller_account(identity)

    @workflow_operation
    async def update_account(
        self,
        identity: Optional[CallerIdentity],
        name: Optional[str] = None,
        email: Optional[str] = None,
        password: Optional[str] = None,
    ) -> tuple[Account, bool]:
        """Update the caller's name, email and/or password.

        A new email address is stored unconfirmed and a confirmation link is
        mailed to it.

        Returns:
            Tuple of (updated account, whether a confirmation email was sent)
        """
        changes: dict = {}
        if name is not None:
            if not name.strip():
                raise ValidationError("Name cannot be empty.")
            if len(name.strip()) > MAX_NAME_LENGTH:
                raise ValidationError(f"Name must be at most {MAX_NAME_LENGTH} characters.")
            changes["name"] = name.strip()

        new_email = None
        if email is not None and email.strip():
            new_email = await self._checked_email(email)

        if password is not None and password.strip():
            self._check_password_policy(password)
            changes["password_hash"] = await self._hash(password)

        account = await self._caller_account(identity)

        email_changed = new_email is not None and new_email != account.email
        if email_changed:
            existing = await self.directory.find_by_email(new_email)
            if existing is not None and existing.id != account.id:
                logger.warning("email_change_conflict", user_id=str(account.id))
                raise ConflictError("An account with this email already exists.")
            changes.update(email=new_email, email_confirmed=False)

        updated = account.model_copy(update=changes)
        token = None
        if email_changed:
            updated, token = self._with_action_token(
                updated,
                EMAIL_CONFIRMATION_CLAIM,
                timedelta(minutes=self.settings.confirmation_token_ttl_minutes),
            )

        updated = await self.directory.update(updated)
        await self.directory.commit()
        logger.info("account_profile_updated", user_id=str(account.id), email_changed=email_changed)

        if token is not None:
            await self._send_confirmation(updated, token)
        return updated, email_changed

    @workflow_operation
    async def delete_account(self, identity: Optional[CallerIdentity]) -> None:
        """Delete the caller's own account."""
        user_id = self.get_user_id(identity)
        if user_id is None:
            raise UnauthorizedError("Authorization failed. Token is missing or invalid.")

        if not await self.directory.delete(user_id):
            raise NotFoundError("User not found.")
        await self.directory.commit()

        logger.info("account_closed", user_id=str(user_id))
