"""FastAPI dependencies for authentication and workflow wiring."""

from functools import lru_cache
from typing import AsyncIterator, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import structlog

from src.config import get_settings
from src.database import get_pool
from src.models.user import CallerIdentity
from src.services.account_directory import AccountDirectory, PostgresAccountDirectory
from src.services.auth_workflow import AuthWorkflow
from src.services.email_validator_service import EmailValidator
from src.services.exceptions import InvalidTokenError, UnauthorizedError
from src.services.notifier import Notifier, SmtpNotifier
from src.services.password_hasher import PasswordHasher
from src.services.token_service import TokenService

logger = structlog.get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

AUTHORIZATION_FAILED = "Authorization failed. Token is missing or invalid."


@lru_cache
def get_token_service() -> TokenService:
    """Get the process-wide token service (key material is read once)."""
    return TokenService(get_settings())


@lru_cache
def get_password_hasher() -> PasswordHasher:
    return PasswordHasher(rounds=get_settings().bcrypt_rounds)


@lru_cache
def get_email_validator() -> EmailValidator:
    settings = get_settings()
    return EmailValidator(
        blocked_keywords=settings.blocked_keywords_list,
        check_deliverability=settings.email_check_deliverability,
    )


def get_notifier() -> Notifier:
    return SmtpNotifier(get_settings())


async def get_account_directory() -> AsyncIterator[AccountDirectory]:
    """Open a per-request unit of work; uncommitted writes are rolled back."""
    pool = await get_pool()
    directory = PostgresAccountDirectory(pool)
    try:
        yield directory
    finally:
        await directory.close()


def get_auth_workflow(
    directory: AccountDirectory = Depends(get_account_directory),
    notifier: Notifier = Depends(get_notifier),
    tokens: TokenService = Depends(get_token_service),
    hasher: PasswordHasher = Depends(get_password_hasher),
    email_validator: EmailValidator = Depends(get_email_validator),
) -> AuthWorkflow:
    return AuthWorkflow(
        directory=directory,
        notifier=notifier,
        tokens=tokens,
        hasher=hasher,
        email_validator=email_validator,
        settings=get_settings(),
    )


async def get_caller_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    tokens: TokenService = Depends(get_token_service),
) -> CallerIdentity:
    """Validate the Bearer token and derive the caller's identity.

    Args:
        credentials: Bearer token from Authorization header

    Returns:
        CallerIdentity built from the token's claims

    Raises:
        UnauthorizedError: If the token is missing, invalid, expired, or is
            not a session token (rendered as 401 with WWW-Authenticate, plus
            Token-Expired when the lifetime ran out)
    """
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError(AUTHORIZATION_FAILED)

    try:
        claims = tokens.validate(credentials.credentials)
    except InvalidTokenError as e:
        raise UnauthorizedError(AUTHORIZATION_FAILED, expired=e.expired)

    if not claims.get("sub"):
        logger.warning("bearer_token_without_subject")
        raise UnauthorizedError(AUTHORIZATION_FAILED)

    return CallerIdentity.from_claims(claims)
