"""Authentication API endpoints.

Workflow errors (``AuthError``) are rendered by the exception handler in
``src.main``; these handlers only translate requests and results.
"""

from fastapi import APIRouter, Depends, Query, status
import structlog

from src.api.dependencies import get_auth_workflow, get_caller_identity
from src.models.auth import (
    EmailRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RegisterRequest,
    ResetPasswordRequest,
    UserInfo,
)
from src.models.user import Account, CallerIdentity
from src.services.auth_workflow import AuthWorkflow

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])


def user_info(account: Account) -> UserInfo:
    """Convert an Account to its public UserInfo view."""
    return UserInfo(
        id=account.id,
        name=account.name,
        email=account.email,
        role=account.role,
        email_confirmed=account.email_confirmed,
        created_at=account.created_at,
    )


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    workflow: AuthWorkflow = Depends(get_auth_workflow),
) -> MessageResponse:
    """Register a new account and send the confirmation email.

    Raises:
        400: Missing fields, invalid email, or email already registered
    """
    account = await workflow.register(request.name, request.email, request.password)
    return MessageResponse(
        message=(
            f"Registration successful. A confirmation email was sent to {account.email}. "
            "If you don't see it, check your spam folder."
        )
    )


@router.get("/confirm-email")
async def confirm_email(
    token: str = Query(default=""),
    workflow: AuthWorkflow = Depends(get_auth_workflow),
) -> MessageResponse:
    """Confirm an email address with the token from the confirmation link.

    Raises:
        404: Token is invalid, expired, or already used
    """
    await workflow.confirm_email(token)
    return MessageResponse(message="Email confirmed successfully.")


@router.post("/resend-confirmation-email")
async def resend_confirmation_email(
    request: EmailRequest,
    workflow: AuthWorkflow = Depends(get_auth_workflow),
) -> MessageResponse:
    """Send a fresh confirmation link; any earlier link stops working.

    Raises:
        400: Email already confirmed
        404: Unknown email
    """
    await workflow.resend_confirmation(request.email)
    return MessageResponse(
        message="A new confirmation email was sent. If you don't see it, check your spam folder."
    )


@router.post("/forgot-password")
async def forgot_password(
    request: EmailRequest,
    workflow: AuthWorkflow = Depends(get_auth_workflow),
) -> MessageResponse:
    """Send a password reset link.

    Raises:
        400: Invalid email
        404: Unknown email (unless masking is enabled)
    """
    await workflow.forgot_password(request.email)
    return MessageResponse(
        message="If an account exists for this email, a password reset link has been sent."
    )


@router.post("/reset-password")
async def reset_password(
    request: ResetPasswordRequest,
    workflow: AuthWorkflow = Depends(get_auth_workflow),
) -> MessageResponse:
    """Set a new password using the token from the reset link.

    Raises:
        400: Missing token or password
        404: Token invalid, expired or already used, or account not found
    """
    await workflow.reset_password(request.token, request.new_password)
    return MessageResponse(message="Password reset successfully.")


@router.post("/login")
async def login(
    request: LoginRequest,
    workflow: AuthWorkflow = Depends(get_auth_workflow),
) -> LoginResponse:
    """Login with email and password.

    Raises:
        401: Invalid credentials or email not confirmed
    """
    token = await workflow.login(request.email, request.password)
    return LoginResponse(
        token=token,
        token_type="bearer",
        expires_in=int(workflow.tokens.access_token_lifetime.total_seconds()),
    )


@router.get("/user-info")
async def get_user_info(
    identity: CallerIdentity = Depends(get_caller_identity),
    workflow: AuthWorkflow = Depends(get_auth_workflow),
) -> UserInfo:
    """Get the authenticated caller's account.

    Raises:
        401: Missing or invalid bearer token
        404: The account no longer exists
    """
    account = await workflow.get_account(identity)
    return user_info(account)
