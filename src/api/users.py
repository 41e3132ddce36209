"""Endpoints for the authenticated caller's own account."""

from fastapi import APIRouter, Depends
import structlog

from src.api.auth import user_info
from src.api.dependencies import get_auth_workflow, get_caller_identity
from src.models.auth import (
    MessageResponse,
    UpdateAccountRequest,
    UpdateAccountResponse,
    UserInfo,
)
from src.models.user import CallerIdentity
from src.services.auth_workflow import AuthWorkflow

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/user", tags=["User"])


@router.get("/me")
async def get_me(
    identity: CallerIdentity = Depends(get_caller_identity),
    workflow: AuthWorkflow = Depends(get_auth_workflow),
) -> UserInfo:
    """Get the caller's account."""
    return user_info(await workflow.get_account(identity))


@router.put("/me")
async def update_me(
    request: UpdateAccountRequest,
    identity: CallerIdentity = Depends(get_caller_identity),
    workflow: AuthWorkflow = Depends(get_auth_workflow),
) -> UpdateAccountResponse:
    """Update the caller's name, email and/or password.

    Changing the email marks it unconfirmed and sends a confirmation link to
    the new address.

    Raises:
        400: Invalid input or email already in use
        401: Missing or invalid bearer token
        404: The account no longer exists
    """
    account, email_sent = await workflow.update_account(
        identity,
        name=request.name,
        email=request.email,
        password=request.password,
    )

    if email_sent:
        message = (
            f"A confirmation email was sent to {account.email}. "
            "If you don't see it, check your spam folder."
        )
    else:
        message = "User updated successfully."

    return UpdateAccountResponse(
        message=message,
        confirmation_email_sent=email_sent,
        user=user_info(account),
    )


@router.delete("/me")
async def delete_me(
    identity: CallerIdentity = Depends(get_caller_identity),
    workflow: AuthWorkflow = Depends(get_auth_workflow),
) -> MessageResponse:
    """Delete the caller's account."""
    await workflow.delete_account(identity)
    return MessageResponse(message="Account deleted successfully.")
