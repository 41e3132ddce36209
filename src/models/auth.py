"""Auth request and response models."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class RegisterRequest(BaseModel):
    """New account registration.

    Attributes:
        name: Display name (max 100 chars)
        email: Email address (max 150 chars)
        password: Plain-text password
    """

    name: str = Field(default="", max_length=100)
    email: str = Field(default="", max_length=150)
    password: str = ""


class LoginRequest(BaseModel):
    """Login credentials."""

    email: str = ""
    password: str = ""


class EmailRequest(BaseModel):
    """A request that carries only an email address.

    Used for resending the confirmation email and for starting a password
    reset.
    """

    email: str = ""


class ResetPasswordRequest(BaseModel):
    """Completes a password reset.

    Attributes:
        token: Token from the reset link
        new_password: Replacement password
    """

    token: str = ""
    new_password: str = Field(default="", alias="newPassword")

    model_config = {"populate_by_name": True}


class UpdateAccountRequest(BaseModel):
    """Request to update the caller's own account.

    All fields are optional; only provided fields are updated. A changed
    email puts the account back into the unconfirmed state.
    """

    name: Optional[str] = Field(default=None, max_length=100)
    email: Optional[str] = Field(default=None, max_length=150)
    password: Optional[str] = None


class LoginResponse(BaseModel):
    """Successful authentication response.

    Attributes:
        token: Signed session token
        token_type: Always "bearer"
        expires_in: Token lifetime in seconds
    """

    token: str
    token_type: str = "bearer"
    expires_in: int = Field(ge=1, description="Token lifetime in seconds")


class MessageResponse(BaseModel):
    """Plain confirmation message."""

    message: str


class UserInfo(BaseModel):
    """Public view of an account."""

    id: UUID
    name: str
    email: str
    role: str
    email_confirmed: bool
    created_at: datetime


class UpdateAccountResponse(BaseModel):
    """Result of a profile update."""

    message: str
    confirmation_email_sent: bool
    user: UserInfo
