"""Models package exports."""

from src.models.auth import (
    EmailRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RegisterRequest,
    ResetPasswordRequest,
    UpdateAccountRequest,
    UpdateAccountResponse,
    UserInfo,
)
from src.models.user import Account, CallerIdentity

__all__ = [
    "Account",
    "CallerIdentity",
    "EmailRequest",
    "LoginRequest",
    "LoginResponse",
    "MessageResponse",
    "RegisterRequest",
    "ResetPasswordRequest",
    "UpdateAccountRequest",
    "UpdateAccountResponse",
    "UserInfo",
]
