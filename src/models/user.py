"""Account and caller identity models."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

DEFAULT_ROLE = "User"


class Account(BaseModel):
    """The authentication-relevant projection of a registered user."""

    id: UUID
    name: str
    email: str
    password_hash: str = Field(repr=False)
    role: str = DEFAULT_ROLE
    email_confirmed: bool = False
    email_confirmation_token: Optional[str] = Field(default=None, repr=False)
    email_token_expiration: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class CallerIdentity(BaseModel):
    """Identity of the caller, derived once from a validated bearer token.

    Passed explicitly to every operation that needs to know who is calling.
    """

    subject: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None

    @classmethod
    def from_claims(cls, claims: dict) -> "CallerIdentity":
        """Build an identity from decoded session-token claims."""
        return cls(
            subject=claims.get("sub"),
            name=claims.get("name"),
            email=claims.get("email"),
            role=claims.get("role"),
        )
