"""
Authentication-related schemas.
"""

from typing import Optional, Dict, List
from pydantic import BaseModel, Field, EmailStr, field_validator


class LoginRequest(BaseModel):
    """Login request with email and password."""

    email: EmailStr = Field(description="User email address")
    password: str = Field(min_length=1, max_length=128, description="User password")
    org: Optional[str] = Field(default=None, description="Organization slug (defaults to the only/first org)")

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower().strip()


class SessionUser(BaseModel):
    id: str
    email: str
    name: str
    org_id: str
    status: str
    person_id: Optional[str] = None
    roles: List[str] = []


class LoginResponse(BaseModel):
    """Login response with tokens."""

    access_token: str = Field(description="JWT access token")
    refresh_token: str = Field(description="JWT refresh token for token renewal")
    token_type: str = Field(default="bearer", description="Token type")
    expires_in: int = Field(description="Access token expiration in seconds")
    user: SessionUser


class TokenRefreshRequest(BaseModel):
    """Request to refresh access token (falls back to the refresh cookie)."""

    refresh_token: Optional[str] = Field(default=None, description="Current refresh token")


class TokenRefreshResponse(BaseModel):
    """Response with new access token."""

    access_token: str = Field(description="New JWT access token")
    token_type: str = Field(default="bearer")
    expires_in: int = Field(description="Access token expiration in seconds")


class SetPasswordRequest(BaseModel):
    """
    Set or change the current user's password.

    ``current_password`` is required when the account already has one.
    Strength rules are enforced in the route so the caller gets every
    violation at once.
    """

    current_password: Optional[str] = Field(default=None, max_length=128)
    new_password: str = Field(min_length=1, max_length=128)


class OrganizationSummary(BaseModel):
    id: str
    name: str
    slug: str
    app_name: Optional[str] = None
    logo_url: Optional[str] = None
    timezone: str
    date_format: str


class MeResponse(BaseModel):
    user: SessionUser
    organization: OrganizationSummary
    permissions: Dict[str, Dict[str, bool]]


class SSOConfigResponse(BaseModel):
    sso_enabled: bool = False
    password_auth_disabled: bool = False
    provider: Optional[str] = None
