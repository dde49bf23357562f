"""
User and role schemas.
"""

from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field, EmailStr, field_validator

from idara.models.user import UserStatus


class UserCreate(BaseModel):
    """
    Create (invite) a user.

    Without a password the user is created ``invited`` and activates on
    first SSO login; with a password the user is ``active`` immediately.
    """
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)
    password: Optional[str] = Field(default=None, max_length=128)
    person_id: Optional[str] = None
    role_ids: Optional[List[str]] = Field(default=None, description="Defaults to the org's default role")

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower().strip()


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    status: Optional[UserStatus] = None
    person_id: Optional[str] = None


class RoleSummary(BaseModel):
    id: str
    slug: str
    name: str
    color: Optional[str] = None


class UserResponse(BaseModel):
    id: str
    email: str
    name: str
    status: str
    person_id: Optional[str]
    entra_id: Optional[str]
    has_password: bool
    last_login_at: Optional[datetime]
    created_at: datetime
    roles: List[RoleSummary] = []


class RoleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: Optional[str] = Field(None, max_length=100, description="Derived from name when omitted")
    description: Optional[str] = None
    color: Optional[str] = Field(None, max_length=20)
    is_default: bool = False
    permissions: List[str] = Field(default_factory=list, description="Capabilities like 'assets.inventory.view'")


class RoleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    color: Optional[str] = Field(None, max_length=20)
    is_default: Optional[bool] = None


class RoleResponse(BaseModel):
    id: str
    slug: str
    name: str
    description: Optional[str]
    color: Optional[str]
    is_system: bool
    is_default: bool
    permissions: List[str]
    user_count: int = 0
    created_at: datetime


class RolePermissionsUpdate(BaseModel):
    permissions: List[str]


class UserRolesUpdate(BaseModel):
    role_ids: List[str]


class ModuleInfo(BaseModel):
    slug: str
    name: str
    actions: List[str]


def user_to_response(u, roles=None) -> UserResponse:
    """
    Convert User model to UserResponse.

    ``roles`` must be passed explicitly (loaded by the caller); the
    relationship is never lazy-loaded here.
    """
    return UserResponse(
        id=u.id,
        email=u.email,
        name=u.name,
        status=u.status.value,
        person_id=u.person_id,
        entra_id=u.entra_id,
        has_password=bool(u.password_hash),
        last_login_at=u.last_login_at,
        created_at=u.created_at,
        roles=[RoleSummary(id=r.id, slug=r.slug, name=r.name, color=r.color) for r in (roles or [])],
    )


def role_to_response(r, user_count: int = 0) -> RoleResponse:
    """Role must be loaded with its permissions."""
    return RoleResponse(
        id=r.id,
        slug=r.slug,
        name=r.name,
        description=r.description,
        color=r.color,
        is_system=r.is_system,
        is_default=r.is_default,
        permissions=sorted(r.permission_set()),
        user_count=user_count,
        created_at=r.created_at,
    )
