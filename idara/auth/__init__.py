"""
Authentication and Authorization module.

Provides:
- JWT token generation and validation
- Password hashing (Argon2id)
- Role-based access control (capability strings per role)
- Audit logging for auth events
- Azure AD (Entra ID) single sign-on

FastAPI dependencies live in ``idara.auth.dependencies`` and are imported
from there directly; this package only re-exports the model-free helpers.
"""

from idara.auth.jwt import (
    create_access_token,
    create_refresh_token,
    verify_token,
    TokenPayload,
)
from idara.auth.password import (
    hash_password,
    verify_password,
    validate_password_strength,
)

__all__ = [
    # JWT
    "create_access_token",
    "create_refresh_token",
    "verify_token",
    "TokenPayload",
    # Password
    "hash_password",
    "verify_password",
    "validate_password_strength",
]
