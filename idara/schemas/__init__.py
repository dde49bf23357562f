"""
Pydantic schemas for API request/response validation.

These schemas provide:
- Input validation with security constraints
- Output serialization (``*_to_response`` helpers per model)
- OpenAPI documentation generation
"""

from idara.schemas.auth import (
    LoginRequest,
    LoginResponse,
    TokenRefreshRequest,
    TokenRefreshResponse,
    SetPasswordRequest,
)
from idara.schemas.common import (
    PaginatedResponse,
    SuccessResponse,
    ErrorResponse,
    HealthResponse,
)

__all__ = [
    # Auth
    "LoginRequest",
    "LoginResponse",
    "TokenRefreshRequest",
    "TokenRefreshResponse",
    "SetPasswordRequest",
    # Common
    "PaginatedResponse",
    "SuccessResponse",
    "ErrorResponse",
    "HealthResponse",
]
