"""
FastAPI dependencies for authentication and authorization.

Provides:
- get_current_user: Extract and validate user from JWT (header or cookie)
- require_permission: Dependency factory for ``module.action`` checks
- PermissionChecker: any-of capability checks
"""

from typing import Optional
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from jose import JWTError

from idara.core.database import get_db
from idara.auth.jwt import verify_token
from idara.auth.rbac import user_has_permission, get_user_capabilities
from idara.models.user import User

# HTTP Bearer token extractor
security = HTTPBearer(auto_error=False)

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Extract and validate the current user from JWT token.

    Looks for token in:
    1. Authorization: Bearer <token> header
    2. Cookie: access_token

    Raises:
        HTTPException 401: If token is missing or invalid
        HTTPException 401: If user not found, not active or locked
    """
    if credentials:
        token = credentials.credentials
    else:
        token = request.cookies.get(ACCESS_COOKIE)

    if not token:
        raise _unauthorized("Not authenticated")

    try:
        payload = verify_token(token, expected_type="access")
    except JWTError as e:
        raise _unauthorized(str(e))

    result = await db.execute(
        select(User).where(User.id == payload.sub, User.org_id == payload.org_id)
    )
    user = result.scalar_one_or_none()

    if not user:
        raise _unauthorized("User not found")

    if not user.is_active:
        raise _unauthorized("User account is not active")

    if user.is_locked():
        raise _unauthorized("User account is locked")

    return user


def require_permission(module: str, action: str):
    """
    Dependency to require a capability.

    Usage:
        @router.post("")
        async def create_asset(
            current_user: User = Depends(require_permission("assets.inventory", "create"))
        ):
            ...
    """
    async def permission_checker(
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ) -> User:
        if not await user_has_permission(db, current_user, module, action):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission '{module}.{action}' required",
            )
        return current_user

    return permission_checker


class PermissionChecker:
    """
    Class-based dependency passing when the user holds any of several capabilities.

    Usage:
        can_view = PermissionChecker(["docs.acknowledgments.view", "docs.rollouts.view"])
    """

    def __init__(self, capabilities: list[str]):
        self.capabilities = capabilities

    async def __call__(
        self,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ) -> User:
        granted = await get_user_capabilities(db, current_user)

        if not any(c in granted for c in self.capabilities):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires at least one permission from: {self.capabilities}",
            )

        return current_user


def get_client_ip(request: Request) -> str:
    """
    Extract client IP address from request.
    Handles X-Forwarded-For header for proxied requests.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # Take the first IP (original client)
        return forwarded.split(",")[0].strip()

    if request.client:
        return request.client.host

    return "unknown"


def get_user_agent(request: Request) -> str:
    """Extract user agent from request headers."""
    return request.headers.get("User-Agent", "unknown")[:500]
