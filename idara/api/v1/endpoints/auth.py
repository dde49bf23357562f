"""
Authentication endpoints.

Provides:
- Login (email/password → JWT tokens + HttpOnly cookies)
- Token refresh
- Logout
- Current user profile and permission map
- Password set/change
- Azure AD (Entra ID) single sign-on
"""

import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, status, Request, Response, Query
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from jose import JWTError

from idara.core.config import COOKIE_SECURE, COOKIE_DOMAIN
from idara.core.database import get_db
from idara.core.security import decrypt_secret
from idara.models.organization import Organization
from idara.models.user import User, UserStatus
from idara.models.audit import AuditAction
from idara.auth.jwt import (
    create_access_token,
    create_refresh_token,
    verify_token,
    ACCESS_TOKEN_EXPIRE_MINUTES,
    REFRESH_TOKEN_EXPIRE_DAYS,
)
from idara.auth.password import needs_rehash, validate_password_strength
from idara.auth.dependencies import get_current_user, ACCESS_COOKIE, REFRESH_COOKIE
from idara.auth.audit import log_action
from idara.auth.rbac import get_user_roles, get_user_capabilities, permission_map
from idara.auth.azure_ad import (
    CALLBACK_PATH,
    app_base_url,
    safe_return_path,
    encode_state,
    decode_state,
    build_authorize_url,
    resolve_organization,
    get_entra_integration,
)
from idara.services import graph
from idara.schemas.auth import (
    LoginRequest,
    LoginResponse,
    SessionUser,
    TokenRefreshRequest,
    TokenRefreshResponse,
    SetPasswordRequest,
    MeResponse,
    OrganizationSummary,
    SSOConfigResponse,
)
from idara.schemas.common import SuccessResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def set_session_cookies(response: Response, access_token: str, refresh_token: str) -> None:
    """HttpOnly session cookies shared by password and SSO login."""
    response.set_cookie(
        key=ACCESS_COOKIE,
        value=access_token,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="lax",
        domain=COOKIE_DOMAIN,
        max_age=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )
    response.set_cookie(
        key=REFRESH_COOKIE,
        value=refresh_token,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="lax",
        domain=COOKIE_DOMAIN,
        max_age=REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
    )


def issue_tokens(user: User) -> tuple[str, str]:
    return (
        create_access_token(user_id=user.id, email=user.email, org_id=user.org_id),
        create_refresh_token(user_id=user.id, email=user.email, org_id=user.org_id),
    )


async def session_user(db: AsyncSession, user: User) -> SessionUser:
    roles = await get_user_roles(db, user.id)
    return SessionUser(
        id=user.id,
        email=user.email,
        name=user.name,
        org_id=user.org_id,
        status=user.status.value,
        person_id=user.person_id,
        roles=[r.slug for r in roles],
    )


@router.post("/login", response_model=LoginResponse)
async def login(
    request: Request,
    login_data: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """
    Authenticate with email and password.

    Sets ``access_token`` and ``refresh_token`` HttpOnly cookies and also
    returns both tokens for non-browser clients.
    """
    org = await resolve_organization(db, login_data.org)
    if not org:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    integration = await get_entra_integration(db, org.id)
    if integration and integration.password_auth_disabled:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Password login is disabled for this organization. Sign in with Microsoft.",
        )

    result = await db.execute(
        select(User).where(User.org_id == org.id, User.email == login_data.email)
    )
    user = result.scalar_one_or_none()

    # Check if user exists and password matches
    if not user or not user.verify_password(login_data.password):
        if user:
            user.record_failed_login()
            await log_action(
                db, request, user, AuditAction.LOGIN_FAILURE,
                module="auth",
                details={"reason": "invalid_password"},
                success=False,
                error_message="Invalid email or password",
            )
            await db.commit()

        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    if user.is_locked():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account is locked. Try again later.",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account is not active",
        )

    # Upgrade the hash when Argon2 parameters changed
    if needs_rehash(user.password_hash):
        user.set_password(login_data.password)

    user.record_successful_login()
    access_token, refresh_token = issue_tokens(user)

    await log_action(db, request, user, AuditAction.LOGIN_SUCCESS, module="auth")
    await db.commit()

    set_session_cookies(response, access_token, refresh_token)

    return LoginResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=await session_user(db, user),
    )


@router.post("/refresh", response_model=TokenRefreshResponse)
async def refresh_token(
    request: Request,
    response: Response,
    token_data: Optional[TokenRefreshRequest] = None,
    db: AsyncSession = Depends(get_db),
):
    """
    Refresh access token using refresh token.

    Accepts refresh token from:
    1. Request body (preferred for SPAs)
    2. HttpOnly cookie (for web apps)
    """
    refresh = None
    if token_data and token_data.refresh_token:
        refresh = token_data.refresh_token
    else:
        refresh = request.cookies.get(REFRESH_COOKIE)

    if not refresh:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token required",
        )

    try:
        payload = verify_token(refresh, expected_type="refresh")
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid refresh token: {e}",
        )

    result = await db.execute(
        select(User).where(User.id == payload.sub, User.org_id == payload.org_id)
    )
    user = result.scalar_one_or_none()

    if not user or not user.is_active or user.is_locked():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )

    access_token = create_access_token(user_id=user.id, email=user.email, org_id=user.org_id)
    response.set_cookie(
        key=ACCESS_COOKIE,
        value=access_token,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="lax",
        domain=COOKIE_DOMAIN,
        max_age=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )

    return TokenRefreshResponse(
        access_token=access_token,
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


@router.post("/logout", response_model=SuccessResponse)
async def logout(
    request: Request,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Logout by clearing cookies.

    JWTs stay valid until they expire; clients should discard them.
    """
    response.delete_cookie(ACCESS_COOKIE, domain=COOKIE_DOMAIN)
    response.delete_cookie(REFRESH_COOKIE, domain=COOKIE_DOMAIN)

    await log_action(db, request, current_user, AuditAction.LOGOUT, module="auth")
    await db.commit()

    return SuccessResponse(message="Successfully logged out")


@router.get("/me", response_model=MeResponse)
async def get_current_user_info(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Current user's profile, organization and permission map."""
    org = await db.get(Organization, current_user.org_id)
    capabilities = await get_user_capabilities(db, current_user)

    return MeResponse(
        user=await session_user(db, current_user),
        organization=OrganizationSummary(
            id=org.id,
            name=org.name,
            slug=org.slug,
            app_name=org.app_name,
            logo_url=org.logo_url,
            timezone=org.timezone,
            date_format=org.date_format,
        ),
        permissions=permission_map(capabilities),
    )


@router.post("/set-password", response_model=SuccessResponse)
async def set_password(
    request: Request,
    password_data: SetPasswordRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Set or change the current user's password."""
    if current_user.password_hash:
        if not password_data.current_password or not current_user.verify_password(password_data.current_password):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Current password is incorrect",
            )

    issues = validate_password_strength(password_data.new_password)
    if issues:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="; ".join(issues),
        )

    current_user.set_password(password_data.new_password)

    await log_action(db, request, current_user, AuditAction.PASSWORD_CHANGE, module="auth")
    await db.commit()

    return SuccessResponse(message="Password changed successfully")


@router.get("/sso-config", response_model=SSOConfigResponse)
async def sso_config(
    org: Optional[str] = Query(None, description="Organization slug"),
    db: AsyncSession = Depends(get_db),
):
    """Public: which login methods an organization offers."""
    organization = await resolve_organization(db, org)
    if not organization:
        return SSOConfigResponse()

    integration = await get_entra_integration(db, organization.id)
    if not integration:
        return SSOConfigResponse()

    enabled = integration.sso_enabled and integration.has_credentials
    return SSOConfigResponse(
        sso_enabled=enabled,
        password_auth_disabled=integration.password_auth_disabled,
        provider="azure-ad" if enabled else None,
    )


def _login_error(request: Request, message: str) -> RedirectResponse:
    return RedirectResponse(
        f"{app_base_url(request)}/login?error={quote(message)}",
        status_code=status.HTTP_302_FOUND,
    )


@router.get("/login/azure-ad")
async def login_azure_ad(
    request: Request,
    return_to: Optional[str] = Query(None, alias="returnTo"),
    org: Optional[str] = Query(None, description="Organization slug"),
    db: AsyncSession = Depends(get_db),
):
    """Start the Microsoft authorization-code flow."""
    organization = await resolve_organization(db, org)
    integration = await get_entra_integration(db, organization.id) if organization else None

    if not integration or not integration.sso_enabled or not integration.has_credentials:
        return _login_error(request, "SSO is not enabled")

    state = encode_state(safe_return_path(return_to), organization.slug)
    redirect_uri = f"{app_base_url(request)}{CALLBACK_PATH}"
    return RedirectResponse(
        build_authorize_url(integration, redirect_uri, state),
        status_code=status.HTTP_302_FOUND,
    )


@router.get("/callback/azure-ad")
async def callback_azure_ad(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    """
    Finish the Microsoft sign-in.

    Every outcome is a redirect: back to ``returnTo`` with session cookies,
    to ``/registration-incomplete`` for unknown users, or to ``/login`` with
    an error message.
    """
    if error:
        return _login_error(request, error_description or error)
    if not code:
        return _login_error(request, "No authorization code received")

    state_data = decode_state(state)
    return_to = safe_return_path(state_data.get("returnTo"))

    try:
        organization = await resolve_organization(db, state_data.get("org"))
        integration = await get_entra_integration(db, organization.id) if organization else None
        if not integration or not integration.sso_enabled or not integration.has_credentials:
            return _login_error(request, "SSO is not enabled")

        tokens = await graph.exchange_auth_code(
            integration.tenant_id,
            integration.client_id,
            decrypt_secret(integration.client_secret_encrypted),
            code,
            f"{app_base_url(request)}{CALLBACK_PATH}",
        )
        profile = await graph.get_me(tokens["access_token"])

        email = (profile.get("mail") or profile.get("userPrincipalName") or "").lower()
        if not email:
            return _login_error(request, "No email address on the Microsoft account")

        result = await db.execute(
            select(User).where(User.org_id == organization.id, User.email == email)
        )
        user = result.scalar_one_or_none()

        if not user:
            return RedirectResponse(
                f"{app_base_url(request)}/registration-incomplete?email={quote(email)}",
                status_code=status.HTTP_302_FOUND,
            )
        if user.status == UserStatus.SUSPENDED:
            return _login_error(request, "Your account has been suspended")
        if user.status == UserStatus.DEACTIVATED:
            return _login_error(request, "Your account has been deactivated")

        if user.status == UserStatus.INVITED:
            user.status = UserStatus.ACTIVE
        user.entra_id = profile.get("id") or user.entra_id
        user.record_successful_login()
        access_token, refresh_token = issue_tokens(user)

        await log_action(
            db, request, user, AuditAction.SSO_LOGIN,
            module="auth",
            details={"provider": "azure-ad"},
        )
        await db.commit()
    except (graph.GraphAPIError, ValueError, KeyError) as e:
        logger.warning("Azure AD callback failed: %s", e)
        await db.rollback()
        return _login_error(request, "Authentication failed")

    redirect = RedirectResponse(f"{app_base_url(request)}{return_to}", status_code=status.HTTP_302_FOUND)
    set_session_cookies(redirect, access_token, refresh_token)
    return redirect
