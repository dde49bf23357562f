"""
JWT Token handling.

Security measures:
- Short-lived access tokens (15 min default)
- Longer-lived refresh tokens (7 days)
- Secure secret key from environment
- Token type validation
- Issuer and audience validation
"""

import logging
import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Any
from pydantic import BaseModel
from jose import jwt, JWTError, ExpiredSignatureError

logger = logging.getLogger(__name__)

# Configuration
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
if not JWT_SECRET_KEY:
    # Random per-process key; sessions do not survive a restart
    JWT_SECRET_KEY = secrets.token_urlsafe(32)
    logger.warning("Using auto-generated JWT_SECRET_KEY. Set JWT_SECRET_KEY in production.")

JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "15"))
REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7"))
TOKEN_ISSUER = os.getenv("TOKEN_ISSUER", "idara-api")
TOKEN_AUDIENCE = os.getenv("TOKEN_AUDIENCE", "idara-client")


class TokenPayload(BaseModel):
    """JWT token payload structure."""
    sub: str                          # User ID (subject)
    email: str                        # User email
    org_id: str                       # Tenant
    type: str                         # "access" or "refresh"
    iat: datetime                     # Issued at
    exp: datetime                     # Expiration
    iss: str = TOKEN_ISSUER           # Issuer
    aud: str = TOKEN_AUDIENCE         # Audience
    jti: Optional[str] = None         # JWT ID


def _encode(user_id: str, email: str, org_id: str, token_type: str, lifetime: timedelta,
            additional_claims: Optional[dict[str, Any]] = None) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "email": email,
        "org_id": str(org_id),
        "type": token_type,
        "iat": now,
        "exp": now + lifetime,
        "iss": TOKEN_ISSUER,
        "aud": TOKEN_AUDIENCE,
        "jti": secrets.token_urlsafe(16),  # Unique token ID
    }
    if additional_claims:
        payload.update(additional_claims)
    return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def create_access_token(
    user_id: str,
    email: str,
    org_id: str,
    additional_claims: Optional[dict[str, Any]] = None
) -> str:
    """
    Create a short-lived access token.

    Args:
        user_id: The user's database ID
        email: User's email address
        org_id: The user's organization
        additional_claims: Optional extra claims to include

    Returns:
        Encoded JWT string
    """
    return _encode(
        user_id, email, org_id, "access",
        timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
        additional_claims,
    )


def create_refresh_token(user_id: str, email: str, org_id: str) -> str:
    """
    Create a longer-lived refresh token.

    Refresh tokens are delivered in an HttpOnly cookie (and in the login
    response body for non-browser clients).
    """
    return _encode(user_id, email, org_id, "refresh", timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS))


def verify_token(token: str, expected_type: str = "access") -> TokenPayload:
    """
    Verify and decode a JWT token.

    Args:
        token: The JWT string to verify
        expected_type: Expected token type ("access" or "refresh")

    Returns:
        TokenPayload with decoded claims

    Raises:
        JWTError: If token is invalid, expired, or wrong type
    """
    try:
        payload = jwt.decode(
            token,
            JWT_SECRET_KEY,
            algorithms=[JWT_ALGORITHM],
            audience=TOKEN_AUDIENCE,
            issuer=TOKEN_ISSUER,
        )
    except ExpiredSignatureError:
        raise JWTError("Token has expired")

    if payload.get("type") != expected_type:
        raise JWTError(f"Invalid token type. Expected {expected_type}, got {payload.get('type')}")

    try:
        return TokenPayload(
            sub=payload["sub"],
            email=payload["email"],
            org_id=payload["org_id"],
            type=payload["type"],
            iat=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            iss=payload.get("iss", TOKEN_ISSUER),
            aud=payload.get("aud", TOKEN_AUDIENCE),
            jti=payload.get("jti"),
        )
    except KeyError as e:
        raise JWTError(f"Token is missing claim {e}")
