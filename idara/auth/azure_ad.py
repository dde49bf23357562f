"""
Azure AD (Entra ID) single sign-on helpers.

The authorization-code flow is driven by two routes in
``idara.api.v1.endpoints.auth``; this module builds the authorize URL, carries the
return path and organization through ``state``, and resolves the
organization and its Entra integration.
"""

import base64
import binascii
import json
from typing import Optional
from urllib.parse import urlencode

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from idara.core.config import APP_URL
from idara.models.organization import Organization, Integration, IntegrationProvider
from idara.services.graph import authorize_url, SSO_SCOPE

CALLBACK_PATH = "/api/auth/callback/azure-ad"
DEFAULT_RETURN_TO = "/dashboard"


def app_base_url(request: Request) -> str:
    """Public base URL: APP_URL, else forwarded headers, else the request itself."""
    if APP_URL:
        return APP_URL
    proto = request.headers.get("x-forwarded-proto") or request.url.scheme
    host = request.headers.get("x-forwarded-host") or request.headers.get("host") or request.url.netloc
    return f"{proto}://{host}"


def safe_return_path(value: Optional[str]) -> str:
    """Only same-site relative paths are allowed as redirect targets."""
    if not value or not value.startswith("/") or value.startswith("//"):
        return DEFAULT_RETURN_TO
    return value


def encode_state(return_to: str, org_slug: Optional[str]) -> str:
    payload = json.dumps({"returnTo": return_to, "org": org_slug})
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")


def decode_state(state: Optional[str]) -> dict:
    """Decode ``state``; anything malformed yields an empty dict."""
    if not state:
        return {}
    try:
        data = json.loads(base64.urlsafe_b64decode(state.encode("ascii")).decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def build_authorize_url(integration: Integration, redirect_uri: str, state: str) -> str:
    params = {
        "client_id": integration.client_id,
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "response_mode": "query",
        "scope": SSO_SCOPE,
        "state": state,
    }
    return f"{authorize_url(integration.tenant_id)}?{urlencode(params)}"


async def resolve_organization(db: AsyncSession, slug: Optional[str]) -> Optional[Organization]:
    """Organization by slug, or the first organization when no slug is given."""
    query = select(Organization)
    if slug:
        query = query.where(Organization.slug == slug)
    else:
        query = query.order_by(Organization.created_at)
    result = await db.execute(query.limit(1))
    return result.scalar_one_or_none()


async def get_entra_integration(db: AsyncSession, org_id: str) -> Optional[Integration]:
    result = await db.execute(
        select(Integration).where(
            Integration.org_id == org_id,
            Integration.provider == IntegrationProvider.ENTRA,
        )
    )
    return result.scalar_one_or_none()
