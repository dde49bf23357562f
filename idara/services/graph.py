"""
Microsoft identity platform / Graph client.

Thin async wrappers over httpx for the calls the app makes:
- client-credentials token (Intune device sync)
- authorization-code exchange and ``/me`` (Azure AD SSO)
- paginated ``deviceManagement/managedDevices`` listing
- directory users, groups, group members and managers (people sync)
"""

import logging
from typing import Optional, Any

import httpx

from idara.core.config import MICROSOFT_LOGIN_URL, GRAPH_BASE_URL, GRAPH_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

GRAPH_DEFAULT_SCOPE = "https://graph.microsoft.com/.default"
SSO_SCOPE = "openid profile email User.Read"

DEVICE_FIELDS = [
    "id",
    "deviceName",
    "serialNumber",
    "manufacturer",
    "model",
    "operatingSystem",
    "osVersion",
    "complianceState",
    "enrolledDateTime",
    "lastSyncDateTime",
    "userPrincipalName",
    "userDisplayName",
    "managedDeviceOwnerType",
    "deviceEnrollmentType",
]

USER_FIELDS = [
    "id",
    "displayName",
    "mail",
    "userPrincipalName",
    "givenName",
    "surname",
    "jobTitle",
    "department",
    "officeLocation",
    "mobilePhone",
    "employeeHireDate",
    "employeeLeaveDateTime",
]

GRAPH_USER_TYPE = "#microsoft.graph.user"


class GraphAPIError(Exception):
    """A Microsoft login or Graph call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def token_url(tenant_id: str) -> str:
    return f"{MICROSOFT_LOGIN_URL}/{tenant_id}/oauth2/v2.0/token"


def authorize_url(tenant_id: str) -> str:
    return f"{MICROSOFT_LOGIN_URL}/{tenant_id}/oauth2/v2.0/authorize"


def _error_message(response: httpx.Response, fallback: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return fallback
    if isinstance(body.get("error"), dict):
        return body["error"].get("message") or fallback
    return body.get("error_description") or fallback


async def _post_token(tenant_id: str, form: dict[str, str], fallback: str) -> dict[str, Any]:
    try:
        async with httpx.AsyncClient(timeout=GRAPH_TIMEOUT_SECONDS) as client:
            response = await client.post(token_url(tenant_id), data=form)
    except httpx.HTTPError as e:
        raise GraphAPIError(f"{fallback}: {e}") from e

    if response.status_code != 200:
        raise GraphAPIError(_error_message(response, fallback), response.status_code)
    return response.json()


async def get_app_token(tenant_id: str, client_id: str, client_secret: str) -> str:
    """Application token for Graph (client-credentials grant)."""
    data = await _post_token(
        tenant_id,
        {
            "client_id": client_id,
            "client_secret": client_secret,
            "scope": GRAPH_DEFAULT_SCOPE,
            "grant_type": "client_credentials",
        },
        "Failed to get access token",
    )
    return data["access_token"]


async def exchange_auth_code(
    tenant_id: str,
    client_id: str,
    client_secret: str,
    code: str,
    redirect_uri: str,
) -> dict[str, Any]:
    """Exchange an authorization code for user tokens."""
    return await _post_token(
        tenant_id,
        {
            "client_id": client_id,
            "client_secret": client_secret,
            "scope": SSO_SCOPE,
            "code": code,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        },
        "Token exchange failed",
    )


async def get_me(access_token: str) -> dict[str, Any]:
    """Profile of the signed-in user."""
    try:
        async with httpx.AsyncClient(timeout=GRAPH_TIMEOUT_SECONDS) as client:
            response = await client.get(
                f"{GRAPH_BASE_URL}/me",
                headers={"Authorization": f"Bearer {access_token}"},
            )
    except httpx.HTTPError as e:
        raise GraphAPIError(f"Failed to get user info from Microsoft: {e}") from e

    if response.status_code != 200:
        raise GraphAPIError("Failed to get user info from Microsoft", response.status_code)
    return response.json()


def build_device_filter(
    os_filter: Optional[list[str]] = None,
    compliance_filter: Optional[list[str]] = None,
) -> Optional[str]:
    """
    OData ``$filter`` for managed devices.

    Example:
        build_device_filter(["Windows", "macOS"], ["compliant"])
        -> "(operatingSystem eq 'Windows' or operatingSystem eq 'macOS') and (complianceState eq 'compliant')"
    """
    parts = []
    if os_filter:
        parts.append("(" + " or ".join(f"operatingSystem eq '{_quote(v)}'" for v in os_filter) + ")")
    if compliance_filter:
        parts.append("(" + " or ".join(f"complianceState eq '{_quote(v)}'" for v in compliance_filter) + ")")
    return " and ".join(parts) if parts else None


def _quote(value: str) -> str:
    # OData escapes a single quote by doubling it
    return value.replace("'", "''")


async def _get_all(
    access_token: str,
    url: str,
    params: Optional[dict[str, str]],
    failure: str,
    follow: bool = True,
) -> list[dict[str, Any]]:
    """GET a Graph collection; with ``follow`` every ``@odata.nextLink`` page is fetched too."""
    items: list[dict[str, Any]] = []
    next_url: Optional[str] = url
    headers = {"Authorization": f"Bearer {access_token}"}

    async with httpx.AsyncClient(timeout=GRAPH_TIMEOUT_SECONDS) as client:
        while next_url:
            try:
                # nextLink already carries the query string
                response = await client.get(next_url, headers=headers, params=params)
            except httpx.HTTPError as e:
                raise GraphAPIError(f"{failure}: {e}") from e

            if response.status_code != 200:
                raise GraphAPIError(_error_message(response, failure), response.status_code)

            data = response.json()
            items.extend(data.get("value", []))
            next_url = data.get("@odata.nextLink") if follow else None
            params = None
    return items


async def list_managed_devices(
    access_token: str,
    os_filter: Optional[list[str]] = None,
    compliance_filter: Optional[list[str]] = None,
) -> list[dict[str, Any]]:
    """All Intune managed devices matching the filters, following ``@odata.nextLink``."""
    params = {"$select": ",".join(DEVICE_FIELDS)}
    odata_filter = build_device_filter(os_filter, compliance_filter)
    if odata_filter:
        params["$filter"] = odata_filter

    devices = await _get_all(
        access_token,
        f"{GRAPH_BASE_URL}/deviceManagement/managedDevices",
        params,
        "Failed to fetch devices from Intune",
    )
    logger.info("Fetched %d managed devices from Graph", len(devices))
    return devices


async def list_users(access_token: str, search: Optional[str] = None, top: Optional[int] = None) -> list[dict[str, Any]]:
    """
    Enabled directory users.

    ``search`` matches the start of the display name or mail. With ``top``
    only the first page of that size is returned.
    """
    conditions = ["accountEnabled eq true"]
    if search:
        term = _quote(search.strip())
        conditions.append(f"(startswith(displayName,'{term}') or startswith(mail,'{term}'))")
    params = {"$select": ",".join(USER_FIELDS), "$filter": " and ".join(conditions)}
    if top:
        params["$top"] = str(top)

    users = await _get_all(
        access_token, f"{GRAPH_BASE_URL}/users", params,
        "Failed to fetch users from Entra ID", follow=top is None,
    )
    logger.info("Fetched %d directory users from Graph", len(users))
    return users


async def list_groups(access_token: str, name_prefix: Optional[str] = None) -> list[dict[str, Any]]:
    """Directory groups, narrowed server-side to names starting with ``name_prefix``."""
    params = {"$select": "id,displayName,description"}
    if name_prefix:
        params["$filter"] = f"startswith(displayName,'{_quote(name_prefix)}')"
    return await _get_all(access_token, f"{GRAPH_BASE_URL}/groups", params, "Failed to fetch groups from Entra ID")


async def list_group_members(access_token: str, group_id: str) -> list[dict[str, Any]]:
    """User members of a group; nested groups and devices are dropped."""
    members = await _get_all(
        access_token,
        f"{GRAPH_BASE_URL}/groups/{group_id}/members",
        {"$select": ",".join(USER_FIELDS)},
        "Failed to fetch group members from Entra ID",
    )
    return [m for m in members if m.get("@odata.type") == GRAPH_USER_TYPE]


async def get_manager(access_token: str, user_id: str) -> Optional[dict[str, Any]]:
    """The user's manager, or None when no manager is set."""
    try:
        async with httpx.AsyncClient(timeout=GRAPH_TIMEOUT_SECONDS) as client:
            response = await client.get(
                f"{GRAPH_BASE_URL}/users/{user_id}/manager",
                headers={"Authorization": f"Bearer {access_token}"},
                params={"$select": "id,displayName,mail,userPrincipalName"},
            )
    except httpx.HTTPError as e:
        raise GraphAPIError(f"Failed to fetch manager from Entra ID: {e}") from e

    if response.status_code == 404:
        return None
    if response.status_code != 200:
        raise GraphAPIError(
            _error_message(response, "Failed to fetch manager from Entra ID"),
            response.status_code,
        )
    return response.json()
