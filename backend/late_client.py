"""Late.dev publishing aggregator client."""

import logging
from typing import Optional
from urllib.parse import quote

import httpx

from errors import LateApiError

logger = logging.getLogger(__name__)

HEADLESS_PLATFORMS = frozenset(
    {"facebook", "instagram", "linkedin", "pinterest", "googlebusiness", "snapchat"}
)

SUPPORTED_PLATFORMS = (
    "facebook", "instagram", "linkedin", "twitter", "tiktok", "youtube", "threads",
    "reddit", "pinterest", "bluesky", "googlebusiness", "telegram", "snapchat",
)

# platform -> (list endpoint, list key, save endpoint, selection field)
_SELECTION_ENDPOINTS = {
    "facebook": ("/connect/facebook/select-page", "pages", "/connect/facebook/select-page", "pageId"),
    "instagram": ("/connect/facebook/select-page", "pages", "/connect/facebook/select-page", "pageId"),
    "pinterest": ("/connect/pinterest/select-board", "boards", "/connect/pinterest/select-board", "boardId"),
    "googlebusiness": (
        "/connect/googlebusiness/locations", "locations",
        "/connect/googlebusiness/select-location", "locationId",
    ),
    "snapchat": (None, "publicProfiles", "/connect/snapchat/select-profile", "publicProfileId"),
    "linkedin": (None, "organizations", "/connect/linkedin/select-organization", "selectedOrganization"),
}


def is_headless_platform(platform: str) -> bool:
    return (platform or "").lower() in HEADLESS_PLATFORMS


class LateClient:
    """Thin async wrapper over the Late.dev REST API.

    Every non-2xx response raises ``LateApiError`` with the status and raw body
    so callers can tell duplicates (409) and user errors from transient ones.
    """

    def __init__(self, settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.base_url = settings.late_base_url.rstrip("/")
        self._transport = transport

    def _headers(self, extra: Optional[dict] = None) -> dict:
        if not self.settings.late_api_key:
            raise LateApiError("LATE_API_KEY is not configured", status=500, body="")
        headers = {
            "Authorization": f"Bearer {self.settings.late_api_key}",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    async def _request(self, method: str, endpoint: str, json_body: Optional[dict] = None, headers: Optional[dict] = None):
        url = f"{self.base_url}{endpoint}"
        async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
            response = await client.request(method, url, json=json_body, headers=self._headers(headers))
        if response.status_code >= 400:
            logger.warning(
                "late.request_failed",
                extra={"endpoint": endpoint, "status": response.status_code},
            )
            raise LateApiError(
                f"Late.dev API error: {response.status_code}",
                status=response.status_code,
                body=response.text,
                retry_after=_retry_after_seconds(response),
            )
        if not response.content:
            return {}
        return response.json()

    # --- accounts / connection ---

    async def list_accounts(self) -> list[dict]:
        data = await self._request("GET", "/accounts")
        accounts = data.get("accounts") if isinstance(data, dict) else None
        return accounts if isinstance(accounts, list) else []

    async def get_connect_url(self, platform: str, profile_id: Optional[str] = None) -> dict:
        profile = profile_id or self.settings.late_profile_id
        callback = f"{self.settings.app_url}/api/social/callback"
        endpoint = f"/connect/{platform}?profileId={quote(profile)}&redirect_url={quote(callback, safe='')}"
        headless = is_headless_platform(platform)
        if headless:
            endpoint += "&headless=true"
        data = await self._request("GET", endpoint)
        return {"auth_url": data.get("authUrl") or data.get("url"), "headless": headless}

    async def get_connection_options(self, pending: dict) -> list[dict]:
        """Options (pages, boards, locations, organizations) for a headless connection."""
        platform = pending.get("platform") or ""
        if platform not in _SELECTION_ENDPOINTS:
            raise LateApiError(f"Platform {platform} has no selection step", status=400, body="")
        list_endpoint, key, _, _ = _SELECTION_ENDPOINTS[platform]
        if platform == "linkedin":
            data = await self._request(
                "GET", f"/connect/pending-data?token={quote(pending.get('pending_data_token') or '', safe='')}"
            )
            pending["temp_token"] = data.get("tempToken") or pending.get("temp_token")
            pending["user_profile"] = data.get("userProfile") or pending.get("user_profile")
            items = data.get(key) or []
        elif list_endpoint is None:
            items = pending.get("public_profiles") or []
        else:
            endpoint = (
                f"{list_endpoint}?profileId={quote(pending.get('profile_id') or '')}"
                f"&tempToken={quote(pending.get('temp_token') or '', safe='')}"
            )
            data = await self._request("GET", endpoint, headers=self._connect_header(pending))
            items = data.get(key) or []
        return [
            {"id": str(item.get("id") or item.get("_id") or ""), "name": item.get("name") or item.get("displayName") or "", "urn": item.get("urn")}
            for item in items
            if isinstance(item, dict)
        ]

    async def save_connection_selection(self, pending: dict, selection_id: str, selection_name: str = "") -> dict:
        platform = pending.get("platform") or ""
        if platform not in _SELECTION_ENDPOINTS:
            raise LateApiError(f"Platform {platform} has no selection step", status=400, body="")
        _, _, save_endpoint, field_name = _SELECTION_ENDPOINTS[platform]
        body = {
            "profileId": pending.get("profile_id"),
            "tempToken": pending.get("temp_token"),
            "userProfile": pending.get("user_profile") or {},
        }
        if platform == "linkedin":
            if selection_id == "personal":
                body["accountType"] = "personal"
            else:
                body["accountType"] = "organization"
                body[field_name] = {"id": selection_id, "name": selection_name}
        else:
            body[field_name] = selection_id
            if platform == "pinterest":
                body["boardName"] = selection_name
        return await self._request("POST", save_endpoint, json_body=body, headers=self._connect_header(pending))

    @staticmethod
    def _connect_header(pending: dict) -> dict:
        token = pending.get("connect_token")
        return {"X-Connect-Token": token} if token else {}

    # --- posts ---

    async def create_draft_post(self, content: str, platforms: list[dict], media_items: Optional[list[dict]] = None, timezone: Optional[str] = None) -> dict:
        body = {
            "content": content,
            "platforms": platforms,
            "isDraft": True,
            "timezone": timezone or self.settings.publish_timezone,
        }
        if media_items:
            body["mediaItems"] = media_items
        data = await self._request("POST", "/posts", json_body=body)
        return data.get("post") or data

    async def activate_draft(self, draft_id: str, activation: dict) -> dict:
        body = dict(activation)
        body["isDraft"] = False
        data = await self._request("PATCH", f"/posts/{quote(draft_id)}", json_body=body)
        return data.get("post") or data


def _retry_after_seconds(response: httpx.Response) -> Optional[float]:
    ra = response.headers.get("retry-after", "")
    if not ra:
        return None
    try:
        return float(ra)
    except ValueError:
        return None
