"""OAuth redirect target for social account connections."""

import json
import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from config import Settings
from deps import get_settings
from oauth_cookie import set_pending_cookie

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/social", tags=["social"])


def _chat_url(settings: Settings, key: str, value: str) -> str:
    return f"{settings.app_url}/chat?{key}={quote(value, safe='')}"


def _json_param(raw: Optional[str]):
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.info("oauth.callback.bad_json_param")
        return None


@router.get("/callback")
async def oauth_callback(request: Request, settings: Settings = Depends(get_settings)):
    """Standard connections land back in the chat; headless ones park their tokens in a cookie."""
    params = request.query_params

    connected = params.get("connected")
    if connected:
        logger.info("oauth.callback.connected", extra={"platform": connected})
        return RedirectResponse(_chat_url(settings, "connected", connected), status_code=302)

    step = params.get("step")
    platform = (params.get("platform") or "").lower()
    if step and platform:
        pending = {
            "platform": platform,
            "step": step,
            "profile_id": params.get("profileId") or settings.late_profile_id,
            "temp_token": params.get("tempToken"),
            "connect_token": params.get("connect_token") or params.get("connectToken"),
            "user_profile": _json_param(params.get("userProfile")),
            "pending_data_token": params.get("pendingDataToken"),
            "public_profiles": _json_param(params.get("publicProfiles")),
        }
        response = RedirectResponse(_chat_url(settings, "pending", platform), status_code=302)
        set_pending_cookie(response, pending, settings)
        logger.info("oauth.callback.pending", extra={"platform": platform, "step": step})
        return response

    error = params.get("error") or "missing_params"
    logger.warning("oauth.callback.error", extra={"error": error})
    return RedirectResponse(_chat_url(settings, "oauth_error", error), status_code=302)
