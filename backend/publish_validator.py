"""Publish-time validation and retry policy for the Late.dev aggregator."""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

import httpx

from errors import LateApiError
from text_utils import strip_markdown, truncate_text

logger = logging.getLogger(__name__)

PLATFORM_CHAR_LIMITS = {
    "twitter": 280,
    "instagram": 2200,
    "facebook": 63206,
    "linkedin": 3000,
    "tiktok": 2200,
    "youtube": 5000,
    "pinterest": 500,
    "reddit": 40000,
    "bluesky": 300,
    "threads": 500,
    "googlebusiness": 1500,
    "telegram": 4096,
    "snapchat": 250,
}

VALID_MEDIA_ORIGINS = ("https://replicate.delivery/", "https://media.getlate.dev/")

_VIDEO_RE = re.compile(r"\.(mp4|mov|avi|webm)$", re.IGNORECASE)
_CLEAR_SERVER_ERRORS = ("invalid", "not found", "unauthorized", "forbidden")

DUPLICATE_MESSAGE = "Este contenido ya fue publicado en las últimas 24 horas."


@dataclass
class DraftData:
    content: str
    platforms: list[dict]
    timezone: str
    media_items: list[dict] = field(default_factory=list)


@dataclass
class ValidationResult:
    success: bool
    data: Optional[DraftData] = None
    error: str = ""
    corrections: list[str] = field(default_factory=list)


@dataclass
class DraftOutcome:
    post_id: str
    duplicate: bool = False
    message: str = ""


def is_valid_media_origin(url: str) -> bool:
    return any((url or "").startswith(origin) for origin in VALID_MEDIA_ORIGINS)


def validate_and_prepare_draft(
    content: str,
    requested: list[dict],
    real_accounts: list[dict],
    media_urls: Optional[list[str]] = None,
    timezone: str = "America/Puerto_Rico",
    images_generated: bool = False,
) -> ValidationResult:
    """Check a publish request against the accounts actually connected.

    Mismatched account ids are corrected to the connected account for the same
    platform; platforms with no connected account are dropped. The text is
    stripped of markdown and truncated to the strictest platform limit.
    """
    corrections: list[str] = []
    media_urls = [u for u in (media_urls or []) if u]

    if media_urls and not images_generated:
        if not all(is_valid_media_origin(u) for u in media_urls):
            return ValidationResult(
                success=False,
                error=(
                    "Las URLs de imagen deben venir de replicate.delivery o media.getlate.dev. "
                    "Genera la imagen primero."
                ),
                corrections=["media_urls rechazadas: origen no válido"],
            )

    if not real_accounts:
        return ValidationResult(
            success=False,
            error="No hay cuentas de redes sociales conectadas. Conecta al menos una cuenta antes de publicar.",
        )

    validated: list[dict] = []
    for item in requested:
        platform = str(item.get("platform") or "").lower()
        account_id = str(item.get("account_id") or item.get("accountId") or "")
        exact = next(
            (a for a in real_accounts if a.get("_id") == account_id and a.get("platform") == platform),
            None,
        )
        if exact:
            validated.append({"platform": platform, "accountId": exact["_id"]})
            continue
        same_platform = next((a for a in real_accounts if a.get("platform") == platform), None)
        if same_platform:
            corrections.append(
                f"account_id para {platform} corregido: {account_id} -> {same_platform['_id']}"
            )
            validated.append({"platform": platform, "accountId": same_platform["_id"]})
            continue
        corrections.append(f"No hay cuenta conectada para {platform}; omitida")

    if not validated:
        return ValidationResult(
            success=False,
            error="Ninguna de las plataformas solicitadas tiene una cuenta conectada.",
            corrections=corrections,
        )

    clean = strip_markdown(content or "").strip()
    limits = [PLATFORM_CHAR_LIMITS[p["platform"]] for p in validated if p["platform"] in PLATFORM_CHAR_LIMITS]
    if limits and len(clean) > min(limits):
        corrections.append(f"Contenido truncado a {min(limits)} caracteres")
        clean = truncate_text(clean, min(limits))

    media_items = []
    for url in media_urls:
        if url.startswith("http://") or url.startswith("https://"):
            media_items.append({"type": "video" if _VIDEO_RE.search(url) else "image", "url": url})
        else:
            corrections.append(f"URL de media descartada: {url[:80]}")

    return ValidationResult(
        success=True,
        data=DraftData(content=clean, platforms=validated, timezone=timezone, media_items=media_items),
        corrections=corrections,
    )


def parse_late_error(error: LateApiError) -> Optional[dict]:
    try:
        body = json.loads(error.body or "")
    except ValueError:
        return None
    if isinstance(body, dict) and body.get("errorCategory"):
        return {
            "category": body.get("errorCategory"),
            "source": body.get("errorSource") or "unknown",
            "message": body.get("errorMessage") or str(error),
        }
    return None


def is_transient_error(error: Exception) -> bool:
    if isinstance(error, LateApiError):
        if error.status >= 500:
            body = (error.body or "").lower()
            return not any(msg in body for msg in _CLEAR_SERVER_ERRORS)
        return error.status == 429
    return isinstance(error, httpx.TransportError)


def _retry_wait(error: Exception) -> float:
    if isinstance(error, LateApiError):
        if error.retry_after:
            return error.retry_after
        if error.status == 429:
            return 10.0
    return 2.0


def _existing_post_id(error: LateApiError) -> Optional[str]:
    try:
        body = json.loads(error.body or "")
    except ValueError:
        return None
    details = body.get("details") if isinstance(body, dict) else None
    return details.get("existingPostId") if isinstance(details, dict) else None


async def _with_one_retry(label: str, call: Callable[[], Awaitable[dict]], sleep) -> dict:
    try:
        return await call()
    except (LateApiError, httpx.TransportError) as first:
        if isinstance(first, LateApiError) and first.status == 409:
            raise
        info = parse_late_error(first) if isinstance(first, LateApiError) else None
        if info and info["source"] == "user":
            raise
        if not is_transient_error(first):
            raise
        wait = _retry_wait(first)
        logger.warning("publish.retry", extra={"step": label, "wait_sec": wait, "error": str(first)})
        await sleep(wait)
        return await call()


async def create_draft_with_retry(late, draft: DraftData, sleep=asyncio.sleep) -> DraftOutcome:
    """Create the draft; 409 means Late already holds this content and counts as success."""
    try:
        post = await _with_one_retry(
            "create_draft",
            lambda: late.create_draft_post(draft.content, draft.platforms, draft.media_items, draft.timezone),
            sleep,
        )
    except LateApiError as exc:
        if exc.status != 409:
            raise
        return DraftOutcome(post_id=_existing_post_id(exc) or "unknown", duplicate=True, message=DUPLICATE_MESSAGE)
    return DraftOutcome(post_id=str(post.get("_id") or post.get("id") or ""))


async def activate_draft_with_retry(late, draft_id: str, activation: dict, sleep=asyncio.sleep) -> DraftOutcome:
    try:
        post = await _with_one_retry("activate_draft", lambda: late.activate_draft(draft_id, activation), sleep)
    except LateApiError as exc:
        if exc.status != 409:
            raise
        return DraftOutcome(post_id=_existing_post_id(exc) or draft_id, duplicate=True, message=DUPLICATE_MESSAGE)
    return DraftOutcome(post_id=str(post.get("_id") or post.get("id") or draft_id))
