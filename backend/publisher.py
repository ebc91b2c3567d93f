"""Single publish path shared by the chat tool and the action buttons.

Content always comes from the stored post, looked up by id.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

import httpx
from sqlalchemy.orm import Session

import store
from errors import LateApiError
from publish_validator import (
    validate_and_prepare_draft,
    create_draft_with_retry,
    activate_draft_with_retry,
)

logger = logging.getLogger(__name__)


@dataclass
class PublishOutcome:
    success: bool
    post_id: Optional[str] = None
    error_code: str = ""
    error: str = ""
    platforms: list[str] = field(default_factory=list)
    time_label: str = ""
    late_post_id: Optional[str] = None
    draft_id: Optional[str] = None
    posts_published: int = 0
    post_count: int = 0
    plan_id: Optional[str] = None
    plan_completed: bool = False
    corrections: list[str] = field(default_factory=list)

    def to_tool_result(self) -> dict:
        if not self.success:
            result = {"success": False, "error": self.error, "error_code": self.error_code}
            if self.draft_id:
                result["draft_id"] = self.draft_id
            return result
        return {
            "success": True,
            "post_id": self.post_id,
            "platforms": self.platforms,
            "when": self.time_label,
            "posts_published": self.posts_published,
            "post_count": self.post_count,
            "plan_completed": self.plan_completed,
            "corrections": self.corrections,
        }


def _failure(post_id, code: str, message: str, draft_id: Optional[str] = None) -> PublishOutcome:
    return PublishOutcome(success=False, post_id=post_id, error_code=code, error=message, draft_id=draft_id)


def build_activation(settings, publish_now: bool, scheduled_for: Optional[str]) -> tuple[dict, str]:
    if publish_now:
        return {"publishNow": True}, "ahora"
    if scheduled_for:
        return {"scheduledFor": scheduled_for, "timezone": settings.publish_timezone}, scheduled_for
    return {"queuedFromProfile": settings.late_profile_id}, "el próximo espacio de la cola"


async def publish_post(
    db: Session,
    late,
    settings,
    post_id: Optional[str],
    include_image: bool = True,
    publish_now: bool = True,
    scheduled_for: Optional[str] = None,
    platforms: Optional[list[str]] = None,
    telemetry=None,
    sleep=asyncio.sleep,
) -> PublishOutcome:
    post = store.get_post(db, post_id)
    if not post:
        return _failure(post_id, "post_not_found", "No se encontró el post a publicar.")

    if post.status in store.PUBLISHED_POST_STATUSES:
        plan = store.get_plan(db, post.plan_id)
        return PublishOutcome(
            success=True,
            post_id=post.id,
            late_post_id=post.late_post_id,
            time_label=post.scheduled_for or "ahora",
            posts_published=plan.posts_published if plan else 0,
            post_count=plan.post_count if plan else 0,
            plan_id=plan.id if plan else None,
            plan_completed=bool(plan and plan.status == "completed"),
        )

    if not (post.content or "").strip():
        return _failure(post.id, "missing_content", "El post no tiene contenido guardado.")

    try:
        accounts = await late.list_accounts()
    except (LateApiError, httpx.HTTPError) as exc:
        logger.warning("publish.accounts_error", extra={"post_id": post.id, "error": str(exc)})
        return _failure(post.id, "accounts_error", "No se pudieron verificar las cuentas conectadas.")
    if not accounts:
        return _failure(post.id, "no_accounts", "No hay cuentas de redes sociales conectadas.")

    wanted = {p.lower() for p in (platforms or []) if p}
    requested = [
        {"platform": a.get("platform"), "account_id": a.get("_id")}
        for a in accounts
        if not wanted or str(a.get("platform") or "").lower() in wanted
    ]
    media = [post.image_url] if include_image and post.image_url else []

    validation = validate_and_prepare_draft(
        post.content,
        requested,
        accounts,
        media_urls=media,
        timezone=settings.publish_timezone,
    )
    if not validation.success:
        return _failure(post.id, "validation_error", validation.error)
    draft = validation.data

    draft_id = post.late_draft_id
    if not draft_id:
        try:
            created = await create_draft_with_retry(late, draft, sleep=sleep)
        except (LateApiError, httpx.HTTPError) as exc:
            logger.error("publish.draft_error", extra={"post_id": post.id, "error": str(exc)})
            _record(telemetry, "publish_failed", {"post_id": post.id, "step": "draft"})
            return _failure(post.id, "draft_error", "No se pudo crear el borrador en Late.")
        if created.duplicate:
            return _failure(post.id, "duplicate", created.message)
        draft_id = created.post_id
        store.set_post_draft_id(db, post.id, draft_id)

    activation, time_label = build_activation(settings, publish_now, scheduled_for)
    try:
        activated = await activate_draft_with_retry(late, draft_id, activation, sleep=sleep)
    except (LateApiError, httpx.HTTPError) as exc:
        logger.error("publish.activate_error", extra={"post_id": post.id, "draft_id": draft_id, "error": str(exc)})
        _record(telemetry, "publish_failed", {"post_id": post.id, "step": "activate"})
        return _failure(post.id, "activate_error", "El borrador existe pero no se pudo activar.", draft_id=draft_id)

    recorded = store.record_publish(
        db,
        post.id,
        activated.post_id,
        scheduled_for=None if publish_now else scheduled_for,
    )
    _record(telemetry, "publish_success", {"post_id": post.id, "plan_id": recorded["plan_id"]})
    logger.info("publish.success", extra={"post_id": post.id, "late_post_id": activated.post_id})

    return PublishOutcome(
        success=True,
        post_id=post.id,
        platforms=[p["platform"] for p in draft.platforms],
        time_label=time_label,
        late_post_id=activated.post_id,
        draft_id=draft_id,
        posts_published=recorded["posts_published"],
        post_count=recorded["post_count"],
        plan_id=recorded["plan_id"],
        plan_completed=recorded["plan_completed"],
        corrections=validation.corrections,
    )


def _record(telemetry, event: str, payload: dict) -> None:
    if telemetry is not None:
        telemetry.record(event, payload)
