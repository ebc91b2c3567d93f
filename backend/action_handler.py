"""Side effects triggered by action buttons.

Each action resolves the post from the store by id and works only from what
is stored there. Request params never carry content.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

import store
import publisher
from buttons import ButtonConfig
from guardian import Stage
from schemas import ActionParams

logger = logging.getLogger(__name__)

ACTIONS = ("approve_text", "generate_image", "regenerate_image", "approve_and_publish", "publish_no_image")


@dataclass
class ActionResult:
    success: bool
    message: str = ""
    buttons: list[ButtonConfig] = field(default_factory=list)
    action_context: Optional[dict] = None
    image_url: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"success": self.success, "message": self.message}
        if self.buttons:
            data["buttons"] = [b.to_dict() for b in self.buttons]
        if self.action_context:
            data["actionContext"] = self.action_context
        if self.image_url:
            data["imageUrl"] = self.image_url
        if self.error:
            data["error"] = self.error
        return data


def _fail(error: str, message: str) -> ActionResult:
    return ActionResult(success=False, error=error, message=message)


def _action_button(id_: str, label: str, action: str, style: str = "secondary") -> ButtonConfig:
    return ButtonConfig(id=id_, label=label, value=label, type="action", style=style, action=action)


def _option_button(id_: str, label: str, value: str, style: str = "secondary") -> ButtonConfig:
    return ButtonConfig(id=id_, label=label, value=value, type="option", style=style)


def image_review_buttons() -> list[ButtonConfig]:
    return [
        _action_button("approve_image", "✅ Publicar con esta imagen", "approve_and_publish", "primary"),
        _action_button("regenerate", "🔄 Otra imagen", "regenerate_image"),
        _action_button("skip_image", "⭕ Publicar sin imagen", "publish_no_image", "ghost"),
    ]


def after_publish_buttons(plan_completed: bool) -> list[ButtonConfig]:
    if plan_completed:
        return [
            _option_button("more_posts", "➕ Crear más posts", "Quiero crear más posts", "primary"),
            _option_button("plan_complete", "✅ Listo, terminamos", "Listo, terminamos por hoy", "ghost"),
        ]
    return [
        _option_button("next_post", "▶️ Siguiente post", "Continuemos con el siguiente post", "primary"),
        _option_button("pause", "⏸️ Terminar por hoy", "Pausar el plan por ahora", "ghost"),
    ]


class ActionHandler:
    def __init__(self, db: Session, services, settings):
        self.db = db
        self.services = services
        self.settings = settings

    def resolve_post(self, params: ActionParams):
        """postId first, then the latest drafted post of the plan, then of the session's active plan."""
        if params.post_id:
            return store.get_post(self.db, params.post_id)
        if params.plan_id:
            post = store.get_latest_drafted_post(self.db, params.plan_id)
            if post:
                return post
        if params.session_id:
            plan = store.get_active_plan(self.db, params.session_id)
            if plan:
                return store.get_latest_drafted_post(self.db, plan.id)
        return None

    def _context(self, post) -> dict:
        return {"sessionId": post.session_id, "planId": post.plan_id, "postId": post.id}

    def _sync_session(self, post, stage: Stage) -> None:
        if post.session_id:
            store.update_session(
                self.db, post.session_id, guardian_stage=stage.value, active_post_id=post.id,
            )

    async def handle(self, action: str, params: ActionParams) -> ActionResult:
        if action not in ACTIONS:
            return _fail("unknown_action", f"Acción desconocida: {action}")
        post = self.resolve_post(params)
        if not post:
            return _fail("post_not_found", "No se encontró el post. Intente de nuevo desde el chat.")
        logger.info("action.start", extra={"action": action, "post_id": post.id})

        if action == "approve_text":
            return self.approve_text(post)
        if action in ("generate_image", "regenerate_image"):
            return await self.generate_image(post)
        return await self.publish(post, params, include_image=action == "approve_and_publish")

    def approve_text(self, post) -> ActionResult:
        if not (post.content or "").strip():
            return _fail("missing_content", "El post no tiene texto guardado.")
        if post.image_prompt:
            buttons = [
                _action_button("gen_image", "🎨 Generar imagen", "generate_image", "primary"),
                _action_button("skip_image", "⭕ Publicar sin imagen", "publish_no_image", "ghost"),
            ]
            message = "¡Excelente! El texto quedó aprobado. ¿Generamos la imagen para este post?"
        else:
            buttons = [_action_button("publish_no_image", "🚀 Publicar", "publish_no_image", "primary")]
            message = "¡Excelente! El texto quedó aprobado. ¿Lo publicamos?"
        return ActionResult(success=True, message=message, buttons=buttons, action_context=self._context(post))

    async def generate_image(self, post) -> ActionResult:
        if not post.image_prompt:
            return _fail("missing_prompt", "Este post no tiene una descripción de imagen.")
        result = await self.services.images.generate_image(
            prompt=post.image_prompt,
            model=post.image_model or "schnell",
            aspect_ratio=post.image_aspect_ratio or "1:1",
            num_outputs=post.image_count or 1,
        )
        if not result.get("success") or not result.get("images"):
            logger.warning("action.image_failed", extra={"post_id": post.id, "error": result.get("error")})
            return _fail("image_error", result.get("error") or "No se pudo generar la imagen.")
        image_url = result["images"][0]
        store.set_post_image(self.db, post.id, image_url)
        self._sync_session(post, Stage.IMAGE_GENERATED)
        return ActionResult(
            success=True,
            message="🎨 ¡Imagen lista! ¿La publicamos con esta imagen?",
            buttons=image_review_buttons(),
            action_context=self._context(post),
            image_url=image_url,
        )

    async def publish(self, post, params: ActionParams, include_image: bool) -> ActionResult:
        publish_now = params.publish_now if params.publish_now is not None else not params.scheduled_for
        outcome = await publisher.publish_post(
            self.db,
            self.services.late,
            self.settings,
            post.id,
            include_image=include_image,
            publish_now=publish_now,
            scheduled_for=params.scheduled_for,
            platforms=params.platforms,
            telemetry=self.services.telemetry,
        )
        if not outcome.success:
            return ActionResult(
                success=False,
                error=outcome.error_code,
                message=outcome.error,
                action_context=self._context(post),
            )
        self._sync_session(post, Stage.PUBLISHED)
        where = ", ".join(outcome.platforms) or "sus redes"
        message = f"✅ ¡Listo! Post publicado en {where} ({outcome.time_label})."
        if outcome.post_count:
            message += f" Progreso del plan: {outcome.posts_published}/{outcome.post_count}."
        return ActionResult(
            success=True,
            message=message,
            buttons=after_publish_buttons(outcome.plan_completed),
            action_context=self._context(post),
        )
