"""Tools advertised to the model and the executor that runs them.

The executor never trusts content sent by the model for publishing: drafts are
stored as posts and every later step works from the stored post id.
"""

import logging
from typing import Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import store
import publisher
from content_generator import generate_content
from errors import LateApiError, PioneerError
from guardian import GuardianState
from image_service import build_image_prompt, image_cost, suggest_aspect_ratio
from late_client import SUPPORTED_PLATFORMS, HEADLESS_PLATFORMS

logger = logging.getLogger(__name__)

_EMPTY_SCHEMA = {"type": "object", "properties": {}, "required": []}

TOOL_DEFINITIONS = [
    {
        "name": "list_connected_accounts",
        "description": (
            "Lista las cuentas de redes sociales conectadas del cliente. Úsala ANTES de proponer un plan "
            "o publicar, para saber en qué plataformas puede publicar."
        ),
        "input_schema": _EMPTY_SCHEMA,
    },
    {
        "name": "create_plan",
        "description": (
            "Guarda el plan de contenido aprobado por el cliente. Llámala SOLO después de que el cliente "
            "apruebe el plan."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "plan_name": {"type": "string", "description": "Nombre corto del plan"},
                "description": {"type": "string", "description": "Resumen de la estrategia"},
                "posts": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Título de cada post del plan, en orden",
                },
            },
            "required": ["plan_name", "posts"],
        },
    },
    {
        "name": "generate_content",
        "description": (
            "Redacta el texto de un post y lo guarda como borrador. Muestra el texto al cliente y pregunta "
            "si le gusta antes de seguir. Usa revise_current=true para reescribir el borrador actual."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "business_type": {"type": "string"},
                "post_type": {
                    "type": "string",
                    "enum": ["offer", "educational", "testimonial", "behind-scenes",
                             "urgency", "cta", "branding", "interactive"],
                },
                "details": {"type": "string", "description": "Tema, oferta o mensaje del post"},
                "platforms": {"type": "array", "items": {"type": "string", "enum": list(SUPPORTED_PLATFORMS)}},
                "tone": {"type": "string", "enum": ["formal", "casual", "urgent"]},
                "include_hashtags": {"type": "boolean"},
                "title": {"type": "string"},
                "revise_current": {"type": "boolean"},
            },
            "required": ["post_type", "details", "platforms"],
        },
    },
    {
        "name": "describe_image",
        "description": (
            "Propone la imagen para el borrador actual (prompt en inglés, modelo y formato). "
            "Solo después de generate_content."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "prompt": {"type": "string"},
                "model": {"type": "string", "enum": ["schnell", "pro"]},
                "aspect_ratio": {"type": "string"},
                "style": {"type": "string", "enum": ["photo", "illustration", "flat-design"]},
                "platforms": {"type": "array", "items": {"type": "string"}},
                "count": {"type": "integer", "minimum": 1, "maximum": 4},
            },
            "required": ["prompt"],
        },
    },
    {
        "name": "generate_image",
        "description": "Genera la imagen descrita para el borrador actual. Solo con aprobación del cliente.",
        "input_schema": _EMPTY_SCHEMA,
    },
    {
        "name": "publish_post",
        "description": (
            "Publica o programa el borrador actual en las cuentas conectadas. El contenido se toma del "
            "borrador guardado. Usa without_image=true si el cliente no quiere imagen."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "without_image": {"type": "boolean"},
                "publish_now": {"type": "boolean"},
                "scheduled_for": {"type": "string", "description": "Fecha ISO 8601 (hora de Puerto Rico)"},
                "platforms": {"type": "array", "items": {"type": "string"}},
            },
            "required": [],
        },
    },
    {
        "name": "generate_connect_url",
        "description": (
            "Genera un enlace de autorización OAuth para conectar una red social. Para Facebook, Instagram, "
            "LinkedIn, Pinterest, Google Business y Snapchat se activa el modo headless."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "platform": {"type": "string", "enum": list(SUPPORTED_PLATFORMS)},
                "profile_id": {"type": "string"},
            },
            "required": ["platform"],
        },
    },
    {
        "name": "get_pending_connection",
        "description": (
            "Obtiene las opciones (páginas, tableros, ubicaciones u organizaciones) para completar una "
            "conexión headless. Llámala en cuanto el cliente regresa de autorizar."
        ),
        "input_schema": _EMPTY_SCHEMA,
    },
    {
        "name": "complete_connection",
        "description": "Completa la conexión headless con la opción que eligió el cliente.",
        "input_schema": {
            "type": "object",
            "properties": {
                "platform": {"type": "string", "enum": sorted(HEADLESS_PLATFORMS)},
                "selection_id": {"type": "string"},
                "selection_name": {"type": "string"},
            },
            "required": ["platform", "selection_id"],
        },
    },
]

TOOL_NAMES = frozenset(t["name"] for t in TOOL_DEFINITIONS)


def _fail(message: str, **extra) -> dict:
    return {"success": False, "error": message, **extra}


def _int_param(value, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class ToolExecutor:
    """Runs one tool call against the injected collaborators."""

    def __init__(
        self,
        db: Session,
        services,
        settings,
        session_id: Optional[str] = None,
        pending_oauth: Optional[dict] = None,
        business_name: str = "",
        business_type: str = "",
    ):
        self.db = db
        self.services = services
        self.settings = settings
        self.session_id = session_id
        self.pending_oauth = pending_oauth
        self.business_name = business_name
        self.business_type = business_type

    async def execute(self, name: str, tool_input: dict, state: GuardianState) -> dict:
        handler = getattr(self, f"_tool_{name}", None)
        if name not in TOOL_NAMES or handler is None:
            return _fail(f"Herramienta desconocida: {name}")
        try:
            return await handler(tool_input or {}, state)
        except LateApiError as exc:
            logger.warning("tool.late_error", extra={"tool": name, "status": exc.status})
            return _fail(f"Error de Late.dev ({exc.status})")
        except httpx.HTTPError as exc:
            logger.warning("tool.http_error", extra={"tool": name, "error": str(exc)})
            return _fail("Error de red al contactar el servicio externo")
        except PioneerError:
            # LLM and request errors are classified by the loop.
            raise
        except SQLAlchemyError:
            logger.exception("tool.store_error", extra={"tool": name})
            self.db.rollback()
            return _fail("No se pudo guardar la información. Intenta de nuevo.", error_code="store_error")
        except Exception:
            logger.exception("tool.unexpected_error", extra={"tool": name})
            self.db.rollback()
            return _fail(f"La herramienta {name} falló inesperadamente.", error_code="tool_failed")

    async def _tool_list_connected_accounts(self, params: dict, state: GuardianState) -> dict:
        accounts = await self.services.late.list_accounts()
        listed = [
            {"_id": a.get("_id"), "platform": a.get("platform"), "username": a.get("username")}
            for a in accounts
            if a.get("_id") and a.get("platform")
        ]
        if self.session_id:
            for a in listed:
                store.save_connected_account(self.db, self.session_id, a["platform"], a["_id"], a["username"])
        return {"success": True, "accounts": listed, "count": len(listed)}

    async def _tool_create_plan(self, params: dict, state: GuardianState) -> dict:
        if not self.session_id:
            return _fail("No hay una sesión activa para guardar el plan.")
        titles = [str(t).strip() for t in params.get("posts") or [] if str(t).strip()]
        if not titles:
            return _fail("El plan necesita al menos un post.")
        plan = store.create_plan(
            self.db,
            self.session_id,
            plan_name=str(params.get("plan_name") or "Plan de contenido"),
            post_titles=titles,
            description=params.get("description"),
        )
        return {
            "success": True,
            "plan_id": plan.id,
            "post_count": plan.post_count,
            "posts_published": plan.posts_published,
            "posts": [{"id": p.id, "order": p.order_num, "title": p.title} for p in store.get_posts_by_plan(self.db, plan.id)],
        }

    async def _tool_generate_content(self, params: dict, state: GuardianState) -> dict:
        result = await generate_content(
            self.services.llm,
            business_name=self.business_name or "el negocio",
            business_type=str(params.get("business_type") or self.business_type or "negocio local"),
            post_type=str(params.get("post_type") or "offer"),
            details=str(params.get("details") or ""),
            platforms=list(params.get("platforms") or []),
            tone=params.get("tone"),
            include_hashtags=params.get("include_hashtags") is not False,
        )
        text = result["content"]["text"]
        if not text:
            return _fail("No se pudo generar el contenido. Intenta con otros detalles.")

        post = None
        current = store.get_post(self.db, state.active_post_id)
        if params.get("revise_current") and current and current.status not in store.PUBLISHED_POST_STATUSES:
            post = store.set_post_content(self.db, current.id, text, title=params.get("title"))
        if post is None:
            pending = store.get_next_pending_post(self.db, state.active_plan_id)
            if pending:
                post = store.set_post_content(self.db, pending.id, text, title=params.get("title"))
            else:
                post = store.create_post(
                    self.db, self.session_id, text, plan_id=state.active_plan_id, title=params.get("title"),
                )
        return {"success": True, "post_id": post.id, "plan_id": post.plan_id, **result}

    async def _tool_describe_image(self, params: dict, state: GuardianState) -> dict:
        description = str(params.get("prompt") or "").strip()
        if not description:
            return _fail("Falta el prompt de la imagen.")
        prompt = build_image_prompt(
            self.business_name or "local business",
            self.business_type or "small business",
            description,
            str(params.get("style") or "photo"),
        )
        model = params.get("model") if params.get("model") in ("schnell", "pro") else "schnell"
        count = max(1, min(4, _int_param(params.get("count"), 1)))
        aspect = str(params.get("aspect_ratio") or suggest_aspect_ratio(list(params.get("platforms") or [])))
        post = store.set_post_image_spec(self.db, state.active_post_id, prompt, model, aspect, count)
        if not post:
            return _fail("No hay un borrador guardado para asociar la imagen.")
        _, cost_client = image_cost(model, count, self.settings.image_markup_multiplier)
        return {
            "success": True,
            "post_id": post.id,
            "image_spec": {"prompt": prompt, "model": model, "aspect_ratio": aspect, "count": count},
            "estimated_cost": cost_client,
        }

    async def _tool_generate_image(self, params: dict, state: GuardianState) -> dict:
        post = store.get_post(self.db, state.active_post_id)
        if not post:
            return _fail("No hay un borrador guardado.")
        if not post.image_prompt:
            return _fail("Primero describe la imagen con describe_image.")
        result = await self.services.images.generate_image(
            prompt=post.image_prompt,
            model=post.image_model or "schnell",
            aspect_ratio=post.image_aspect_ratio or "1:1",
            num_outputs=post.image_count or 1,
        )
        if result.get("success") and result.get("images"):
            store.set_post_image(self.db, post.id, result["images"][0])
        return {**result, "post_id": post.id}

    async def _tool_publish_post(self, params: dict, state: GuardianState) -> dict:
        publish_now = params.get("publish_now")
        if publish_now is None:
            publish_now = not params.get("scheduled_for")
        outcome = await publisher.publish_post(
            self.db,
            self.services.late,
            self.settings,
            state.active_post_id,
            include_image=not params.get("without_image"),
            publish_now=bool(publish_now),
            scheduled_for=params.get("scheduled_for"),
            platforms=params.get("platforms"),
            telemetry=self.services.telemetry,
        )
        return outcome.to_tool_result()

    async def _tool_generate_connect_url(self, params: dict, state: GuardianState) -> dict:
        platform = str(params.get("platform") or "").lower()
        if platform not in SUPPORTED_PLATFORMS:
            return _fail(f"Plataforma no soportada: {platform}")
        result = await self.services.late.get_connect_url(platform, params.get("profile_id"))
        return {"success": True, "platform": platform, **result}

    async def _tool_get_pending_connection(self, params: dict, state: GuardianState) -> dict:
        if not self.pending_oauth:
            return _fail("No hay una conexión pendiente. Genera un enlace nuevo con generate_connect_url.")
        options = await self.services.late.get_connection_options(self.pending_oauth)
        if self.pending_oauth.get("platform") == "linkedin":
            options = [{"id": "personal", "name": "Perfil personal"}] + options
        return {"success": True, "platform": self.pending_oauth.get("platform"), "options": options}

    async def _tool_complete_connection(self, params: dict, state: GuardianState) -> dict:
        if not self.pending_oauth:
            return _fail("La conexión pendiente expiró. Genera un enlace nuevo.")
        platform = str(params.get("platform") or "").lower()
        if platform and platform != self.pending_oauth.get("platform"):
            return _fail(f"La conexión pendiente es de {self.pending_oauth.get('platform')}, no de {platform}.")
        await self.services.late.save_connection_selection(
            self.pending_oauth,
            str(params.get("selection_id") or ""),
            str(params.get("selection_name") or ""),
        )
        return {"success": True, "platform": self.pending_oauth.get("platform"), "connected": True}
