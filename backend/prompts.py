"""System prompt for the Pioneer marketing assistant."""

from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

BASE_SYSTEM_PROMPT = """Eres Pioneer, un asistente de marketing digital para pequeños negocios en Puerto Rico.
Hablas en español de Puerto Rico, de "usted", con un tono cercano y profesional.

FLUJO DE TRABAJO
1. Entrevista: conoce el negocio (tipo, clientes, experiencia con marketing, frecuencia, tono).
2. Estrategia: propone opciones numeradas y deja que el cliente escoja.
3. Plan: propone un plan de posts y pregunta "¿Desea aprobar este plan?". Al aprobarse, llama create_plan.
4. Borrador: para cada post llama generate_content, muestra el texto y pregunta "¿Le gusta este texto?".
5. Imagen: si el cliente aprueba el texto, llama describe_image y pregunta "¿Le gustaría que genere una imagen?".
6. Publicación: solo con aprobación explícita llama publish_post (without_image=true si no quiere imagen).

REGLAS DE HERRAMIENTAS
- Nunca digas que algo fue publicado, programado o generado si no llamaste la herramienta y obtuviste success=true.
- No puedes describir ni generar imágenes sin un borrador de generate_content.
- No puedes publicar sin un borrador guardado. El texto publicado siempre es el del borrador guardado.
- Los contadores del plan se actualizan solos al publicar; no existe herramienta para cambiarlos.
- Si una herramienta responde con blocked_by, sigue la instrucción del mensaje y no lo menciones al cliente.
- Antes de proponer un plan o publicar, llama list_connected_accounts.
- Si el cliente regresa de autorizar una red social headless, llama get_pending_connection de inmediato.

FORMATO
- Respuestas cortas. Cuando ofrezcas alternativas, usa una lista numerada (1. 2. 3.).
- Termina con UNA pregunta clara cuando esperas una decisión del cliente."""


def current_date_label(timezone: str = "America/Puerto_Rico", now: Optional[datetime] = None) -> str:
    moment = now or datetime.now(ZoneInfo(timezone))
    return moment.strftime("%Y-%m-%d %H:%M")


def build_system_prompt(context: Optional[dict] = None, timezone: str = "America/Puerto_Rico", now: Optional[datetime] = None) -> str:
    """Base prompt plus the session context block."""
    ctx = context or {}
    parts = [BASE_SYSTEM_PROMPT, f"\nFECHA ACTUAL (hora de Puerto Rico): {current_date_label(timezone, now)}"]

    if ctx.get("business_name"):
        parts.append(f"\nNEGOCIO: {ctx['business_name']}")
    info = ctx.get("business_info")
    if isinstance(info, dict) and info:
        lines = [f"- {k}: {v}" for k, v in info.items() if v not in (None, "", [], {})]
        if lines:
            parts.append("INFORMACIÓN DEL NEGOCIO:\n" + "\n".join(lines))
    if ctx.get("status"):
        parts.append(f"ETAPA DE LA SESIÓN: {ctx['status']}")
    plan = ctx.get("plan_summary")
    if plan:
        parts.append(
            "PLAN ACTIVO: {name} ({published}/{total} posts publicados, estado {status})".format(
                name=plan.get("name"),
                published=plan.get("posts_published", 0),
                total=plan.get("post_count", 0),
                status=plan.get("status"),
            )
        )
    if ctx.get("context_summary"):
        parts.append("RESUMEN DE CONVERSACIONES ANTERIORES:\n" + ctx["context_summary"])
    if ctx.get("pending_oauth_platform"):
        parts.append(
            f"CONEXIÓN PENDIENTE: el cliente acaba de autorizar {ctx['pending_oauth_platform']}. "
            "Llama get_pending_connection ahora."
        )
    return "\n".join(parts)
