"""
Per-platform social post copy generated through the LLM.
"""

import logging
import re
from typing import Optional

from publish_validator import PLATFORM_CHAR_LIMITS
from text_utils import truncate_text

logger = logging.getLogger(__name__)

PLATFORM_HASHTAG_COUNT = {
    "twitter": 3,
    "instagram": 12,
    "facebook": 4,
    "linkedin": 4,
    "tiktok": 5,
    "threads": 4,
    "bluesky": 3,
}

POST_TYPE_MAP = {
    "offer": "oferta",
    "educational": "educativo",
    "testimonial": "testimonio",
    "behind-scenes": "detras_de_escenas",
    "urgency": "urgencia",
    "cta": "cta",
    "branding": "branding",
    "interactive": "interactivo",
}

_TYPE_INSTRUCTIONS = {
    "oferta": (
        "Genera un post de redes sociales para promocionar una oferta.",
        "Detalles de la oferta",
        "El post debe capturar atención, mencionar el beneficio claramente y terminar con un llamado a acción.",
    ),
    "educativo": (
        "Genera un post educativo que posicione al negocio como experto.",
        "Tema",
        "El post debe compartir un tip útil, relacionarlo con el negocio y ser fácil de entender.",
    ),
    "testimonio": (
        "Genera un post basado en un testimonio de cliente.",
        "Contexto",
        "El post debe contar una mini-historia con un resultado concreto y sentirse auténtico.",
    ),
    "detras_de_escenas": (
        "Genera un post que muestre el lado humano del negocio.",
        "Contexto",
        "El post debe ser casual, personal y generar conexión emocional.",
    ),
    "urgencia": (
        "Genera un post que impulse acción inmediata.",
        "Situación",
        "El post debe crear urgencia, ser directo y corto, con un llamado a acción muy claro.",
    ),
    "cta": (
        "Genera un post con un llamado a acción directo.",
        "Acción deseada",
        "El post debe enfocarse en UN solo beneficio y dar instrucciones claras.",
    ),
    "branding": (
        "Genera un post que presente o refuerce la marca del negocio.",
        "Mensaje clave",
        "El post debe comunicar valores, diferenciarse y ser inspirador.",
    ),
    "interactivo": (
        "Genera un post interactivo que genere engagement.",
        "Tema",
        "El post debe hacer una pregunta directa, fácil de responder y conversacional.",
    ),
}

_HASHTAG_RE = re.compile(r"#[\wáéíóúñÁÉÍÓÚÑ]+")

COST_PER_PLATFORM = 0.01


def normalize_post_type(post_type: str) -> str:
    raw = (post_type or "").strip().lower()
    mapped = POST_TYPE_MAP.get(raw, raw)
    return mapped if mapped in _TYPE_INSTRUCTIONS else "oferta"


def normalize_tone(tone: Optional[str]) -> str:
    if tone == "casual":
        return "casual"
    if tone in ("urgent", "urgente"):
        return "urgente"
    return "formal"


def build_content_prompt(business_name: str, business_type: str, post_type: str, details: str, platform: str) -> str:
    intro, label, rules = _TYPE_INSTRUCTIONS[normalize_post_type(post_type)]
    limit = PLATFORM_CHAR_LIMITS.get(platform, 2200)
    return (
        f"{intro}\n"
        f"Negocio: {business_name} ({business_type})\n"
        f"Plataforma: {platform}\n"
        f"Máximo {limit} caracteres.\n"
        f"{label}: {details}\n"
        f"{rules}"
    )


def build_content_system_prompt(platform: str, include_hashtags: bool, tone: str) -> str:
    count = PLATFORM_HASHTAG_COUNT.get(platform, 0)
    if include_hashtags and count > 0:
        hashtag_rule = (
            f"Incluye {count} hashtags relevantes al final del texto. Incluye al menos 1 hashtag local "
            "(#PR, #PuertoRico o del municipio) y 1 de la industria."
        )
    else:
        hashtag_rule = "NO incluyas hashtags."
    return (
        "Eres un copywriter experto en marketing digital para pequeños negocios en Puerto Rico.\n"
        "Genera contenido en español. No uses modismos de otros países latinoamericanos.\n"
        f"Tono: {tone}. El contenido debe ser claro, directo y persuasivo.\n"
        "Usa emojis con moderación (1-3 máximo).\n"
        f"{hashtag_rule}\n"
        "Responde SOLO con el texto del post, nada más. Sin comillas, sin explicaciones."
    )


async def generate_content(
    llm,
    business_name: str,
    business_type: str,
    post_type: str,
    details: str,
    platforms: list[str],
    tone: Optional[str] = None,
    include_hashtags: bool = True,
) -> dict:
    """Write one version per platform; the first platform's copy is the main text."""
    mapped_type = normalize_post_type(post_type)
    tone_value = normalize_tone(tone)
    targets = [p for p in (platforms or []) if p] or ["facebook"]
    versions: dict[str, dict] = {}

    for platform in targets:
        text = await llm.complete_text(
            system=build_content_system_prompt(platform, include_hashtags, tone_value),
            prompt=build_content_prompt(business_name, business_type, mapped_type, details, platform),
            max_tokens=1024,
        )
        if not text:
            logger.warning("content.empty_version", extra={"platform": platform})
            continue
        text = truncate_text(text.strip(), PLATFORM_CHAR_LIMITS.get(platform, 0))
        versions[platform] = {"text": text, "char_count": len(text)}

    main_text = versions.get(targets[0], {}).get("text", "")
    if not main_text and versions:
        main_text = next(iter(versions.values()))["text"]

    return {
        "content": {
            "text": main_text,
            "hashtags": _HASHTAG_RE.findall(main_text),
            "platform_versions": versions,
        },
        "metadata": {
            "post_type": mapped_type,
            "estimated_cost": round(len(targets) * COST_PER_PLATFORM, 4),
        },
    }
