"""Quick-reply buttons derived from the assistant's final text.

Detectors run in priority order and the first match wins. Option buttons
replay ``value`` into the chat as if the user typed it; action buttons carry
an ``action`` that the client posts to /api/chat/action.
"""

import re
from dataclasses import dataclass, asdict
from typing import Callable, NamedTuple, Optional

from guardian import GuardianState, Stage

MAX_LABEL_CHARS = 40
OPTION_EMOJIS = ("1️⃣", "2️⃣", "3️⃣", "4️⃣", "5️⃣", "6️⃣", "7️⃣", "8️⃣")


@dataclass(frozen=True)
class ButtonConfig:
    id: str
    label: str
    value: str
    type: str = "option"  # option | action
    style: str = "secondary"  # primary | secondary | ghost
    action: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        if data["action"] is None:
            data.pop("action")
        return data


@dataclass(frozen=True)
class DetectorState:
    image_just_generated: bool = False
    describe_image_was_called: bool = False
    has_image_spec: bool = False
    active_post_id: Optional[str] = None

    @classmethod
    def from_guardian(cls, state: GuardianState) -> "DetectorState":
        return cls(
            image_just_generated=(
                "generate_image" in state.executed_tools and state.stage == Stage.IMAGE_GENERATED
            ),
            describe_image_was_called=state.describe_image_was_called,
            has_image_spec=state.last_image_spec is not None,
            active_post_id=state.active_post_id,
        )


class Detector(NamedTuple):
    name: str
    matches: Callable[[str, DetectorState], bool]
    build: Callable[[str, DetectorState], list]


def _option(id_: str, label: str, value: str, style: str = "secondary") -> ButtonConfig:
    return ButtonConfig(id=id_, label=label, value=value, type="option", style=style)


def _action(id_: str, label: str, action: str, value: str, style: str = "secondary") -> ButtonConfig:
    return ButtonConfig(id=id_, label=label, value=value, type="action", style=style, action=action)


def _rx(pattern: str) -> re.Pattern:
    return re.compile(pattern, re.IGNORECASE)


PLAN_APPROVAL_RE = _rx(r"¿desea aprobar|¿aprueba (este|el) plan|¿le parece bien (este|el) plan")
CONTENT_APPROVAL_RE = _rx(r"¿le gusta (este|el) texto|¿prefiere algún cambio|¿qué le parece el texto")
IMAGE_APPROVAL_RE = _rx(
    r"¿(le gusta|qué le parece) (la|esta) imagen|¿aprueba (la|esta) imagen|¿publicamos con (la|esta) imagen"
)
PUBLISH_TIMING_RE = _rx(
    r"¿(lo )?publica(mos)? ahora o (lo )?programa|¿ahora o (más tarde|lo programamos)|¿cuándo (desea|quiere) publicar"
)
IMAGE_OFFER_RE = _rx(r"¿(le gustaría|quiere|desea)\s+(que\s+)?(genere|crear|generar|hacer)\s+(una\s+)?imagen")
NUMBERED_ITEM_RE = re.compile(r"^\s*(\d+)[.)]\s+(?:\*\*)?([^—\n*]+)")
QUANTITY_RE = _rx(
    r"¿(vamos con|prefiere)\s+(las\s+|los\s+)?\d+\s+(básicas|completas|posts|publicaciones)"
    r"|¿\d+\s+(básicas|completas|posts|publicaciones)\s+o\s+\d+"
    r"|¿(prefiere\s+)?\d+\s+o\s+\d+\s+(básicas|completas|posts|publicaciones|preguntas)"
)
QUANTITY_PAIR_RE = _rx(r"(\d+)\s+o\s+(\d+)\s+(básicas|completas|posts|publicaciones|preguntas)")
QUANTITY_OPTION_RE = _rx(r"(\d+)\s+(básicas|completas|posts|publicaciones)")
NEXT_POST_RE = _rx(r"¿continuamos|¿seguimos|siguiente post|¿vamos con (el )?(siguiente|próximo)")
CONNECT_RE = _rx(r"¿(desea|quiere|le gustaría) conectar|conectar (su|tu) (cuenta|página|perfil)")
BUSINESS_TYPE_RE = _rx(r"¿(qué|que) tipo de negocio")
CUSTOMER_SOURCE_RE = _rx(
    r"¿cómo (le )?(llegan|encuentran|consiguen) (sus |los )?clientes|¿de dónde (vienen|llegan) sus clientes"
)
MARKETING_EXPERIENCE_RE = _rx(
    r"¿(ha|has) (hecho|usado|trabajado)\s+(con\s+)?(marketing|publicidad|anuncios)|experiencia (con|en) (marketing|redes)"
)
FREQUENCY_RE = _rx(r"¿(con )?qué frecuencia|¿cuántas veces (a|por) (la )?semana")
TONE_RE = _rx(r"¿(qué|que) tono|¿(cómo|como) (quiere|desea|prefiere) que suene")


def extract_numbered_options(text: str) -> list[tuple[int, str]]:
    options = []
    for line in (text or "").split("\n"):
        match = NUMBERED_ITEM_RE.match(line)
        if not match:
            continue
        opt_text = match.group(2).strip().replace("**", "")
        opt_text = re.sub(r"\s*[-–—:]\s*$", "", opt_text)
        if len(opt_text) >= 2:
            options.append((int(match.group(1)), opt_text))
    return options


def _truncate_label(text: str) -> str:
    if len(text) > MAX_LABEL_CHARS:
        return text[: MAX_LABEL_CHARS - 3] + "..."
    return text


# --------------- Builders ---------------

def _image_review_buttons(text: str, state: DetectorState) -> list:
    if state.active_post_id:
        return [
            _action("approve_image", "✅ Publicar con esta imagen", "approve_and_publish", "Me gusta la imagen, publícalo", "primary"),
            _action("regenerate_image", "🔄 Otra imagen", "regenerate_image", "Genera otra imagen"),
            _action("skip_image", "⭕ Publicar sin imagen", "publish_no_image", "Publícalo sin imagen", "ghost"),
        ]
    return [
        _option("approve_image", "✅ Me gusta la imagen", "Me gusta la imagen", "primary"),
        _option("regenerate_image", "🔄 Otra imagen", "Genera otra imagen"),
        _option("skip_image", "⭕ Sin imagen", "Sin imagen, continúa", "ghost"),
    ]


def _plan_approval_buttons(text: str, state: DetectorState) -> list:
    return [
        _option("approve_plan", "✅ Aprobado", "Aprobado", "primary"),
        _option("change_plan", "✏️ Cambios", "Quiero hacer cambios al plan", "ghost"),
    ]


def _content_approval_buttons(text: str, state: DetectorState) -> list:
    approve = (
        _action("approve_text", "✅ Me gusta", "approve_text", "Me gusta el texto", "primary")
        if state.active_post_id
        else _option("approve_text", "✅ Me gusta", "Me gusta el texto", "primary")
    )
    return [approve, _option("change_text", "✏️ Pedir cambios", "Quiero cambiar el texto", "ghost")]


def _publish_timing_buttons(text: str, state: DetectorState) -> list:
    return [
        _option("publish_now", "🚀 Publicar ahora", "Publícalo ahora", "primary"),
        _option("schedule", "📅 Programar", "Prefiero programarlo"),
    ]


def _image_offer_buttons(text: str, state: DetectorState) -> list:
    if state.active_post_id and state.has_image_spec:
        return [
            _action("gen_image", "🎨 Sí, generar imagen", "generate_image", "Sí, genera una imagen", "primary"),
            _action("skip_image", "⭕ Sin imagen", "publish_no_image", "Sin imagen, continúa", "ghost"),
        ]
    return [
        _option("yes_image", "🎨 Sí, generar imagen", "Sí, genera una imagen", "primary"),
        _option("no_image", "⭕ Sin imagen", "Sin imagen, continúa", "ghost"),
    ]


def _numbered_option_buttons(text: str, state: DetectorState) -> list:
    buttons = []
    for idx, (number, opt_text) in enumerate(extract_numbered_options(text)):
        emoji = OPTION_EMOJIS[idx] if idx < len(OPTION_EMOJIS) else "▪️"
        buttons.append(_option(f"option_{number}", f"{emoji} {_truncate_label(opt_text)}", opt_text))
    buttons.append(_option("option_other", "✏️ Otra idea", "Tengo otra idea", "ghost"))
    return buttons


def _quantity_buttons(text: str, state: DetectorState) -> list:
    seen = []
    pair = QUANTITY_PAIR_RE.search(text)
    if pair:
        noun = pair.group(3).lower()
        seen = [f"{pair.group(1)} {noun}", f"{pair.group(2)} {noun}"]
    for number, noun in QUANTITY_OPTION_RE.findall(text):
        label = f"{number} {noun.lower()}"
        if label not in seen:
            seen.append(label)
    if len(seen) < 2:
        seen = ["10 básicas", "15 completas"]
    styles = ("primary",) + ("secondary",) * (len(seen) - 1)
    return [
        _option(f"quantity_{label.split()[0]}", label, label, style)
        for label, style in zip(seen, styles)
    ]


def _next_post_buttons(text: str, state: DetectorState) -> list:
    return [
        _option("next_post", "▶️ Siguiente post", "Continuemos con el siguiente post", "primary"),
        _option("pause", "⏸️ Terminar por hoy", "Pausar el plan por ahora", "ghost"),
    ]


def _connect_buttons(text: str, state: DetectorState) -> list:
    return [
        _option("connect_now", "🔗 Conectar ahora", "Sí, quiero conectar mi cuenta", "primary"),
        _option("connect_later", "⏭️ Más tarde", "Lo conecto más tarde", "ghost"),
    ]


def _fixed_options(prefix: str, labels: tuple) -> Callable[[str, DetectorState], list]:
    def build(text: str, state: DetectorState) -> list:
        buttons = [_option(f"{prefix}_{i}", label, label) for i, label in enumerate(labels, start=1)]
        buttons.append(_option(f"{prefix}_other", "✏️ Otro", "Otro, le explico", "ghost"))
        return buttons

    return build


def _search(pattern: re.Pattern) -> Callable[[str, DetectorState], bool]:
    return lambda text, state: bool(pattern.search(text or ""))


DETECTORS = (
    Detector("image_generated", lambda text, state: state.image_just_generated, _image_review_buttons),
    Detector("plan_approval", _search(PLAN_APPROVAL_RE), _plan_approval_buttons),
    Detector("content_approval", _search(CONTENT_APPROVAL_RE), _content_approval_buttons),
    Detector("image_approval", _search(IMAGE_APPROVAL_RE), _image_review_buttons),
    Detector("publish_timing", _search(PUBLISH_TIMING_RE), _publish_timing_buttons),
    Detector("image_offer", _search(IMAGE_OFFER_RE), _image_offer_buttons),
    Detector("numbered_list", lambda text, state: len(extract_numbered_options(text)) >= 2, _numbered_option_buttons),
    Detector("quantity", _search(QUANTITY_RE), _quantity_buttons),
    Detector("next_post", _search(NEXT_POST_RE), _next_post_buttons),
    Detector("platform_connection", _search(CONNECT_RE), _connect_buttons),
    Detector(
        "business_type",
        _search(BUSINESS_TYPE_RE),
        _fixed_options("business", ("🍽️ Restaurante", "🛍️ Tienda", "💼 Servicios profesionales", "💇 Salud y belleza")),
    ),
    Detector(
        "customer_source",
        _search(CUSTOMER_SOURCE_RE),
        _fixed_options("source", ("📱 Redes sociales", "🗣️ Recomendaciones", "🔎 Google", "🚶 Pasan por el local")),
    ),
    Detector(
        "marketing_experience",
        _search(MARKETING_EXPERIENCE_RE),
        _fixed_options("experience", ("🌱 Nunca", "🙂 Un poco", "💪 Bastante")),
    ),
    Detector(
        "posting_frequency",
        _search(FREQUENCY_RE),
        _fixed_options("frequency", ("1-2 por semana", "3-4 por semana", "Todos los días")),
    ),
    Detector(
        "tone",
        _search(TONE_RE),
        _fixed_options("tone", ("👔 Profesional", "😊 Cercano y casual", "🎉 Divertido")),
    ),
)


def match_detector(final_text: str, state: Optional[DetectorState] = None, detectors=DETECTORS) -> Optional[Detector]:
    state = state or DetectorState()
    for detector in detectors:
        if detector.matches(final_text or "", state):
            return detector
    return None


def detect_buttons(
    final_text: str,
    state: Optional[DetectorState] = None,
    detectors=DETECTORS,
) -> Optional[list[ButtonConfig]]:
    """Return the buttons of the first matching detector, or None."""
    state = state or DetectorState()
    detector = match_detector(final_text, state, detectors)
    if detector is None:
        return None
    return detector.build(final_text or "", state)
