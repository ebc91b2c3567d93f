"""Draft-first guardian: per-request protocol state plus the tool-call interlock.

The state is rebuilt from the persisted session at the start of every chat
request, advanced only by ``update_state_after_tool`` after a tool really ran,
and projected back into the session row when the request completes.

Everything here is pure: no I/O, no clock, no randomness.
"""

import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping, Optional


class Stage(str, Enum):
    NO_PLAN = "no_plan"
    PLANNING = "planning"
    CONTENT_DRAFTED = "content_drafted"
    IMAGE_OFFERED = "image_offered"
    IMAGE_GENERATED = "image_generated"
    READY_TO_PUBLISH = "ready_to_publish"
    PUBLISHED = "published"

    @property
    def rank(self) -> int:
        return _STAGE_ORDER.index(self)

    def at_least(self, other: "Stage") -> bool:
        return self.rank >= other.rank

    @classmethod
    def parse(cls, raw: Any) -> "Stage":
        try:
            return cls(str(raw or "").strip().lower())
        except ValueError:
            return cls.NO_PLAN


_STAGE_ORDER = (
    Stage.NO_PLAN,
    Stage.PLANNING,
    Stage.CONTENT_DRAFTED,
    Stage.IMAGE_OFFERED,
    Stage.IMAGE_GENERATED,
    Stage.READY_TO_PUBLISH,
    Stage.PUBLISHED,
)


def _max_stage(a: Stage, b: Stage) -> Stage:
    return a if a.rank >= b.rank else b


@dataclass(frozen=True)
class ImageSpec:
    prompt: str
    model: str = "schnell"
    aspect_ratio: str = "1:1"
    count: int = 1

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["ImageSpec"]:
        if not isinstance(raw, Mapping):
            return None
        prompt = str(raw.get("prompt") or "").strip()
        if not prompt:
            return None
        return cls(
            prompt=prompt,
            model=str(raw.get("model") or "schnell"),
            aspect_ratio=str(raw.get("aspect_ratio") or "1:1"),
            count=_as_int(raw.get("count"), 1) or 1,
        )

    def to_dict(self) -> dict:
        return {
            "prompt": self.prompt,
            "model": self.model,
            "aspect_ratio": self.aspect_ratio,
            "count": self.count,
        }


@dataclass(frozen=True)
class PlatformBinding:
    platform: str
    account_id: str

    def to_dict(self) -> dict:
        return {"platform": self.platform, "account_id": self.account_id}


@dataclass(frozen=True)
class GuardianState:
    stage: Stage = Stage.NO_PLAN
    last_generated_content: Optional[str] = None
    last_image_spec: Optional[ImageSpec] = None
    last_image_urls: tuple[str, ...] = ()
    describe_image_was_called: bool = False
    connected_platforms: tuple[PlatformBinding, ...] = ()
    plan_post_count: int = 0
    posts_published: int = 0
    session_id: Optional[str] = None
    active_plan_id: Optional[str] = None
    active_post_id: Optional[str] = None
    should_clear_oauth_cookie: bool = False
    tool_use_count: int = 0
    end_turn_retry_count: int = 0
    executed_tools: tuple[str, ...] = ()

    def snapshot(self) -> dict:
        """Durable projection written back to the session row."""
        return {
            "stage": self.stage.value,
            "session_id": self.session_id,
            "active_plan_id": self.active_plan_id,
            "active_post_id": self.active_post_id,
            "plan_post_count": self.plan_post_count,
            "posts_published": self.posts_published,
        }


@dataclass(frozen=True)
class Verdict:
    allowed: bool
    reason: str = ""
    message: str = ""
    fail_open: bool = False

    @classmethod
    def allow(cls) -> "Verdict":
        return cls(allowed=True)

    @classmethod
    def block(cls, reason: str, message: str) -> "Verdict":
        return cls(allowed=False, reason=reason, message=message)


# --------------- Phrase tables ---------------

APPROVAL_PATTERNS = (
    r"^s[ií]$",
    r"^dale\b",
    r"^ok$",
    r"^aprobad[oa]\b",
    r"^perfecto\b",
    r"^adelante\b",
    r"\bme gusta\b",
    r"\best[aá] bien\b",
    r"^ok[,.]?\s*dale\b",
    r"^s[ií][,.]?\s*dale\b",
    r"^s[ií][,.]?\s*aprobad[oa]\b",
    r"\bpubl[ií]ca(lo)?\b",
)

PUBLISH_CLAIM_PATTERNS = (
    r"\blo\s+(publicamos|publiqu[ée]|programamos|programé|programe)\b",
    r"\bse\s+(public[óo]|program[óo])\b",
    r"\b(est[áa]|qued[óo]|fue|ha\s+sido|han\s+sido)\s+(publicad[oa]s?|programad[oa]s?)\b",
    r"\bpublicad[oa]\s+(con\s+[ée]xito|exitosamente)\b",
    r"\bpublicaci[óo]n\s+(exitosa|completada|programada)\b",
)

PUBLISH_TOOLS = frozenset({"publish_post", "create_draft_post", "activate_draft"})
COUNTER_TOOLS = frozenset({"increment_posts_published", "mark_post_scheduled"})
IMAGE_TOOLS = frozenset({"generate_image", "describe_image"})

_QUESTION_RE = re.compile(r"¿[^?]*\?")


def _compile(patterns) -> tuple:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


@dataclass(frozen=True)
class GuardianPolicy:
    """Phrase tables and ceilings the interlock consults."""

    approval_patterns: tuple = field(default_factory=lambda: _compile(APPROVAL_PATTERNS))
    publish_claim_patterns: tuple = field(default_factory=lambda: _compile(PUBLISH_CLAIM_PATTERNS))
    max_end_turn_retries: int = 2
    publish_tools: frozenset = PUBLISH_TOOLS
    counter_tools: frozenset = COUNTER_TOOLS
    image_tools: frozenset = IMAGE_TOOLS

    @classmethod
    def from_settings(cls, settings) -> "GuardianPolicy":
        return cls(max_end_turn_retries=settings.max_end_turn_retries)

    def is_approval(self, text: str) -> bool:
        cleaned = " ".join((text or "").strip().lower().split()).rstrip("!.¡ ")
        if not cleaned:
            return False
        return any(p.search(cleaned) for p in self.approval_patterns)

    def claims_publish(self, text: str) -> bool:
        # Questions ("¿lo publicamos ahora?") are offers, not claims.
        statements = _QUESTION_RE.sub(" ", (text or "").lower())
        return any(p.search(statements) for p in self.publish_claim_patterns)


DEFAULT_POLICY = GuardianPolicy()


# --------------- State lifecycle ---------------

def _as_int(raw: Any, default: int = 0) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _as_str(raw: Any) -> Optional[str]:
    if raw in (None, ""):
        return None
    return str(raw)


def _bindings(raw: Any) -> tuple[PlatformBinding, ...]:
    out = []
    if not isinstance(raw, (list, tuple)):
        return ()
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        platform = _as_str(item.get("platform"))
        account_id = _as_str(item.get("account_id") or item.get("accountId") or item.get("_id"))
        if platform and account_id:
            out.append(PlatformBinding(platform=platform, account_id=account_id))
    return tuple(out)


def create_initial_state(snapshot: Optional[Mapping] = None) -> GuardianState:
    """Build a fresh state from a persisted session snapshot.

    Missing or unknown fields fall back to their empty defaults.
    """
    snap = snapshot if isinstance(snapshot, Mapping) else {}
    return GuardianState(
        stage=Stage.parse(snap.get("stage")),
        last_image_spec=ImageSpec.from_dict(snap.get("last_image_spec")),
        connected_platforms=_bindings(snap.get("connected_platforms")),
        plan_post_count=max(0, _as_int(snap.get("plan_post_count"))),
        posts_published=max(0, _as_int(snap.get("posts_published"))),
        session_id=_as_str(snap.get("session_id")),
        active_plan_id=_as_str(snap.get("active_plan_id")),
        active_post_id=_as_str(snap.get("active_post_id")),
    )


def record_tool_use(state: GuardianState, tool_name: str) -> GuardianState:
    return replace(
        state,
        tool_use_count=state.tool_use_count + 1,
        executed_tools=state.executed_tools + (tool_name,),
    )


def update_state_after_tool(
    state: GuardianState,
    tool_name: str,
    tool_input: Optional[Mapping],
    tool_result: Any,
) -> GuardianState:
    """Advance the state from a tool result.

    Only successful results move the state. Counters are mirrored from what
    the store reported, so replaying the same result is a no-op.
    """
    result = tool_result if isinstance(tool_result, Mapping) else {}
    if result.get("success") is False:
        if tool_name in PUBLISH_TOOLS and result.get("draft_id"):
            # Draft exists upstream but activation failed; a retry reuses it.
            return replace(state, stage=_max_stage(state.stage, Stage.READY_TO_PUBLISH))
        return state

    if tool_name == "create_plan":
        return replace(
            state,
            stage=Stage.PLANNING,
            active_plan_id=_as_str(result.get("plan_id")) or state.active_plan_id,
            active_post_id=None,
            plan_post_count=max(0, _as_int(result.get("post_count"), state.plan_post_count)),
            posts_published=max(0, _as_int(result.get("posts_published"))),
            last_generated_content=None,
            last_image_spec=None,
            last_image_urls=(),
            describe_image_was_called=False,
        )

    if tool_name == "generate_content":
        content = result.get("content") if isinstance(result.get("content"), Mapping) else {}
        text = str(content.get("text") or "").strip()
        if not text:
            return state
        post_id = _as_str(result.get("post_id")) or state.active_post_id
        plan_id = _as_str(result.get("plan_id")) or state.active_plan_id
        if post_id != state.active_post_id or state.stage == Stage.PUBLISHED:
            # A new post starts a new draft cycle.
            return replace(
                state,
                stage=Stage.CONTENT_DRAFTED,
                last_generated_content=text,
                active_post_id=post_id,
                active_plan_id=plan_id,
                last_image_spec=None,
                last_image_urls=(),
                describe_image_was_called=False,
            )
        return replace(
            state,
            stage=_max_stage(state.stage, Stage.CONTENT_DRAFTED),
            last_generated_content=text,
            active_plan_id=plan_id,
        )

    if tool_name == "describe_image":
        spec = ImageSpec.from_dict(result.get("image_spec"))
        if spec is None:
            return state
        return replace(
            state,
            stage=_max_stage(state.stage, Stage.IMAGE_OFFERED),
            last_image_spec=spec,
            describe_image_was_called=True,
        )

    if tool_name == "generate_image":
        images = result.get("images")
        if not isinstance(images, list) and result.get("image_url"):
            images = [result.get("image_url")]
        urls = tuple(str(u) for u in (images or []) if u)
        if not urls:
            return state
        return replace(
            state,
            stage=_max_stage(state.stage, Stage.IMAGE_GENERATED),
            last_image_urls=urls,
        )

    if tool_name == "list_connected_accounts":
        return replace(state, connected_platforms=_bindings(result.get("accounts")))

    if tool_name in PUBLISH_TOOLS:
        return replace(
            state,
            stage=Stage.PUBLISHED,
            posts_published=max(0, _as_int(result.get("posts_published"), state.posts_published)),
            plan_post_count=max(0, _as_int(result.get("post_count"), state.plan_post_count)),
        )

    if tool_name == "complete_connection":
        return replace(state, should_clear_oauth_cookie=True)

    return state


# --------------- Interlock ---------------

MSG_DRAFT_FIRST_IMAGE = (
    "[SISTEMA] Bloqueado: primero redacta el contenido del post con generate_content. "
    "No se puede describir ni generar imagen sin un borrador de texto."
)
MSG_DRAFT_FIRST_PUBLISH = (
    "[SISTEMA] Bloqueado: no hay un borrador de contenido aprobado en esta conversación. "
    "Llama generate_content, muestra el texto al cliente y espera su aprobación antes de publicar."
)
MSG_RESOLVE_IMAGE = (
    "[SISTEMA] Bloqueado: ofreciste una imagen para este post. Genera la imagen con generate_image "
    "o, si el cliente la rechazó, llama publish_post con without_image=true."
)
MSG_ALREADY_PUBLISHED = (
    "[SISTEMA] Bloqueado: este post ya fue publicado. Redacta el siguiente post con generate_content."
)
MSG_MISSING_POST = (
    "[SISTEMA] Bloqueado: no hay un post activo guardado. Llama generate_content para crear el borrador."
)
MSG_COUNTER_TOOL = (
    "[SISTEMA] Bloqueado: los contadores y el estado de programación se actualizan solos al publicar. "
    "Nunca llames esta herramienta directamente."
)
MSG_FORCE_TOOL = (
    "[SISTEMA] Tu respuesta anterior afirmó una acción que no ejecutaste. "
    "No digas que algo fue publicado, programado o generado sin llamar la herramienta correspondiente. "
    "Si el cliente aprobó, llama AHORA la herramienta adecuada (generate_content, generate_image o publish_post). "
    "Si falta información, pregunta al cliente sin afirmar resultados."
)


def _truthy(raw: Any) -> bool:
    if isinstance(raw, str):
        return raw.strip().lower() in ("1", "true", "yes", "si", "sí")
    return bool(raw)


def validate_tool_call(
    state: GuardianState,
    tool_name: str,
    tool_input: Optional[Mapping] = None,
    policy: GuardianPolicy = DEFAULT_POLICY,
) -> Verdict:
    """ALLOW or BLOCK a tool call before any side effect happens."""
    params = tool_input if isinstance(tool_input, Mapping) else {}

    if tool_name in policy.counter_tools:
        return Verdict.block("counter_tool", MSG_COUNTER_TOOL)

    if tool_name in policy.image_tools:
        if not state.stage.at_least(Stage.CONTENT_DRAFTED) or state.stage == Stage.PUBLISHED:
            return Verdict.block("draft_first_image", MSG_DRAFT_FIRST_IMAGE)
        return Verdict.allow()

    if tool_name in policy.publish_tools:
        if not state.stage.at_least(Stage.CONTENT_DRAFTED):
            return Verdict.block("draft_first_publish", MSG_DRAFT_FIRST_PUBLISH)
        if state.stage == Stage.PUBLISHED:
            return Verdict.block("already_published", MSG_ALREADY_PUBLISHED)
        if not state.active_post_id:
            return Verdict.block("missing_post", MSG_MISSING_POST)
        if state.stage == Stage.IMAGE_OFFERED and not _truthy(params.get("without_image")):
            return Verdict.block("unresolved_image", MSG_RESOLVE_IMAGE)
        return Verdict.allow()

    return Verdict.allow()


def validate_end_turn(
    state: GuardianState,
    accumulated_text: str,
    last_user_message: str = "",
    policy: GuardianPolicy = DEFAULT_POLICY,
) -> Verdict:
    """Decide whether the model may end its turn with this text.

    Blocks a turn that claims a publish no tool performed, or that answers a
    user approval without running any tool. After ``max_end_turn_retries``
    forced retries the turn is let through with ``fail_open`` set.
    """
    publish_ran = any(name in policy.publish_tools for name in state.executed_tools)

    verdict = Verdict.allow()
    if (
        not publish_ran
        and state.stage != Stage.PUBLISHED
        and policy.claims_publish(accumulated_text)
    ):
        verdict = Verdict.block("publish_claim_without_tool", MSG_FORCE_TOOL)
    elif not state.executed_tools and policy.is_approval(last_user_message):
        verdict = Verdict.block("approval_without_tool", MSG_FORCE_TOOL)

    if not verdict.allowed and state.end_turn_retry_count >= policy.max_end_turn_retries:
        return Verdict(allowed=True, reason=verdict.reason, fail_open=True)
    return verdict
