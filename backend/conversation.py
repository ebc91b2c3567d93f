"""Bounded LLM tool-use loop guarded by the draft-first interlock.

One ``ConversationLoop.run`` call serves exactly one chat request. Every tool
call is validated before it runs and every attempt to end the turn is
validated before the text is returned.
"""

import json
import logging
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, Optional

from errors import LLMAuthError, LLMRequestError, PioneerError
from guardian import (
    GuardianPolicy,
    GuardianState,
    record_tool_use,
    update_state_after_tool,
    validate_end_turn,
    validate_tool_call,
)
from tools import TOOL_DEFINITIONS

logger = logging.getLogger(__name__)

TRUNCATED_FALLBACK = (
    "Lo siento, la operación tomó demasiados pasos. ¿Quiere que continúe donde me quedé?"
)


@dataclass
class ConversationResult:
    final_text: str
    state: GuardianState
    usage: dict = field(default_factory=dict)
    last_usage: dict = field(default_factory=dict)
    truncated: bool = False
    cancelled: bool = False
    iterations: int = 0

    @property
    def end_turn_retry_count(self) -> int:
        return self.state.end_turn_retry_count


def last_user_text(messages: list[dict]) -> str:
    for msg in reversed(messages):
        if msg.get("role") != "user":
            continue
        content = msg.get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            return " ".join(b.get("text", "") for b in content if isinstance(b, dict) and b.get("type") == "text")
    return ""


def _tool_result_block(tool_use_id: str, result: dict, is_error: bool) -> dict:
    return {
        "type": "tool_result",
        "tool_use_id": tool_use_id,
        "content": json.dumps(result, ensure_ascii=False, default=str),
        "is_error": is_error,
    }


def _add_usage(total: dict, usage: dict) -> None:
    for key in ("input_tokens", "output_tokens"):
        total[key] = total.get(key, 0) + int(usage.get(key) or 0)


class ConversationLoop:
    def __init__(
        self,
        llm,
        executor,
        settings,
        policy: Optional[GuardianPolicy] = None,
        telemetry=None,
        tools: Optional[list[dict]] = None,
    ):
        self.llm = llm
        self.executor = executor
        self.settings = settings
        self.policy = policy or GuardianPolicy.from_settings(settings)
        self.telemetry = telemetry
        self.tools = tools if tools is not None else TOOL_DEFINITIONS
        self.max_iterations = settings.max_tool_use_iterations

    def _record(self, event: str, payload: dict) -> None:
        if self.telemetry is not None:
            self.telemetry.record(event, payload)

    async def run(
        self,
        system: str,
        messages: list[dict],
        state: GuardianState,
        is_cancelled: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> ConversationResult:
        convo = list(messages)
        user_text = last_user_text(messages)
        text_parts: list[str] = []
        usage: dict = {}
        last_usage: dict = {}

        for iteration in range(1, self.max_iterations + 1):
            if is_cancelled is not None and await is_cancelled():
                logger.info("chat.loop.cancelled", extra={"iteration": iteration, "session_id": state.session_id})
                return ConversationResult(
                    final_text="\n\n".join(text_parts),
                    state=state,
                    usage=usage,
                    last_usage=last_usage,
                    cancelled=True,
                    iterations=iteration - 1,
                )

            response = await self.llm.create_message(system=system, messages=convo, tools=self.tools)
            last_usage = dict(response.usage or {})
            _add_usage(usage, last_usage)
            iteration_text = response.text
            tool_uses = response.tool_uses
            logger.debug(
                "chat.loop.iteration",
                extra={"iteration": iteration, "stop_reason": response.stop_reason, "tools": len(tool_uses)},
            )

            if response.stop_reason == "tool_use" and tool_uses:
                if iteration_text:
                    text_parts.append(iteration_text)
                convo.append({"role": "assistant", "content": response.content})
                results = []
                for block in tool_uses:
                    state, result_block = await self._run_tool(state, block)
                    results.append(result_block)
                convo.append({"role": "user", "content": results})
                continue

            verdict = validate_end_turn(
                state,
                "\n\n".join(text_parts + [iteration_text]),
                user_text,
                self.policy,
            )
            if not verdict.allowed:
                state = replace(state, end_turn_retry_count=state.end_turn_retry_count + 1)
                logger.warning(
                    "guardian.end_turn_blocked",
                    extra={"reason": verdict.reason, "retry": state.end_turn_retry_count},
                )
                self._record(
                    "end_turn_blocked",
                    {"reason": verdict.reason, "retry": state.end_turn_retry_count, "session_id": state.session_id},
                )
                # The blocked text is a hallucinated claim: keep it out of the reply.
                convo.append({
                    "role": "assistant",
                    "content": response.content or [{"type": "text", "text": iteration_text or "..."}],
                })
                convo.append({"role": "user", "content": verdict.message})
                continue

            if verdict.fail_open:
                logger.warning(
                    "guardian.end_turn_fail_open",
                    extra={"reason": verdict.reason, "retry": state.end_turn_retry_count},
                )
                self._record(
                    "end_turn_fail_open",
                    {"reason": verdict.reason, "retry": state.end_turn_retry_count, "session_id": state.session_id},
                )
            if iteration_text:
                text_parts.append(iteration_text)
            return ConversationResult(
                final_text="\n\n".join(text_parts),
                state=state,
                usage=usage,
                last_usage=last_usage,
                iterations=iteration,
            )

        logger.warning("chat.loop.truncated", extra={"iterations": self.max_iterations, "session_id": state.session_id})
        self._record("loop_truncated", {"iterations": self.max_iterations, "session_id": state.session_id})
        return ConversationResult(
            final_text="\n\n".join(text_parts) or TRUNCATED_FALLBACK,
            state=state,
            usage=usage,
            last_usage=last_usage,
            truncated=True,
            iterations=self.max_iterations,
        )

    async def _run_tool(self, state: GuardianState, block: dict) -> tuple[GuardianState, dict]:
        name = block.get("name") or ""
        tool_input = block.get("input") if isinstance(block.get("input"), dict) else {}
        tool_use_id = block.get("id") or ""

        verdict = validate_tool_call(state, name, tool_input, self.policy)
        if not verdict.allowed:
            logger.warning("guardian.tool_blocked", extra={"tool": name, "reason": verdict.reason})
            self._record("tool_blocked", {"tool": name, "reason": verdict.reason, "stage": state.stage.value})
            result = {"success": False, "error": verdict.message, "blocked_by": "draft_guardian"}
            return state, _tool_result_block(tool_use_id, result, is_error=True)

        try:
            result = await self.executor.execute(name, tool_input, state)
        except (LLMAuthError, LLMRequestError):
            raise
        except PioneerError as exc:
            logger.warning("chat.tool_error", extra={"tool": name, "error": str(exc), "code": exc.code})
            result = {"success": False, "error": str(exc), "error_code": exc.code}
        except Exception:
            logger.exception("chat.tool_crashed", extra={"tool": name})
            result = {
                "success": False,
                "error": f"La herramienta {name} falló inesperadamente.",
                "error_code": "tool_failed",
            }

        state = record_tool_use(state, name)
        state = update_state_after_tool(state, name, tool_input, result)
        return state, _tool_result_block(tool_use_id, result, is_error=result.get("success") is False)
