"""Final chat payload: text, derived buttons and the action context."""

import logging
from typing import Optional

from buttons import DetectorState, match_detector
from conversation import ConversationResult

logger = logging.getLogger(__name__)


def build_chat_response(result: ConversationResult, session_id: Optional[str]) -> tuple[dict, bool]:
    """Return (payload, clear_oauth_cookie).

    The action context only carries identifiers; handlers re-read content.
    """
    state = result.state
    detector_state = DetectorState.from_guardian(state)
    detector = match_detector(result.final_text, detector_state)

    payload = {
        "message": result.final_text,
        "sessionId": session_id,
        "truncated": result.truncated,
    }
    if result.last_usage:
        payload["usage"] = result.last_usage

    if detector is not None:
        buttons = detector.build(result.final_text, detector_state)
        payload["buttons"] = [b.to_dict() for b in buttons]
        logger.info("chat.buttons", extra={"detector": detector.name, "count": len(buttons)})
        if any(b.type == "action" for b in buttons):
            payload["actionContext"] = {
                "sessionId": session_id,
                "planId": state.active_plan_id,
                "postId": state.active_post_id,
            }

    return payload, state.should_clear_oauth_cookie
