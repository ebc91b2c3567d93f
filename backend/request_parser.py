"""Turn an inbound chat request into messages, session context and guardian state."""

import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import store
from errors import RequestParseError
from guardian import GuardianState, create_initial_state
from oauth_cookie import decode_pending
from schemas import ChatRequest

logger = logging.getLogger(__name__)


@dataclass
class ParsedChatRequest:
    messages: list[dict]
    session_id: Optional[str]
    state: GuardianState
    context: dict = field(default_factory=dict)
    pending_oauth: Optional[dict] = None
    new_session: bool = False


def _plan_summary(plan) -> Optional[dict]:
    if not plan:
        return None
    return {
        "id": plan.id,
        "name": plan.plan_name,
        "post_count": plan.post_count,
        "posts_published": plan.posts_published,
        "status": plan.status,
    }


def load_session_context(db: Session, session) -> dict:
    plan = store.get_plan(db, session.active_plan_id) or store.get_active_plan(db, session.id)
    summary = store.get_latest_summary(db, session.id)
    return {
        "business_name": session.business_name,
        "business_info": session.business_info or {},
        "status": session.status,
        "plan_summary": _plan_summary(plan),
        "context_summary": summary.summary if summary else None,
    }


def parse_chat_request(db: Session, body: ChatRequest, cookie_value: Optional[str], settings) -> ParsedChatRequest:
    messages = [{"role": m.role, "content": m.content} for m in body.messages]
    if messages[-1]["role"] != "user":
        raise RequestParseError("The last message must come from the user", code="last_message_not_user")
    if not messages[-1]["content"].strip():
        raise RequestParseError("The last message is empty", code="empty_message")

    pending = decode_pending(cookie_value, settings.oauth_cookie_secret)

    session_id = None
    new_session = False
    context: dict = {}
    snapshot: dict = {}
    try:
        session = store.get_session(db, body.session_id)
        if session is None:
            session = store.create_session(db)
            new_session = True
        session_id = session.id
        context = load_session_context(db, session)
        snapshot = store.load_guardian_snapshot(db, session_id)
    except SQLAlchemyError as exc:
        # The chat still works without persistence; the guardian starts empty.
        db.rollback()
        logger.error("chat.session_unavailable", extra={"error": str(exc)})
        session_id = None

    if pending:
        context["pending_oauth_platform"] = pending.get("platform")

    return ParsedChatRequest(
        messages=messages,
        session_id=session_id,
        state=create_initial_state(snapshot),
        context=context,
        pending_oauth=pending,
        new_session=new_session,
    )


def session_status(db: Session, session_id: Optional[str]) -> dict:
    session = store.get_session(db, session_id)
    if not session:
        return {"exists": False}
    plan = store.get_plan(db, session.active_plan_id) or store.get_active_plan(db, session.id)
    return {
        "exists": True,
        "session_id": session.id,
        "business_name": session.business_name,
        "status": session.status,
        "has_business_info": bool(session.business_info),
        "plan": _plan_summary(plan),
    }
