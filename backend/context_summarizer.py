"""Rolling per-session conversation summaries injected into the system prompt."""

import logging
from typing import Optional

from sqlalchemy.orm import Session

import store
from errors import LLMError

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = (
    "You are a context summarizer. Generate a concise summary (max 400 words) of the conversation "
    "between a marketing AI (Pioneer) and a business client. Focus on:\n"
    "- Client preferences and communication style\n"
    "- Decisions made (strategies chosen, content approved/rejected)\n"
    "- Feedback given (what they liked, what they wanted changed)\n"
    "- Business goals and priorities mentioned\n"
    "- Details relevant to marketing (target audience, seasonal patterns)\n\n"
    "Write in Spanish. Be factual and concise. Do NOT include greetings or filler."
)

SUMMARIZABLE_STATUSES = ("active", "planning", "strategy")


def format_transcript(messages) -> str:
    return "\n\n".join(
        f"{'Cliente' if m.role == 'user' else 'Pioneer'}: {m.content[:500]}" for m in messages
    )


async def summarize_session(db: Session, llm, session, settings) -> Optional[str]:
    """Summarize one session when enough new messages piled up since the last summary."""
    total = store.count_chat_messages(db, session.id)
    if total == 0:
        return None
    last = store.get_latest_summary(db, session.id)
    if total - (last.message_count if last else 0) < settings.summary_min_new_messages:
        return None

    messages = store.recent_chat_messages(db, session.id, settings.summary_window_messages)
    system = SUMMARY_SYSTEM_PROMPT
    if last:
        system += f"\n\nRESUMEN ANTERIOR:\n{last.summary}\n\nActualiza este resumen con la nueva información."
    prompt = (
        f"Negocio: {session.business_name or 'Cliente'}\n\n"
        f"CONVERSACIÓN:\n{format_transcript(messages)}\n\n"
        "Genera el resumen de contexto:"
    )
    summary = await llm.complete_text(system=system, prompt=prompt, max_tokens=600)
    if not summary:
        return None
    store.save_summary(db, session.id, summary, total)
    return summary


async def generate_all_context_summaries(db: Session, llm, settings) -> dict:
    processed = 0
    created = 0
    for session in store.list_active_sessions(db):
        if session.status not in SUMMARIZABLE_STATUSES:
            continue
        processed += 1
        try:
            if await summarize_session(db, llm, session, settings):
                created += 1
                logger.info("context.summary_created", extra={"session_id": session.id})
        except LLMError as exc:
            logger.warning("context.summary_failed", extra={"session_id": session.id, "error": str(exc)})
    return {"processed": processed, "created": created}
