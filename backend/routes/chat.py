"""Chat, action button, session and maintenance routes."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import store
from action_handler import ActionHandler
from config import Settings
from context_summarizer import generate_all_context_summaries
from conversation import ConversationLoop
from deps import get_db, get_services, get_settings
from oauth_cookie import COOKIE_NAME, clear_pending_cookie
from prompts import build_system_prompt
from request_parser import parse_chat_request, session_status
from response_builder import build_chat_response
from schemas import ActionRequest, ActionResponse, ChatRequest, ChatResponse, SessionStatusResponse
from tools import ToolExecutor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])


def _persist_turn(db: Session, parsed, result) -> None:
    """Write the terminal guardian state and the exchanged messages."""
    if not parsed.session_id:
        return
    try:
        store.persist_guardian_snapshot(db, parsed.session_id, result.state.snapshot())
        store.append_chat_messages(
            db,
            parsed.session_id,
            [parsed.messages[-1], {"role": "assistant", "content": result.final_text}],
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("chat.persist_failed", extra={"session_id": parsed.session_id, "error": str(exc)})


@router.post("/chat", response_model=ChatResponse, response_model_exclude_none=True)
async def chat(
    body: ChatRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    services=Depends(get_services),
):
    parsed = parse_chat_request(db, body, request.cookies.get(COOKIE_NAME), settings)
    business_info = parsed.context.get("business_info") or {}
    executor = ToolExecutor(
        db,
        services,
        settings,
        session_id=parsed.session_id,
        pending_oauth=parsed.pending_oauth,
        business_name=parsed.context.get("business_name") or "",
        business_type=business_info.get("type") or business_info.get("business_type") or "",
    )
    loop = ConversationLoop(services.llm, executor, settings, telemetry=services.telemetry)
    system = build_system_prompt(parsed.context, timezone=settings.publish_timezone)

    result = await loop.run(system, parsed.messages, parsed.state, is_cancelled=request.is_disconnected)
    payload, clear_cookie = build_chat_response(result, parsed.session_id)
    if result.cancelled:
        logger.info("chat.cancelled", extra={"session_id": parsed.session_id})
        return payload

    _persist_turn(db, parsed, result)
    if clear_cookie:
        clear_pending_cookie(response, settings)
    logger.info(
        "chat.completed",
        extra={
            "session_id": parsed.session_id,
            "iterations": result.iterations,
            "stage": result.state.stage.value,
            "truncated": result.truncated,
        },
    )
    return payload


@router.post("/chat/action", response_model=ActionResponse, response_model_exclude_none=True)
async def chat_action(
    body: ActionRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    services=Depends(get_services),
):
    if not body.action:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "error": "missing_action", "message": "Falta la acción."},
        )
    if body.params is None:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "error": "missing_params", "message": "Faltan los parámetros."},
        )

    handler = ActionHandler(db, services, settings)
    try:
        result = await handler.handle(body.action, body.params)
    except Exception:
        logger.exception("action.unhandled", extra={"action": body.action})
        db.rollback()
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "error": "internal_error",
                "message": "Ocurrió un error inesperado. Intente de nuevo.",
            },
        )

    if not result.success:
        logger.info("action.failed", extra={"action": body.action, "error": result.error})
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=result.to_dict())
    return result.to_dict()


@router.get("/chat/session", response_model=SessionStatusResponse, response_model_exclude_none=True)
async def get_session_status(session_id: Optional[str] = Query(default=None, alias="id"), db: Session = Depends(get_db)):
    return session_status(db, session_id)


@router.get("/chat/telemetry")
async def get_guardian_telemetry(hours: int = 24, limit: int = 6, services=Depends(get_services)):
    """Guardian and loop anomaly counters over the last ``hours``."""
    return services.telemetry.summary(hours=hours, limit=limit)


@router.post("/cron/context-summaries")
async def run_context_summaries(
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    services=Depends(get_services),
):
    if settings.cron_secret and authorization != f"Bearer {settings.cron_secret}":
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"error": "Unauthorized"})
    result = await generate_all_context_summaries(db, services.llm, settings)
    logger.info("cron.context_summaries", extra=result)
    return {"success": True, **result}
