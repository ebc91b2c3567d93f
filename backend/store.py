"""Relational store operations.

Counters and post content are only ever mutated here. ``record_publish`` is
the single place a publish is accounted for: it marks the post scheduled and
bumps the plan counter in the same commit.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from models import ChatSession, Plan, Post, ConnectedAccount, ChatMessage, ContextSummary

logger = logging.getLogger(__name__)

ACTIVE_PLAN_STATUSES = ("approved", "in_progress")
DRAFTED_POST_STATUSES = ("content_ready", "image_ready")
PUBLISHED_POST_STATUSES = ("scheduled", "published")


def _now() -> datetime:
    return datetime.now(timezone.utc)


# --------------- Sessions ---------------

def create_session(db: Session, business_name: Optional[str] = None, email: Optional[str] = None) -> ChatSession:
    session = ChatSession(business_name=business_name, email=email)
    db.add(session)
    db.commit()
    db.refresh(session)
    return session


def get_session(db: Session, session_id: Optional[str]) -> Optional[ChatSession]:
    if not session_id:
        return None
    return db.query(ChatSession).filter(ChatSession.id == session_id).first()


def update_session(db: Session, session_id: str, **fields) -> Optional[ChatSession]:
    session = get_session(db, session_id)
    if not session:
        return None
    for key, value in fields.items():
        if hasattr(session, key):
            setattr(session, key, value)
    db.commit()
    db.refresh(session)
    return session


def list_active_sessions(db: Session) -> list[ChatSession]:
    return db.query(ChatSession).filter(ChatSession.status != "completed").all()


# --------------- Plans ---------------

def create_plan(
    db: Session,
    session_id: str,
    plan_name: str,
    post_titles: list[str],
    description: Optional[str] = None,
    status: str = "approved",
) -> Plan:
    plan = Plan(
        session_id=session_id,
        plan_name=plan_name,
        description=description,
        post_count=len(post_titles),
        posts_published=0,
        status=status,
        approved_at=_now() if status in ACTIVE_PLAN_STATUSES else None,
    )
    db.add(plan)
    db.flush()
    for idx, title in enumerate(post_titles, start=1):
        db.add(Post(plan_id=plan.id, session_id=session_id, order_num=idx, title=title, status="pending"))
    session = get_session(db, session_id)
    if session:
        session.status = "active"
        session.active_plan_id = plan.id
    db.commit()
    db.refresh(plan)
    return plan


def get_plan(db: Session, plan_id: Optional[str]) -> Optional[Plan]:
    if not plan_id:
        return None
    return db.query(Plan).filter(Plan.id == plan_id).first()


def get_active_plan(db: Session, session_id: Optional[str]) -> Optional[Plan]:
    if not session_id:
        return None
    return (
        db.query(Plan)
        .filter(Plan.session_id == session_id, Plan.status.in_(ACTIVE_PLAN_STATUSES))
        .order_by(Plan.created_at.desc())
        .first()
    )


# --------------- Posts ---------------

def create_post(
    db: Session,
    session_id: Optional[str],
    content: str,
    plan_id: Optional[str] = None,
    title: Optional[str] = None,
) -> Post:
    order_num = 1
    if plan_id:
        order_num = db.query(Post).filter(Post.plan_id == plan_id).count() + 1
    post = Post(
        plan_id=plan_id,
        session_id=session_id,
        order_num=order_num,
        title=title,
        content=content,
        status="content_ready",
    )
    db.add(post)
    db.commit()
    db.refresh(post)
    return post


def get_post(db: Session, post_id: Optional[str]) -> Optional[Post]:
    if not post_id:
        return None
    return db.query(Post).filter(Post.id == post_id).first()


def get_posts_by_plan(db: Session, plan_id: str) -> list[Post]:
    return db.query(Post).filter(Post.plan_id == plan_id).order_by(Post.order_num.asc()).all()


def get_next_pending_post(db: Session, plan_id: Optional[str]) -> Optional[Post]:
    if not plan_id:
        return None
    return (
        db.query(Post)
        .filter(Post.plan_id == plan_id, Post.status == "pending")
        .order_by(Post.order_num.asc())
        .first()
    )


def get_latest_drafted_post(db: Session, plan_id: Optional[str]) -> Optional[Post]:
    """Most recent post of a plan that has content and is not yet published."""
    if not plan_id:
        return None
    return (
        db.query(Post)
        .filter(
            Post.plan_id == plan_id,
            Post.status.in_(DRAFTED_POST_STATUSES),
            Post.content.isnot(None),
        )
        .order_by(Post.order_num.desc(), Post.created_at.desc())
        .first()
    )


def set_post_content(db: Session, post_id: str, content: str, title: Optional[str] = None) -> Optional[Post]:
    post = get_post(db, post_id)
    if not post:
        return None
    post.content = content
    if title:
        post.title = title
    if post.status in ("pending", "failed", "content_ready"):
        post.status = "content_ready"
    db.commit()
    db.refresh(post)
    return post


def set_post_image_spec(
    db: Session,
    post_id: str,
    prompt: str,
    model: str = "schnell",
    aspect_ratio: str = "1:1",
    count: int = 1,
) -> Optional[Post]:
    post = get_post(db, post_id)
    if not post:
        return None
    post.image_prompt = prompt
    post.image_model = model
    post.image_aspect_ratio = aspect_ratio
    post.image_count = count
    db.commit()
    db.refresh(post)
    return post


def set_post_image(db: Session, post_id: str, image_url: str) -> Optional[Post]:
    post = get_post(db, post_id)
    if not post:
        return None
    post.image_url = image_url
    if post.status not in PUBLISHED_POST_STATUSES:
        post.status = "image_ready"
    db.commit()
    db.refresh(post)
    return post


def set_post_draft_id(db: Session, post_id: str, draft_id: str) -> Optional[Post]:
    post = get_post(db, post_id)
    if not post:
        return None
    post.late_draft_id = draft_id
    db.commit()
    db.refresh(post)
    return post


def record_publish(
    db: Session,
    post_id: str,
    late_post_id: str,
    scheduled_for: Optional[str] = None,
) -> dict:
    """Mark a post scheduled and bump the plan counter in one transaction.

    Re-recording a post that is already scheduled leaves the counter alone.
    """
    post = get_post(db, post_id)
    if not post:
        raise LookupError(f"post {post_id} not found")

    already = post.status in PUBLISHED_POST_STATUSES
    post.status = "scheduled"
    post.late_post_id = late_post_id
    post.scheduled_for = scheduled_for
    if not scheduled_for:
        post.published_at = post.published_at or _now()

    plan = get_plan(db, post.plan_id)
    plan_completed = False
    if plan and not already:
        plan.posts_published = (plan.posts_published or 0) + 1
        if plan.status == "approved":
            plan.status = "in_progress"
        if plan.post_count and plan.posts_published >= plan.post_count:
            plan.status = "completed"
    if plan:
        plan_completed = plan.status == "completed"

    try:
        db.commit()
    except Exception:
        db.rollback()
        raise

    return {
        "post_id": post.id,
        "plan_id": plan.id if plan else None,
        "posts_published": plan.posts_published if plan else 0,
        "post_count": plan.post_count if plan else 0,
        "plan_completed": plan_completed,
        "already_recorded": already,
    }


# --------------- Connected accounts ---------------

def save_connected_account(
    db: Session,
    session_id: str,
    platform: str,
    account_id: str,
    username: Optional[str] = None,
) -> ConnectedAccount:
    account = (
        db.query(ConnectedAccount)
        .filter(ConnectedAccount.session_id == session_id, ConnectedAccount.account_id == account_id)
        .first()
    )
    if account:
        account.platform = platform
        account.username = username or account.username
    else:
        account = ConnectedAccount(session_id=session_id, platform=platform, account_id=account_id, username=username)
        db.add(account)
    db.commit()
    db.refresh(account)
    return account


def get_connected_accounts(db: Session, session_id: Optional[str]) -> list[ConnectedAccount]:
    if not session_id:
        return []
    return db.query(ConnectedAccount).filter(ConnectedAccount.session_id == session_id).all()


# --------------- Messages / summaries ---------------

def append_chat_messages(db: Session, session_id: str, messages: list[dict]) -> int:
    added = 0
    for msg in messages:
        content = msg.get("content")
        if not isinstance(content, str) or not content.strip():
            continue
        db.add(ChatMessage(session_id=session_id, role=msg.get("role") or "user", content=content))
        added += 1
    db.commit()
    return added


def count_chat_messages(db: Session, session_id: str) -> int:
    return db.query(ChatMessage).filter(ChatMessage.session_id == session_id).count()


def recent_chat_messages(db: Session, session_id: str, limit: int = 50) -> list[ChatMessage]:
    rows = (
        db.query(ChatMessage)
        .filter(ChatMessage.session_id == session_id)
        .order_by(ChatMessage.id.desc())
        .limit(limit)
        .all()
    )
    return list(reversed(rows))


def get_latest_summary(db: Session, session_id: Optional[str]) -> Optional[ContextSummary]:
    if not session_id:
        return None
    return (
        db.query(ContextSummary)
        .filter(ContextSummary.session_id == session_id)
        .order_by(ContextSummary.id.desc())
        .first()
    )


def save_summary(db: Session, session_id: str, summary: str, message_count: int) -> ContextSummary:
    row = ContextSummary(session_id=session_id, summary=summary, message_count=message_count)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


# --------------- Guardian snapshot ---------------

def load_guardian_snapshot(db: Session, session_id: Optional[str]) -> dict:
    """Session projection consumed by guardian.create_initial_state."""
    session = get_session(db, session_id)
    if not session:
        return {}
    plan = get_plan(db, session.active_plan_id) or get_active_plan(db, session.id)
    post = get_post(db, session.active_post_id)
    snapshot = {
        "stage": session.guardian_stage,
        "session_id": session.id,
        "active_plan_id": plan.id if plan else session.active_plan_id,
        "active_post_id": session.active_post_id,
        "plan_post_count": plan.post_count if plan else 0,
        "posts_published": plan.posts_published if plan else 0,
        "connected_platforms": [
            {"platform": a.platform, "account_id": a.account_id} for a in get_connected_accounts(db, session.id)
        ],
    }
    if post and post.image_prompt:
        snapshot["last_image_spec"] = {
            "prompt": post.image_prompt,
            "model": post.image_model,
            "aspect_ratio": post.image_aspect_ratio,
            "count": post.image_count,
        }
    return snapshot


def persist_guardian_snapshot(db: Session, session_id: Optional[str], snapshot: dict) -> None:
    session = get_session(db, session_id)
    if not session:
        return
    session.guardian_stage = snapshot.get("stage") or session.guardian_stage
    session.active_plan_id = snapshot.get("active_plan_id")
    session.active_post_id = snapshot.get("active_post_id")
    db.commit()
