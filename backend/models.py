import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChatSession(Base):
    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True, default=_uuid)
    business_name = Column(String(200), nullable=True)
    business_info = Column(JSON, nullable=True)
    email = Column(String(255), nullable=True)
    status = Column(String(20), default="interview")  # interview | strategy | planning | active | completed
    guardian_stage = Column(String(32), default="no_plan")
    active_plan_id = Column(String(36), nullable=True)
    active_post_id = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=_utcnow)

    # Relationships
    plans = relationship("Plan", back_populates="session", cascade="all, delete-orphan")
    accounts = relationship("ConnectedAccount", back_populates="session", cascade="all, delete-orphan")
    messages = relationship("ChatMessage", back_populates="session", cascade="all, delete-orphan")


class Plan(Base):
    __tablename__ = "plans"

    id = Column(String(36), primary_key=True, default=_uuid)
    session_id = Column(String(36), ForeignKey("sessions.id"), index=True)
    plan_name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    post_count = Column(Integer, default=0)
    posts_published = Column(Integer, default=0)
    status = Column(String(20), default="draft")  # draft | approved | in_progress | completed
    approved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    # Relationships
    session = relationship("ChatSession", back_populates="plans")
    posts = relationship("Post", back_populates="plan", order_by="Post.order_num")


class Post(Base):
    __tablename__ = "posts"

    id = Column(String(36), primary_key=True, default=_uuid)
    plan_id = Column(String(36), ForeignKey("plans.id"), nullable=True, index=True)
    session_id = Column(String(36), ForeignKey("sessions.id"), nullable=True, index=True)
    order_num = Column(Integer, default=1)
    title = Column(String(255), nullable=True)
    content = Column(Text, nullable=True)
    image_prompt = Column(Text, nullable=True)
    image_model = Column(String(20), default="schnell")
    image_aspect_ratio = Column(String(10), default="1:1")
    image_count = Column(Integer, default=1)
    image_url = Column(Text, nullable=True)
    late_draft_id = Column(String(100), nullable=True)
    late_post_id = Column(String(100), nullable=True)
    status = Column(String(20), default="pending")  # pending | content_ready | image_ready | scheduled | published | failed
    scheduled_for = Column(String(40), nullable=True)
    published_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=_utcnow)

    # Relationships
    plan = relationship("Plan", back_populates="posts")


class ConnectedAccount(Base):
    __tablename__ = "connected_accounts"
    __table_args__ = (UniqueConstraint("session_id", "account_id", name="uq_session_account"),)

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(36), ForeignKey("sessions.id"), index=True)
    platform = Column(String(40), nullable=False)
    account_id = Column(String(100), nullable=False)
    username = Column(String(200), nullable=True)
    connected_at = Column(DateTime(timezone=True), default=_utcnow)

    # Relationships
    session = relationship("ChatSession", back_populates="accounts")


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(36), ForeignKey("sessions.id"), index=True)
    role = Column(String(20), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    # Relationships
    session = relationship("ChatSession", back_populates="messages")


class ContextSummary(Base):
    __tablename__ = "context_summaries"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(36), ForeignKey("sessions.id"), index=True)
    summary = Column(Text, nullable=False)
    message_count = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
