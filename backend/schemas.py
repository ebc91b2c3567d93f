from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, Any, Literal


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Chat Schemas
class ChatMessageIn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(CamelModel):
    messages: list[ChatMessageIn] = Field(min_length=1)
    session_id: Optional[str] = None


class ButtonOut(BaseModel):
    id: str
    label: str
    value: str
    type: str = "option"
    style: str = "secondary"
    action: Optional[str] = None


class ActionContext(CamelModel):
    session_id: Optional[str] = None
    plan_id: Optional[str] = None
    post_id: Optional[str] = None


class ChatResponse(CamelModel):
    message: str
    session_id: Optional[str] = None
    buttons: Optional[list[ButtonOut]] = None
    action_context: Optional[ActionContext] = None
    usage: Optional[dict[str, Any]] = None
    truncated: bool = False


# Action Schemas
class ActionParams(CamelModel):
    post_id: Optional[str] = None
    plan_id: Optional[str] = None
    session_id: Optional[str] = None
    platforms: Optional[list[str]] = None
    scheduled_for: Optional[str] = None
    publish_now: Optional[bool] = None


class ActionRequest(CamelModel):
    action: Optional[str] = None
    params: Optional[ActionParams] = None


class ActionResponse(CamelModel):
    success: bool
    message: str = ""
    buttons: Optional[list[ButtonOut]] = None
    action_context: Optional[ActionContext] = None
    image_url: Optional[str] = None
    error: Optional[str] = None


# Session Schemas
class PlanSummary(CamelModel):
    id: str
    name: str
    post_count: int
    posts_published: int
    status: str


class SessionStatusResponse(CamelModel):
    exists: bool
    session_id: Optional[str] = None
    business_name: Optional[str] = None
    status: Optional[str] = None
    has_business_info: bool = False
    plan: Optional[PlanSummary] = None
