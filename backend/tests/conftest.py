"""Pytest configuration and shared fakes for the backend tests."""

import os
import sys
from pathlib import Path
from types import SimpleNamespace

# In-memory database and no telemetry file for anything that imports main.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("GUARDIAN_TELEMETRY_ENABLED", "false")

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from anthropic_service import LLMResponse
from config import Settings
from database import Base
import models  # noqa: F401  (registers tables on Base.metadata)


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        telemetry_enabled=False,
        telemetry_path=tmp_path / "telemetry.log",
        oauth_cookie_secret="test-secret",
        late_profile_id="profile-1",
    )


async def no_sleep(_seconds):
    return None


def text_response(text: str, stop_reason: str = "end_turn") -> LLMResponse:
    return LLMResponse(
        content=[{"type": "text", "text": text}],
        stop_reason=stop_reason,
        usage={"input_tokens": 10, "output_tokens": 5},
    )


def tool_response(name: str, tool_input: dict, tool_id: str = "tu_1", text: str = "") -> LLMResponse:
    content = [{"type": "text", "text": text}] if text else []
    content.append({"type": "tool_use", "id": tool_id, "name": name, "input": tool_input})
    return LLMResponse(content=content, stop_reason="tool_use", usage={"input_tokens": 10, "output_tokens": 5})


class FakeLLM:
    """Replays scripted responses and records every request."""

    def __init__(self, responses=None, text="Resumen de prueba"):
        self.responses = list(responses or [])
        self.text = text
        self.calls = []

    async def create_message(self, system, messages, tools=None, max_tokens=None):
        self.calls.append({"system": system, "messages": list(messages), "tools": tools})
        if not self.responses:
            return text_response("¿En qué más le puedo ayudar?")
        return self.responses.pop(0)

    async def complete_text(self, system, prompt, max_tokens=1024):
        self.calls.append({"system": system, "prompt": prompt})
        return self.text


class FakeLate:
    def __init__(self, accounts=None):
        self.accounts = accounts if accounts is not None else [
            {"_id": "acc-fb", "platform": "facebook", "username": "cafe_luna"},
        ]
        self.drafts = []
        self.activations = []
        self.draft_error = None
        self.activate_error = None

    async def list_accounts(self):
        return list(self.accounts)

    async def create_draft_post(self, content, platforms, media_items=None, timezone=None):
        if self.draft_error is not None:
            raise self.draft_error
        self.drafts.append({"content": content, "platforms": platforms, "media_items": media_items or []})
        return {"_id": f"draft-{len(self.drafts)}"}

    async def activate_draft(self, draft_id, activation):
        if self.activate_error is not None:
            raise self.activate_error
        self.activations.append({"draft_id": draft_id, "activation": activation})
        return {"_id": draft_id}

    async def get_connect_url(self, platform, profile_id=None):
        return {"auth_url": f"https://getlate.dev/connect/{platform}", "headless": False}

    async def get_connection_options(self, pending):
        return [{"id": "page-1", "name": "Café Luna", "urn": None}]

    async def save_connection_selection(self, pending, selection_id, selection_name=""):
        return {"success": True}


class FakeImages:
    def __init__(self, url="https://replicate.delivery/pbxt/img-1.webp", success=True):
        self.url = url
        self.success = success
        self.calls = []

    async def generate_image(self, prompt, model="schnell", aspect_ratio="1:1", num_outputs=1, output_format="webp"):
        self.calls.append({"prompt": prompt, "model": model, "aspect_ratio": aspect_ratio})
        if not self.success:
            return {"success": False, "images": [], "error": "La imagen no se pudo generar."}
        return {"success": True, "images": [self.url], "model": model, "cost_real": 0.003, "cost_client": 0.015}


class FakeTelemetry:
    def __init__(self):
        self.events = []

    def record(self, event, payload=None):
        self.events.append((event, payload or {}))

    def summary(self, hours=24, limit=6):
        return {"hours": hours, "counts": {}}


@pytest.fixture
def services():
    return SimpleNamespace(llm=FakeLLM(), late=FakeLate(), images=FakeImages(), telemetry=FakeTelemetry())
