"""Shared FastAPI dependencies used across route modules."""

from dataclasses import dataclass

from fastapi import Request

from database import SessionLocal
from config import Settings
from anthropic_service import AnthropicService
from image_service import ReplicateService
from late_client import LateClient
from telemetry import GuardianTelemetry


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_services(request: Request):
    """Return the collaborator bundle built at startup (see build_services)."""
    return request.app.state.services


@dataclass
class Services:
    """Outbound collaborators shared by every request."""

    llm: AnthropicService
    late: LateClient
    images: ReplicateService
    telemetry: GuardianTelemetry


def build_services(settings: Settings) -> Services:
    return Services(
        llm=AnthropicService(settings),
        late=LateClient(settings),
        images=ReplicateService(settings),
        telemetry=GuardianTelemetry.from_settings(settings),
    )
