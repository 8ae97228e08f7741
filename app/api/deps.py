from __future__ import annotations

from fastapi import Depends, Request

from app.ai.factory import get_ai_client
from app.ai.types import AIClient
from app.core.errors import NotFoundError
from app.core.services import ServiceContainer
from app.services.gateways import AnalysisGateway, ServiceAnalysisGateway


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_gateway(client: AIClient = Depends(get_ai_client)) -> AnalysisGateway:
    return ServiceAnalysisGateway(client)


def require_session(session_id: str, services: ServiceContainer = Depends(get_services)) -> str:
    if not services.pipeline.has_session(session_id):
        raise NotFoundError("Unknown or expired session. Please start a new upload.", code="session_missing")
    return session_id
