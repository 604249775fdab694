from __future__ import annotations

import logging
from typing import Any, Dict
from uuid import uuid4

from fastapi import APIRouter, Depends, Query, Request

from ..config import Settings, get_settings
from ..models import ChatRequest, ChatResponse
from ..services.capability_registry import CapabilityRegistry, create_capability_registry
from ..services.errors import NotFoundError
from ..services.llm_gateway import LLMGateway, create_llm_gateway
from ..services.orchestrator import Orchestrator
from ..services.session_store import SessionStore

router = APIRouter(prefix="/api/chat", tags=["chat"])
logger = logging.getLogger(__name__)

_GATEWAY_OVERRIDES = ("llm_provider", "ollama_model", "openai_model", "claude_model", "gemini_model")


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_llm_gateway(request: Request, settings: Settings = Depends(get_settings)) -> LLMGateway:
    gateway = getattr(request.app.state, "llm_gateway", None)
    if gateway is None:
        gateway = create_llm_gateway(settings)
        request.app.state.llm_gateway = gateway
    return gateway


def get_capability_registry(request: Request, settings: Settings = Depends(get_settings)) -> CapabilityRegistry:
    registry = getattr(request.app.state, "capability_registry", None)
    if registry is None:
        registry = create_capability_registry(settings)
        request.app.state.capability_registry = registry
    return registry


def _apply_overrides(
    request: ChatRequest,
    settings: Settings,
    gateway: LLMGateway,
    registry: CapabilityRegistry,
) -> tuple[LLMGateway, CapabilityRegistry]:
    """Build request-scoped collaborators when the caller overrides provider or tool mode."""

    update = request.overrides().as_settings_update()
    if not update:
        return gateway, registry
    scoped_settings = settings.model_copy(update=update)
    if any(key in update for key in _GATEWAY_OVERRIDES):
        gateway = create_llm_gateway(scoped_settings)
    if "tool_mode" in update and update["tool_mode"] != registry.mode:
        registry = create_capability_registry(scoped_settings)
    logger.info("Applied request overrides %s", sorted(update))
    return gateway, registry


@router.post("")
async def post_chat(
    request: ChatRequest,
    settings: Settings = Depends(get_settings),
    session_store: SessionStore = Depends(get_session_store),
    gateway: LLMGateway = Depends(get_llm_gateway),
    registry: CapabilityRegistry = Depends(get_capability_registry),
) -> Dict[str, Any]:
    gateway, registry = _apply_overrides(request, settings, gateway, registry)
    orchestrator = Orchestrator(gateway=gateway, registry=registry, session_store=session_store)
    response: ChatResponse = await orchestrator.handle_chat(request, trace_id=uuid4().hex)
    return response.model_dump(by_alias=True, mode="json")


@router.get("/capabilities")
async def list_capabilities(
    registry: CapabilityRegistry = Depends(get_capability_registry),
) -> Dict[str, Any]:
    capabilities = await registry.list_capabilities()
    return {
        "success": True,
        "mode": registry.mode,
        "capabilities": [capability.model_dump() for capability in capabilities],
    }


@router.get("/sessions/{session_id}/history")
async def get_history(
    session_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    session_store: SessionStore = Depends(get_session_store),
) -> Dict[str, Any]:
    session = session_store.get(session_id)
    if session is None:
        raise NotFoundError(f"Session not found: {session_id}", reason="session_not_found")
    messages = session_store.get_recent_history(session_id, limit)
    return {
        "success": True,
        "sessionId": session.session_id,
        "userType": session.user_type.value,
        "cartId": session.cart_reference,
        "messages": [message.model_dump(mode="json", exclude_none=True) for message in messages],
    }


@router.post("/sessions/{session_id}/clear")
async def clear_history(
    session_id: str,
    session_store: SessionStore = Depends(get_session_store),
) -> Dict[str, Any]:
    session_store.clear_history(session_id)
    return {"success": True, "sessionId": session_id}


@router.delete("/sessions/{session_id}")
async def delete_session(
    session_id: str,
    session_store: SessionStore = Depends(get_session_store),
) -> Dict[str, Any]:
    deleted = session_store.delete(session_id)
    return {"success": True, "sessionId": session_id, "deleted": deleted}
