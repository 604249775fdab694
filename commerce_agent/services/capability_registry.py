from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from itertools import count
from typing import Any, Dict, List

import httpx

from ..config import Settings
from ..models.capability import CapabilityContext, CapabilityDescriptor, CapabilityResult
from .capabilities import BUILT_IN_CAPABILITIES, Capability
from .commerce_client import CommerceBackend, MagentoGraphQLBackend
from .errors import AssistantError, ConfigurationError, UpstreamError
from .mock_commerce import MockCommerceBackend

logger = logging.getLogger(__name__)


class CapabilityRegistry(ABC):
    """Fixed capability catalog behind one contract.

    ``invoke`` never raises: unknown names, invalid parameters and backend
    failures all come back as ``CapabilityResult(success=False)``.
    """

    mode: str = "unknown"

    @abstractmethod
    async def list_capabilities(self) -> List[CapabilityDescriptor]: ...

    @abstractmethod
    async def invoke(
        self,
        name: str,
        parameters: Dict[str, Any],
        context: CapabilityContext | None = None,
    ) -> CapabilityResult: ...


class BuiltInCapabilityRegistry(CapabilityRegistry):
    """Capabilities executed in-process against a commerce backend."""

    def __init__(self, backend: CommerceBackend, *, mode: str = "built-in") -> None:
        self._backend = backend
        self._capabilities: Dict[str, Capability] = {cap.name: cap for cap in BUILT_IN_CAPABILITIES}
        self.mode = mode
        logger.info("Capability registry initialized mode=%s capabilities=%d", mode, len(self._capabilities))

    async def list_capabilities(self) -> List[CapabilityDescriptor]:
        return [capability.describe() for capability in self._capabilities.values()]

    async def invoke(self, name, parameters, context=None):
        context = context or CapabilityContext()
        capability = self._capabilities.get(name)
        if capability is None:
            logger.error("Unknown capability requested: %s", name)
            return CapabilityResult.failed(name, f"Unknown capability: {name}")
        logger.info("Executing capability name=%s params=%s", name, sorted(parameters))
        try:
            data, message = await capability.execute(self._backend, dict(parameters), context)
        except AssistantError as exc:
            logger.warning("Capability %s failed: %s", name, exc)
            return CapabilityResult.failed(name, str(exc) or exc.reason)
        except Exception as exc:
            logger.exception("Capability %s raised unexpectedly", name)
            return CapabilityResult.failed(name, str(exc) or exc.__class__.__name__)
        return CapabilityResult.ok(name, data, message)


class McpCapabilityRegistry(CapabilityRegistry):
    """Capabilities mediated by an external MCP server (JSON-RPC ``tools/list``/``tools/call``)."""

    mode = "mcp"

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        if not settings.mcp_server_url:
            raise ConfigurationError("MCP_SERVER_URL is required for mcp tool mode")
        self._url = settings.mcp_server_url
        self._timeout = settings.http_timeout_seconds
        self._transport = transport
        self._ids = count(1)

    async def _rpc(self, method: str, params: Dict[str, Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._url, json=payload)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPStatusError as exc:
            raise UpstreamError(
                f"MCP server error: {exc.response.status_code}",
                backend="mcp",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.RequestError as exc:
            raise UpstreamError(f"Cannot connect to MCP server at {self._url}: {exc}", backend="mcp") from exc
        except ValueError as exc:
            raise UpstreamError("MCP server returned a non-JSON body", backend="mcp") from exc
        if not isinstance(body, dict):
            raise UpstreamError("MCP server returned an unexpected payload", backend="mcp")
        error = body.get("error")
        if error:
            message = error.get("message", error) if isinstance(error, dict) else error
            raise UpstreamError(f"MCP error: {message}", backend="mcp")
        return body.get("result")

    async def list_capabilities(self) -> List[CapabilityDescriptor]:
        result = await self._rpc("tools/list", {})
        return [
            CapabilityDescriptor(
                name=tool["name"],
                description=tool.get("description", ""),
                input_schema=tool.get("inputSchema") or {},
            )
            for tool in (result or {}).get("tools", [])
        ]

    async def invoke(self, name, parameters, context=None):
        context = context or CapabilityContext()
        arguments = {**parameters, "_context": context.model_dump(exclude_none=True)}
        try:
            result = await self._rpc("tools/call", {"name": name, "arguments": arguments})
            return self._to_result(name, result or {})
        except UpstreamError as exc:
            logger.warning("MCP capability %s failed: %s", name, exc)
            return CapabilityResult.failed(name, str(exc))
        except Exception as exc:
            logger.exception("MCP capability %s returned an unusable result", name)
            return CapabilityResult.failed(name, f"Invalid MCP result: {exc.__class__.__name__}")

    @staticmethod
    def _to_result(name: str, result: Any) -> CapabilityResult:
        if not isinstance(result, dict):
            raise UpstreamError("MCP tools/call result is not an object", backend="mcp")
        content = result.get("content") or []
        if not isinstance(content, list):
            raise UpstreamError("MCP tools/call content is not a list", backend="mcp")
        text = "".join(
            str(part.get("text", "")) for part in content if isinstance(part, dict) and part.get("type") == "text"
        )
        try:
            payload = json.loads(text) if text else {}
        except json.JSONDecodeError:
            payload = text
        if result.get("isError"):
            error = payload.get("error") if isinstance(payload, dict) else None
            return CapabilityResult.failed(name, error or text or f"{name} failed")
        if isinstance(payload, dict) and "success" in payload:
            return CapabilityResult(capability_name=name, **{k: v for k, v in payload.items() if k != "capability_name"})
        return CapabilityResult.ok(name, payload)


def create_capability_registry(settings: Settings) -> CapabilityRegistry:
    """Build the registry for ``settings.tool_mode``. Decided once, at construction."""

    mode = settings.tool_mode
    if mode == "built-in":
        return BuiltInCapabilityRegistry(MagentoGraphQLBackend(settings))
    if mode == "mock":
        return BuiltInCapabilityRegistry(MockCommerceBackend(), mode="mock")
    if mode == "mcp":
        return McpCapabilityRegistry(settings)
    raise ConfigurationError(f"Unknown tool mode: {mode}")
