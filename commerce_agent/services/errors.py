from __future__ import annotations

from typing import Any

from fastapi import status


class AssistantError(Exception):
    code: str = "INTERNAL_ERROR"
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str | None = None,
        *,
        reason: str | None = None,
        http_status: int | None = None,
        debug: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message or reason or "")
        self.reason = reason or message or self.code
        if http_status is not None:
            self.http_status = http_status
        self.debug = debug or {}


class ConfigurationError(AssistantError):
    """Raised at construction when a required credential or endpoint is missing."""

    code = "CONFIGURATION_ERROR"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR


class UpstreamError(AssistantError):
    """Raised when a model provider or the commerce backend fails.

    ``status_code`` is the upstream HTTP status (``None`` for transport
    failures) and ``backend`` names the service that failed, so callers can
    decide whether a retry makes sense.
    """

    code = "UPSTREAM_UNAVAILABLE"
    http_status = status.HTTP_502_BAD_GATEWAY

    def __init__(
        self,
        message: str | None = None,
        *,
        backend: str | None = None,
        status_code: int | None = None,
        reason: str | None = None,
        debug: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, reason=reason, debug=debug)
        self.backend = backend
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500


class NotFoundError(AssistantError):
    code = "NOT_FOUND"
    http_status = status.HTTP_404_NOT_FOUND


class ValidationError(AssistantError):
    code = "BAD_REQUEST"
    http_status = status.HTTP_400_BAD_REQUEST


class ClassificationDegraded(AssistantError):
    """Signals that the heuristic intent fallback was used. Logged, never surfaced."""

    code = "CLASSIFICATION_DEGRADED"


class CommerceUserError(AssistantError):
    """Backend-level user error (out of stock, unknown cart or SKU, GraphQL ``errors``)."""

    code = "COMMERCE_USER_ERROR"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
