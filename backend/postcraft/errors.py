"""
Service-level error taxonomy.

Every error raised synchronously from a service carries a machine-readable
``code``, an HTTP status, and a human-readable ``user_message``. The API layer
renders them through ``to_dict()`` so clients always receive the same envelope:

    {"success": false, "error": {"code", "message", "userMessage", "field"?, "details"?}}

Background chains never let these escape; they persist the message into the
owning session or job instead.
"""
from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        user_message: str | None = None,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.user_message = user_message or message
        self.field = field
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "userMessage": self.user_message,
        }
        if self.field:
            error["field"] = self.field
        if self.details:
            error["details"] = self.details
        return {"success": False, "error": error}


class ValidationError(ServiceError):
    status_code = 400
    code = "VALIDATION_ERROR"


class AuthorizationError(ServiceError):
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(ServiceError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(ServiceError):
    status_code = 409
    code = "CONFLICT"


class RateLimitError(ServiceError):
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, message: str, *, current: int, limit: int, **kwargs):
        details = {"current": current, "limit": limit, **(kwargs.pop("details", None) or {})}
        super().__init__(message, details=details, **kwargs)
        self.current = current
        self.limit = limit


class UpstreamProviderError(ServiceError):
    status_code = 502
    code = "UPSTREAM_PROVIDER_ERROR"


class ParseError(UpstreamProviderError):
    code = "AI_PARSE_ERROR"


class NoAIIntegrationError(ServiceError):
    status_code = 400
    code = "NO_AI_INTEGRATION"

    def __init__(self, message: str = "No active AI integration found", **kwargs):
        kwargs.setdefault(
            "user_message",
            "Connect a Gemini or OpenAI integration before generating content.",
        )
        super().__init__(message, **kwargs)
