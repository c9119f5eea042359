"""Error taxonomy for the chat-with-context request.

Every error here aborts the request before streaming starts and is rendered as
JSON ``{"error": ..., "details": ...}`` by the handler registered in
``app.main``. Degraded stages (expansion, a single knowledge source, rerank,
telemetry) never raise these; they log and fall back instead.
"""

from typing import Any


class ContextEngineError(Exception):
    """Base error with an HTTP status and a client-safe payload."""

    status_code: int = 500

    def __init__(self, error: str, details: Any | None = None):
        super().__init__(error)
        self.error = error
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.error}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationError(ContextEngineError):
    """Missing or malformed request fields."""

    status_code = 400


class AuthError(ContextEngineError):
    """Missing or invalid bearer credential."""

    status_code = 401


class NotFoundError(ContextEngineError):
    """Unknown agent."""

    status_code = 404


class UpstreamError(ContextEngineError):
    """Embedding or completion provider failure."""

    status_code = 500
