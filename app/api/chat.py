"""Chat-with-context API endpoint."""

import logging
from functools import lru_cache
from typing import Optional
from uuid import uuid4

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.background import BackgroundTask

from app.core.completion import CompletionParams, open_completion_stream
from app.core.config import get_settings
from app.core.context_pipeline import build_context, load_agent, resolve_context_config
from app.core.errors import AuthError, ValidationError
from app.core.logging import bind_request_id, get_logger, log_with_context
from app.core.schemas_context import ChatRequest
from app.core.telemetry import build_retrieval_log, record_retrieval_log
from app.db.expansion_cache import ExpansionCache, SupabaseExpansionCache

logger = get_logger(__name__)

router = APIRouter()

# HTTP Bearer scheme for Authorization header
security = HTTPBearer(auto_error=False)

REQUIRED_FIELDS = ("agent_id", "company_id", "message", "user_id")


@lru_cache(maxsize=1)
def get_expansion_cache() -> ExpansionCache:
    """Shared expansion cache (overridden in tests)."""
    return SupabaseExpansionCache(ttl_days=get_settings().EXPANSION_CACHE_TTL_DAYS)


def require_credentials(credentials: Optional[HTTPAuthorizationCredentials]) -> None:
    """Raise AuthError unless a non-blank bearer credential was sent."""
    if credentials is None or not (credentials.credentials or "").strip():
        raise AuthError("Missing bearer credential")


def validate_chat_request(
    request: ChatRequest,
    credentials: Optional[HTTPAuthorizationCredentials],
) -> None:
    """Reject the request before any work is done.

    Raises:
        AuthError: No bearer credential
        ValidationError: A required field is missing or blank
    """
    require_credentials(credentials)

    missing = [
        name for name in REQUIRED_FIELDS
        if not (getattr(request, name) or "").strip()
    ]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            details={"missing": missing},
        )


@router.post("/chat/context")
async def chat_with_context(
    request: ChatRequest,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    cache: ExpansionCache = Depends(get_expansion_cache),
) -> StreamingResponse:
    """
    Chat with an agent using multi-tier context injection.

    This endpoint:
    1. Validates the request and bearer credential
    2. Loads the agent and its context configuration
    3. Builds a grounded system prompt (expand, embed, retrieve, rerank, assemble)
    4. Opens a streamed completion and relays it unchanged
    5. Writes the retrieval audit row after the response, best-effort

    Returns:
        StreamingResponse carrying the provider's body byte for byte
    """
    validate_chat_request(request, credentials)
    request_id = uuid4().hex[:12]
    bind_request_id(request_id)

    agent = await load_agent(request.agent_id)
    config = await resolve_context_config(agent.id)

    log_with_context(
        logger,
        logging.INFO,
        "Chat request accepted",
        agent_id=agent.id,
        company_id=request.company_id,
        user_id=request.user_id,
        conversation_id=request.conversation_id,
    )

    result = await build_context(
        agent=agent,
        company_id=request.company_id,
        message=request.message,
        config=config,
        cache=cache,
    )

    stream = await open_completion_stream(
        result.system_prompt,
        request.message,
        CompletionParams.from_agent(agent),
    )

    audit = build_retrieval_log(
        result,
        agent_id=agent.id,
        company_id=request.company_id,
        conversation_id=request.conversation_id,
    )

    return StreamingResponse(
        stream.iter_bytes(),
        media_type=stream.media_type,
        headers={
            "X-Context-Confidence": f"{result.confidence:.2f}",
            "X-Context-Chunks": str(len(result.chunks)),
            "X-Request-Id": request_id,
        },
        background=BackgroundTask(record_retrieval_log, audit),
    )
