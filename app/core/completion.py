"""Streamed chat completion, proxied to the caller without transformation.

``open_completion_stream`` only returns once the provider has answered with a
2xx status, so every provider failure surfaces as an UpstreamError before the
first byte reaches the client. After that the body is relayed chunk by chunk;
a later provider failure can only truncate the stream.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack
from dataclasses import dataclass
from typing import Any

import openai
from openai import AsyncOpenAI

from app.core.config import get_settings
from app.core.errors import UpstreamError
from app.core.logging import get_logger
from app.core.schemas_context import AgentConfig

logger = get_logger(__name__)

# Chat-completion parameters an agent configuration may override. Other keys
# (ai_provider, web_access, ...) are admin UI settings the provider rejects.
FORWARDED_PARAMS = frozenset(
    {
        "frequency_penalty",
        "logit_bias",
        "presence_penalty",
        "response_format",
        "seed",
        "stop",
        "top_p",
        "user",
    }
)


@dataclass
class CompletionParams:
    """Resolved model parameters for one completion call."""

    model: str
    temperature: float
    max_tokens: int | None = None
    overrides: dict[str, Any] | None = None

    @classmethod
    def from_agent(cls, agent: AgentConfig) -> CompletionParams:
        settings = get_settings()
        cfg = agent.configuration
        return cls(
            model=cfg.model or settings.DEFAULT_CHAT_MODEL,
            temperature=(
                cfg.temperature if cfg.temperature is not None else settings.DEFAULT_CHAT_TEMPERATURE
            ),
            max_tokens=cfg.max_tokens,
            overrides=cfg.provider_overrides,
        )


class CompletionStream:
    """An open upstream response whose body has not been read yet."""

    def __init__(self, response: Any, exit_stack: AsyncExitStack):
        self._response = response
        self._exit_stack = exit_stack

    @property
    def media_type(self) -> str:
        return self._response.headers.get("content-type", "text/event-stream")

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """Yield the upstream body as received, then release the connection."""
        try:
            async for chunk in self._response.iter_bytes():
                yield chunk
        except Exception as e:
            logger.error(f"Completion stream interrupted: {e!r}")
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        await self._exit_stack.aclose()


def _get_client() -> AsyncOpenAI:
    settings = get_settings()
    return AsyncOpenAI(
        api_key=settings.OPENAI_API_KEY,
        base_url=settings.OPENAI_BASE_URL,
        max_retries=0,
    )


async def open_completion_stream(
    system_prompt: str,
    user_message: str,
    params: CompletionParams,
) -> CompletionStream:
    """Issue the streamed completion call and wait for a 2xx status.

    Args:
        system_prompt: Assembled context prompt
        user_message: Raw user message
        params: Model, temperature and provider overrides

    Returns:
        CompletionStream ready to be relayed

    Raises:
        UpstreamError: Non-2xx status, connection failure, or no response in time
    """
    settings = get_settings()
    client = _get_client()

    overrides = params.overrides or {}
    dropped = sorted(set(overrides) - FORWARDED_PARAMS)
    if dropped:
        logger.debug(f"Ignoring non-completion configuration keys: {dropped}")

    request: dict[str, Any] = {k: v for k, v in overrides.items() if k in FORWARDED_PARAMS}
    request.update(
        model=params.model,
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_message},
        ],
        temperature=params.temperature,
        stream=True,
    )
    if params.max_tokens:
        request["max_tokens"] = params.max_tokens

    stack = AsyncExitStack()
    try:
        response = await asyncio.wait_for(
            stack.enter_async_context(
                client.chat.completions.with_streaming_response.create(**request)
            ),
            timeout=settings.COMPLETION_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError as e:
        await stack.aclose()
        raise UpstreamError(
            "Completion provider timed out",
            details=f"no response within {settings.COMPLETION_TIMEOUT_SECONDS}s",
        ) from e
    except openai.APIStatusError as e:
        await stack.aclose()
        raise UpstreamError(
            "Completion provider returned an error",
            details={"status": e.status_code, "message": e.message},
        ) from e
    except Exception as e:
        await stack.aclose()
        raise UpstreamError("Completion provider failed", details=str(e)) from e

    logger.info(f"Completion stream opened: model={params.model}")
    return CompletionStream(response, stack)
