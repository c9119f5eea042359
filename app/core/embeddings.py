"""Query embeddings for the vector knowledge tiers (OpenAI).

The specialized and shared tiers both search with one embedding of the user's
original message. That call sits on the request's critical path: if it fails
or times out, nothing is retrieved and the request ends with an UpstreamError.
"""

import asyncio
from typing import Any

from openai import OpenAI

from app.core.config import Settings, get_settings
from app.core.errors import UpstreamError
from app.core.logging import get_logger

logger = get_logger(__name__)


def _get_client() -> OpenAI:
    settings = get_settings()
    return OpenAI(
        api_key=settings.OPENAI_API_KEY,
        base_url=settings.OPENAI_BASE_URL,
        max_retries=0,
    )


def _request_params(settings: Settings) -> dict[str, Any]:
    params: dict[str, Any] = {"model": settings.EMBEDDING_MODEL}
    # v3 models can be asked for the stored vector width directly
    if settings.EMBEDDING_MODEL.startswith("text-embedding-3"):
        params["dimensions"] = settings.EMBEDDING_DIM
    return params


def embed_texts(texts: list[str]) -> list[list[float]]:
    """
    Embed texts in a single request, preserving input order.

    Args:
        texts: Strings to embed

    Returns:
        One vector per input text

    Raises:
        ValueError: If a vector's width differs from EMBEDDING_DIM (the stored
            document vectors would not be comparable)
        Exception: If the OpenAI call fails
    """
    if not texts:
        return []

    settings = get_settings()
    response = _get_client().embeddings.create(input=texts, **_request_params(settings))
    vectors = [item.embedding for item in response.data]

    for i, vector in enumerate(vectors):
        if len(vector) != settings.EMBEDDING_DIM:
            raise ValueError(
                f"Embedding dimension mismatch for text {i}: "
                f"expected {settings.EMBEDDING_DIM}, got {len(vector)}"
            )

    logger.debug(f"Embedded {len(vectors)} texts with {settings.EMBEDDING_MODEL}")
    return vectors


async def embed_query(text: str) -> list[float]:
    """Embed the user's message for vector retrieval.

    Raises:
        UpstreamError: If the provider fails, times out, or returns nothing
    """
    settings = get_settings()
    try:
        vectors = await asyncio.wait_for(
            asyncio.to_thread(embed_texts, [text]),
            timeout=settings.EMBEDDING_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError as e:
        logger.error(f"Embedding timed out after {settings.EMBEDDING_TIMEOUT_SECONDS}s")
        raise UpstreamError(
            "Embedding provider timed out",
            details=f"no response within {settings.EMBEDDING_TIMEOUT_SECONDS}s",
        ) from e
    except Exception as e:
        logger.error(f"Embedding failed: {e}")
        raise UpstreamError("Embedding provider failed", details=str(e)) from e

    if not vectors:
        raise UpstreamError("Embedding provider returned no vector")
    return vectors[0]
