"""Cross-source reranking: Cohere rerank primary, Haiku listwise fallback.

Only invoked by the pipeline when the merged candidate pool is larger than the
final chunk budget. Every failure degrades: Cohere → Haiku → truncation of the
pool in merge order.
"""

from __future__ import annotations

import asyncio
import json
import re
import time
from dataclasses import dataclass, field
from typing import Any

from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.schemas_context import RetrievedChunk

logger = get_logger(__name__)

_cohere_client: Any | None = None
_cohere_checked = False

# Cohere bills per 100-token document segment; long chunks are cut before sending
_MAX_DOC_CHARS = 4000


@dataclass
class RerankResult:
    """Chunks surviving rerank, in relevance order."""

    chunks: list[RetrievedChunk] = field(default_factory=list)
    rerank_time_ms: int = 0
    method: str = "none"


def _get_cohere_client() -> Any | None:
    """Shared Cohere client, created on first use; None without COHERE_API_KEY."""
    global _cohere_client, _cohere_checked
    if _cohere_checked:
        return _cohere_client
    _cohere_checked = True

    settings = get_settings()
    if not settings.COHERE_API_KEY:
        return None

    try:
        import cohere

        _cohere_client = cohere.ClientV2(api_key=settings.COHERE_API_KEY)
        return _cohere_client
    except Exception as e:
        logger.debug(f"Cohere client init failed: {e}")
        return None


def _parse_ranking(text: str) -> list[Any]:
    """JSON array from a model reply, tolerating a fenced code block."""
    fenced = re.search(r"```(?:json)?\s*(.*?)```", text, re.DOTALL)
    payload = fenced.group(1) if fenced else text
    ranking = json.loads(payload.strip())
    if not isinstance(ranking, list):
        raise ValueError(f"Expected a JSON array, got {type(ranking).__name__}")
    return ranking


def _with_rerank_score(chunk: RetrievedChunk, score: float) -> RetrievedChunk:
    return chunk.model_copy(
        update={"rerank_score": max(0.0, min(1.0, float(score))), "original_score": chunk.score}
    )


async def rerank_with_cohere(
    query: str,
    chunks: list[RetrievedChunk],
    top_n: int,
    model: str,
) -> list[RetrievedChunk] | None:
    """Rerank chunks using Cohere.

    Returns None if Cohere is unavailable or the call fails.
    """
    client = _get_cohere_client()
    if not client:
        return None

    docs = [chunk.content[:_MAX_DOC_CHARS] for chunk in chunks]
    if not docs:
        return None

    try:
        response = await asyncio.to_thread(
            client.rerank,
            model=model,
            query=query,
            documents=docs,
            top_n=top_n,
        )

        reranked = []
        for item in response.results:
            idx = item.index
            if 0 <= idx < len(chunks):
                reranked.append(_with_rerank_score(chunks[idx], item.relevance_score))

        if reranked:
            logger.info(f"Cohere reranked {len(docs)} → {len(reranked)} chunks")
            return reranked[:top_n]

        return None

    except Exception as e:
        logger.warning(f"Cohere rerank failed: {e}")
        return None


async def rerank_with_haiku(
    query: str,
    chunks: list[RetrievedChunk],
    top_n: int,
) -> list[RetrievedChunk] | None:
    """Rerank chunks via Haiku listwise ranking. Returns None on failure.

    Positional scores ``1 - rank / len(pool)`` stand in for relevance scores.
    """
    settings = get_settings()
    if not settings.ANTHROPIC_API_KEY:
        return None

    try:
        from anthropic import AsyncAnthropic

        client = AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY, max_retries=0)

        summaries = []
        for i, chunk in enumerate(chunks):
            content = chunk.content[:200].replace("\n", " ")
            summaries.append(f"{i+1}. [{chunk.source.value}] {content}")

        prompt = (
            f'Given the query: "{query}"\n\n'
            f"Rank these chunks by relevance. Return ONLY a JSON array of the "
            f"top {top_n} most relevant chunk numbers in order.\n\n"
            + "\n".join(summaries)
            + "\n\nReturn: [most_relevant_number, ..., least_relevant_number] "
            + f"(exactly {top_n} numbers)"
        )

        response = await client.messages.create(
            model=settings.RERANK_FALLBACK_MODEL,
            max_tokens=200,
            temperature=0.0,
            messages=[{"role": "user", "content": prompt}],
        )

        ranked_indices = _parse_ranking(response.content[0].text)

        ordered: list[RetrievedChunk] = []
        seen: set[int] = set()
        for idx in ranked_indices:
            if isinstance(idx, int) and 1 <= idx <= len(chunks) and idx not in seen:
                ordered.append(chunks[idx - 1])
                seen.add(idx)

        if not ordered:
            return None

        # Fill remaining slots in merge order
        for i, chunk in enumerate(chunks, start=1):
            if len(ordered) >= top_n:
                break
            if i not in seen:
                ordered.append(chunk)

        pool = len(chunks)
        reranked = [
            _with_rerank_score(chunk, 1 - rank / pool)
            for rank, chunk in enumerate(ordered[:top_n])
        ]
        logger.info(f"Haiku reranked {pool} → {len(reranked)} chunks")
        return reranked

    except Exception as e:
        logger.warning(f"Haiku rerank failed: {e}")
        return None


async def rerank_chunks(
    query: str,
    chunks: list[RetrievedChunk],
    top_n: int,
    model: str = "rerank-v3.5",
) -> RerankResult:
    """Orchestrator: Cohere → Haiku → truncation.

    Args:
        query: The original (non-expanded) user query
        chunks: Merged candidate pool
        top_n: Size of the subset to keep
        model: Cohere rerank model

    Returns:
        RerankResult with at most ``top_n`` chunks
    """
    if len(chunks) <= top_n:
        return RerankResult(chunks=list(chunks))

    settings = get_settings()
    start = time.perf_counter()

    def _elapsed() -> int:
        return int((time.perf_counter() - start) * 1000)

    for method, attempt in (
        ("cohere", lambda: rerank_with_cohere(query, chunks, top_n, model)),
        ("haiku", lambda: rerank_with_haiku(query, chunks, top_n)),
    ):
        try:
            reranked = await asyncio.wait_for(attempt(), timeout=settings.RERANK_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning(f"{method} rerank timed out after {settings.RERANK_TIMEOUT_SECONDS}s")
            reranked = None
        if reranked is not None:
            return RerankResult(chunks=reranked, rerank_time_ms=_elapsed(), method=method)

    logger.info("Rerankers unavailable, truncating candidate pool")
    return RerankResult(chunks=list(chunks[:top_n]), rerank_time_ms=_elapsed(), method="truncate")
