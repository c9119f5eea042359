"""Context-injection pipeline, one call per chat turn.

Pipeline: expand (cache-first) → embed original query → parallel retrieve
          → merge → rerank if oversized → assemble prompt → score confidence.

Usage:
    from app.core.context_pipeline import build_context

    result = await build_context(
        agent=agent,
        company_id="7d1c...",
        message="How should we price the new tier?",
        config=context_config,
        cache=expansion_cache,
    )
    result.system_prompt  # ready for the completion call
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from uuid import UUID

from app.core.confidence import score_confidence
from app.core.embeddings import embed_query
from app.core.errors import ContextEngineError, NotFoundError
from app.core.knowledge_sources import RetrievalResult, parallel_retrieve
from app.core.logging import get_logger
from app.core.prompt_assembler import PromptBuildResult, build_contextual_prompt
from app.core.query_expansion import ExpansionResult, expand_query
from app.core.reranker import RerankResult, rerank_chunks
from app.core.schemas_context import AgentConfig, ContextConfig, RetrievedChunk
from app.db.agents import get_agent
from app.db.context_config import get_context_config_row
from app.db.expansion_cache import ExpansionCache

logger = get_logger(__name__)


@dataclass
class ContextBuildResult:
    """Everything the chat endpoint and the audit log need from one run."""

    system_prompt: str
    chunks: list[RetrievedChunk] = field(default_factory=list)
    confidence: float = 0.0
    expansion: ExpansionResult | None = None
    retrieval: RetrievalResult = field(default_factory=RetrievalResult)
    rerank: RerankResult = field(default_factory=RerankResult)
    prompt: PromptBuildResult | None = None
    total_time_ms: int = 0


# =============================================================================
# Configuration loading
# =============================================================================


async def load_agent(agent_id: str) -> AgentConfig:
    """Fetch the agent or fail the request.

    Raises:
        NotFoundError: Unknown agent
        ContextEngineError: Agent store unavailable
    """
    # agents.id is a uuid column; anything else cannot name an agent
    try:
        UUID(agent_id)
    except ValueError as e:
        raise NotFoundError("Agent not found", details={"agent_id": agent_id}) from e

    try:
        agent = await asyncio.to_thread(get_agent, agent_id)
    except Exception as e:
        raise ContextEngineError("Failed to load agent", details=str(e)) from e

    if agent is None:
        raise NotFoundError("Agent not found", details={"agent_id": agent_id})
    return agent


async def resolve_context_config(agent_id: str) -> ContextConfig:
    """Agent-scoped config, or the documented defaults when none is stored."""
    try:
        row = await asyncio.to_thread(get_context_config_row, agent_id)
    except Exception as e:
        logger.warning(f"Context config lookup failed for agent {agent_id}, using defaults: {e}")
        row = None

    if not row:
        return ContextConfig()
    return ContextConfig.model_validate(row)


# =============================================================================
# Main Entry Point
# =============================================================================


async def select_final_chunks(
    query: str, pool: list[RetrievedChunk], config: ContextConfig
) -> RerankResult:
    """Cap the merged pool at ``total_max_chunks``.

    The reranker runs only when enabled and the pool is over budget; otherwise
    the pool is kept in merge order.
    """
    if len(pool) <= config.total_max_chunks:
        return RerankResult(chunks=list(pool))

    if config.enable_reranking:
        return await rerank_chunks(query, pool, config.rerank_target, config.rerank_model)

    return RerankResult(chunks=list(pool[: config.total_max_chunks]), method="truncate")


async def build_context(
    *,
    agent: AgentConfig,
    company_id: str,
    message: str,
    config: ContextConfig,
    cache: ExpansionCache,
) -> ContextBuildResult:
    """Turn a user message into a grounded, token-budgeted system prompt.

    Raises:
        UpstreamError: If embedding the message fails (nothing is retrieved)
    """
    start = time.perf_counter()

    expansion = await expand_query(
        message,
        cache,
        enabled=config.enable_query_expansion,
        max_expansions=config.max_expanded_queries,
    )

    query_embedding = await embed_query(message)

    retrieval = await parallel_retrieve(
        agent_id=agent.id,
        company_id=company_id,
        queries=expansion.expanded_queries,
        query_embedding=query_embedding,
        config=config,
    )

    pool = retrieval.merged()
    rerank = await select_final_chunks(message, pool, config)

    prompt = build_contextual_prompt(agent, rerank.chunks, message, config)
    confidence = score_confidence(prompt.chunks)

    total_time_ms = int((time.perf_counter() - start) * 1000)
    logger.info(
        f"Context built: expanded={len(expansion.expanded_queries)} "
        f"(cache={expansion.from_cache}), candidates={len(pool)}, "
        f"rerank={rerank.method}, used={len(prompt.chunks)}, "
        f"confidence={confidence:.2f}, tokens={prompt.total_tokens}, {total_time_ms}ms"
    )

    return ContextBuildResult(
        system_prompt=prompt.system_prompt,
        chunks=prompt.chunks,
        confidence=confidence,
        expansion=expansion,
        retrieval=retrieval,
        rerank=rerank,
        prompt=prompt,
        total_time_ms=total_time_ms,
    )
