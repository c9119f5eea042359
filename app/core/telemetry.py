"""Best-effort retrieval audit logging.

The audit row is written from a background task attached to the streaming
response, so it never delays or alters what the client receives. Failures are
logged and dropped.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from app.core.logging import get_logger
from app.core.schemas_context import ContextRetrievalLog, KnowledgeTier
from app.db.retrieval_logs import insert_retrieval_log

if TYPE_CHECKING:
    from app.core.context_pipeline import ContextBuildResult

logger = get_logger(__name__)

PREVIEW_CHARS = 200


def build_retrieval_log(
    result: ContextBuildResult,
    *,
    agent_id: str,
    company_id: str,
    conversation_id: str | None,
) -> ContextRetrievalLog:
    """Summarize one pipeline run as an audit row."""
    retrieval = result.retrieval

    def previews(tier: KnowledgeTier) -> list[dict]:
        return [c.preview(PREVIEW_CHARS) for c in retrieval.chunks_for(tier)]

    return ContextRetrievalLog(
        conversation_id=conversation_id,
        agent_id=agent_id,
        company_id=company_id,
        original_query=result.expansion.original_query,
        expanded_queries=result.expansion.expanded_queries,
        foundation_chunks=previews(KnowledgeTier.FOUNDATION),
        specialized_chunks=previews(KnowledgeTier.SPECIALIZED),
        shared_chunks=previews(KnowledgeTier.SHARED),
        procedural_chunks=previews(KnowledgeTier.PROCEDURAL),
        retrieval_time_ms=retrieval.retrieval_time_ms,
        rerank_time_ms=result.rerank.rerank_time_ms,
        total_time_ms=result.total_time_ms,
        confidence_score=result.confidence,
        sources_used=retrieval.sources_used,
        chunks_retrieved=retrieval.total_chunks,
        chunks_used_in_prompt=len(result.chunks),
    )


async def record_retrieval_log(log: ContextRetrievalLog) -> None:
    """Write the audit row; never raises."""
    try:
        await asyncio.to_thread(insert_retrieval_log, log.to_row())
        logger.debug(f"Retrieval log written for agent {log.agent_id}")
    except Exception as e:
        logger.error(f"Failed to write retrieval log for agent {log.agent_id}: {e!r}")
