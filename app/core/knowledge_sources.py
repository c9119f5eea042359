"""Four-tier knowledge retrieval with parallel fan-out.

Tier 1 Foundation: the tenant's CompanyOS record, split into fixed sections
Tier 2 Specialized: agent-scoped documents, vector similarity
Tier 3 Shared: company-wide documents, vector similarity
Tier 4 Procedural: playbook sections, Postgres full-text search

All enabled tiers run concurrently. Each retriever is isolated: an exception or
an empty store yields an empty list for that tier and never reaches the others.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.schemas_context import TIER_ORDER, ContextConfig, KnowledgeTier, RetrievedChunk
from app.db import knowledge

logger = get_logger(__name__)


# =============================================================================
# Result Model
# =============================================================================


@dataclass
class SourceOutcome:
    """Isolated outcome of one retriever."""

    tier: KnowledgeTier
    chunks: list[RetrievedChunk] = field(default_factory=list)
    error: str | None = None
    elapsed_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RetrievalResult:
    """Per-tier chunks from one fan-out."""

    outcomes: dict[KnowledgeTier, SourceOutcome] = field(default_factory=dict)
    retrieval_time_ms: int = 0

    def chunks_for(self, tier: KnowledgeTier) -> list[RetrievedChunk]:
        outcome = self.outcomes.get(tier)
        return list(outcome.chunks) if outcome else []

    def merged(self) -> list[RetrievedChunk]:
        """Candidate pool in tier order."""
        pool: list[RetrievedChunk] = []
        for tier in TIER_ORDER:
            pool.extend(self.chunks_for(tier))
        return pool

    @property
    def total_chunks(self) -> int:
        return sum(len(o.chunks) for o in self.outcomes.values())

    @property
    def sources_used(self) -> int:
        return sum(1 for o in self.outcomes.values() if o.chunks)


# =============================================================================
# Tier 1: Foundation
# =============================================================================


def _join(*parts: Any) -> str:
    return "\n".join(str(p) for p in parts if p)


def _filled(*values: Any) -> bool:
    return any(str(v).strip() for v in values if v)


def chunk_foundation_record(os_data: dict[str, Any]) -> list[tuple[str, str, str]]:
    """Split a CompanyOS document into ``(label, section, content)`` tuples.

    Sections come out in a fixed order. A section is skipped when every field
    it renders is blank.
    """
    sections: list[tuple[str, str, str]] = []

    def add(label: str, section: str, fields: tuple[Any, ...], content: str) -> None:
        if _filled(*fields):
            sections.append((label, section, content))

    core = os_data.get("coreIdentityAndStrategicFoundation") or {}
    overview = core.get("companyOverview")
    add("Company Overview", "Core Identity", (overview,), f"Company Overview: {overview}")

    mv = core.get("missionAndVision") or {}
    mission, vision = mv.get("missionStatement") or "", mv.get("visionStatement") or ""
    add("Mission & Vision", "Core Identity", (mission, vision),
        f"Mission: {mission}\nVision: {vision}")

    values = core.get("coreValues")
    if isinstance(values, list):
        values = "\n".join(str(v) for v in values)
    add("Core Values", "Core Identity", (values,), f"Core Values:\n{values}")

    ps = core.get("positioningStatement") or {}
    ps_fields = tuple(
        ps.get(key) or "" for key in ("targetSegment", "category", "uniqueBenefit", "reasonToBelieve")
    )
    add("Positioning Statement", "Core Identity", ps_fields,
        "Positioning: For {}, we are {}. {}. {}".format(*ps_fields))

    bm = core.get("businessModel") or {}
    bm_fields = tuple(
        bm.get(key) or "" for key in ("revenueModel", "pricingStrategy", "distributionChannels")
    )
    add("Business Model", "Core Identity", bm_fields, _join(
        "Business Model:",
        f"Revenue: {bm_fields[0]}",
        f"Pricing: {bm_fields[1]}",
        f"Distribution: {bm_fields[2]}",
    ))

    customer = os_data.get("customerAndMarketContext") or {}
    icp = customer.get("idealCustomerProfile") or {}
    icp_fields = tuple(
        icp.get(key) or "" for key in ("definingTraits", "keyDemographics", "representativePersona")
    )
    add("Ideal Customer Profile", "Customer & Market", icp_fields,
        f"Ideal Customer Profile:\n{icp_fields[0]}\n\n"
        f"Demographics: {icp_fields[1]}\n\n"
        f"Persona: {icp_fields[2]}")

    journey = customer.get("customerJourney") or {}
    pains = journey.get("topPainPoints") or ""
    opportunities = journey.get("topImprovementOpportunities") or ""
    add("Customer Journey", "Customer & Market", (pains, opportunities),
        f"Customer Pain Points:\n{pains}\n\nImprovement Opportunities:\n{opportunities}")

    market = customer.get("marketAnalysis") or {}
    category = market.get("primaryCategoryAnalysis") or ""
    competitors = market.get("topDirectCompetitors") or ""
    add("Market Analysis", "Customer & Market", (category, competitors),
        f"Market Analysis:\n{category}\n\nCompetitors:\n{competitors}")

    brand = os_data.get("brandVoiceAndExpression") or {}
    purpose = brand.get("brandPurpose")
    add("Brand Purpose", "Brand Voice", (purpose,), f"Brand Purpose: {purpose}")

    dd = brand.get("brandVoiceDosAndDonts") or {}
    dos, donts = dd.get("dos") or "", dd.get("donts") or ""
    add("Brand Voice Guidelines", "Brand Voice", (dos, donts),
        f"Brand Voice Guidelines:\n\nDO:\n{dos}\n\nDON'T:\n{donts}")

    return sections


async def retrieve_foundation(company_id: str, config: ContextConfig) -> list[RetrievedChunk]:
    """Fixed foundation sections with a constant placeholder score."""
    os_data = await asyncio.to_thread(knowledge.get_foundation_record, company_id)
    if not os_data:
        return []

    score = get_settings().FOUNDATION_PLACEHOLDER_SCORE
    sections = chunk_foundation_record(os_data)[: config.max_chunks_per_source]
    return [
        RetrievedChunk(
            id=f"foundation_{i}",
            content=content,
            source=KnowledgeTier.FOUNDATION,
            source_detail=label,
            score=score,
            metadata={"section": section},
        )
        for i, (label, section, content) in enumerate(sections)
    ]


# =============================================================================
# Tiers 2-3: Vector similarity
# =============================================================================


async def retrieve_specialized(
    agent_id: str, query_embedding: list[float], config: ContextConfig
) -> list[RetrievedChunk]:
    """Agent-scoped documents above the similarity threshold."""
    rows = await asyncio.to_thread(
        knowledge.match_agent_documents,
        query_embedding,
        agent_id,
        config.similarity_threshold,
        config.max_chunks_per_source,
    )
    return [
        RetrievedChunk(
            id=str(row["id"]),
            content=row.get("content") or "",
            source=KnowledgeTier.SPECIALIZED,
            source_detail=row.get("title") or "Agent Document",
            score=row.get("similarity"),
            metadata={
                "fileName": row.get("source_file_name"),
                "chunkIndex": row.get("chunk_index"),
                "totalChunks": row.get("total_chunks"),
                **(row.get("metadata") or {}),
            },
        )
        for row in rows[: config.max_chunks_per_source]
    ]


async def retrieve_shared(
    company_id: str, query_embedding: list[float], config: ContextConfig
) -> list[RetrievedChunk]:
    """Company-wide documents above the similarity threshold."""
    rows = await asyncio.to_thread(
        knowledge.match_shared_documents,
        query_embedding,
        company_id,
        config.similarity_threshold,
        config.max_chunks_per_source,
    )
    return [
        RetrievedChunk(
            id=str(row["id"]),
            content=row.get("content") or "",
            source=KnowledgeTier.SHARED,
            source_detail=row.get("title") or "Company Documents",
            score=row.get("similarity"),
            metadata=row.get("metadata") or {},
        )
        for row in rows[: config.max_chunks_per_source]
    ]


# =============================================================================
# Tier 4: Procedural (full text)
# =============================================================================


async def retrieve_procedural(
    company_id: str, queries: list[str], config: ContextConfig
) -> list[RetrievedChunk]:
    """Keyword search for every query phrasing, merged by id (best relevance wins).

    Phrasings are searched concurrently. A phrasing whose search fails is
    skipped; rows from the others are kept. The first error is raised only
    when every phrasing failed.
    """
    results = await asyncio.gather(
        *[
            asyncio.to_thread(
                knowledge.search_playbooks, query, company_id, config.max_chunks_per_source
            )
            for query in queries
        ],
        return_exceptions=True,
    )
    failures = [r for r in results if isinstance(r, Exception)]
    if results and len(failures) == len(results):
        raise failures[0]

    best: dict[str, dict[str, Any]] = {}
    for query, rows in zip(queries, results):
        if isinstance(rows, Exception):
            logger.warning(f"Playbook search failed for {query!r}, skipping phrasing: {rows!r}")
            continue
        for row in rows:
            row_id = str(row["id"])
            existing = best.get(row_id)
            if not existing or (row.get("relevance") or 0) > (existing.get("relevance") or 0):
                best[row_id] = row

    ranked = sorted(best.values(), key=lambda r: r.get("relevance") or 0, reverse=True)
    return [
        RetrievedChunk(
            id=str(row["id"]),
            content=row.get("content") or "",
            source=KnowledgeTier.PROCEDURAL,
            source_detail=row.get("title") or "Playbook",
            score=row.get("relevance"),
            metadata={"section_order": row.get("section_order"), "tags": row.get("tags") or []},
        )
        for row in ranked[: config.max_chunks_per_source]
    ]


# =============================================================================
# Fan-out / fan-in
# =============================================================================


async def _isolated(
    tier: KnowledgeTier, retriever: Callable[[], Awaitable[list[RetrievedChunk]]]
) -> SourceOutcome:
    start = time.perf_counter()
    try:
        chunks = await retriever()
        error = None
    except Exception as e:
        logger.warning(f"{tier.value} retrieval failed, continuing without it: {e!r}")
        chunks, error = [], repr(e)
    return SourceOutcome(
        tier=tier,
        chunks=chunks,
        error=error,
        elapsed_ms=int((time.perf_counter() - start) * 1000),
    )


async def parallel_retrieve(
    *,
    agent_id: str,
    company_id: str,
    queries: list[str],
    query_embedding: list[float],
    config: ContextConfig,
) -> RetrievalResult:
    """Query every enabled tier concurrently and wait for all of them."""
    start = time.perf_counter()

    retrievers: dict[KnowledgeTier, Callable[[], Awaitable[list[RetrievedChunk]]]] = {}
    if config.enable_foundation:
        retrievers[KnowledgeTier.FOUNDATION] = lambda: retrieve_foundation(company_id, config)
    if config.enable_specialized:
        retrievers[KnowledgeTier.SPECIALIZED] = lambda: retrieve_specialized(
            agent_id, query_embedding, config
        )
    if config.enable_shared:
        retrievers[KnowledgeTier.SHARED] = lambda: retrieve_shared(
            company_id, query_embedding, config
        )
    if config.enable_procedural:
        retrievers[KnowledgeTier.PROCEDURAL] = lambda: retrieve_procedural(
            company_id, queries, config
        )

    outcomes = await asyncio.gather(*[_isolated(t, r) for t, r in retrievers.items()])
    result = RetrievalResult(
        outcomes={o.tier: o for o in outcomes},
        retrieval_time_ms=int((time.perf_counter() - start) * 1000),
    )

    summary = ", ".join(f"{o.tier.value}={len(o.chunks)}" for o in outcomes) or "no tiers enabled"
    logger.info(f"Retrieval complete: {summary} ({result.retrieval_time_ms}ms)")
    return result
