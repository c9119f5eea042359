"""Context budgeting and system prompt assembly.

Groups the final chunks by tier in fixed order (Foundation, Specialized,
Shared, Procedural), renders each tier as a headed section, fits the rendered
context into ``max_context_tokens`` by evicting the weakest chunks, and embeds
it in the agent persona template.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

import tiktoken

from app.core.logging import get_logger
from app.core.schemas_context import (
    TIER_ORDER,
    AgentConfig,
    ContextConfig,
    KnowledgeTier,
    RetrievedChunk,
)

logger = get_logger(__name__)

TIER_HEADINGS: dict[KnowledgeTier, tuple[str, str]] = {
    KnowledgeTier.FOUNDATION: (
        "### TIER 1: CompanyOS (Foundation - Always Use This)",
        "This is your company's core strategic and brand knowledge. "
        "Every response should reflect these principles.",
    ),
    KnowledgeTier.SPECIALIZED: (
        "### TIER 2: Your Specialized Knowledge",
        "These are documents specific to your role as an expert in this domain.",
    ),
    KnowledgeTier.SHARED: (
        "### TIER 3: Company-Wide Knowledge",
        "These are shared documents available across the company.",
    ),
    KnowledgeTier.PROCEDURAL: (
        "### TIER 4: Playbooks & Procedures",
        "These are company procedures, SOPs, and guidelines.",
    ),
}

TIER_LABELS: dict[KnowledgeTier, str] = {
    KnowledgeTier.FOUNDATION: "CompanyOS",
    KnowledgeTier.SPECIALIZED: "Agent Documentation",
    KnowledgeTier.SHARED: "Company Documents",
    KnowledgeTier.PROCEDURAL: "Playbooks",
}

# Placeholders understood by custom templates stored on the agent's config
_TIER_PLACEHOLDERS: dict[KnowledgeTier, str] = {
    KnowledgeTier.FOUNDATION: "company_os_context",
    KnowledgeTier.SPECIALIZED: "agent_docs_context",
    KnowledgeTier.SHARED: "shared_docs_context",
    KnowledgeTier.PROCEDURAL: "playbook_context",
}

_PLACEHOLDER = re.compile(r"\{(\w+)\}")

_RULE = "━" * 65

DEFAULT_TEMPLATE = f"""# YOU ARE: {{agent_role}}

You are {{agent_name}}, {{agent_description}}

{_RULE}
{{context_block}}
## YOUR TASK

The user asked: "{{user_query}}"

{{instructions}}

Begin your response:"""

_CONTEXT_BLOCK = f"""
## YOUR COMPANY CONTEXT (CRITICAL - REFERENCE THIS IN YOUR RESPONSE)

{{context}}

{_RULE}
"""


@dataclass
class PromptBuildResult:
    """Assembled system prompt plus the chunks that made it in."""

    system_prompt: str
    chunks: list[RetrievedChunk] = field(default_factory=list)
    context: str = ""
    context_tokens: int = 0
    total_tokens: int = 0
    evicted_ids: list[str] = field(default_factory=list)
    context_sources: list[dict[str, Any]] = field(default_factory=list)
    citation_map: dict[str, RetrievedChunk] = field(default_factory=dict)


class ContextBudgeter:
    """Token counting and eviction for the rendered context.

    Eviction order: lowest best-score first; foundation chunks go last since
    they carry the tenant's brand and strategy.
    """

    ENCODING = "cl100k_base"

    def __init__(self) -> None:
        try:
            self._encoder = tiktoken.get_encoding(self.ENCODING)
        except Exception as e:
            logger.warning(f"tiktoken encoding unavailable, estimating 4 chars/token: {e}")
            self._encoder = None

    def count_tokens(self, text: str) -> int:
        if not text:
            return 0
        if self._encoder is None:
            return (len(text) + 3) // 4
        return len(self._encoder.encode(text))

    @staticmethod
    def eviction_order(chunks: list[RetrievedChunk]) -> list[RetrievedChunk]:
        return sorted(
            chunks,
            key=lambda c: (c.source == KnowledgeTier.FOUNDATION, c.best_score()),
        )

    def fit(
        self,
        chunks: list[RetrievedChunk],
        max_tokens: int,
        config: ContextConfig,
    ) -> tuple[list[RetrievedChunk], list[str]]:
        """Drop chunks until the rendered context fits ``max_tokens``."""
        kept = list(chunks)
        evicted: list[str] = []
        candidates = self.eviction_order(kept)

        while kept and self.count_tokens(render_context(kept, config)) > max_tokens:
            victim = candidates.pop(0)
            kept = [c for c in kept if c is not victim]
            evicted.append(victim.id)

        if evicted:
            logger.info(f"Context budget {max_tokens} tokens: evicted {len(evicted)} chunks")
        return kept, evicted


def group_by_tier(chunks: list[RetrievedChunk]) -> dict[KnowledgeTier, list[RetrievedChunk]]:
    grouped: dict[KnowledgeTier, list[RetrievedChunk]] = {tier: [] for tier in TIER_ORDER}
    for chunk in chunks:
        grouped[chunk.source].append(chunk)
    return grouped


def _ordered(chunks: list[RetrievedChunk]) -> list[RetrievedChunk]:
    grouped = group_by_tier(chunks)
    return [chunk for tier in TIER_ORDER for chunk in grouped[tier]]


def _chunk_label(chunk: RetrievedChunk) -> str:
    label = f"**{chunk.source_detail or TIER_LABELS[chunk.source]}**"
    if chunk.source == KnowledgeTier.SPECIALIZED and chunk.metadata.get("fileName"):
        label += f" ({chunk.metadata['fileName']})"
    if chunk.source == KnowledgeTier.PROCEDURAL and chunk.metadata.get("tags"):
        label += f" (Tags: {', '.join(chunk.metadata['tags'])})"
    return label


def render_tier_sections(
    chunks: list[RetrievedChunk], config: ContextConfig
) -> dict[KnowledgeTier, str]:
    """Render each non-empty tier; citation numbers run across all tiers."""
    sections: dict[KnowledgeTier, str] = {}
    number = 0

    for tier, tier_chunks in group_by_tier(chunks).items():
        if not tier_chunks:
            continue
        blocks = []
        for chunk in tier_chunks:
            number += 1
            citation = f" [{number}]" if config.citations_enabled else ""
            blocks.append(f"{_chunk_label(chunk)}{citation}\n{chunk.content}")
        heading, blurb = TIER_HEADINGS[tier]
        sections[tier] = f"{heading}\n\n{blurb}\n\n" + "\n\n".join(blocks)

    return sections


def _footnotes(chunks: list[RetrievedChunk]) -> str:
    lines = [
        f"[{i}] {TIER_LABELS[chunk.source]}: {chunk.source_detail or chunk.id}"
        for i, chunk in enumerate(_ordered(chunks), start=1)
    ]
    return "### Sources\n\n" + "\n".join(lines)


def render_context(chunks: list[RetrievedChunk], config: ContextConfig) -> str:
    """Concatenate tier sections (plus footnotes when configured)."""
    sections = render_tier_sections(chunks, config)
    parts = [sections[tier] for tier in TIER_ORDER if tier in sections]
    if parts and config.citations_enabled and config.citation_format == "footnote":
        parts.append(_footnotes(chunks))
    return "\n\n".join(parts)


def build_instructions(config: ContextConfig) -> str:
    instructions = """Using the context above, provide a comprehensive, accurate answer that:

1. **Directly answers the question** with specific, actionable information
2. **References specific data points** from the context (numbers, facts, examples)
3. **Stays true to company strategy and brand voice** (use CompanyOS context)
4. **Prioritizes by impact** when providing recommendations"""

    if config.citations_enabled:
        instructions += """
5. **Cites sources naturally** (e.g., "According to our Brand Guide...", "Based on the Q4 analysis...")
6. **Uses the citation numbers** [1], [2], etc. when referencing specific facts"""

    return instructions


def _fill(template: str, values: dict[str, str]) -> str:
    # Single pass, so placeholder-looking text inside chunks is never expanded
    return _PLACEHOLDER.sub(lambda m: values.get(m.group(1), m.group(0)), template)


def summarize_sources(chunks: list[RetrievedChunk]) -> list[dict[str, Any]]:
    return [
        {
            "source": TIER_LABELS[tier],
            "count": len(tier_chunks),
            "examples": [c.source_detail for c in tier_chunks[:3]],
        }
        for tier, tier_chunks in group_by_tier(chunks).items()
        if tier_chunks
    ]


def build_contextual_prompt(
    agent: AgentConfig,
    chunks: list[RetrievedChunk],
    user_query: str,
    config: ContextConfig,
    budgeter: ContextBudgeter | None = None,
) -> PromptBuildResult:
    """Assemble the system prompt for one chat turn.

    Args:
        agent: Agent persona
        chunks: Final (reranked or truncated) chunks
        user_query: The literal user message
        config: Context configuration (citations, token budget, template)
        budgeter: Optional shared budgeter

    Returns:
        PromptBuildResult; ``chunks`` holds only the chunks kept after budgeting
    """
    budgeter = budgeter or ContextBudgeter()
    kept, evicted = budgeter.fit(chunks, config.max_context_tokens, config)
    kept = _ordered(kept)

    context = render_context(kept, config)
    sections = render_tier_sections(kept, config)

    values = {
        "agent_name": agent.name,
        "agent_role": agent.role,
        "agent_description": agent.description,
        "context": context,
        "context_block": _CONTEXT_BLOCK.format(context=context) if context else "",
        "user_query": user_query,
        "instructions": build_instructions(config),
        "keyword_context": "",
    }
    for tier, placeholder in _TIER_PLACEHOLDERS.items():
        values[placeholder] = sections.get(tier, "")

    system_prompt = _fill(config.prompt_template or DEFAULT_TEMPLATE, values)

    citation_map = (
        {f"[{i}]": chunk for i, chunk in enumerate(kept, start=1)}
        if config.citations_enabled
        else {}
    )

    return PromptBuildResult(
        system_prompt=system_prompt,
        chunks=kept,
        context=context,
        context_tokens=budgeter.count_tokens(context),
        total_tokens=budgeter.count_tokens(system_prompt),
        evicted_ids=evicted,
        context_sources=summarize_sources(kept),
        citation_map=citation_map,
    )
