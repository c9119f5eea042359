"""Query expansion: cache-first rephrasings of the user's message.

Any failure in this stage (cache read, model call, parse, cache write) degrades
to "no expansion"; the request always continues with at least the original
query.
"""

from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass, field

from app.core.config import get_settings
from app.core.llm import get_llm
from app.core.logging import get_logger
from app.db.expansion_cache import ExpansionCache, normalize_query

logger = get_logger(__name__)

_LIST_MARKER = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s*")

_EXPANSION_PROMPT = """Given the query: "{query}"

Generate {count} semantically similar queries that capture different phrasings and related concepts. These will be used for search to retrieve relevant company knowledge.

Guidelines:
- Use synonyms and alternative phrasings
- Include related business concepts
- Vary the specificity (some more general, some more specific)
- Keep queries concise (5-15 words each)
- Make them sound natural, as if asked by a business user

Return ONLY the queries, one per line, without numbering or explanation."""


@dataclass
class ExpansionResult:
    """Ordered query list with the original query first."""

    original_query: str
    expanded_queries: list[str] = field(default_factory=list)
    from_cache: bool = False
    expansion_time_ms: int = 0

    @property
    def additional_queries(self) -> list[str]:
        return self.expanded_queries[1:]


def parse_expansions(raw: str, original: str, limit: int) -> list[str]:
    """Split line-delimited model output into at most ``limit`` queries.

    Blank lines, list markers, wrapping quotes and restatements of the
    original query are dropped.
    """
    original_key = normalize_query(original)
    seen = {original_key}
    expansions: list[str] = []

    for line in raw.splitlines():
        candidate = _LIST_MARKER.sub("", line).strip().strip('"').strip()
        if not candidate:
            continue
        key = normalize_query(candidate)
        if key in seen:
            continue
        seen.add(key)
        expansions.append(candidate)
        if len(expansions) >= limit:
            break

    return expansions


async def generate_expansions(query: str, count: int, model: str) -> list[str]:
    """Ask the expansion model for ``count`` rephrasings.

    Raises:
        Exception: Propagates provider errors; the caller degrades.
    """
    llm = get_llm(model=model, temperature=0.7, max_tokens=200)
    response = await llm.ainvoke(_EXPANSION_PROMPT.format(query=query, count=count))
    content = response.content if isinstance(response.content, str) else str(response.content)
    return parse_expansions(content, query, count)


async def expand_query(
    query: str,
    cache: ExpansionCache,
    *,
    enabled: bool = True,
    max_expansions: int = 5,
    model: str | None = None,
) -> ExpansionResult:
    """Expand ``query`` into semantically similar variants, cache-first.

    Args:
        query: The user's message
        cache: Injected expansion cache
        enabled: When False the original query is returned alone
        max_expansions: Upper bound on additional queries
        model: Expansion model (defaults to EXPANSION_MODEL)

    Returns:
        ExpansionResult whose ``expanded_queries`` starts with ``query``
    """
    if not enabled or not query.strip():
        return ExpansionResult(original_query=query, expanded_queries=[query])

    settings = get_settings()
    model = model or settings.EXPANSION_MODEL
    start = time.perf_counter()

    try:
        cached = await asyncio.to_thread(cache.get, query, model)
    except Exception as e:
        logger.warning(f"Expansion cache read failed, treating as miss: {e}")
        cached = None

    if cached is not None:
        expansions = parse_expansions("\n".join(cached), query, max_expansions)
        logger.debug(f"Expansion cache hit ({len(expansions)} queries)")
        return ExpansionResult(
            original_query=query,
            expanded_queries=[query, *expansions],
            from_cache=True,
            expansion_time_ms=int((time.perf_counter() - start) * 1000),
        )

    try:
        expansions = await asyncio.wait_for(
            generate_expansions(query, max_expansions, model),
            timeout=settings.EXPANSION_TIMEOUT_SECONDS,
        )
    except Exception as e:
        logger.warning(f"Query expansion failed, continuing without: {e!r}")
        return ExpansionResult(original_query=query, expanded_queries=[query])

    # An empty list is cached too; a hit with no rephrasings still skips the model
    try:
        await asyncio.to_thread(cache.put, query, model, expansions)
    except Exception as e:
        logger.warning(f"Expansion cache write failed: {e}")

    return ExpansionResult(
        original_query=query,
        expanded_queries=[query, *expansions],
        from_cache=False,
        expansion_time_ms=int((time.perf_counter() - start) * 1000),
    )
