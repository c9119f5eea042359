"""Pydantic schemas for the context-injection chat pipeline.

These models cover the request body, the agent record, the per-agent
``context_injection_config`` row, retrieved chunks, and the audit row written
to ``context_retrievals``.
"""

from enum import Enum
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


# =============================================================================
# Request
# =============================================================================


class ChatRequest(BaseModel):
    """Chat-with-context request body.

    Every field is optional at the schema level; required-field checks happen in
    the request validator so that missing fields map to a 400, not a 422.
    """

    agent_id: Optional[str] = None
    company_id: Optional[str] = None
    message: Optional[str] = None
    conversation_id: Optional[str] = None
    user_id: Optional[str] = None


# =============================================================================
# Agent configuration
# =============================================================================


class AgentModelConfig(BaseModel):
    """Typed view of the agent's ``configuration`` JSONB blob.

    Known keys are typed; anything else is kept in ``provider_overrides``. The
    admin UI stores the model under ``ai_model``, so that key is read as
    ``model``.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    config_version: int = 1
    model: Optional[str] = Field(None, validation_alias=AliasChoices("model", "ai_model"))
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(None, gt=0)

    @property
    def provider_overrides(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class AgentConfig(BaseModel):
    """An agent record as stored in the ``agents`` table."""

    id: str
    name: str = "Assistant"
    role: str = "AI Assistant"
    description: str = ""
    configuration: AgentModelConfig = Field(default_factory=AgentModelConfig)

    @field_validator("name", "role", "description", mode="before")
    @classmethod
    def _none_to_default(cls, value: Any, info) -> Any:
        if value is None:
            return cls.model_fields[info.field_name].default
        return value

    @field_validator("configuration", mode="before")
    @classmethod
    def _none_configuration(cls, value: Any) -> Any:
        return value or {}


# =============================================================================
# Context configuration
# =============================================================================

_LEGACY_RERANK_MODELS = {"cohere-rerank-v3": "rerank-english-v3.0"}


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class ContextConfig(BaseModel):
    """Tunable retrieval parameters for one agent.

    Field names follow the four knowledge tiers; the stored column names of
    ``context_injection_config`` are accepted as aliases. Out-of-range values
    are clamped to the bounds enforced by the table's CHECK constraints.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    enable_foundation: bool = Field(
        True, validation_alias=AliasChoices("enable_foundation", "enable_company_os")
    )
    enable_specialized: bool = Field(
        True, validation_alias=AliasChoices("enable_specialized", "enable_agent_docs")
    )
    enable_shared: bool = Field(
        True, validation_alias=AliasChoices("enable_shared", "enable_shared_docs")
    )
    enable_procedural: bool = Field(
        True, validation_alias=AliasChoices("enable_procedural", "enable_playbooks")
    )

    max_chunks_per_source: int = 3
    total_max_chunks: int = 10
    similarity_threshold: float = 0.7

    enable_query_expansion: bool = True
    max_expanded_queries: int = 5

    enable_reranking: bool = True
    rerank_model: str = "rerank-v3.5"
    rerank_top_n: int = 8

    prompt_template: Optional[str] = None
    include_citations: bool = True
    citation_format: Literal["footnote", "inline", "none"] = "footnote"
    max_context_tokens: int = 8000

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        # NULL columns fall back to defaults rather than failing validation
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    @field_validator("max_chunks_per_source")
    @classmethod
    def _clamp_per_source(cls, v: int) -> int:
        return int(_clamp(v, 1, 10))

    @field_validator("total_max_chunks", "rerank_top_n")
    @classmethod
    def _clamp_totals(cls, v: int) -> int:
        return int(_clamp(v, 1, 20))

    @field_validator("similarity_threshold")
    @classmethod
    def _clamp_threshold(cls, v: float) -> float:
        return _clamp(float(v), 0.0, 1.0)

    @field_validator("max_expanded_queries")
    @classmethod
    def _clamp_expansions(cls, v: int) -> int:
        return int(_clamp(v, 1, 10))

    @field_validator("max_context_tokens")
    @classmethod
    def _clamp_tokens(cls, v: int) -> int:
        return int(_clamp(v, 1000, 32000))

    @field_validator("rerank_model")
    @classmethod
    def _map_legacy_rerank_model(cls, v: str) -> str:
        return _LEGACY_RERANK_MODELS.get(v, v)

    @property
    def rerank_target(self) -> int:
        """Size of the reranked subset; never exceeds ``total_max_chunks``."""
        return min(self.rerank_top_n, self.total_max_chunks)

    @property
    def citations_enabled(self) -> bool:
        return self.include_citations and self.citation_format != "none"


# =============================================================================
# Chunks
# =============================================================================


class KnowledgeTier(str, Enum):
    """The four knowledge sources, declared in prompt presentation order."""

    FOUNDATION = "foundation"
    SPECIALIZED = "specialized"
    SHARED = "shared"
    PROCEDURAL = "procedural"


TIER_ORDER: tuple[KnowledgeTier, ...] = tuple(KnowledgeTier)


class RetrievedChunk(BaseModel):
    """A retrievable knowledge unit with its relevance scores."""

    id: str
    content: str
    source: KnowledgeTier
    source_detail: str = ""
    score: float = Field(0.0, ge=0.0, le=1.0)
    rerank_score: Optional[float] = None
    original_score: Optional[float] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("score", mode="before")
    @classmethod
    def _clamp_score(cls, v: Any) -> float:
        if v is None:
            return 0.0
        return _clamp(float(v), 0.0, 1.0)

    def best_score(self) -> float:
        """Rerank score, else the pre-rerank score, else the retrieval score."""
        if self.rerank_score is not None:
            return self.rerank_score
        if self.original_score is not None:
            return self.original_score
        return self.score

    def preview(self, limit: int = 200) -> dict[str, Any]:
        """Compact representation for the audit log."""
        entry: dict[str, Any] = {
            "id": self.id,
            "source_detail": self.source_detail,
            "score": self.score,
            "content": self.content[:limit],
        }
        if self.rerank_score is not None:
            entry["rerank_score"] = self.rerank_score
        return entry


# =============================================================================
# Audit log
# =============================================================================


class ContextRetrievalLog(BaseModel):
    """One audit row per chat request, written to ``context_retrievals``."""

    conversation_id: Optional[str] = None
    agent_id: str
    company_id: str
    original_query: str
    expanded_queries: list[str] = Field(default_factory=list)
    foundation_chunks: list[dict[str, Any]] = Field(default_factory=list)
    specialized_chunks: list[dict[str, Any]] = Field(default_factory=list)
    shared_chunks: list[dict[str, Any]] = Field(default_factory=list)
    procedural_chunks: list[dict[str, Any]] = Field(default_factory=list)
    retrieval_time_ms: int = 0
    rerank_time_ms: int = 0
    total_time_ms: int = 0
    confidence_score: float = Field(0.0, ge=0.0, le=1.0)
    sources_used: int = 0
    chunks_retrieved: int = 0
    chunks_used_in_prompt: int = 0

    def to_row(self) -> dict[str, Any]:
        """Map to the ``context_retrievals`` column names."""
        return {
            "conversation_id": self.conversation_id,
            "agent_id": self.agent_id,
            "company_id": self.company_id,
            "original_query": self.original_query,
            "expanded_queries": self.expanded_queries,
            "company_os_chunks": self.foundation_chunks,
            "agent_doc_chunks": self.specialized_chunks,
            "shared_doc_chunks": self.shared_chunks,
            "playbook_chunks": self.procedural_chunks,
            "retrieval_time_ms": self.retrieval_time_ms,
            "rerank_time_ms": self.rerank_time_ms,
            "total_time_ms": self.total_time_ms,
            "context_confidence_score": round(self.confidence_score, 2),
            "sources_used": self.sources_used,
            "chunks_retrieved": self.chunks_retrieved,
            "chunks_used_in_prompt": self.chunks_used_in_prompt,
        }
