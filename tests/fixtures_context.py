"""Shared builders for context pipeline tests."""

from typing import Any, Optional
from unittest.mock import MagicMock

from app.core.schemas_context import AgentConfig, KnowledgeTier, RetrievedChunk

AGENT_ID = "2b1f0c57-6a43-4c41-9e63-5d8c0a1f7e21"
COMPANY_ID = "7d1c9a02-3f5e-4b8a-a6f1-0c2d4e6f8a10"
USER_ID = "0e9d8c7b-6a5f-4e3d-8c2b-1a0f9e8d7c6b"
CONVERSATION_ID = "5f4e3d2c-1b0a-4f9e-8d7c-6b5a4f3e2d1c"

SAMPLE_OS_DATA = {
    "coreIdentityAndStrategicFoundation": {
        "companyOverview": "Acme builds scheduling software for clinics.",
        "missionAndVision": {
            "missionStatement": "Give clinicians their time back.",
            "visionStatement": "Every clinic runs on time.",
        },
        "coreValues": ["Patients first", "Ship small"],
    },
    "brandVoiceAndExpression": {
        "brandPurpose": "Calm competence.",
        "brandVoiceDosAndDonts": {"dos": "Be direct", "donts": "Use jargon"},
    },
}


def make_agent(**overrides: Any) -> AgentConfig:
    data = {
        "id": AGENT_ID,
        "name": "Maya",
        "role": "Head of Marketing",
        "description": "a pragmatic marketing strategist",
        "configuration": {"model": "gpt-4o", "temperature": 0.4},
    }
    data.update(overrides)
    return AgentConfig(**data)


def make_chunk(
    chunk_id: str,
    source: KnowledgeTier = KnowledgeTier.SHARED,
    score: float = 0.8,
    content: Optional[str] = None,
    **extra: Any,
) -> RetrievedChunk:
    return RetrievedChunk(
        id=chunk_id,
        content=content if content is not None else f"Content of {chunk_id}",
        source=source,
        source_detail=extra.pop("source_detail", f"Doc {chunk_id}"),
        score=score,
        **extra,
    )


def mock_supabase(execute_results: Optional[list] = None) -> MagicMock:
    """Supabase mock with chained query builder.

    Args:
        execute_results: Optional list of return values for successive
            .execute() calls (uses side_effect). When not provided,
            every .execute() returns ``MagicMock(data=[])``.
    """
    sb = MagicMock()
    chain = MagicMock()
    if execute_results is not None:
        chain.execute.side_effect = execute_results
    else:
        chain.execute.return_value = MagicMock(data=[])
    for method in ("select", "eq", "gt", "lt", "limit", "insert", "update", "upsert", "delete"):
        getattr(chain, method).return_value = chain
    sb.table.return_value = chain
    sb.rpc.return_value = chain
    return sb


class FakeUpstreamResponse:
    """Stand-in for an OpenAI raw streaming response."""

    def __init__(self, chunks: list[bytes], content_type: str = "text/event-stream"):
        self.headers = {"content-type": content_type}
        self._chunks = chunks

    async def iter_bytes(self):
        for chunk in self._chunks:
            yield chunk


SSE_BODY = [
    b'data: {"id":"c1","choices":[{"delta":{"content":"Hel"}}]}\n\n',
    b'data: {"id":"c1","choices":[{"delta":{"content":"lo"}}]}\n\n',
    b"data: [DONE]\n\n",
]
