"""Tests for the chat-with-context endpoint.

Runs the real pipeline through FastAPI TestClient with the agent store,
embedding provider, knowledge stores, completion provider and audit sink
mocked at their module boundaries.
"""

from contextlib import AsyncExitStack
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from app.api.chat import get_expansion_cache
from app.core.completion import CompletionStream
from app.core.errors import UpstreamError
from app.core.knowledge_sources import RetrievalResult, SourceOutcome
from app.core.schemas_context import KnowledgeTier
from app.db.expansion_cache import InMemoryExpansionCache
from app.main import app
from tests.fixtures_context import (
    AGENT_ID,
    COMPANY_ID,
    CONVERSATION_ID,
    SSE_BODY,
    USER_ID,
    FakeUpstreamResponse,
    make_agent,
    make_chunk,
)

AUTH = {"Authorization": "Bearer test-token"}


def _body(**overrides):
    body = {
        "agent_id": AGENT_ID,
        "company_id": COMPANY_ID,
        "message": "How should we position the new clinic tier?",
        "conversation_id": CONVERSATION_ID,
        "user_id": USER_ID,
    }
    body.update(overrides)
    return body


def _retrieval() -> RetrievalResult:
    return RetrievalResult(
        outcomes={
            KnowledgeTier.FOUNDATION: SourceOutcome(
                tier=KnowledgeTier.FOUNDATION,
                chunks=[make_chunk("foundation_0", KnowledgeTier.FOUNDATION, 0.9)],
            ),
            KnowledgeTier.SHARED: SourceOutcome(
                tier=KnowledgeTier.SHARED,
                chunks=[make_chunk("doc-1", KnowledgeTier.SHARED, 0.7)],
            ),
        },
        retrieval_time_ms=12,
    )


def _stream(chunks=None) -> CompletionStream:
    return CompletionStream(FakeUpstreamResponse(chunks or SSE_BODY), AsyncExitStack())


@pytest.fixture
def client():
    app.dependency_overrides[get_expansion_cache] = lambda: InMemoryExpansionCache()
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def pipeline():
    """Patch every external collaborator; yields the mocks by name."""
    with (
        patch("app.core.context_pipeline.get_agent", return_value=make_agent()) as get_agent,
        patch("app.core.context_pipeline.get_context_config_row", return_value=None) as get_config,
        patch(
            "app.core.query_expansion.generate_expansions",
            new_callable=AsyncMock,
            return_value=["clinic tier positioning"],
        ) as generate,
        patch(
            "app.core.context_pipeline.embed_query",
            new_callable=AsyncMock,
            return_value=[0.1] * 1536,
        ) as embed,
        patch(
            "app.core.context_pipeline.parallel_retrieve",
            new_callable=AsyncMock,
            return_value=_retrieval(),
        ) as retrieve,
        patch(
            "app.api.chat.open_completion_stream",
            new_callable=AsyncMock,
            side_effect=lambda *args, **kwargs: _stream(),
        ) as complete,
        patch("app.core.telemetry.insert_retrieval_log") as insert_log,
    ):
        yield MagicMock(
            get_agent=get_agent,
            get_config=get_config,
            generate=generate,
            embed=embed,
            retrieve=retrieve,
            complete=complete,
            insert_log=insert_log,
        )


# ──────────────────────────────────────────────────────────────────────
# Rejections
# ──────────────────────────────────────────────────────────────────────


def test_missing_credential_returns_401(client, pipeline):
    response = client.post("/v1/chat/context", json=_body())

    assert response.status_code == 401
    assert "error" in response.json()
    pipeline.get_agent.assert_not_called()


@pytest.mark.parametrize("field", ["agent_id", "company_id", "message", "user_id"])
def test_missing_required_field_returns_400(client, pipeline, field):
    body = _body()
    del body[field]

    response = client.post("/v1/chat/context", json=body, headers=AUTH)

    assert response.status_code == 400
    payload = response.json()
    assert payload["details"]["missing"] == [field]
    pipeline.get_agent.assert_not_called()
    pipeline.insert_log.assert_not_called()


def test_blank_message_returns_400(client, pipeline):
    response = client.post("/v1/chat/context", json=_body(message="   "), headers=AUTH)

    assert response.status_code == 400
    assert response.json()["details"]["missing"] == ["message"]


def test_conversation_id_is_optional(client, pipeline):
    body = _body()
    del body["conversation_id"]

    response = client.post("/v1/chat/context", json=body, headers=AUTH)

    assert response.status_code == 200
    row = pipeline.insert_log.call_args[0][0]
    assert row["conversation_id"] is None


def test_non_json_body_returns_400(client, pipeline):
    response = client.post(
        "/v1/chat/context",
        content=b"not json",
        headers={**AUTH, "Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Malformed request body"


def test_missing_credential_wins_over_malformed_body(client, pipeline):
    response = client.post(
        "/v1/chat/context",
        content=b"not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 401
    assert response.json()["error"] == "Missing bearer credential"


def test_unknown_agent_returns_404(client, pipeline):
    pipeline.get_agent.return_value = None

    response = client.post("/v1/chat/context", json=_body(), headers=AUTH)

    assert response.status_code == 404
    assert response.json()["error"] == "Agent not found"
    pipeline.embed.assert_not_called()
    pipeline.insert_log.assert_not_called()


def test_malformed_agent_id_returns_404(client, pipeline):
    response = client.post("/v1/chat/context", json=_body(agent_id="nope"), headers=AUTH)

    assert response.status_code == 404
    assert response.json() == {"error": "Agent not found", "details": {"agent_id": "nope"}}
    pipeline.get_agent.assert_not_called()
    pipeline.insert_log.assert_not_called()


def test_agent_store_failure_returns_500(client, pipeline):
    pipeline.get_agent.side_effect = RuntimeError("connection reset")

    response = client.post("/v1/chat/context", json=_body(), headers=AUTH)

    assert response.status_code == 500
    assert response.json()["error"] == "Failed to load agent"


# ──────────────────────────────────────────────────────────────────────
# Upstream failures
# ──────────────────────────────────────────────────────────────────────


def test_embedding_failure_aborts_before_retrieval(client, pipeline):
    """Embedding outage: 500 JSON, no retrieval, no completion, no audit row."""
    pipeline.get_config.return_value = {"agent_id": AGENT_ID, "enable_query_expansion": False}
    pipeline.embed.side_effect = UpstreamError("Embedding provider failed", details="503")

    response = client.post("/v1/chat/context", json=_body(), headers=AUTH)

    assert response.status_code == 500
    assert response.json() == {"error": "Embedding provider failed", "details": "503"}
    pipeline.generate.assert_not_called()
    pipeline.retrieve.assert_not_called()
    pipeline.complete.assert_not_called()
    pipeline.insert_log.assert_not_called()


def test_completion_error_returns_500(client, pipeline):
    pipeline.complete.side_effect = UpstreamError(
        "Completion provider returned an error", details={"status": 429, "message": "rate limited"}
    )

    response = client.post("/v1/chat/context", json=_body(), headers=AUTH)

    assert response.status_code == 500
    assert response.json()["details"]["status"] == 429
    pipeline.insert_log.assert_not_called()


# ──────────────────────────────────────────────────────────────────────
# Success
# ──────────────────────────────────────────────────────────────────────


def test_streams_completion_body_unchanged(client, pipeline):
    response = client.post("/v1/chat/context", json=_body(), headers=AUTH)

    assert response.status_code == 200
    assert response.content == b"".join(SSE_BODY)
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["X-Context-Chunks"] == "2"
    assert response.headers["X-Context-Confidence"] == "0.80"


def test_completion_receives_prompt_and_agent_params(client, pipeline):
    client.post("/v1/chat/context", json=_body(), headers=AUTH)

    system_prompt, user_message, params = pipeline.complete.call_args[0]
    assert "Maya" in system_prompt
    assert "Content of foundation_0" in system_prompt
    assert user_message == "How should we position the new clinic tier?"
    assert params.model == "gpt-4o"
    assert params.temperature == 0.4


def test_embeds_original_query_only(client, pipeline):
    client.post("/v1/chat/context", json=_body(), headers=AUTH)

    pipeline.embed.assert_awaited_once_with("How should we position the new clinic tier?")
    queries = pipeline.retrieve.call_args.kwargs["queries"]
    assert queries == ["How should we position the new clinic tier?", "clinic tier positioning"]


def test_writes_retrieval_log_after_streaming(client, pipeline):
    client.post("/v1/chat/context", json=_body(), headers=AUTH)

    pipeline.insert_log.assert_called_once()
    row = pipeline.insert_log.call_args[0][0]
    assert row["agent_id"] == AGENT_ID
    assert row["company_id"] == COMPANY_ID
    assert row["conversation_id"] == CONVERSATION_ID
    assert row["sources_used"] == 2
    assert row["chunks_used_in_prompt"] == 2
    assert row["context_confidence_score"] == 0.8
    assert [c["id"] for c in row["company_os_chunks"]] == ["foundation_0"]


def test_telemetry_failure_does_not_change_response(client, pipeline):
    pipeline.insert_log.side_effect = RuntimeError("insert failed")

    response = client.post("/v1/chat/context", json=_body(), headers=AUTH)

    assert response.status_code == 200
    assert response.content == b"".join(SSE_BODY)
    pipeline.insert_log.assert_called_once()


def test_expansion_failure_still_streams(client, pipeline):
    pipeline.generate.side_effect = RuntimeError("model unavailable")

    response = client.post("/v1/chat/context", json=_body(), headers=AUTH)

    assert response.status_code == 200
    assert pipeline.retrieve.call_args.kwargs["queries"] == [
        "How should we position the new clinic tier?"
    ]
