"""Tests for context confidence scoring."""

import pytest

from app.core.confidence import score_confidence
from tests.fixtures_context import make_chunk


def test_empty_is_zero():
    assert score_confidence([]) == 0.0


def test_mean_of_retrieval_scores():
    chunks = [make_chunk("a", score=0.9), make_chunk("b", score=0.5)]
    assert score_confidence(chunks) == pytest.approx(0.7)


def test_rerank_score_takes_precedence():
    chunks = [
        make_chunk("a", score=0.2, rerank_score=0.8, original_score=0.2),
        make_chunk("b", score=0.4, original_score=0.6),
    ]
    assert score_confidence(chunks) == pytest.approx(0.7)


def test_result_is_clamped():
    chunks = [make_chunk("a", score=1.0, rerank_score=1.7)]
    assert score_confidence(chunks) == 1.0
