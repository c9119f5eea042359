"""Context confidence scoring."""

from collections.abc import Sequence

from app.core.schemas_context import RetrievedChunk


def score_confidence(chunks: Sequence[RetrievedChunk]) -> float:
    """Mean of each chunk's best available score, clamped to [0, 1].

    Returns 0.0 for an empty chunk set.
    """
    if not chunks:
        return 0.0

    average = sum(chunk.best_score() for chunk in chunks) / len(chunks)
    return max(0.0, min(1.0, average))
