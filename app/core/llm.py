"""LLM client utilities for LangChain integration."""

from langchain_openai import ChatOpenAI

from app.core.config import get_settings


def get_llm(
    model: str | None = None,
    temperature: float = 0.7,
    max_tokens: int | None = None,
    timeout: float | None = None,
) -> ChatOpenAI:
    """
    Get configured chat model for auxiliary (non-streamed) LLM calls.

    Args:
        model: Model name override (defaults to EXPANSION_MODEL)
        temperature: Sampling temperature
        max_tokens: Optional completion cap
        timeout: Optional request timeout in seconds

    Returns:
        ChatOpenAI instance configured with API key and model
    """
    settings = get_settings()

    return ChatOpenAI(
        api_key=settings.OPENAI_API_KEY,
        base_url=settings.OPENAI_BASE_URL,
        model=model or settings.EXPANSION_MODEL,
        temperature=temperature,
        max_tokens=max_tokens,
        timeout=timeout,
        max_retries=0,
    )
