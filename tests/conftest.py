"""Pytest configuration and fixtures."""

import os

import pytest

_TEST_ENV = {
    "SUPABASE_URL": "https://test.supabase.co",
    "SUPABASE_SERVICE_ROLE_KEY": "test-key",
    "OPENAI_API_KEY": "test-openai-key",
    "CONTEXT_ENGINE_ENV": "test",
}

# Modules under test read settings lazily, but loggers are configured at import
for _key, _value in _TEST_ENV.items():
    os.environ.setdefault(_key, _value)


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ.update(_TEST_ENV)
    for key in ("COHERE_API_KEY", "ANTHROPIC_API_KEY", "OPENAI_BASE_URL"):
        os.environ.pop(key, None)

    from app.core.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def reset_cohere_client():
    """Each test starts with an uninitialized Cohere client."""
    import app.core.reranker as reranker

    reranker._cohere_client = None
    reranker._cohere_checked = False
    yield
    reranker._cohere_client = None
    reranker._cohere_checked = False
