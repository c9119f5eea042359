"""Tests for structured logging and request id correlation."""

import logging

from app.core.logging import (
    RequestContextFilter,
    StructuredFormatter,
    bind_request_id,
    get_logger,
    log_with_context,
)


def _record(msg: str = "Chat request accepted", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="app.core.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
        func="handler",
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_emits_key_value_pairs():
    line = StructuredFormatter().format(
        _record(request_id="abc123", extra_data={"agent_id": "a1", "note": "two words"})
    )

    assert "level=INFO" in line
    assert "logger=app.core.test" in line
    assert "function=handler" in line
    assert 'message="Chat request accepted"' in line
    assert "request_id=abc123" in line
    assert "agent_id=a1" in line
    assert 'note="two words"' in line


def test_get_logger_nests_under_app():
    assert get_logger("app.core.reranker").name == "app.core.reranker"
    assert get_logger("__main__").name == "app.__main__"


def test_filter_copies_bound_request_id():
    bind_request_id("req-42")
    record = _record()

    assert RequestContextFilter().filter(record) is True
    assert record.request_id == "req-42"


def test_filter_keeps_explicit_request_id():
    bind_request_id("req-42")
    record = _record(request_id="explicit")

    RequestContextFilter().filter(record)

    assert record.request_id == "explicit"


def test_log_with_context_attaches_fields(caplog):
    logger = get_logger("app.test_logging")

    with caplog.at_level(logging.INFO, logger="app.test_logging"):
        log_with_context(logger, logging.INFO, "hello", request_id="r1", agent_id="a1")

    record = caplog.records[-1]
    assert record.request_id == "r1"
    assert record.extra_data == {"agent_id": "a1"}
