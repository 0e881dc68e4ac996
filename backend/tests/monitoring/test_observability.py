"""Tests for correlation id logging and tracing shutdown."""

import logging
from unittest.mock import patch

import pytest

from app.core.logging import (
    CorrelationIdFilter,
    clear_correlation_id,
    set_correlation_id,
)


def make_record() -> logging.LogRecord:
    return logging.LogRecord("test", logging.INFO, __file__, 1, "message", None, None)


class TestCorrelationIdFilter:
    """Every record carries the current correlation id."""

    def test_record_tagged_with_current_id(self) -> None:
        set_correlation_id("req-123")
        try:
            record = make_record()
            assert CorrelationIdFilter().filter(record) is True
            assert record.correlation_id == "req-123"
        finally:
            clear_correlation_id()

    def test_id_generated_when_unset(self) -> None:
        clear_correlation_id()
        try:
            first, second = make_record(), make_record()
            log_filter = CorrelationIdFilter()
            assert log_filter.filter(first) is True
            assert log_filter.filter(second) is True
            assert first.correlation_id
            assert second.correlation_id == first.correlation_id
        finally:
            clear_correlation_id()


class TestLifespan:
    """Pending spans are flushed when the application stops."""

    @pytest.mark.asyncio
    async def test_shutdown_flushes_tracing(self) -> None:
        from app.main import app, lifespan

        with patch("app.main.shutdown_tracing") as shutdown:
            async with lifespan(app):
                shutdown.assert_not_called()
            shutdown.assert_called_once_with()
