"""Tests for the structured logging system (threshold_kernel/logging_config.py)."""

import json
import logging
from io import StringIO

import pytest

from threshold_kernel.exceptions import SelfApprovalError
from threshold_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


class TestStructuredFormatter:
    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_all_logs(stream)[0]
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "threshold_kernel.test"
        assert "ts" in record

    def test_extra_fields_and_special_types(self):
        from datetime import datetime, timezone
        from decimal import Decimal
        from uuid import UUID

        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info(
            "threshold_replaced",
            extra={
                "new_amount": Decimal("12000.50"),
                "request_id": UUID("12345678-1234-5678-1234-567812345678"),
                "at": datetime(2024, 1, 1, tzinfo=timezone.utc),
            },
        )

        record = _parse_all_logs(stream)[0]
        assert record["new_amount"] == "12000.50"
        assert record["request_id"] == "12345678-1234-5678-1234-567812345678"
        assert record["at"] == "2024-01-01T00:00:00+00:00"

    def test_unknown_types_fall_back_to_str(self):
        class Slot:
            def __str__(self):
                return "FX_CONVERSION/AUD"

        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("threshold_replaced", extra={"slot": Slot()})

        assert _parse_all_logs(stream)[0]["slot"] == "FX_CONVERSION/AUD"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        with LogContext.bind(actor_id="supervisor-1", tenant_id="tenant-a"):
            get_logger("test").info("inside")
        get_logger("test").info("outside")

        inside, outside = _parse_all_logs(stream)
        assert inside["actor_id"] == "supervisor-1"
        assert inside["tenant_id"] == "tenant-a"
        assert "actor_id" not in outside

    def test_kernel_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise SelfApprovalError("req-1", "supervisor-1")
        except SelfApprovalError:
            get_logger("test").exception("decision_failed")

        record = _parse_all_logs(stream)[0]
        assert record["exc_type"] == "SelfApprovalError"
        assert record["exc_code"] == "SELF_APPROVAL"
        assert record["exc_actor"] == "supervisor-1"
        assert "traceback" in record


class TestConfiguration:
    def test_configure_is_idempotent(self):
        handler, _ = _make_handler()
        configure_logging(handler=handler)
        configure_logging(handler=handler)
        assert len(logging.getLogger("threshold_kernel").handlers) == 1

    def test_level_respected(self):
        handler, stream = _make_handler()
        configure_logging(level=logging.WARNING, handler=handler)
        get_logger("test").info("dropped")
        get_logger("test").warning("kept")
        assert [r["message"] for r in _parse_all_logs(stream)] == ["kept"]

    def test_string_level_accepted(self):
        handler, stream = _make_handler()
        configure_logging(level="DEBUG", handler=handler)
        get_logger("test").debug("visible")
        assert _parse_all_logs(stream)[0]["message"] == "visible"

    def test_reset_removes_handlers(self):
        handler, _ = _make_handler()
        configure_logging(handler=handler)
        reset_logging()
        assert logging.getLogger("threshold_kernel").handlers == []
