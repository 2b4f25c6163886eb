"""Tests for structured logging and merge log context."""

import json
import logging

import pytest

from utils.logging import (
    HumanReadableFormatter,
    JSONFormatter,
    LogContext,
    configure_logging,
    get_merge_id,
    get_request_id,
)


def make_record(message="Merge committed", **extra):
    record = logging.LogRecord(
        name="services.merge_coordinator",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


class TestLogContext:
    def test_binds_and_resets_identifiers(self):
        with LogContext(request_id="req-1", merge_id="merge-1"):
            assert get_request_id() == "req-1"
            assert get_merge_id() == "merge-1"

        assert get_request_id() is None
        assert get_merge_id() is None

    def test_nested_contexts_restore_outer_value(self):
        with LogContext(merge_id="outer"):
            with LogContext(merge_id="inner"):
                assert get_merge_id() == "inner"
            assert get_merge_id() == "outer"

    @pytest.mark.asyncio
    async def test_async_usage(self):
        async with LogContext(merge_id="merge-2"):
            assert get_merge_id() == "merge-2"

        assert get_merge_id() is None


class TestFormatters:
    def test_json_includes_context_and_extras(self):
        with LogContext(merge_id="f3c1a2b4-0000"):
            output = JSONFormatter().format(make_record(target_id=4))

        data = json.loads(output)
        assert data["level"] == "INFO"
        assert data["logger"] == "services.merge_coordinator"
        assert data["message"] == "Merge committed"
        assert data["merge_id"] == "f3c1a2b4-0000"
        assert data["extra"] == {"target_id": 4}

    def test_json_without_context(self):
        data = json.loads(JSONFormatter().format(make_record()))

        assert "merge_id" not in data
        assert "extra" not in data

    def test_human_readable_prefix(self):
        with LogContext(merge_id="f3c1a2b4-0000"):
            output = HumanReadableFormatter().format(make_record())

        assert output.endswith("| services.merge_coordinator | [merge:f3c1a2b4] Merge committed")


class TestConfigureLogging:
    def test_installs_single_handler(self, restore_root_logger):
        configure_logging(level="DEBUG", json_format=True)
        configure_logging(level="WARNING", json_format=False)

        root = restore_root_logger
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, HumanReadableFormatter)
        assert root.level == logging.WARNING

    def test_auto_detects_format_from_debug_env(self, restore_root_logger, monkeypatch):
        monkeypatch.setenv("DEBUG", "false")
        configure_logging()

        assert isinstance(restore_root_logger.handlers[0].formatter, JSONFormatter)
