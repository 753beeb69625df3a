"""Tests for flowviz.core.logging.

Covers:
- JSON output carries event, level, service, and ECS field names
- Level filtering
- Bound and scoped context (sync and async LogContext)
- configure_from_settings
"""

from __future__ import annotations

import asyncio
import json
import logging

import pytest
import structlog

from flowviz.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_from_settings,
    configure_logging,
    get_logger,
    unbind_context,
)
from flowviz.core.settings import VisualizerSettings


@pytest.fixture(autouse=True)
def _restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    clear_context()
    yield
    clear_context()
    structlog.reset_defaults()
    root.handlers[:] = handlers
    root.setLevel(level)


def _json_lines(err: str) -> list[dict]:
    return [json.loads(line) for line in err.splitlines() if line.startswith("{")]


class TestConfigureLogging:
    def test_json_output(self, capsys):
        configure_logging(level="INFO", json_format=True, service="flowviz-test")
        get_logger("flowviz.test").info("snapshot_recorded", index=3)
        (record,) = _json_lines(capsys.readouterr().err)
        assert record["event"] == "snapshot_recorded"
        assert record["index"] == 3
        assert record["log.level"] == "info"
        assert record["service.name"] == "flowviz-test"
        assert record["logger"] == "flowviz.test"
        assert "@timestamp" in record

    def test_debug_suppressed_at_info(self, capsys):
        configure_logging(level="INFO", json_format=True)
        log = get_logger("flowviz.test")
        log.debug("event_ignored")
        log.warning("visualizer_listener_failed")
        events = [r["event"] for r in _json_lines(capsys.readouterr().err)]
        assert events == ["visualizer_listener_failed"]

    def test_without_timestamp(self, capsys):
        configure_logging(json_format=True, add_timestamp=False)
        get_logger("flowviz.test").info("hello")
        (record,) = _json_lines(capsys.readouterr().err)
        assert "@timestamp" not in record

    def test_from_settings(self, capsys):
        configure_from_settings(VisualizerSettings(log_level="DEBUG", log_json=True))
        get_logger("flowviz.test").debug("event_ignored", reason="terminal")
        (record,) = _json_lines(capsys.readouterr().err)
        assert record["reason"] == "terminal"


class TestContext:
    def test_bind_and_unbind(self, capsys):
        configure_logging(json_format=True)
        log = get_logger("flowviz.test")
        bind_context(workflow_id="wf-1", run="a")
        log.info("one")
        unbind_context("run")
        log.info("two")
        first, second = _json_lines(capsys.readouterr().err)
        assert first["workflow_id"] == "wf-1" and first["run"] == "a"
        assert second["workflow_id"] == "wf-1" and "run" not in second

    def test_log_context_scoped(self, capsys):
        configure_logging(json_format=True)
        log = get_logger("flowviz.test")
        with LogContext(workflow_id="wf-2"):
            log.info("inside")
        log.info("outside")
        inside, outside = _json_lines(capsys.readouterr().err)
        assert inside["workflow_id"] == "wf-2"
        assert "workflow_id" not in outside

    def test_async_log_context(self):
        async def run() -> dict:
            async with LogContext(node_id="n1"):
                return structlog.contextvars.get_contextvars()

        assert asyncio.run(run()) == {"node_id": "n1"}
        assert structlog.contextvars.get_contextvars() == {}
