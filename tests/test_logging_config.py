# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for pricetag.logging_config: structlog + stdlib bridge."""

from __future__ import annotations

import json
import logging
import sys

import pytest
import structlog

from pricetag.engine import PriceTagEngine
from pricetag.logging_config import SCAN_STATS_KEY, configure, flatten_scan_stats, scan_context
from tests._dom_helpers import RATE, parse_doc


@pytest.fixture(autouse=True)
def _reset_logging():
    root = logging.getLogger()
    old_handlers = root.handlers[:]
    old_level = root.level
    yield
    root.handlers = old_handlers
    root.setLevel(old_level)
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


def _last_json_line(err: str) -> dict:
    return json.loads(err.strip().splitlines()[-1])


class TestRenderers:
    def test_single_stderr_handler(self):
        configure(json_output=False)
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.handlers[0].stream is sys.stderr

    def test_console_output(self, capsys):
        configure(json_output=False)
        logging.getLogger("pricetag.walker").warning("budget hit")
        err = capsys.readouterr().err
        assert "budget hit" in err
        assert "warn" in err.lower()
        assert not err.strip().startswith("{")

    def test_json_output(self, capsys):
        configure(json_output=True)
        logging.getLogger("pricetag.scanner").info("Scan finished")
        parsed = _last_json_line(capsys.readouterr().err)
        assert parsed["event"] == "Scan finished"
        assert parsed["logger"] == "pricetag.scanner"
        assert parsed["level"] == "info"
        assert "timestamp" in parsed

    def test_no_handler_stacking(self):
        configure(json_output=False)
        configure(json_output=True)
        configure(json_output=False)
        assert len(logging.getLogger().handlers) == 1


class TestScanContext:
    def test_bound_fields_appear_on_stdlib_records(self, capsys):
        configure(json_output=True)
        with scan_context(input="page.html", scan_id="s1") as scan_id:
            logging.getLogger("pricetag.engine").warning("Cannot parse HTML")
        parsed = _last_json_line(capsys.readouterr().err)
        assert scan_id == "s1"
        assert parsed["input"] == "page.html"
        assert parsed["scan_id"] == "s1"

    def test_fields_removed_on_exit(self, capsys):
        configure(json_output=True)
        with scan_context(input="page.html"):
            pass
        structlog.get_logger("pricetag.cli").info("done")
        parsed = _last_json_line(capsys.readouterr().err)
        assert "input" not in parsed
        assert "scan_id" not in parsed

    def test_generated_id(self):
        with scan_context() as scan_id:
            assert len(scan_id) == 12
            assert structlog.contextvars.get_contextvars()["scan_id"] == scan_id

    def test_nested_context_reuses_id(self):
        with scan_context(input="page.html") as outer:
            with scan_context() as inner:
                assert inner == outer
                assert structlog.contextvars.get_contextvars()["input"] == "page.html"


class TestScanStatsFields:
    def test_extra_flattened_into_json(self, capsys):
        configure(json_output=True)
        stats = {"termination_reason": "completed", "conversions": 3, "skipped_reason": "", "stage_ms": {}}
        logging.getLogger("pricetag.scanner").info("Scan finished", extra={SCAN_STATS_KEY: stats})
        parsed = _last_json_line(capsys.readouterr().err)
        assert parsed["termination_reason"] == "completed"
        assert parsed["conversions"] == 3
        assert "skipped_reason" not in parsed
        assert "stage_ms" not in parsed
        assert SCAN_STATS_KEY not in parsed

    def test_other_extras_ignored(self, capsys):
        configure(json_output=True)
        logging.getLogger("pricetag.scanner").info("x", extra={"unrelated": 1})
        assert "unrelated" not in _last_json_line(capsys.readouterr().err)

    def test_processor_without_stats(self):
        event = {"event": "x"}
        assert flatten_scan_stats(None, "info", event) == {"event": "x"}

    def test_scanner_logs_carry_scan_id(self, capsys):
        configure(json_output=True)
        stats = PriceTagEngine().scan(parse_doc("<p>$5</p>"), RATE)
        parsed = _last_json_line(capsys.readouterr().err)
        assert parsed["event"].startswith("Scan finished")
        assert parsed["scan_id"] == stats.scan_id
        assert parsed["conversions"] == 1
        assert parsed["termination_reason"] == "completed"


class TestLogLevel:
    @pytest.mark.parametrize(
        "level, expected",
        [("DEBUG", logging.DEBUG), ("warning", logging.WARNING), ("NONEXISTENT", logging.INFO)],
    )
    def test_level(self, level, expected):
        configure(level=level)
        assert logging.getLogger().level == expected

    def test_default_level_is_info(self):
        configure()
        assert logging.getLogger().level == logging.INFO

    def test_below_level_suppressed(self, capsys):
        configure(json_output=True, level="WARNING")
        logging.getLogger("pricetag.walker").debug("noise")
        assert capsys.readouterr().err == ""
