# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for pricetag.scanner: context gate, two passes, shared budget."""

from __future__ import annotations

from unittest.mock import MagicMock

import lxml.html
import pytest

from pricetag import TerminationReason
from pricetag.config import EngineConfig
from pricetag.context_classifier import ContextSafetyClassifier, FrameContext
from pricetag.patterns import PatternCache
from pricetag.reconstructor import StructuredPriceReconstructor
from pricetag.scanner import ScanOrchestrator
from pricetag.visitation import VisitationSet
from pricetag.walker import TreeWalker
from tests._dom_helpers import RATE, parse_doc, wide_tree


def _make(config: EngineConfig | None = None):
    config = config or EngineConfig()
    visited = VisitationSet()
    walker = TreeWalker(
        visited,
        PatternCache(),
        StructuredPriceReconstructor(visited),
        max_operations=config.max_operations,
        max_stack=config.max_stack,
    )
    return ScanOrchestrator(walker, ContextSafetyClassifier(), config=config), walker


@pytest.fixture
def orchestrator():
    return _make()[0]


class TestValidation:
    @pytest.mark.parametrize("rate", [0, -3, float("nan"), "50000", None])
    def test_invalid_rate(self, orchestrator, rate):
        doc = parse_doc("<p>$5</p>")
        stats = orchestrator.scan(doc, rate)
        assert stats.termination_reason == TerminationReason.INVALID_INPUT
        assert stats.skipped_reason == "invalid_rate"
        assert stats.skipped
        assert doc.find(".//p").text == "$5"

    @pytest.mark.parametrize("root", [None, "<p>$5</p>", 3])
    def test_invalid_root(self, orchestrator, root):
        stats = orchestrator.scan(root, RATE)
        assert stats.termination_reason == TerminationReason.INVALID_INPUT
        assert stats.skipped_reason == "invalid_root"


class TestContextGate:
    def test_restricted_context_touches_nothing(self):
        orchestrator, walker = _make()
        spy = MagicMock(wraps=walker)
        orchestrator._walker = spy
        doc = parse_doc("<p>$5</p>")
        context = FrameContext(url="https://ads.example/frame", is_embedded=True, sandbox="")

        stats = orchestrator.scan(doc, RATE, context)

        assert stats.termination_reason == TerminationReason.CONTEXT_RESTRICTED
        assert stats.skipped_reason == "sandbox_no_scripts"
        assert stats.verdict.is_restricted
        assert stats.nodes_processed == 0
        assert spy.walk.call_count == 0
        assert doc.find(".//p").text == "$5"

    def test_document_filled_from_root(self, orchestrator):
        doc = lxml.html.document_fromstring('<html><body class="a-modal"><p>$5</p></body></html>')
        context = FrameContext(
            url="https://www.amazon.com/dp/B0",
            origin="https://www.amazon.com",
            is_embedded=True,
            parent_origin="https://www.amazon.com",
        )
        stats = orchestrator.scan(doc, RATE, context)
        assert stats.termination_reason == TerminationReason.CONTEXT_RESTRICTED
        assert stats.skipped_reason == "retailer_restricted_layout"

    def test_no_context_is_unrestricted(self, orchestrator):
        stats = orchestrator.scan(parse_doc("<p>$5</p>"), RATE)
        assert stats.verdict is not None
        assert not stats.verdict.is_restricted


class TestPasses:
    def test_scenario_inline_text(self, orchestrator):
        doc = parse_doc("<p>Buy now for $1,299.99!</p>")
        stats = orchestrator.scan(doc, RATE)
        assert doc.find(".//p").text == "Buy now for $1,299.99 (2,599,980 sats)!"
        assert stats.conversions == 1
        assert stats.termination_reason == TerminationReason.COMPLETED

    def test_targeted_then_full(self, orchestrator):
        doc = parse_doc('<p>Shipping $5</p><div class="price">$7</div>')
        stats = orchestrator.scan(doc, RATE)
        assert stats.targeted_elements == 1
        assert stats.conversions == 2
        assert list(stats.stage_ms) == ["validate", "context_check", "targeted_pass", "full_pass"]
        assert stats.duration_ms >= sum(stats.stage_ms.values()) - 0.01

    def test_each_scan_gets_an_id(self, orchestrator):
        first = orchestrator.scan(parse_doc("<p>$5</p>"), RATE)
        second = orchestrator.scan(parse_doc("<p>$6</p>"), RATE)
        assert first.scan_id
        assert first.scan_id != second.scan_id
        assert first.to_dict()["scan_id"] == first.scan_id

    def test_hidden_price_under_targeted_root(self, orchestrator):
        doc = parse_doc('<div class="price-section"><div style="display:none">$5</div><span>$7</span></div>')
        stats = orchestrator.scan(doc, RATE)
        hidden, shown = doc.find(".//div")
        assert hidden.text == "$5 (10,000 sats)"
        assert shown.text == "$7 (14,000 sats)"
        assert stats.conversions == 2

    def test_shared_operation_budget(self):
        orchestrator, _ = _make(EngineConfig(max_operations=20))
        doc = parse_doc('<span class="price">$1</span>' * 30)
        stats = orchestrator.scan(doc, RATE)
        assert stats.targeted_elements == 30
        assert stats.conversions == 10
        assert stats.termination_reason == TerminationReason.OPERATIONS_LIMIT
        assert stats.partial

    def test_full_pass_budget(self):
        orchestrator, _ = _make(EngineConfig(max_operations=10))
        stats = orchestrator.scan(wide_tree(100), RATE)
        assert stats.partial
        assert stats.conversions < 100


class TestFailures:
    def test_internal_error_does_not_raise(self, monkeypatch):
        orchestrator, walker = _make()

        def explode(*args, **kwargs):
            raise RuntimeError("walker bug")

        monkeypatch.setattr(walker, "walk", explode)
        stats = orchestrator.scan(parse_doc("<p>$5</p>"), RATE)
        assert stats.termination_reason == TerminationReason.INTERNAL_ERROR
        assert "targeted_pass" in stats.stage_ms

    def test_to_dict_serializable(self, orchestrator):
        import json

        stats = orchestrator.scan(parse_doc("<p>$5</p>"), RATE)
        data = json.loads(json.dumps(stats.to_dict()))
        assert data["termination_reason"] == "completed"
        assert data["verdict"]["is_restricted"] is False
