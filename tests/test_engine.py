# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""End-to-end tests for PriceTagEngine."""

from __future__ import annotations

import pytest

from pricetag import TerminationReason
from pricetag.config import EngineConfig
from pricetag.context_classifier import FrameContext
from pricetag.engine import PriceTagEngine
from pricetag.reconstructor import ANNOTATION_CLASS
from tests._dom_helpers import RATE, amazon_price, find_class, parse_doc, wide_tree


class TestScenarios:
    def test_inline_grouped_price(self, engine):
        doc = parse_doc("<p>Buy now for $1,299.99!</p>")
        stats = engine.scan(doc, RATE)
        assert doc.find(".//p").text == "Buy now for $1,299.99 (2,599,980 sats)!"
        assert stats.conversions == 1

    def test_abbreviated_magnitude(self, engine):
        doc = parse_doc("<p>Only $2.5k</p>")
        engine.scan(doc, RATE)
        assert doc.find(".//p").text == "Only $2.5k (5,000,000 sats)"

    def test_word_magnitude(self, engine):
        doc = parse_doc("<p>Listed at $3 million</p>")
        engine.scan(doc, RATE)
        assert doc.find(".//p").text == "Listed at $3 million (60 BTC)"

    def test_three_sibling_components(self, engine):
        doc = parse_doc('<div class="product-price"><span>$</span><span>19</span><span>99</span></div>')
        stats = engine.scan(doc, RATE)
        (node,) = find_class(doc, ANNOTATION_CLASS)
        assert node.text_content() == "$19.99 (39,980 sats)"
        assert stats.containers == 1

    def test_amazon_listing(self, engine):
        doc = parse_doc(
            f'<div class="s-result">{amazon_price("24", "99")}</div>'
            f'<div class="s-result">{amazon_price("5", "00")} with $3 shipping</div>'
        )
        stats = engine.scan(doc, RATE)
        labels = [n.text_content() for n in find_class(doc, ANNOTATION_CLASS)]
        assert labels == ["$24.99 (49,980 sats)", "$5.00 (10,000 sats)"]
        assert stats.containers == 2
        assert stats.conversions == 3

    def test_restricted_context_unchanged(self, engine):
        doc = parse_doc("<p>$5</p>")
        ctx = FrameContext(url="https://x.example/f", origin="https://x.example", is_embedded=True,
                           parent_origin="https://y.example")
        stats = engine.scan(doc, RATE, ctx)
        assert stats.termination_reason == TerminationReason.CONTEXT_RESTRICTED
        assert doc.find(".//p").text == "$5"

    def test_budget_reports_partial(self):
        engine = PriceTagEngine(EngineConfig(max_operations=30))
        stats = engine.scan(wide_tree(200), RATE)
        assert stats.partial
        assert stats.termination_reason == TerminationReason.OPERATIONS_LIMIT


class TestIdempotence:
    def test_rescan_adds_nothing(self, engine):
        doc = parse_doc(f"<p>Was $10, now {amazon_price()} or 5 USD</p><span class='price'>$7</span>")
        first = engine.scan(doc, RATE)
        before = doc.text_content()
        second = engine.scan(doc, RATE)
        assert first.conversions == 4
        assert second.conversions == 0
        assert doc.text_content() == before

    def test_fresh_engine_rescan_adds_nothing(self):
        doc = parse_doc(f"<p>{amazon_price()} and $5</p>")
        PriceTagEngine().scan(doc, RATE)
        assert PriceTagEngine().scan(doc, RATE).conversions == 0

    def test_scan_resets_visitation(self, engine):
        doc = parse_doc("<p>$5</p>")
        engine.scan(doc, RATE)
        generation = engine.visited.generation
        engine.scan(parse_doc("<p>$6</p>"), RATE)
        assert engine.visited.generation == generation + 1


class TestFacade:
    def test_convert_text(self, engine):
        result = engine.convert_text("A $3 million home", RATE)
        assert [c.converted_label for c in result.value] == ["60 BTC"]

    def test_friendly_style(self):
        engine = PriceTagEngine(EngineConfig(label_style="friendly"))
        result = engine.convert_text("$2.5k", RATE)
        assert result.value[0].converted_label == "5M sats"

    @pytest.mark.parametrize("root", [None, object(), "<p>$5</p>"])
    def test_scan_never_raises(self, engine, root):
        stats = engine.scan(root, RATE)
        assert stats.termination_reason == TerminationReason.INVALID_INPUT

    def test_controller_shares_visitation(self, engine, scheduler, clock):
        doc = parse_doc("<p>$5</p>")
        engine.scan(doc, RATE)
        ctrl = engine.create_update_controller(scheduler=scheduler, clock=clock)
        ctrl.start(RATE)
        ctrl.notify_mutations([doc.find(".//p")])
        ctrl.flush()
        assert ctrl.walks == 0
        assert doc.find(".//p").text == "$5 (10,000 sats)"


class TestAnnotateHtml:
    def test_round_trip(self, engine):
        output, stats = engine.annotate_html("<!DOCTYPE html><html><body><p>$5</p></body></html>", RATE)
        assert output.startswith("<!DOCTYPE html>")
        assert "$5 (10,000 sats)" in output
        assert stats.conversions == 1

    def test_bytes_input(self, engine):
        output, _ = engine.annotate_html(b"<html><body><p>Price: 20 USD</p></body></html>", RATE)
        assert "20 USD (40,000 sats)" in output

    @pytest.mark.parametrize("markup", ["", b""])
    def test_empty_document(self, engine, markup):
        output, stats = engine.annotate_html(markup, RATE)
        assert stats.termination_reason == TerminationReason.INVALID_INPUT
        assert stats.skipped_reason == "unparseable_html"
        assert output == ""

    def test_invalid_rate_returns_markup_unchanged(self, engine):
        output, stats = engine.annotate_html("<html><body><p>$5</p></body></html>", -1)
        assert stats.skipped_reason == "invalid_rate"
        assert "(10,000 sats)" not in output
