# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared helper utilities for DOM-based test files.

Underscore prefix prevents pytest collection.
These are plain utility functions (not fixtures; conftest.py is reserved
for fixtures).
"""

from __future__ import annotations

import heapq
import itertools

import lxml.html
from lxml import etree

RATE = 50_000.0  # USD per BTC used throughout the tests


def html(body: str) -> str:
    """Wrap body content in a minimal HTML document."""
    return f"<html><head><title>Shop</title></head><body>{body}</body></html>"


def parse_doc(body: str) -> lxml.html.HtmlElement:
    """Parse body content into a full document root (<html>)."""
    return lxml.html.document_fromstring(html(body))


def body_of(doc: lxml.html.HtmlElement) -> lxml.html.HtmlElement:
    return doc.find(".//body")


def find_class(root: lxml.html.HtmlElement, cls: str) -> list[lxml.html.HtmlElement]:
    return [el for el in root.iter() if isinstance(el.tag, str) and cls in (el.get("class") or "").split()]


def text_of(root: lxml.html.HtmlElement) -> str:
    return root.text_content()


def deep_tree(depth: int, leaf: str = "$5") -> lxml.html.HtmlElement:
    """<div> nested *depth* levels with *leaf* text at the bottom."""
    doc = parse_doc("<div id='root'></div>")
    node = doc.get_element_by_id("root")
    for _ in range(depth):
        node = etree.SubElement(node, "div")
    node.text = leaf
    return doc


def wide_tree(count: int, text: str = "$1") -> lxml.html.HtmlElement:
    """<ul> with *count* <li> children, each holding *text*."""
    items = "".join(f"<li>{text}</li>" for _ in range(count))
    return parse_doc(f"<ul>{items}</ul>")


def amazon_price(whole: str = "19", fraction: str = "99", *, offscreen: bool = True) -> str:
    """Amazon-style split price markup."""
    hidden = f'<span class="a-offscreen">${whole}.{fraction}</span>' if offscreen else ""
    return (
        f'<span class="a-price">{hidden}<span aria-hidden="true">'
        f'<span class="a-price-symbol">$</span>'
        f'<span class="a-price-whole">{whole}<span class="a-price-decimal">.</span></span>'
        f'<span class="a-price-fraction">{fraction}</span>'
        f"</span></span>"
    )


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


class FakeHandle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """``call_later`` scheduler driven by a FakeClock; ``advance()`` fires due timers."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self._timers: list = []
        self._seq = itertools.count()

    def call_later(self, delay, callback):
        handle = FakeHandle()
        heapq.heappush(self._timers, (self.clock.now + delay, next(self._seq), handle, callback))
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for _, _, h, _ in self._timers if not h.cancelled)

    def advance(self, seconds: float) -> None:
        target = self.clock.now + seconds
        while self._timers and self._timers[0][0] <= target:
            when, _, handle, callback = heapq.heappop(self._timers)
            self.clock.now = max(self.clock.now, when)
            if not handle.cancelled:
                callback()
        self.clock.now = target
