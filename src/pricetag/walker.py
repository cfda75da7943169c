# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Iterative, stack-based document walk that converts prices in place.

Each popped node is claimed in the shared VisitationSet before any work, so
the initial scan, lazy-visibility walks and mutation batches never convert
the same node twice. Children are pushed in reverse together with their tail
slots, so pops follow document order::

    <p>A<b>B</b>C</p>   ->   p, "A", b, "B", "C"

Two budgets bound pathological trees: an operation counter (nodes popped)
and a ceiling on elements waiting on the explicit stack. Text slots ride
along with their elements and do not count toward the ceiling. Hitting either stops the walk and
reports the reason; the walk is not resumed.
"""

from __future__ import annotations

import logging
import re

import lxml.html
from lxml import etree

from pricetag import PROCESSED_ATTR, TerminationReason, WalkMode, WalkStats
from pricetag.patterns import PatternCache, annotate_text
from pricetag.reconstructor import StructuredPriceReconstructor
from pricetag.tables import DEFAULT_TABLES, HeuristicTables
from pricetag.visitation import TextSlot, VisitationSet

logger = logging.getLogger(__name__)

# Inline style checks (no computed styles outside a browser)
_DISPLAY_NONE_RE = re.compile(r"display\s*:\s*none", re.IGNORECASE)
_VISIBILITY_HIDDEN_RE = re.compile(r"visibility\s*:\s*hidden", re.IGNORECASE)
_OPACITY_ZERO_RE = re.compile(r"opacity\s*:\s*0(?:\.0+)?(?:\s*[;!]|\s*$)", re.IGNORECASE)

_PRICE_CONTENT_RE = re.compile(r"\$|USD|\d+\.\d{2}")


def is_visible(el: lxml.html.HtmlElement) -> bool:
    """Best-effort visibility from the element's own attributes."""
    if el.get("hidden") is not None or (el.get("aria-hidden") or "").lower() == "true":
        return False
    style = el.get("style")
    if not style:
        return True
    return not (
        _DISPLAY_NONE_RE.search(style) or _VISIBILITY_HIDDEN_RE.search(style) or _OPACITY_ZERO_RE.search(style)
    )


def resolve_root(root: object) -> lxml.html.HtmlElement | TextSlot | None:
    """Accept an element, an ElementTree or a text slot; None if unusable."""
    if isinstance(root, etree._ElementTree):
        root = root.getroot()
    if isinstance(root, TextSlot):
        return root
    if isinstance(root, etree._Element) and isinstance(root.tag, str):
        return root
    return None


class TreeWalker:
    """Walks a subtree once, delegating text to the pattern library and
    candidate elements to the structured reconstructor."""

    def __init__(
        self,
        visited: VisitationSet,
        patterns: PatternCache,
        reconstructor: StructuredPriceReconstructor,
        *,
        tables: HeuristicTables = DEFAULT_TABLES,
        label_style: str = "exact",
        max_operations: int = 50_000,
        max_stack: int = 10_000,
    ) -> None:
        self.visited = visited
        self._patterns = patterns
        self._reconstructor = reconstructor
        self._style = label_style
        self._skip_tags = frozenset(t.lower() for t in tables.skip_tags)
        self._price_keywords = tuple(k.lower() for k in tables.price_keywords)
        self.max_operations = max_operations
        self.max_stack = max_stack
        self._deferred: list = []

    def take_deferred(self) -> list:
        """Elements pruned by targeted walks since the last call."""
        deferred, self._deferred = self._deferred, []
        return deferred

    # ------------------------------------------------------------------
    # Targeted-mode filters
    # ------------------------------------------------------------------

    def is_price_related(self, el: lxml.html.HtmlElement) -> bool:
        """Class/id keyword, a container class, or price-like text content."""
        ident = f"{el.get('class', '')} {el.get('id', '')}".lower()
        if any(k in ident for k in self._price_keywords):
            return True
        if self._reconstructor.is_candidate(el):
            return True
        return any(_PRICE_CONTENT_RE.search(chunk) for chunk in el.itertext())

    def _pruned(self, el: lxml.html.HtmlElement) -> bool:
        return not is_visible(el) or not self.is_price_related(el)

    # ------------------------------------------------------------------
    # Walk
    # ------------------------------------------------------------------

    def walk(
        self,
        root: object,
        rate: float,
        *,
        mode: WalkMode = WalkMode.FULL,
        max_operations: int | None = None,
        max_stack: int | None = None,
        boundary: lxml.html.HtmlElement | None = None,
    ) -> WalkStats:
        """Convert every price under *root* not yet visited.

        Targeted mode skips invisible or unsignalled elements without
        claiming them and records them as deferred roots; their claimed
        ancestors stop a later full walk, so the caller walks
        ``take_deferred()`` in full mode.

        Price containers are searched below *boundary*, which defaults to
        the walk root. Callers walking a subtree of a larger scan pass the
        scan root so containers may enclose the subtree.
        """
        stats = WalkStats()
        start = resolve_root(root)
        if start is None:
            stats.termination_reason = TerminationReason.INVALID_INPUT
            return stats

        op_limit = max_operations if max_operations is not None else self.max_operations
        stack_limit = max_stack if max_stack is not None else self.max_stack
        targeted = mode == WalkMode.TARGETED
        if boundary is None and not isinstance(start, TextSlot):
            boundary = start

        stack: list = [start]
        pending_elements = 0 if isinstance(start, TextSlot) else 1
        operations = 0
        while stack:
            if operations >= op_limit:
                stats.termination_reason = TerminationReason.OPERATIONS_LIMIT
                break
            node = stack.pop()
            operations += 1
            stats.operations = operations

            if isinstance(node, TextSlot):
                if self.visited.claim(node):
                    stats.nodes_processed += 1
                    self._convert_slot(node, rate, stats)
                continue

            pending_elements -= 1
            if not isinstance(node.tag, str):
                continue  # comment / processing instruction
            if targeted and node not in self.visited and self._pruned(node):
                self._deferred.append(node)
                continue
            if not self.visited.claim(node):
                continue
            stats.nodes_processed += 1

            if node.tag.lower() in self._skip_tags or node.get(PROCESSED_ATTR) is not None:
                continue

            if self._reconstructor.is_candidate(node) and self._reconstruct(node, rate, stats, stack, boundary):
                continue

            pending_elements += self._push_children(node, stack)
            if pending_elements > stack_limit:
                stats.termination_reason = TerminationReason.STACK_LIMIT
                break

        if not stats.completed:
            logger.debug(
                "Walk stopped early: reason=%s nodes=%d conversions=%d",
                stats.termination_reason,
                stats.nodes_processed,
                stats.conversions,
            )
        return stats

    @staticmethod
    def _push_children(node: lxml.html.HtmlElement, stack: list) -> int:
        pushed = 0
        for child in reversed(node):
            if child.tail:
                stack.append(TextSlot(child, "tail"))
            stack.append(child)
            pushed += 1
        if node.text:
            stack.append(TextSlot(node, "text"))
        return pushed

    def _reconstruct(
        self,
        node: lxml.html.HtmlElement,
        rate: float,
        stats: WalkStats,
        stack: list,
        boundary: lxml.html.HtmlElement | None,
    ) -> bool:
        try:
            outcome = self._reconstructor.process(node, rate, boundary)
        except Exception:
            stats.errors += 1
            logger.debug("Structured reconstruction raised, falling back to text", exc_info=True)
            return False
        if not outcome.processed:
            return False
        stats.containers += 1
        stats.conversions += 1
        stack.extend(reversed(outcome.pending))
        return True

    def _convert_slot(self, slot: TextSlot, rate: float, stats: WalkStats) -> None:
        text = slot.get()
        if not text or not text.strip():
            return
        try:
            new_text, count = annotate_text(text, rate, self._patterns, self._style)
            if count:
                slot.set(new_text)
                stats.conversions += count
        except Exception:
            stats.errors += 1
            logger.debug("Text conversion failed for %s slot", slot.slot, exc_info=True)
