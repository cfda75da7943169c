# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""PriceTagEngine: one instance per page load.

Owns the VisitationSet and the compiled pattern cache, the only shared
mutable state, and wires the walker, reconstructor, classifier,
orchestrator and update controllers around them. No public method raises;
outcomes come back as ``ScanStats`` or ``Ok``/``Err``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

import lxml.html
from lxml import etree

from pricetag import ConversionResult, ScanStats, TerminationReason
from pricetag.config import EngineConfig
from pricetag.context_classifier import ContextSafetyClassifier, FrameContext
from pricetag.patterns import PatternCache, convert_text
from pricetag.reconstructor import StructuredPriceReconstructor
from pricetag.result import Result
from pricetag.scanner import ScanOrchestrator
from pricetag.tables import DEFAULT_TABLES, HeuristicTables
from pricetag.updates import IncrementalUpdateController, Scheduler
from pricetag.visitation import VisitationSet
from pricetag.walker import TreeWalker

logger = logging.getLogger(__name__)


class PriceTagEngine:
    """Annotates USD prices in lxml trees with their bitcoin value."""

    def __init__(self, config: EngineConfig | None = None, tables: HeuristicTables | None = None) -> None:
        self.config = config or EngineConfig()
        self.tables = tables or DEFAULT_TABLES
        self.visited = VisitationSet()
        self.patterns = PatternCache()
        self.reconstructor = StructuredPriceReconstructor(
            self.visited,
            tables=self.tables,
            search_depth=self.config.container_search_depth,
            label_style=self.config.label_style,
        )
        self.walker = TreeWalker(
            self.visited,
            self.patterns,
            self.reconstructor,
            tables=self.tables,
            label_style=self.config.label_style,
            max_operations=self.config.max_operations,
            max_stack=self.config.max_stack,
        )
        self.classifier = ContextSafetyClassifier(
            self.tables,
            small_frame_threshold=self.config.small_frame_threshold,
        )
        self._orchestrator = ScanOrchestrator(self.walker, self.classifier, config=self.config, tables=self.tables)

    def scan(self, root: object, rate: object, context: FrameContext | None = None) -> ScanStats:
        """Fresh top-level scan: reset visitation state, then scan *root*."""
        self.visited.reset()
        self.reconstructor.reset()
        return self._orchestrator.scan(root, rate, context)

    def convert_text(self, text: str, rate: object) -> Result[list[ConversionResult]]:
        """Convert prices in a plain string without touching any document."""
        return convert_text(text, rate, self.patterns, self.config.label_style)

    def create_update_controller(
        self,
        scheduler: Scheduler | None = None,
        clock: Callable[[], float] | None = None,
    ) -> IncrementalUpdateController:
        """Controller sharing this engine's walker and VisitationSet."""
        kwargs = {"clock": clock} if clock is not None else {}
        return IncrementalUpdateController(
            self.walker,
            self.config,
            tables=self.tables,
            scheduler=scheduler,
            **kwargs,
        )

    def annotate_html(self, html: str | bytes, rate: object, context: FrameContext | None = None) -> tuple[str, ScanStats]:
        """Parse *html*, scan it and serialize the result.

        On unparseable input the original markup is returned unchanged with
        ``invalid_input`` stats.
        """
        try:
            root = lxml.html.document_fromstring(html)
        except (etree.LxmlError, ValueError, TypeError) as e:
            logger.warning("Cannot parse HTML: %s", e)
            stats = ScanStats(termination_reason=TerminationReason.INVALID_INPUT, skipped_reason="unparseable_html")
            original = html.decode("utf-8", "replace") if isinstance(html, bytes) else str(html or "")
            return original, stats

        stats = self.scan(root, rate, context)
        doctype = root.getroottree().docinfo.doctype
        output = lxml.html.tostring(root, encoding="unicode", doctype=doctype or None)
        return output, stats
