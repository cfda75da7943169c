# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Top-level scan: context gate, targeted pass, then a full pass.

Stages (timed into ``ScanStats.stage_ms``):

1. ``validate``: rate and root checks; failures stop with ``invalid_input``.
2. ``context_check``: ContextSafetyClassifier; a restricted verdict stops
   with ``context_restricted`` before any node is touched.
3. ``targeted_pass``: TARGETED walks rooted at elements matched by the
   likely-price selectors, so visible prices convert first.
4. ``full_pass``: one FULL walk from the root, then FULL walks over the
   elements the targeted pass pruned; the shared VisitationSet skips
   whatever the targeted pass already handled.

Both passes draw from one ``max_operations`` budget. Any unexpected
exception ends the scan with ``internal_error``; the document may then be
partially annotated.
"""

from __future__ import annotations

import dataclasses
import logging

from pricetag import ScanStats, TerminationReason, WalkMode
from pricetag.config import EngineConfig
from pricetag.context_classifier import ContextSafetyClassifier, FrameContext
from pricetag.dom_select import compile_selectors, select
from pricetag.logging_config import SCAN_STATS_KEY, scan_context
from pricetag.patterns import validate_rate
from pricetag.scan_timer import ScanTimer
from pricetag.tables import DEFAULT_TABLES, HeuristicTables
from pricetag.visitation import TextSlot
from pricetag.walker import TreeWalker, resolve_root

logger = logging.getLogger(__name__)


class ScanOrchestrator:
    """Runs one complete scan of a document tree."""

    def __init__(
        self,
        walker: TreeWalker,
        classifier: ContextSafetyClassifier,
        *,
        config: EngineConfig | None = None,
        tables: HeuristicTables = DEFAULT_TABLES,
    ) -> None:
        self._walker = walker
        self._classifier = classifier
        self._config = config or EngineConfig()
        self._likely_prices = compile_selectors(tables.likely_price_selectors)

    def scan(self, root: object, rate: object, context: FrameContext | None = None) -> ScanStats:
        """Scan *root* with *rate*; never raises."""
        timer = ScanTimer()
        stats = ScanStats()
        with scan_context() as scan_id:
            stats.scan_id = scan_id
            try:
                self._run(root, rate, context, stats, timer)
            except Exception:
                logger.exception("Scan failed during %s", timer.current_stage)
                stats.termination_reason = TerminationReason.INTERNAL_ERROR
            finally:
                timer.finalize()
                timer.record(stats)

            logger.info(
                "Scan finished: reason=%s nodes=%d conversions=%d containers=%d duration_ms=%.1f",
                stats.termination_reason,
                stats.nodes_processed,
                stats.conversions,
                stats.containers,
                stats.duration_ms,
                extra={SCAN_STATS_KEY: stats.to_dict()},
            )
        return stats

    def _run(
        self,
        root: object,
        rate: object,
        context: FrameContext | None,
        stats: ScanStats,
        timer: ScanTimer,
    ) -> None:
        timer.stage("validate")
        checked = validate_rate(rate)
        if not checked.ok:
            stats.termination_reason = TerminationReason.INVALID_INPUT
            stats.skipped_reason = checked.reason
            return
        start = resolve_root(root)
        if start is None or isinstance(start, TextSlot):
            stats.termination_reason = TerminationReason.INVALID_INPUT
            stats.skipped_reason = "invalid_root"
            return
        rate_value = checked.value

        timer.stage("context_check")
        if context is not None and context.document is None:
            context = dataclasses.replace(context, document=start)
        verdict = self._classifier.classify(context)
        stats.verdict = verdict
        if verdict.is_restricted:
            stats.termination_reason = TerminationReason.CONTEXT_RESTRICTED
            stats.skipped_reason = verdict.reason
            return

        budget = self._config.max_operations

        timer.stage("targeted_pass")
        self._walker.take_deferred()
        # Collected up front: walks insert annotation nodes into the tree
        targets = list(select(start, self._likely_prices, include_root=True))
        stats.targeted_elements = len(targets)
        for target in targets:
            walk = self._walker.walk(
                target, rate_value, mode=WalkMode.TARGETED, max_operations=budget, boundary=start
            )
            budget -= walk.operations
            stats.absorb(walk)
            if not walk.completed:
                return

        timer.stage("full_pass")
        walk = self._walker.walk(start, rate_value, mode=WalkMode.FULL, max_operations=budget)
        budget -= walk.operations
        stats.absorb(walk)
        if not walk.completed:
            return

        # Pruned by the targeted pass under already-claimed ancestors
        for deferred in self._walker.take_deferred():
            if deferred in self._walker.visited:
                continue
            walk = self._walker.walk(
                deferred, rate_value, mode=WalkMode.FULL, max_operations=budget, boundary=start
            )
            budget -= walk.operations
            stats.absorb(walk)
            if not walk.completed:
                return
