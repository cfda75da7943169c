# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Incremental updates after the initial scan.

The host reports inserted subtrees (``notify_mutations``) and elements that
scrolled into view (``notify_visible``). Intake is throttled to one pass per
``throttle_interval`` (leading and trailing edge); nodes reported inside the
window accumulate for the trailing pass. Accepted nodes queue up and are
walked in FULL mode, each with ``incremental_max_operations``, once
``debounce_interval`` has passed since the first queued node or as soon as
``batch_size`` nodes are pending.

Timers go through a scheduler exposing ``call_later(delay, callback)`` that
returns a handle with ``cancel()``; the running asyncio loop qualifies.
Without a scheduler (and no running loop) every intake flushes
synchronously.

The controller holds only its timers, queue and visibility registrations;
at-most-once processing comes from the shared VisitationSet.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from typing import Protocol

import lxml.html
from lxml import etree

from pricetag import WalkMode, WalkStats
from pricetag.config import EngineConfig
from pricetag.dom_select import compile_selectors, select
from pricetag.patterns import validate_rate
from pricetag.result import Result
from pricetag.tables import DEFAULT_TABLES, HeuristicTables
from pricetag.walker import TreeWalker

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], object]) -> TimerHandle: ...


def _is_element(node: object) -> bool:
    return isinstance(node, etree._Element) and isinstance(node.tag, str)


class IncrementalUpdateController:
    """Feeds inserted and newly visible subtrees back into the walker."""

    def __init__(
        self,
        walker: TreeWalker,
        config: EngineConfig | None = None,
        *,
        tables: HeuristicTables = DEFAULT_TABLES,
        scheduler: Scheduler | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._walker = walker
        self._config = config or EngineConfig()
        self._scheduler = scheduler
        self._clock = clock
        self._lazy_containers = compile_selectors(tables.lazy_container_selectors)

        self._rate: float | None = None
        self._incoming: list = []
        self._queue: list = []
        self._queued: set = set()
        self._observed: set = set()
        self._last_intake: float | None = None
        self._throttle_handle: TimerHandle | None = None
        self._batch_handle: TimerHandle | None = None

        self.walks = 0
        self.conversions = 0
        self.errors = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._rate is not None

    @property
    def pending(self) -> int:
        """Nodes waiting for intake or for the next batch."""
        return len(self._incoming) + len(self._queue)

    @property
    def observed(self) -> int:
        return len(self._observed)

    def start(self, rate: object) -> Result[float]:
        """Begin accepting notifications; an invalid rate leaves it stopped."""
        checked = validate_rate(rate)
        if not checked.ok:
            logger.warning("Update controller not started: %s", checked)
            return checked
        if self._scheduler is None:
            try:
                self._scheduler = asyncio.get_running_loop()
            except RuntimeError:
                logger.debug("No event loop; update controller runs synchronously")
        self._rate = checked.value
        return checked

    def update_rate(self, rate: object) -> Result[float]:
        """Use *rate* for subsequent walks. Existing annotations stay as they are."""
        checked = validate_rate(rate)
        if checked.ok and self.running:
            self._rate = checked.value
        return checked

    def stop(self) -> None:
        """Cancel timers and drop pending work and registrations."""
        self._cancel(self._throttle_handle)
        self._cancel(self._batch_handle)
        self._throttle_handle = self._batch_handle = None
        self._incoming.clear()
        self._queue.clear()
        self._queued.clear()
        self._observed.clear()
        self._last_intake = None
        self._rate = None

    @staticmethod
    def _cancel(handle: TimerHandle | None) -> None:
        if handle is not None:
            handle.cancel()

    # ------------------------------------------------------------------
    # Mutations: throttle -> queue -> batch
    # ------------------------------------------------------------------

    def notify_mutations(self, added_nodes: Iterable[object]) -> None:
        """Report nodes inserted into the live document."""
        if not self.running:
            return
        self._incoming.extend(added_nodes)
        if self._scheduler is None:
            self._intake()
            self._flush_batch()
            return

        now = self._clock()
        elapsed = None if self._last_intake is None else now - self._last_intake
        if elapsed is None or elapsed >= self._config.throttle_interval:
            self._cancel(self._throttle_handle)
            self._throttle_handle = None
            self._intake()
        elif self._throttle_handle is None:
            self._throttle_handle = self._scheduler.call_later(
                self._config.throttle_interval - elapsed, self._on_throttle_timer
            )

    def _on_throttle_timer(self) -> None:
        self._throttle_handle = None
        if self.running and self._incoming:
            self._intake()

    def _intake(self) -> None:
        self._last_intake = self._clock()
        incoming, self._incoming = self._incoming, []
        visited = self._walker.visited
        for node in incoming:
            if not _is_element(node) or node in visited or node in self._queued:
                continue
            self._queue.append(node)
            self._queued.add(node)
            if len(self._queue) >= self._config.batch_size:
                self._flush_batch()

        if self._queue and self._batch_handle is None and self._scheduler is not None:
            self._batch_handle = self._scheduler.call_later(self._config.debounce_interval, self._on_batch_timer)

    def _on_batch_timer(self) -> None:
        self._batch_handle = None
        if self.running:
            self._flush_batch()

    def _flush_batch(self) -> None:
        self._cancel(self._batch_handle)
        self._batch_handle = None
        batch, self._queue = self._queue, []
        self._queued.clear()
        for node in batch:
            if node not in self._walker.visited:
                self._walk(node)

    # ------------------------------------------------------------------
    # Visibility
    # ------------------------------------------------------------------

    def observe_visibility(self, nodes: Iterable[object]) -> int:
        """Register off-screen elements; returns how many were added."""
        added = 0
        for node in nodes:
            if _is_element(node) and node not in self._walker.visited and node not in self._observed:
                self._observed.add(node)
                added += 1
        return added

    def observe_default_containers(self, root: lxml.html.HtmlElement) -> int:
        """Register the page's main content containers for lazy processing."""
        return self.observe_visibility(list(select(root, self._lazy_containers, include_root=True)))

    def notify_visible(self, nodes: Iterable[object]) -> int:
        """Walk registered elements that entered the viewport, once each."""
        if not self.running:
            return 0
        walked = 0
        for node in nodes:
            if node not in self._observed:
                continue
            self._observed.discard(node)
            self._walk(node)
            walked += 1
        return walked

    # ------------------------------------------------------------------

    def flush(self) -> None:
        """Process all pending mutation work now."""
        if not self.running:
            return
        self._cancel(self._throttle_handle)
        self._throttle_handle = None
        if self._incoming:
            self._intake()
        self._flush_batch()

    def _walk(self, node: lxml.html.HtmlElement) -> WalkStats | None:
        try:
            stats = self._walker.walk(
                node,
                self._rate,
                mode=WalkMode.FULL,
                max_operations=self._config.incremental_max_operations,
                boundary=node.getroottree().getroot(),
            )
        except Exception:
            self.errors += 1
            logger.warning("Incremental walk failed", exc_info=True)
            return None
        self.walks += 1
        self.conversions += stats.conversions
        self.errors += stats.errors
        if not stats.completed:
            logger.debug("Incremental walk stopped early: %s", stats.termination_reason)
        return stats
