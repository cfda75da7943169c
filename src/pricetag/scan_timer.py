# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Per-stage latency for one orchestrated scan."""

from __future__ import annotations

import time
from collections.abc import Callable

from pricetag import ScanStats

SCAN_STAGES = ("validate", "context_check", "targeted_pass", "full_pass")


class ScanTimer:
    """Times the scan stages in :data:`SCAN_STAGES` order.

    A scan that stops early never enters the later stages; a stage is never
    entered twice or after a later one.
    """

    __slots__ = ("_clock", "_started", "_marks", "_ended")

    def __init__(self, clock: Callable[[], int] = time.monotonic_ns) -> None:
        self._clock = clock
        self._started = clock()
        self._marks: list[tuple[str, int]] = []
        self._ended: int | None = None

    def stage(self, name: str) -> None:
        """Close the running stage and open *name*.

        Raises:
            ValueError: unknown stage, stage out of order, or timer finalized.
        """
        if name not in SCAN_STAGES:
            raise ValueError(f"unknown scan stage: {name!r}")
        if self._ended is not None:
            raise ValueError(f"scan timer finalized before stage {name!r}")
        if self._marks and SCAN_STAGES.index(name) <= SCAN_STAGES.index(self._marks[-1][0]):
            raise ValueError(f"stage {name!r} cannot follow {self._marks[-1][0]!r}")
        self._marks.append((name, self._clock()))

    def finalize(self) -> None:
        """Close the running stage; later calls keep the first end time."""
        if self._ended is None:
            self._ended = self._clock()

    @property
    def current_stage(self) -> str | None:
        if self._ended is not None or not self._marks:
            return None
        return self._marks[-1][0]

    def _stop(self) -> int:
        return self._ended if self._ended is not None else self._clock()

    def elapsed_per_stage(self) -> dict[str, float]:
        """{stage: elapsed_ms} in entry order; a running stage is measured to now."""
        ends = [begin for _, begin in self._marks[1:]] + [self._stop()]
        return {name: round((end - begin) / 1e6, 3) for (name, begin), end in zip(self._marks, ends)}

    def total_ms(self) -> float:
        return round((self._stop() - self._started) / 1e6, 3)

    def record(self, stats: ScanStats) -> None:
        """Write stage and total latency into *stats*."""
        stats.stage_ms = self.elapsed_per_stage()
        stats.duration_ms = self.total_ms()
