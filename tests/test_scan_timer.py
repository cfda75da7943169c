# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for ScanTimer."""

from __future__ import annotations

import pytest

from pricetag import ScanStats
from pricetag.scan_timer import SCAN_STAGES, ScanTimer


def _ticks(*values_ms: float):
    """Clock returning the given millisecond marks as nanoseconds."""
    it = iter(int(v * 1_000_000) for v in values_ms)
    return lambda: next(it)


class TestScanTimer:
    def test_stage_order(self):
        timer = ScanTimer()
        for name in SCAN_STAGES:
            timer.stage(name)
        timer.finalize()
        stages = timer.elapsed_per_stage()
        assert list(stages) == ["validate", "context_check", "targeted_pass", "full_pass"]
        assert all(isinstance(v, float) and v >= 0 for v in stages.values())

    def test_elapsed_from_clock(self):
        # created, validate, context_check, finalize
        timer = ScanTimer(clock=_ticks(0, 1, 3, 7.5))
        timer.stage("validate")
        timer.stage("context_check")
        timer.finalize()
        assert timer.elapsed_per_stage() == {"validate": 2.0, "context_check": 4.5}
        assert timer.total_ms() == 7.5

    def test_record_into_stats(self):
        timer = ScanTimer(clock=_ticks(0, 2, 5))
        timer.stage("validate")
        timer.finalize()
        stats = ScanStats()
        timer.record(stats)
        assert stats.stage_ms == {"validate": 3.0}
        assert stats.duration_ms == 5.0

    def test_current_stage(self):
        timer = ScanTimer()
        assert timer.current_stage is None
        timer.stage("validate")
        assert timer.current_stage == "validate"
        timer.stage("full_pass")
        assert timer.current_stage == "full_pass"
        timer.finalize()
        assert timer.current_stage is None

    def test_unfinished_stage_reported(self):
        timer = ScanTimer()
        timer.stage("targeted_pass")
        assert "targeted_pass" in timer.elapsed_per_stage()

    def test_finalize_twice_keeps_first_end(self):
        timer = ScanTimer(clock=_ticks(0, 1, 4, 9))
        timer.stage("validate")
        timer.finalize()
        timer.finalize()
        assert timer.elapsed_per_stage() == {"validate": 3.0}

    def test_no_stages(self):
        timer = ScanTimer()
        timer.finalize()
        assert timer.elapsed_per_stage() == {}
        assert timer.total_ms() >= 0

    def test_unknown_stage(self):
        with pytest.raises(ValueError, match="unknown scan stage"):
            ScanTimer().stage("render")

    @pytest.mark.parametrize("second", ["validate", "context_check"])
    def test_stage_cannot_repeat_or_go_back(self, second):
        timer = ScanTimer()
        timer.stage("context_check")
        with pytest.raises(ValueError, match="cannot follow"):
            timer.stage(second)

    def test_no_stage_after_finalize(self):
        timer = ScanTimer()
        timer.finalize()
        with pytest.raises(ValueError, match="finalized"):
            timer.stage("validate")
