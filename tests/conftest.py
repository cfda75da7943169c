# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import pricetag  # noqa: F401
except ImportError:
    raise ImportError("pricetag is not installed. Run: pip install -e '.[test]'") from None

import pytest

from pricetag.config import EngineConfig
from pricetag.engine import PriceTagEngine
from tests._dom_helpers import FakeClock, FakeScheduler


@pytest.fixture
def engine():
    return PriceTagEngine()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return FakeScheduler(clock)


@pytest.fixture
def small_config():
    """Tight budgets and short timers for controller tests."""
    return EngineConfig(
        incremental_max_operations=500,
        debounce_interval=0.1,
        throttle_interval=0.15,
        batch_size=3,
    )
