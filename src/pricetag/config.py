# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Engine configuration: traversal budgets, controller timing, label style.

Leaf module. ``EngineConfig()`` holds the defaults; ``EngineConfig.from_env()``
applies ``PRICETAG_*`` environment overrides and ignores malformed values.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from contextlib import suppress
from dataclasses import dataclass

logger = logging.getLogger(__name__)

LABEL_STYLES = ("exact", "friendly")


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Immutable configuration shared by one engine instance."""

    max_operations: int = 50_000  # nodes popped across both scan passes
    max_stack: int = 10_000  # elements waiting on the explicit stack per walk
    incremental_max_operations: int = 5_000  # per controller-triggered walk
    container_search_depth: int = 4  # ancestor levels tried by the reconstructor
    debounce_interval: float = 0.1  # seconds before a pending batch is flushed
    throttle_interval: float = 0.15  # minimum seconds between mutation intakes
    batch_size: int = 10  # flush immediately at this many queued nodes
    label_style: str = "exact"  # "exact" | "friendly"
    small_frame_threshold: int = 350  # px, ad-sized frame below this

    def __post_init__(self) -> None:
        for name in (
            "max_operations",
            "max_stack",
            "incremental_max_operations",
            "batch_size",
            "small_frame_threshold",
        ):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be > 0, got {value}")
        if self.container_search_depth < 0:
            raise ValueError(f"container_search_depth must be >= 0, got {self.container_search_depth}")
        if self.debounce_interval < 0:
            raise ValueError(f"debounce_interval must be >= 0, got {self.debounce_interval}")
        if self.throttle_interval < 0:
            raise ValueError(f"throttle_interval must be >= 0, got {self.throttle_interval}")
        if self.label_style not in LABEL_STYLES:
            raise ValueError(f"label_style must be one of {LABEL_STYLES}, got {self.label_style!r}")

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> EngineConfig:
        """Build a config from defaults plus ``PRICETAG_<FIELD>`` overrides."""
        env = os.environ if environ is None else environ
        overrides: dict[str, object] = {}
        for f in dataclasses.fields(cls):
            raw = env.get(f"PRICETAG_{f.name.upper()}", "").strip()
            if not raw:
                continue
            with suppress(ValueError):
                if f.type == "int":
                    overrides[f.name] = int(raw)
                elif f.type == "float":
                    overrides[f.name] = float(raw)
                else:
                    overrides[f.name] = raw.lower()
        try:
            return cls(**overrides)
        except ValueError as e:
            logger.warning("Ignoring invalid PRICETAG_* overrides: %s", e)
            return cls()
