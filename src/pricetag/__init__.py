# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""PriceTag: annotate fiat prices in live HTML trees with their bitcoin value.

Scans lxml document trees for USD price mentions, either in free text
("Buy now for $1,299.99!") or split across sibling elements
(symbol / whole / fraction spans), and rewrites them in place as
``original (converted)`` using a caller-supplied reference rate.

Core data types live here so every submodule can import them without
cycles; the engine facade is ``pricetag.engine.PriceTagEngine``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import StrEnum

SATS_PER_BTC = 100_000_000

# Attribute placed on suppressed containers and on the nodes we insert
PROCESSED_ATTR = "data-pricetag-processed"


class Severity(StrEnum):
    """Restriction severity, ordered none < low < medium < high."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.NONE: 0, Severity.LOW: 1, Severity.MEDIUM: 2, Severity.HIGH: 3}


class TerminationReason(StrEnum):
    """Why a walk or scan stopped."""

    COMPLETED = "completed"
    OPERATIONS_LIMIT = "operations_limit_reached"
    STACK_LIMIT = "stack_limit_reached"
    INVALID_INPUT = "invalid_input"
    CONTEXT_RESTRICTED = "context_restricted"
    INTERNAL_ERROR = "internal_error"


class WalkMode(StrEnum):
    TARGETED = "targeted"  # visible, price-signalled elements only
    FULL = "full"


@dataclass(frozen=True, slots=True)
class PriceMatch:
    """A single price mention found in a string."""

    raw_text: str
    numeric_amount: float  # already multiplied by magnitude_multiplier
    magnitude_multiplier: float
    source_span: tuple[int, int]
    position: str = "preceding"  # "preceding" | "concluding" currency marker


@dataclass(frozen=True, slots=True)
class ConversionResult:
    """An original price string and its converted label."""

    original_text: str
    converted_label: str  # e.g. "2,599,980 sats" or "1.5 BTC"

    @property
    def replacement(self) -> str:
        return f"{self.original_text} ({self.converted_label})"


@dataclass(frozen=True, slots=True)
class Signal:
    """One failed context check."""

    name: str
    severity: Severity
    unambiguous: bool = False  # restricts on its own regardless of total


@dataclass(frozen=True)
class RestrictionVerdict:
    """Outcome of the context safety classifier."""

    is_restricted: bool
    reason: str = ""
    severity: Severity = Severity.NONE
    signals: tuple[Signal, ...] = ()

    def to_dict(self) -> dict:
        return {
            "is_restricted": self.is_restricted,
            "reason": self.reason,
            "severity": str(self.severity),
            "signals": [s.name for s in self.signals],
        }


@dataclass
class WalkStats:
    """Counters from a single tree walk."""

    nodes_processed: int = 0
    conversions: int = 0
    containers: int = 0
    errors: int = 0
    operations: int = 0  # nodes popped, counted against the budget
    termination_reason: TerminationReason = TerminationReason.COMPLETED

    @property
    def completed(self) -> bool:
        return self.termination_reason == TerminationReason.COMPLETED


@dataclass
class ScanStats:
    """Aggregate statistics for one orchestrated scan."""

    nodes_processed: int = 0
    conversions: int = 0
    duration_ms: float = 0.0
    termination_reason: TerminationReason = TerminationReason.COMPLETED
    containers: int = 0
    errors: int = 0
    targeted_elements: int = 0
    skipped_reason: str = ""
    scan_id: str = ""
    verdict: RestrictionVerdict | None = None
    stage_ms: dict[str, float] = field(default_factory=dict)

    @property
    def skipped(self) -> bool:
        return self.termination_reason in (
            TerminationReason.INVALID_INPUT,
            TerminationReason.CONTEXT_RESTRICTED,
        )

    @property
    def partial(self) -> bool:
        return self.termination_reason in (
            TerminationReason.OPERATIONS_LIMIT,
            TerminationReason.STACK_LIMIT,
        )

    def absorb(self, walk: WalkStats) -> None:
        """Fold one walk's counters into this scan."""
        self.nodes_processed += walk.nodes_processed
        self.conversions += walk.conversions
        self.containers += walk.containers
        self.errors += walk.errors
        if not walk.completed and self.termination_reason == TerminationReason.COMPLETED:
            self.termination_reason = walk.termination_reason

    def to_dict(self) -> dict:
        data = asdict(self)
        data["termination_reason"] = str(self.termination_reason)
        data["verdict"] = self.verdict.to_dict() if self.verdict else None
        return data
