# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Ok/Err result values for extraction and mutation steps.

Leaf module with no pricetag imports. Steps return ``Ok(value)`` or
``Err(reason)`` and callers chain them with early returns.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Literal, TypeVar

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> Literal[True]:
        return True


@dataclass(frozen=True, slots=True)
class Err:
    reason: str  # short reason code, e.g. "no_container"
    detail: str = ""

    @property
    def ok(self) -> Literal[False]:
        return False

    def __str__(self) -> str:
        return f"{self.reason}: {self.detail}" if self.detail else self.reason


Result = Ok[T] | Err
