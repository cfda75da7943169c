# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Visitation tracking: which nodes have already been examined.

lxml has no separate text nodes, so a text node is modelled as a
``TextSlot``: an element plus ``"text"`` (content before its first child)
or ``"tail"`` (content after its end tag, inside the parent). Elements and
slots are both keyed by identity. The set holds strong references, which
keeps lxml proxies stable for as long as the set lives.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import lxml.html


@dataclass(frozen=True, slots=True)
class TextSlot:
    """A text node: ``element.text`` or ``element.tail``."""

    element: lxml.html.HtmlElement
    slot: Literal["text", "tail"]

    def get(self) -> str | None:
        return self.element.text if self.slot == "text" else self.element.tail

    def set(self, value: str | None) -> None:
        if self.slot == "text":
            self.element.text = value
        else:
            self.element.tail = value


class VisitationSet:
    """Per-engine membership set shared by the walker and update controller.

    A node in the set is never re-examined. ``reset()`` swaps in a fresh set
    at the start of a top-level scan.
    """

    __slots__ = ("_nodes", "generation")

    def __init__(self) -> None:
        self._nodes: set = set()
        self.generation = 0

    def __contains__(self, node: object) -> bool:
        return node in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def add(self, node: object) -> None:
        self._nodes.add(node)

    def claim(self, node: object) -> bool:
        """Add *node*; False if it was already present."""
        if node in self._nodes:
            return False
        self._nodes.add(node)
        return True

    def mark_subtree(self, el: lxml.html.HtmlElement, *, include_tail: bool = False) -> int:
        """Mark *el*, its text and every descendant (with their tails) visited.

        The element's own tail lies outside the subtree and is only marked
        when *include_tail* is set. Returns the number of elements marked.
        """
        count = 0
        for node in el.iter():
            self._nodes.add(node)
            self._nodes.add(TextSlot(node, "text"))
            if node is not el:
                self._nodes.add(TextSlot(node, "tail"))
            count += 1
        if include_tail:
            self._nodes.add(TextSlot(el, "tail"))
        return count

    def reset(self) -> None:
        self._nodes = set()
        self.generation += 1
