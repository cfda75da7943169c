# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Structured price reconstruction for prices split across elements.

Vendor markup often renders one price as separate nodes::

    <span class="a-price">
      <span class="a-price-symbol">$</span>
      <span class="a-price-whole">19<span class="a-price-decimal">.</span></span>
      <span class="a-price-fraction">99</span>
    </span>

Text-level matching never sees "$19.99" there. This module locates the
enclosing container, reassembles the value and replaces the rendering with a
single annotated node inserted right after the (visually suppressed)
container. Every step returns a Result; a failure abandons that container
only and the walker falls back to plain text conversion.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

import lxml.html
from lxml import etree

from pricetag import PROCESSED_ATTR
from pricetag.dom_select import class_tokens
from pricetag.patterns import format_label, parse_amount
from pricetag.result import Err, Ok, Result
from pricetag.tables import DEFAULT_TABLES, HeuristicTables
from pricetag.visitation import TextSlot, VisitationSet

logger = logging.getLogger(__name__)

ANNOTATION_CLASS = "pricetag-converted"

_CURRENCY_GLYPHS = "$€£¥₹"
_SYMBOL_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("usd", "dollar"), "$"),
    (("eur", "euro"), "€"),
    (("gbp", "pound"), "£"),
    (("jpy", "yen"), "¥"),
    (("inr", "rupee"), "₹"),
)
_SUPPORTED_SYMBOL = "$"  # the reference rate is quoted in USD

# Containers are small inline widgets; anything longer is a layout block
_MAX_CONTAINER_TEXT = 80

_SUPPRESS_STYLE = "opacity:0;height:0;overflow:hidden;margin:0;padding:0"

_SYMBOL_TEXT_RE = re.compile(r"^(?:[$€£¥₹]|USD|US\$)$", re.IGNORECASE)
_WHOLE_TEXT_RE = re.compile(r"^\d[\d,]*\.?$")
_FRACTION_TEXT_RE = re.compile(r"^\d{1,2}$")
_DECIMAL_PRICE_RE = re.compile(r"^\s*(?:[$€£¥₹]|USD)\s*\d[\d,]*\.\d{2}\s*$", re.IGNORECASE)
_FALLBACK_PRICE_RE = re.compile(r"([^\d]*)(\d[\d,]*)\.?(\d*)")


@dataclass(frozen=True, slots=True)
class PriceComponents:
    """Symbol, whole and fraction parts of one split price."""

    symbol: str
    whole: str
    fraction: str = ""
    source: str = "structured"  # "structured" | "text"

    @property
    def display(self) -> str:
        return f"{self.symbol}{self.whole}" + (f".{self.fraction}" if self.fraction else "")

    @property
    def amount(self) -> float | None:
        number = self.whole.replace(",", "") + (f".{self.fraction}" if self.fraction else "")
        return parse_amount(number)


@dataclass
class ReconstructionOutcome:
    processed: bool
    container: lxml.html.HtmlElement | None = None
    annotation: lxml.html.HtmlElement | None = None
    amount: float | None = None
    reason: str = ""
    pending: list[TextSlot] = field(default_factory=list)  # slots the walker must still visit


def normalize_symbol(raw: str | None) -> str:
    """Map symbol text to a canonical glyph by content or keyword; default ``$``."""
    if not raw:
        return "$"
    for glyph in _CURRENCY_GLYPHS:
        if glyph in raw:
            return glyph
    low = raw.lower()
    for keywords, glyph in _SYMBOL_KEYWORDS:
        if any(k in low for k in keywords):
            return glyph
    return "$"


def _text(el: lxml.html.HtmlElement) -> str:
    return (el.text_content() or "").strip()


def _descendants(el: lxml.html.HtmlElement):
    for d in el.iter():
        if d is not el and isinstance(d.tag, str):
            yield d


def _text_exceeds(el: lxml.html.HtmlElement, limit: int) -> bool:
    """``len(_text(el)) > limit`` without reading past the first *limit* characters."""
    seen = 0
    gap = 0
    for chunk in el.itertext():
        if not seen:
            chunk = chunk.lstrip()
        body = chunk.rstrip()
        if body:
            seen += gap + len(body)
            if seen > limit:
                return True
            gap = len(chunk) - len(body)
        elif seen:
            gap += len(chunk)
    return False


def _clean_whole(text: str) -> str:
    return re.sub(r"[^\d,]", "", text).strip(",")


def _clean_fraction(text: str) -> str:
    digits = re.sub(r"\D", "", text)
    return digits[:2]


class StructuredPriceReconstructor:
    """Finds, extracts and collapses multi-element prices exactly once."""

    def __init__(
        self,
        visited: VisitationSet,
        *,
        tables: HeuristicTables = DEFAULT_TABLES,
        search_depth: int = 4,
        label_style: str = "exact",
    ) -> None:
        self._visited = visited
        self._attempted: set = set()
        self._rejected: set = set()
        self._depth = search_depth
        self._style = label_style
        self._container_classes = frozenset(tables.container_classes)
        self._symbol_classes = frozenset(tables.symbol_classes)
        self._whole_classes = frozenset(tables.whole_classes)
        self._fraction_classes = frozenset(tables.fraction_classes)
        self._symbol_hints = tuple(h.lower() for h in tables.symbol_class_hints)
        self._whole_hints = tuple(h.lower() for h in tables.whole_class_hints)
        self._fraction_hints = tuple(h.lower() for h in tables.fraction_class_hints)
        self._candidate_keywords = tuple(k.lower() for k in tables.component_keywords)

    def reset(self) -> None:
        """Forget attempted and rejected containers (new top-level scan)."""
        self._attempted = set()
        self._rejected = set()

    # ------------------------------------------------------------------
    # Candidate / container detection
    # ------------------------------------------------------------------

    def is_candidate(self, el: lxml.html.HtmlElement) -> bool:
        """Cheap pre-filter: does the class/id suggest a price component?"""
        if not isinstance(el.tag, str):
            return False
        if self._container_classes.intersection(class_tokens(el)):
            return True
        ident = f"{el.get('class', '')} {el.get('id', '')}".lower()
        return any(k in ident for k in self._candidate_keywords)

    def _is_class_container(self, el: lxml.html.HtmlElement) -> bool:
        return bool(self._container_classes.intersection(class_tokens(el)))

    def _role_of(self, el: lxml.html.HtmlElement) -> str:
        tokens = class_tokens(el)
        if self._symbol_classes.intersection(tokens):
            return "symbol"
        if self._whole_classes.intersection(tokens):
            return "whole"
        if self._fraction_classes.intersection(tokens):
            return "fraction"
        cls = (el.get("class") or "").lower()
        if any(h in cls for h in self._symbol_hints):
            return "symbol"
        if any(h in cls for h in self._whole_hints):
            return "whole"
        if any(h in cls for h in self._fraction_hints):
            return "fraction"
        return ""

    def _split_children(self, el: lxml.html.HtmlElement) -> tuple[str, str, str] | None:
        """Symbol / whole / fraction read from child order and content alone."""
        texts = [t for t in (_text(c) for c in el if isinstance(c.tag, str)) if t]
        if not 2 <= len(texts) <= 4 or not _SYMBOL_TEXT_RE.match(texts[0]):
            return None
        if not _WHOLE_TEXT_RE.match(texts[1]):
            return None
        rest = [t for t in texts[2:] if t != "."]
        if len(rest) > 1 or (rest and not _FRACTION_TEXT_RE.match(rest[0])):
            return None
        return texts[0], texts[1], rest[0] if rest else ""

    def _has_structure(self, el: lxml.html.HtmlElement) -> bool:
        roles = {self._role_of(d) for d in _descendants(el)}
        if {"symbol", "whole"} <= roles:
            return True
        return self._split_children(el) is not None

    def _holds_one_price(self, el: lxml.html.HtmlElement) -> bool:
        wholes = 0
        for d in _descendants(el):
            if d.get(PROCESSED_ATTR) is not None or self._is_class_container(d):
                return False
            if self._role_of(d) == "whole":
                wholes += 1
                if wholes > 1:
                    return False
        return True

    def _usable(self, el: lxml.html.HtmlElement) -> bool:
        """Can *el* host exactly one annotation? Rejections last until :meth:`reset`."""
        if el in self._rejected:
            return False
        if el.getparent() is None:
            return False
        if (
            el.get(PROCESSED_ATTR) is not None
            or _text_exceeds(el, _MAX_CONTAINER_TEXT)
            or not self._holds_one_price(el)
        ):
            self._rejected.add(el)
            return False
        return True

    def _ancestors(self, el: lxml.html.HtmlElement, boundary: lxml.html.HtmlElement | None = None):
        current = el
        for _ in range(self._depth + 1):
            if current is None or current is boundary or not isinstance(current.tag, str):
                return
            yield current
            current = current.getparent()

    def find_container(
        self,
        el: lxml.html.HtmlElement,
        boundary: lxml.html.HtmlElement | None = None,
    ) -> Result[lxml.html.HtmlElement]:
        """Locate the price container at *el* or up to ``search_depth`` ancestors.

        A known container class at any level beats a structural match; within
        each kind the nearest level wins. A literal decimal price split over
        2+ child elements is the last resort. The search stops below
        *boundary*: the scan root never hosts an annotation itself.
        """
        levels = [node for node in self._ancestors(el, boundary) if self._usable(node)]
        for node in levels:
            if self._is_class_container(node):
                return Ok(node)
        for node in levels:
            if self._has_structure(node):
                return Ok(node)
        for node in levels:
            elements = [c for c in node if isinstance(c.tag, str)]
            if len(elements) >= 2 and _DECIMAL_PRICE_RE.match(_text(node)):
                return Ok(node)
        return Err("no_container")

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def _from_roles(self, container: lxml.html.HtmlElement) -> dict[str, str]:
        parts: dict[str, str] = {}
        for d in _descendants(container):
            role = self._role_of(d)
            if role and role not in parts:
                text = _text(d)
                if text:
                    parts[role] = text
        return parts

    def _from_itemprop(self, container: lxml.html.HtmlElement) -> dict[str, str]:
        parts: dict[str, str] = {}
        for d in container.iter():
            if not isinstance(d.tag, str):
                continue
            prop = (d.get("itemprop") or "").lower()
            content = d.get("content") or _text(d)
            if prop == "price" and content and "whole" not in parts:
                whole, _, fraction = content.partition(".")
                parts["whole"] = whole
                if fraction:
                    parts["fraction"] = fraction
            elif prop == "pricecurrency" and content and "symbol" not in parts:
                parts["symbol"] = content
        return parts

    def _from_children(self, container: lxml.html.HtmlElement) -> dict[str, str]:
        split = self._split_children(container)
        if split is None:
            return {}
        symbol, whole, fraction = split
        parts = {"symbol": symbol, "whole": whole}
        if fraction:
            parts["fraction"] = fraction
        return parts

    def extract_components(self, container: lxml.html.HtmlElement) -> Result[PriceComponents]:
        """Symbol/whole/fraction via descending strategies, then full-text regex."""
        parts: dict[str, str] = {}
        for strategy in (self._from_roles, self._from_itemprop, self._from_children):
            for key, value in strategy(container).items():
                parts.setdefault(key, value)
            if "symbol" in parts and "whole" in parts and "fraction" in parts:
                break

        source = "structured"
        if "symbol" not in parts or "whole" not in parts:
            m = _FALLBACK_PRICE_RE.search(_text(container))
            if m is None:
                return Err("no_price_text", _text(container)[:40])
            parts.setdefault("symbol", m.group(1))
            parts.setdefault("whole", m.group(2))
            if m.group(3):
                parts.setdefault("fraction", m.group(3))
            source = "text"

        whole = _clean_whole(parts.get("whole", ""))
        if not whole:
            return Err("missing_whole")
        return Ok(
            PriceComponents(
                symbol=normalize_symbol(parts.get("symbol")),
                whole=whole,
                fraction=_clean_fraction(parts.get("fraction", "")),
                source=source,
            )
        )

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def _build_annotation(self, components: PriceComponents, label: str) -> lxml.html.HtmlElement:
        node = lxml.html.Element("span")
        node.set("class", ANNOTATION_CLASS)
        node.set(PROCESSED_ATTR, "true")
        original = etree.SubElement(node, "span")
        original.set("class", "pricetag-original")
        original.set(PROCESSED_ATTR, "true")
        original.text = components.display
        original.tail = " "
        value = etree.SubElement(node, "span")
        value.set("class", "pricetag-value")
        value.set(PROCESSED_ATTR, "true")
        value.text = f"({label})"
        return node

    def apply(
        self,
        container: lxml.html.HtmlElement,
        components: PriceComponents,
        rate: float,
    ) -> Result[ReconstructionOutcome]:
        """Insert the annotation after *container*, suppress and mark it."""
        amount = components.amount
        if amount is None or amount <= 0:
            return Err("unparseable_amount", components.display)
        if components.symbol != _SUPPORTED_SYMBOL:
            return Err("unsupported_currency", components.symbol)
        if container.getparent() is None:
            return Err("detached_container")

        node = self._build_annotation(components, format_label(amount, rate, self._style))
        tail_slot = TextSlot(container, "tail")
        original_tail = container.tail
        try:
            node.tail = original_tail
            container.tail = None
            container.addnext(node)

            style = (container.get("style") or "").strip()
            if style and not style.endswith(";"):
                style += ";"
            container.set("style", style + _SUPPRESS_STYLE)
            container.set("aria-hidden", "true")
            for d in container.iter():
                if isinstance(d.tag, str):
                    d.set(PROCESSED_ATTR, "true")
        except Exception as e:
            self._rollback(container, node, original_tail)
            return Err("mutation_failed", str(e))

        self._visited.mark_subtree(container)
        self._visited.mark_subtree(node)
        pending: list[TextSlot] = []
        if tail_slot in self._visited:
            self._visited.add(TextSlot(node, "tail"))
        else:
            self._visited.add(tail_slot)
            if node.tail:
                pending.append(TextSlot(node, "tail"))
        return Ok(
            ReconstructionOutcome(
                processed=True,
                container=container,
                annotation=node,
                amount=amount,
                pending=pending,
            )
        )

    @staticmethod
    def _rollback(
        container: lxml.html.HtmlElement,
        node: lxml.html.HtmlElement,
        original_tail: str | None,
    ) -> None:
        try:
            if node.getparent() is not None:
                node.getparent().remove(node)
            container.tail = original_tail
        except Exception:
            logger.debug("Rollback after failed container mutation also failed", exc_info=True)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def process(
        self,
        el: lxml.html.HtmlElement,
        rate: float,
        boundary: lxml.html.HtmlElement | None = None,
    ) -> ReconstructionOutcome:
        """Collapse the split price around *el*, at most once per container."""
        found = self.find_container(el, boundary)
        if not found.ok:
            return ReconstructionOutcome(processed=False, reason=found.reason)
        container = found.value
        if container in self._attempted:
            return ReconstructionOutcome(processed=False, container=container, reason="already_attempted")
        self._attempted.add(container)

        components = self.extract_components(container)
        if not components.ok:
            logger.debug("Container extraction failed: %s", components)
            return ReconstructionOutcome(processed=False, container=container, reason=components.reason)

        applied = self.apply(container, components.value, rate)
        if not applied.ok:
            logger.debug("Container mutation skipped: %s", applied)
            return ReconstructionOutcome(processed=False, container=container, reason=applied.reason)
        return applied.value
