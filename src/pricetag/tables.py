# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Heuristic data tables: class names, selectors, keyword lists.

Every list the engine matches against lives here as data, so new vendor
layouts or restricted-frame markers can be added from a YAML file without
touching control flow. ``load_tables()`` merges a YAML mapping over the
defaults; unknown keys are rejected.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pricetag.errors import ConfigError

logger = logging.getLogger(__name__)


class HeuristicTables(BaseModel):
    """Tunable heuristic lists used by the walker, reconstructor and classifier."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # ---- Tree walker ----
    skip_tags: list[str] = Field(
        default_factory=lambda: [
            "script", "style", "noscript", "svg", "canvas", "video", "audio",
            "img", "picture", "iframe", "object", "embed", "meta", "link",
            "head", "title", "template", "input", "textarea", "select",
            "option", "button",
        ],
        description="Tags pruned without descending (non-content or form fields)",
    )
    price_keywords: list[str] = Field(
        default_factory=lambda: ["price", "cost", "amount", "currency", "usd", "dollars", "total", "subtotal"],
        description="Class/id substrings that signal price content",
    )

    # ---- Scan orchestrator: targeted pass ----
    likely_price_selectors: list[str] = Field(
        default_factory=lambda: [
            ".price", ".cost", ".amount", ".fee", ".total", "*[class*=price]",
            "*[class*=cost]", "*[class*=amount]", "*[id*=price]", "*[id*=cost]",
            "*[class*=currency]", "*[class*=usd]", "*[class*=total]",
            "*[class*=dollars]", ".a-price", ".sx-price", "*[id*=product-price]",
            "span.money",
        ],
        description="CSS selectors for the fast first pass",
    )

    # ---- Structured reconstructor ----
    container_classes: list[str] = Field(
        default_factory=lambda: [
            "a-price", "sx-price", "a-text-price",
            "twister-plus-price-data-price", "apexPriceToPay", "dealPriceText",
            "a-color-price",
        ],
        description="Exact class tokens marking a multi-element price container",
    )
    symbol_classes: list[str] = Field(
        default_factory=lambda: ["a-price-symbol", "sx-price-currency"],
    )
    whole_classes: list[str] = Field(
        default_factory=lambda: ["a-price-whole", "sx-price-whole"],
    )
    fraction_classes: list[str] = Field(
        default_factory=lambda: ["a-price-fraction", "sx-price-fractional"],
    )
    symbol_class_hints: list[str] = Field(default_factory=lambda: ["currency", "symbol"])
    whole_class_hints: list[str] = Field(default_factory=lambda: ["whole", "dollars", "integer"])
    fraction_class_hints: list[str] = Field(default_factory=lambda: ["fraction", "cents", "decimal-part"])
    component_keywords: list[str] = Field(
        default_factory=lambda: ["price", "symbol", "currency", "whole", "fraction", "cents"],
        description="Class/id substrings that make an element a reconstruction candidate",
    )

    # ---- Context classifier ----
    retailer_domains: list[str] = Field(
        default_factory=lambda: [
            "amazon.com", "amazon.co.uk", "amazon.de", "amazon.fr", "amazon.it",
            "amazon.es", "amazon.ca", "amazon.in", "amazon.com.mx", "amazon.com.br",
            "amazon.com.au", "amazon.co.jp", "amazon.cn", "amazon.nl", "amazon.sg",
            "amazon.ae", "amzn", "a2z", "amazon-adsystem",
        ],
    )
    retailer_url_markers: list[str] = Field(
        default_factory=lambda: ["/gp/product/", "/dp/", "/amzn", "adsystem", "adserver"],
    )
    restricted_url_keywords: list[str] = Field(
        default_factory=lambda: [
            "adsystem", "adserver", "advertising", "creatives", "widget",
            "recommendations", "/recs/", "iframe", "sandbox", "popover", "modal",
            "overlay",
        ],
    )
    restricted_layout_classes: list[str] = Field(
        default_factory=lambda: ["ap_popover_content", "a-overlay", "aok-overlay", "a-modal", "a-popover"],
    )
    ad_marker_selectors: list[str] = Field(
        default_factory=lambda: ["[id*=ad-]", "[class*=ad-]", "[id*=ads]", "[class*=ads]", "[data-ad-slot]"],
    )

    # ---- Incremental update controller ----
    lazy_container_selectors: list[str] = Field(
        default_factory=lambda: ["main", "section", "article", ".content", "#content", "[role=main]"],
    )


DEFAULT_TABLES = HeuristicTables()


def load_tables(path: str | Path) -> HeuristicTables:
    """Load a YAML mapping of table overrides on top of the defaults.

    Raises:
        ConfigError: file missing, not a mapping, or keys/values invalid.
    """
    p = Path(path)
    try:
        with open(p, encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"cannot read tables file {p}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {p}: {e}") from e

    if raw is None:
        return DEFAULT_TABLES
    if not isinstance(raw, dict):
        raise ConfigError(f"tables file {p} must contain a mapping, got {type(raw).__name__}")

    merged = DEFAULT_TABLES.model_dump()
    merged.update(raw)
    try:
        tables = HeuristicTables(**merged)
    except ValidationError as e:
        raise ConfigError(f"invalid tables in {p}: {e}") from e
    logger.debug("Loaded heuristic tables from %s (%d overrides)", p, len(raw))
    return tables
