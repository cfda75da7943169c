# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""CSS selector matching over lxml elements.

Heuristic-table selectors are compiled with :mod:`lxml.cssselect` using
the HTML translator, so the full CSS3 selector grammar is available
(combinators, attribute operators, structural pseudo-classes). Tag and
attribute names are case-insensitive; class and attribute values are not.
Pseudo-elements and selectors that cannot be translated to XPath are
rejected at load time.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator

import lxml.html
from cssselect import SelectorError
from lxml.cssselect import CSSSelector

from pricetag.errors import ConfigError

Selector = Callable[[lxml.html.HtmlElement], list]


def class_tokens(el: lxml.html.HtmlElement) -> list[str]:
    """Whitespace-separated class tokens of an element."""
    return (el.get("class") or "").split()


def compile_selector(selector: str) -> CSSSelector:
    """Compile one CSS selector.

    Raises:
        ConfigError: selector is empty or not valid CSS.
    """
    sel = selector.strip()
    if not sel:
        raise ConfigError("empty selector")
    try:
        return CSSSelector(sel, translator="html")
    except SelectorError as e:
        raise ConfigError(f"unsupported selector syntax: {selector!r} ({e})") from e


def compile_selectors(selectors: Iterable[str]) -> Selector:
    """Compile several selectors into one selector group.

    Each selector is validated on its own so a bad entry is reported by
    name, then the group is compiled as a single XPath union. An empty
    list matches nothing.
    """
    group = [compile_selector(s).css for s in selectors]
    if not group:
        return lambda root: []
    return CSSSelector(", ".join(group), translator="html")


def select(root: lxml.html.HtmlElement, selector: Selector, *, include_root: bool = False) -> Iterator:
    """Yield elements under *root* (document order) matching *selector*."""
    for el in selector(root):
        if el is root and not include_root:
            continue
        yield el
