# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Price pattern detection and fiat -> bitcoin conversion.

Two independent patterns cover the two orders markets render:
  - marker precedes amount:  $19.99, USD 5, $2.5k, $3 million
  - amount precedes marker:  100 USD, 5.5k USD, 20$

Matches are parsed to a float (grouping characters tolerated, magnitude
suffix applied) and rendered as ``original (converted)``. Amounts at or
above the reference rate are labelled in BTC, smaller ones in sats.
Text that already carries a label is left alone, so annotated text can be
rescanned safely.
"""

from __future__ import annotations

import math
import re
from numbers import Real

from pricetag import SATS_PER_BTC, ConversionResult, PriceMatch
from pricetag.result import Err, Ok, Result

ONE_THOUSAND = 1_000
ONE_MILLION = 1_000_000
ONE_BILLION = 1_000_000_000
ONE_TRILLION = 1_000_000_000_000

MAGNITUDES: dict[str, int] = {
    "k": ONE_THOUSAND,
    "thousand": ONE_THOUSAND,
    "m": ONE_MILLION,
    "mm": ONE_MILLION,
    "mn": ONE_MILLION,
    "million": ONE_MILLION,
    "b": ONE_BILLION,
    "bn": ONE_BILLION,
    "billion": ONE_BILLION,
    "t": ONE_TRILLION,
    "tn": ONE_TRILLION,
    "trillion": ONE_TRILLION,
}

BTC_PRECISION = 4  # decimal places for primary-unit labels

# Friendly labels: (min digit count, divisor exponent, suffix)
FRIENDLY_SUFFIXES: tuple[tuple[int, int, str], ...] = (
    (0, 0, " sats"),
    (4, 3, "k sats"),
    (6, 6, "M sats"),
    (8, 8, " BTC"),
    (12, 11, "k BTC"),
    (14, 14, "M BTC"),
)

_MARKER = r"(?P<marker>\$|(?<![A-Za-z])USD(?![A-Za-z]))"
# "1.234,56" (dot groups, comma decimal) or "1,234.56" / "19,99"
_AMOUNT = r"(?P<amount>\d{1,3}(?:\.\d{3})+(?:,\d{1,2})?|\d+(?:,\d+)*(?:\.\d+)?)"
# Words may follow a space ("$3 million"); letter abbreviations must be attached
# ("$2.5k") and must not open a hyphenated word ("$5T-shirt")
_MAGNITUDE = (
    r"(?:\x20?(?P<word>thousand|million|billion|trillion)(?![A-Za-z])"
    r"|(?P<abbr>tn|bn|mn|mm|k|m|b|t)(?![A-Za-z]|-[A-Za-z]))"
)

# Label already inserted after a price, e.g. " (2,599,980 sats)" or " (1.2k BTC)"
_ANNOTATED_RE = re.compile(r"\s*\([\d,.]+(?:k|M)?\s(?:sats|BTC)\)")


def build_preceding_pattern() -> re.Pattern[str]:
    """Currency marker before the amount: ``$100``, ``USD 5.5k``, ``$1.2 million``."""
    return re.compile(
        _MARKER + r"\x20?" + _AMOUNT + rf"(?:{_MAGNITUDE})?(?![\d])",
        re.IGNORECASE,
    )


def build_concluding_pattern() -> re.Pattern[str]:
    """Currency marker after the amount: ``100$``, ``5.5k USD``, ``1.2 million USD``."""
    return re.compile(
        r"(?<![\d.,])" + _AMOUNT + rf"(?:{_MAGNITUDE})?" + r"\x20?" + _MARKER,
        re.IGNORECASE,
    )


class PatternCache:
    """Compiled patterns, built once per engine (page load)."""

    __slots__ = ("_preceding", "_concluding")

    def __init__(self) -> None:
        self._preceding: re.Pattern[str] | None = None
        self._concluding: re.Pattern[str] | None = None

    @property
    def preceding(self) -> re.Pattern[str]:
        if self._preceding is None:
            self._preceding = build_preceding_pattern()
        return self._preceding

    @property
    def concluding(self) -> re.Pattern[str]:
        if self._concluding is None:
            self._concluding = build_concluding_pattern()
        return self._concluding


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def magnitude_multiplier(word: str | None) -> int:
    """Factor for a magnitude suffix (``k`` -> 1000); unknown or empty -> 1."""
    if not word:
        return 1
    return MAGNITUDES.get(word.strip().lower(), 1)


def parse_amount(text: str | None) -> float | None:
    """Parse a numeric amount, tolerating grouping characters.

    The last of ``.``/``,`` is the decimal separator when both appear. A lone
    comma followed by one or two digits ("19,99") is decimal; any other comma
    is grouping. Returns None (non-match) instead of raising.
    """
    if not text:
        return None
    s = re.sub(r"[\s'_]", "", text)
    s = re.sub(r"[^\d.,]", "", s)
    if not any(ch.isdigit() for ch in s):
        return None

    if "," in s and "." in s:
        if s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    elif "," in s:
        head, _, tail = s.rpartition(",")
        if s.count(",") == 1 and 1 <= len(tail) <= 2:
            s = f"{head}.{tail}"
        else:
            s = s.replace(",", "")
    elif s.count(".") > 1:
        s = s.replace(".", "")

    try:
        value = float(s)
    except ValueError:
        return None
    if not math.isfinite(value) or value < 0:
        return None
    return value


def validate_rate(rate: object) -> Result[float]:
    """A reference rate must be a finite, positive real number."""
    if isinstance(rate, bool) or not isinstance(rate, Real):
        return Err("invalid_rate", f"rate must be a number, got {type(rate).__name__}")
    value = float(rate)
    if not math.isfinite(value) or value <= 0:
        return Err("invalid_rate", f"rate must be finite and > 0, got {rate}")
    return Ok(value)


def _to_match(m: re.Match[str], position: str) -> PriceMatch | None:
    base = parse_amount(m.group("amount"))
    if base is None:
        return None
    multiplier = magnitude_multiplier(m.group("word") or m.group("abbr"))
    amount = base * multiplier
    if not math.isfinite(amount):
        return None
    return PriceMatch(
        raw_text=m.group(0),
        numeric_amount=amount,
        magnitude_multiplier=float(multiplier),
        source_span=m.span(),
        position=position,
    )


def find_prices(text: str, cache: PatternCache) -> list[PriceMatch]:
    """All non-overlapping price mentions in *text*, in document order.

    Preceding-marker matches win overlaps with concluding-marker matches.
    Mentions already followed by a conversion label are skipped.
    """
    if not text or ("$" not in text and "usd" not in text.lower()):
        return []

    found: list[PriceMatch] = []
    for m in cache.preceding.finditer(text):
        pm = _to_match(m, "preceding")
        if pm is not None:
            found.append(pm)

    taken = [pm.source_span for pm in found]
    for m in cache.concluding.finditer(text):
        start, end = m.span()
        if any(start < t_end and t_start < end for t_start, t_end in taken):
            continue
        pm = _to_match(m, "concluding")
        if pm is not None:
            found.append(pm)

    found.sort(key=lambda pm: pm.source_span[0])
    return [pm for pm in found if not _ANNOTATED_RE.match(text, pm.source_span[1])]


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------


def _grouped(value: float, places: int) -> str:
    """Locale-free ``,`` grouping with trailing fractional zeros trimmed."""
    text = f"{value:,.{places}f}"
    if places:
        text = text.rstrip("0").rstrip(".")
    return text


def _friendly_label(sats: int) -> str:
    digits = len(str(sats))
    index = next((i for i, (low, _, _) in enumerate(FRIENDLY_SUFFIXES) if low >= digits), len(FRIENDLY_SUFFIXES))
    _, exponent, suffix = FRIENDLY_SUFFIXES[index - 1]
    places = max(0, 3 - (digits - exponent))
    return _grouped(round(sats / 10**exponent, places), places) + suffix


def format_label(amount: float, rate: float, style: str = "exact") -> str:
    """Render *amount* (fiat) in BTC when ``amount >= rate``, else in sats.

    ``style="friendly"`` scales to k/M sats and k/M BTC with three
    significant digits instead.
    """
    if style == "friendly":
        return _friendly_label(math.floor(amount / rate * SATS_PER_BTC))
    if amount >= rate:
        return f"{_grouped(amount / rate, BTC_PRECISION)} BTC"
    sats = round(amount / rate * SATS_PER_BTC)
    return f"{sats:,} sats"


def convert_match(match: PriceMatch, rate: float, style: str = "exact") -> ConversionResult:
    return ConversionResult(
        original_text=match.raw_text,
        converted_label=format_label(match.numeric_amount, rate, style),
    )


def annotate_text(text: str, rate: float, cache: PatternCache, style: str = "exact") -> tuple[str, int]:
    """Rewrite every price in *text* as ``original (converted)``.

    Returns (new_text, conversion_count); the text is returned unchanged when
    nothing matched.
    """
    matches = find_prices(text, cache)
    if not matches:
        return text, 0

    parts: list[str] = []
    last = 0
    for pm in matches:
        start, end = pm.source_span
        parts.append(text[last:start])
        parts.append(convert_match(pm, rate, style).replacement)
        last = end
    parts.append(text[last:])
    return "".join(parts), len(matches)


def convert_text(
    text: str,
    rate: object,
    cache: PatternCache | None = None,
    style: str = "exact",
) -> Result[list[ConversionResult]]:
    """Convert every price in *text* without touching any document."""
    checked = validate_rate(rate)
    if not checked.ok:
        return checked
    if not isinstance(text, str):
        return Err("invalid_text", f"text must be str, got {type(text).__name__}")
    cache = cache or PatternCache()
    return Ok([convert_match(pm, checked.value, style) for pm in find_prices(text, cache)])
