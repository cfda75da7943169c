# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Context safety classification: may this frame's document be mutated?

Each check inspects one signal of the execution context and yields zero or
more ``Signal``s. Severity points are summed (low=1, medium=2, high=3):
0 -> none, 1 -> low, 2 -> medium, 3+ -> high, never below the strongest
single signal. Medium/high severity, or any unambiguous signal
(cross-origin exception, scripting disabled), restricts the context.

A check that raises fails closed: restricted, severity high,
reason ``detection_error``. The verdict is computed fresh per scan.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from urllib.parse import urlsplit

import lxml.html

from pricetag import RestrictionVerdict, Severity, Signal
from pricetag.dom_select import class_tokens, compile_selectors, select
from pricetag.tables import DEFAULT_TABLES, HeuristicTables

logger = logging.getLogger(__name__)

ParentOriginProbe = Callable[[], str]  # raises when cross-origin access is denied
StorageProbe = Callable[[], object]  # raises or returns falsy when storage is unreachable

_POINTS_TO_SEVERITY = (Severity.NONE, Severity.LOW, Severity.MEDIUM, Severity.HIGH)


@dataclass(frozen=True)
class FrameContext:
    """What the host knows about the frame a document lives in.

    ``None`` fields are unknown and skipped by the classifier.
    """

    url: str = ""
    origin: str = ""
    is_embedded: bool = False
    parent_origin: str | ParentOriginProbe | None = None
    sandbox: str | None = None  # frame's sandbox attribute; None = not sandboxed
    csp: str | None = None  # Content-Security-Policy header value
    storage: bool | StorageProbe | None = None
    viewport: tuple[int, int] | None = None  # (width, height) in px
    document: lxml.html.HtmlElement | None = None

    @property
    def hostname(self) -> str:
        return (urlsplit(self.url).hostname or "").lower()


def restricted_verdict(reason: str = "detection_error") -> RestrictionVerdict:
    """Fail-closed verdict used when the context cannot be inspected."""
    signal = Signal(reason, Severity.HIGH, unambiguous=True)
    return RestrictionVerdict(is_restricted=True, reason=reason, severity=Severity.HIGH, signals=(signal,))


def _csp_blocks_inline(policy: str) -> bool:
    """True if *policy* has script-src (or default-src) without 'unsafe-inline'."""
    directives: dict[str, list[str]] = {}
    for part in policy.split(";"):
        tokens = part.strip().split()
        if tokens:
            directives.setdefault(tokens[0].lower(), [t.lower() for t in tokens[1:]])
    sources = directives.get("script-src", directives.get("default-src"))
    if sources is None:
        return False
    return "'unsafe-inline'" not in sources


class ContextSafetyClassifier:
    """Produces a RestrictionVerdict before any mutation is attempted."""

    def __init__(self, tables: HeuristicTables = DEFAULT_TABLES, *, small_frame_threshold: int = 350) -> None:
        self._tables = tables
        self._small_frame_threshold = small_frame_threshold
        self._ad_markers = compile_selectors(tables.ad_marker_selectors)
        self._checks = (
            self._check_parent_origin,
            self._check_sandbox,
            self._check_csp,
            self._check_storage,
            self._check_frame_size,
            self._check_retailer,
        )

    def classify(self, context: FrameContext | None) -> RestrictionVerdict:
        """Classify *context*; ``None`` is a plain top-level document."""
        if context is None:
            return RestrictionVerdict(is_restricted=False)

        signals: list[Signal] = []
        for check in self._checks:
            try:
                signals.extend(check(context))
            except Exception:
                logger.warning("Context check %s failed, assuming restricted", check.__name__, exc_info=True)
                return restricted_verdict()

        verdict = self._aggregate(signals)
        if verdict.is_restricted:
            logger.debug(
                "Restricted context: reason=%s severity=%s signals=%s",
                verdict.reason,
                verdict.severity,
                [s.name for s in signals],
            )
        return verdict

    @staticmethod
    def _aggregate(signals: list[Signal]) -> RestrictionVerdict:
        if not signals:
            return RestrictionVerdict(is_restricted=False)
        strongest = max(signals, key=lambda s: s.severity.rank)
        points = sum(s.severity.rank for s in signals)
        severity = _POINTS_TO_SEVERITY[min(points, 3)]
        if severity.rank < strongest.severity.rank:
            severity = strongest.severity
        restricted = severity.rank >= Severity.MEDIUM.rank or any(s.unambiguous for s in signals)
        return RestrictionVerdict(
            is_restricted=restricted,
            reason=strongest.name,
            severity=severity,
            signals=tuple(signals),
        )

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _check_parent_origin(self, ctx: FrameContext) -> Iterator[Signal]:
        if not ctx.is_embedded or ctx.parent_origin is None:
            return
        probe = ctx.parent_origin
        if callable(probe):
            try:
                parent = probe()
            except Exception:
                # The browser throws on cross-origin location access
                yield Signal("cross_origin_exception", Severity.HIGH, unambiguous=True)
                return
        else:
            parent = probe
        if ctx.origin and parent != ctx.origin:
            yield Signal("cross_origin", Severity.HIGH)

    def _check_sandbox(self, ctx: FrameContext) -> Iterator[Signal]:
        if not ctx.is_embedded or ctx.sandbox is None:
            return
        flags = set(ctx.sandbox.lower().split())
        if "allow-scripts" not in flags:
            yield Signal("sandbox_no_scripts", Severity.HIGH, unambiguous=True)
        elif "allow-same-origin" not in flags:
            yield Signal("sandbox_no_same_origin", Severity.MEDIUM)

    def _check_csp(self, ctx: FrameContext) -> Iterator[Signal]:
        if not ctx.is_embedded:
            return
        policies = [ctx.csp] if ctx.csp else []
        if ctx.document is not None:
            for meta in ctx.document.iter("meta"):
                if (meta.get("http-equiv") or "").lower() == "content-security-policy":
                    policies.append(meta.get("content") or "")
        if any(_csp_blocks_inline(p) for p in policies):
            yield Signal("csp_blocks_inline", Severity.MEDIUM)

    def _check_storage(self, ctx: FrameContext) -> Iterator[Signal]:
        probe = ctx.storage
        if probe is None:
            return
        if callable(probe):
            try:
                reachable = bool(probe())
            except Exception:
                reachable = False
        else:
            reachable = bool(probe)
        if not reachable:
            yield Signal("storage_unreachable", Severity.LOW)

    def _is_small_frame(self, ctx: FrameContext) -> bool:
        if not ctx.is_embedded or ctx.viewport is None:
            return False
        width, height = ctx.viewport
        return width < self._small_frame_threshold or height < self._small_frame_threshold

    def _check_frame_size(self, ctx: FrameContext) -> Iterator[Signal]:
        if self._is_small_frame(ctx) and not self._is_retailer(ctx):
            yield Signal("small_frame", Severity.LOW)

    def _is_retailer(self, ctx: FrameContext) -> bool:
        host = ctx.hostname
        if host and any(domain in host for domain in self._tables.retailer_domains):
            return True
        return any(marker in ctx.url for marker in self._tables.retailer_url_markers)

    def _check_retailer(self, ctx: FrameContext) -> Iterator[Signal]:
        if not ctx.is_embedded or not self._is_retailer(ctx):
            return
        url = ctx.url.lower()
        if any(keyword.lower() in url for keyword in self._tables.restricted_url_keywords):
            yield Signal("retailer_restricted_url", Severity.MEDIUM)
        if self._is_small_frame(ctx):
            yield Signal("retailer_small_frame", Severity.MEDIUM)

        doc = ctx.document
        if doc is None:
            return
        body = doc.find(".//body") if doc.tag != "body" else doc
        if body is not None and set(class_tokens(body)) & set(self._tables.restricted_layout_classes):
            yield Signal("retailer_restricted_layout", Severity.MEDIUM)
        if next(select(doc, self._ad_markers, include_root=True), None) is not None:
            yield Signal("retailer_ad_markers", Severity.LOW)


_default_classifier: ContextSafetyClassifier | None = None


def classify(context: FrameContext | None) -> RestrictionVerdict:
    """Classify with the default tables."""
    global _default_classifier
    if _default_classifier is None:
        _default_classifier = ContextSafetyClassifier()
    return _default_classifier.classify(context)
