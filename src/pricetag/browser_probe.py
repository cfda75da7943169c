# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Capture a FrameContext from a live Playwright page or frame.

A single JS IIFE collects everything the classifier needs in one
round-trip. Capture failures return None; ``classify_or_restrict`` turns
that into a fail-closed restricted verdict.
"""

from __future__ import annotations

import logging

from playwright.async_api import Frame, Page

from pricetag import RestrictionVerdict
from pricetag.context_classifier import ContextSafetyClassifier, FrameContext, classify, restricted_verdict

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# JS context IIFE
# ---------------------------------------------------------------------------

_FRAME_CONTEXT_JS = """(() => {
  let isEmbedded = false;
  try { isEmbedded = window.self !== window.top; } catch (e) { isEmbedded = true; }
  let parentOrigin = null;
  let parentAccessDenied = false;
  if (isEmbedded) {
    try { parentOrigin = window.parent.location.origin; } catch (e) { parentAccessDenied = true; }
  }
  let sandbox = null;
  try {
    const fe = window.frameElement;
    if (fe && fe.hasAttribute('sandbox')) sandbox = fe.getAttribute('sandbox') || '';
  } catch (e) { /* cross-origin frameElement */ }
  const csp = Array.from(
    document.querySelectorAll('meta[http-equiv="Content-Security-Policy" i]')
  ).map(m => m.getAttribute('content') || '').join('; ');
  let storageOk = false;
  try {
    const key = '__pricetag_probe__';
    window.localStorage.setItem(key, '1');
    window.localStorage.removeItem(key);
    storageOk = true;
  } catch (e) { storageOk = false; }
  return {
    url: location.href,
    origin: location.origin,
    isEmbedded: isEmbedded,
    parentOrigin: parentOrigin,
    parentAccessDenied: parentAccessDenied,
    sandbox: sandbox,
    csp: csp,
    storageOk: storageOk,
    viewport: [window.innerWidth || 0, window.innerHeight || 0]
  };
})()"""


def _denied_parent_probe() -> str:
    raise PermissionError("parent frame location is not accessible")


def context_from_probe(raw: dict) -> FrameContext:
    """Build a FrameContext from the IIFE's JSON result."""
    viewport = raw.get("viewport")
    parent = _denied_parent_probe if raw.get("parentAccessDenied") else raw.get("parentOrigin")
    return FrameContext(
        url=raw.get("url", "") or "",
        origin=raw.get("origin", "") or "",
        is_embedded=bool(raw.get("isEmbedded", False)),
        parent_origin=parent,
        sandbox=raw.get("sandbox"),
        csp=raw.get("csp") or None,
        storage=bool(raw.get("storageOk", False)),
        viewport=(int(viewport[0]), int(viewport[1])) if viewport and len(viewport) == 2 else None,
    )


async def capture_frame_context(page: Page | Frame) -> FrameContext | None:
    """Capture the frame's execution context. Returns None on any failure."""
    try:
        raw = await page.evaluate(_FRAME_CONTEXT_JS)
    except Exception:
        logger.debug("Frame context capture failed", exc_info=True)
        return None
    if not isinstance(raw, dict):
        return None
    try:
        return context_from_probe(raw)
    except (TypeError, ValueError):
        logger.debug("Malformed frame context probe result: %r", raw, exc_info=True)
        return None


async def classify_or_restrict(
    page: Page | Frame,
    classifier: ContextSafetyClassifier | None = None,
) -> tuple[FrameContext | None, RestrictionVerdict]:
    """Probe and classify; an unreadable context is treated as restricted."""
    context = await capture_frame_context(page)
    if context is None:
        return None, restricted_verdict("probe_failed")
    verdict = classifier.classify(context) if classifier is not None else classify(context)
    return context, verdict
