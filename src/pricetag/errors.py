# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""PriceTag exception hierarchy.

Exceptions are raised only while building an engine (tables, selectors).
Scan-time failures are reported as ``Err`` values or ``ScanStats`` and never
reach the hosting page.
"""

from __future__ import annotations


class PriceTagError(Exception):
    """Base exception for all PriceTag errors."""


class ConfigError(PriceTagError):
    """Invalid engine configuration or heuristic table file."""
