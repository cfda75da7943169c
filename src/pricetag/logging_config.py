# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""structlog + stdlib bridge for scan logs.

Engine modules log through ``logging.getLogger(__name__)``; hosts that want
structured output call ``configure()`` once at startup. Every record emitted
inside :func:`scan_context` carries the scan id and any bound fields, and a
record passing ``extra={"scan_stats": stats.to_dict()}`` is flattened into
top-level scan counters so JSON log lines can be filtered by outcome.

Leaf module with no pricetag imports.
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

SCAN_STATS_KEY = "scan_stats"
SCAN_STATS_FIELDS = (
    "scan_id",
    "termination_reason",
    "skipped_reason",
    "nodes_processed",
    "conversions",
    "containers",
    "errors",
    "duration_ms",
)


def flatten_scan_stats(logger: object, method_name: str, event_dict: dict) -> dict:
    """Lift selected ``scan_stats`` counters to top-level keys."""
    stats = event_dict.pop(SCAN_STATS_KEY, None)
    if isinstance(stats, dict):
        for key in SCAN_STATS_FIELDS:
            if key in stats and stats[key] not in ("", None):
                event_dict.setdefault(key, stats[key])
    return event_dict


def configure(*, json_output: bool = False, level: str = "INFO") -> None:
    """Route stdlib and structlog records through one stderr handler.

    Args:
        json_output: JSON lines when True, ConsoleRenderer otherwise.
        level: Root logger level; unknown names fall back to INFO.
    """
    pre_chain: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.ExtraAdder(allow=(SCAN_STATS_KEY,)),
        flatten_scan_stats,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=pre_chain,
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


def new_scan_id() -> str:
    return uuid.uuid4().hex[:12]


@contextmanager
def scan_context(**values: object) -> Iterator[str]:
    """Bind ``scan_id`` plus *values* to every log line inside the block.

    An enclosing scan context's id is reused, so a CLI invocation and the
    scan it runs share one id. Yields the id in effect.
    """
    scan_id = values.pop("scan_id", None) or structlog.contextvars.get_contextvars().get("scan_id") or new_scan_id()
    with structlog.contextvars.bound_contextvars(scan_id=scan_id, **values):
        yield str(scan_id)
