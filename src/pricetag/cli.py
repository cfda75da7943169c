# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""PriceTag CLI: annotate saved HTML files or convert plain text.

Usage:
    pricetag annotate INPUT --rate R [-o OUTPUT] [--url URL] [--embedded] [--style STYLE] [--tables FILE]
    pricetag convert TEXT --rate R [--style STYLE]

Exit codes: 0 completed (or partial) scan, 1 invalid input, restricted
context or I/O error, 2 usage error.
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path
from urllib.parse import urlsplit

from pricetag.config import LABEL_STYLES, EngineConfig
from pricetag.context_classifier import FrameContext
from pricetag.engine import PriceTagEngine
from pricetag.errors import ConfigError
from pricetag.logging_config import configure, scan_context
from pricetag.tables import DEFAULT_TABLES, load_tables

logger = logging.getLogger(__name__)


def _build_engine(args: argparse.Namespace) -> PriceTagEngine:
    """Engine from environment config plus CLI overrides.

    Raises:
        ConfigError: tables file is unreadable or invalid.
    """
    base = EngineConfig.from_env()
    config = dataclasses.replace(base, label_style=args.style) if args.style else base
    tables = load_tables(args.tables) if getattr(args, "tables", None) else DEFAULT_TABLES
    return PriceTagEngine(config, tables)


def _frame_context(args: argparse.Namespace) -> FrameContext | None:
    if not args.url and not args.embedded:
        return None
    parts = urlsplit(args.url or "")
    origin = f"{parts.scheme}://{parts.netloc}" if parts.scheme and parts.netloc else ""
    return FrameContext(url=args.url or "", origin=origin, is_embedded=args.embedded)


def cmd_annotate(args: argparse.Namespace) -> int:
    try:
        engine = _build_engine(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    source = Path(args.input)
    try:
        html = source.read_bytes()
    except OSError as e:
        print(f"Error: cannot read {source}: {e}", file=sys.stderr)
        return 1

    logger.debug("Annotating %s (%d bytes)", source, len(html))
    with scan_context(input=str(source)):
        output, stats = engine.annotate_html(html, args.rate, _frame_context(args))

    print(json.dumps(stats.to_dict(), ensure_ascii=False), file=sys.stderr)
    if stats.skipped:
        print(f"Not annotated: {stats.termination_reason} ({stats.skipped_reason})", file=sys.stderr)
        return 1

    if args.output:
        try:
            Path(args.output).write_text(output, encoding="utf-8")
        except OSError as e:
            print(f"Error: cannot write {args.output}: {e}", file=sys.stderr)
            return 1
    else:
        sys.stdout.write(output)
    return 0


def cmd_convert(args: argparse.Namespace) -> int:
    try:
        engine = _build_engine(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    result = engine.convert_text(args.text, args.rate)
    if not result.ok:
        print(f"Error: {result}", file=sys.stderr)
        return 1
    for conversion in result.value:
        print(conversion.replacement)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Annotate USD prices with their bitcoin value",
        prog="pricetag",
    )
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines on stderr")
    parser.add_argument("--log-level", default="WARNING", help="Log level (default: WARNING)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--rate", type=float, required=True, metavar="R", help="USD per BTC")
    common.add_argument("--style", choices=LABEL_STYLES, help="Label style (default: exact, or PRICETAG_LABEL_STYLE)")
    common.add_argument("--tables", type=str, metavar="FILE", help="YAML file overriding heuristic tables")

    p_annotate = subparsers.add_parser("annotate", parents=[common], help="Annotate a saved HTML file")
    p_annotate.add_argument("input", metavar="INPUT", help="HTML file to annotate")
    p_annotate.add_argument("-o", "--output", type=str, metavar="OUTPUT", help="Output file (default: stdout)")
    p_annotate.add_argument("--url", type=str, metavar="URL", help="Page URL for context classification")
    p_annotate.add_argument("--embedded", action="store_true", help="Treat the page as an embedded frame")
    p_annotate.set_defaults(func=cmd_annotate)

    p_convert = subparsers.add_parser("convert", parents=[common], help="Convert prices in a text string")
    p_convert.add_argument("text", metavar="TEXT")
    p_convert.set_defaults(func=cmd_convert)
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure(json_output=args.json_logs, level=args.log_level)

    try:
        code = args.func(args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    sys.exit(code)


if __name__ == "__main__":
    main()
