"""
refcount_checker.__main__
=========================

Command-line entry point.

Usage::

    python -m refcount_checker foo.cpp.dump
    python -m refcount_checker foo.cpp.dump --output gcc --owned-prefix Py
    refcount-checker foo.cpp.dump --config refcheck.json --fail-fast -v

Exit codes
----------
0  No refcount violations
1  Refcount violations found (or a fail-fast stop)
2  Infrastructure failure (bad arguments, unreadable dump or config)
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from refcount_checker import __version__
from refcount_checker.config import ConfigError, RefcheckConfig, load_config
from refcount_checker.driver import EXIT_INFRA, OUTPUT_FORMATS, run_addon

_log = logging.getLogger("refcount_checker")


def _configure_logging(verbosity: int) -> None:
    """Set up the ``refcount_checker`` logger.

    0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root = logging.getLogger("refcount_checker")
    root.setLevel(level)
    root.addHandler(handler)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="refcount-checker",
        description="Check manual reference counting in a cppcheck dump file.",
    )
    parser.add_argument("dump_file", help="Path to a .dump file from 'cppcheck --dump'")
    parser.add_argument("--config", metavar="FILE", help="JSON configuration file")
    parser.add_argument(
        "--output", choices=OUTPUT_FORMATS, default="json",
        help="Output format (default: json)",
    )
    parser.add_argument(
        "--suppress", nargs="*", default=None, metavar="ID",
        help="Error IDs to suppress",
    )
    parser.add_argument(
        "--fail-fast", action="store_true", default=None,
        help="Stop at the first function that fails to check",
    )
    parser.add_argument(
        "--owned-prefix", metavar="P", default=None,
        help="Class-name prefix of refcounted types (default: Box)",
    )
    parser.add_argument(
        "--exclude-path", nargs="*", default=None, metavar="S",
        help="Additional path substrings treated as library code",
    )
    parser.add_argument(
        "-v", "--verbose", action="count", default=0,
        help="Increase logging verbosity (-v, -vv)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _resolve_config(args: argparse.Namespace) -> RefcheckConfig:
    config = load_config(args.config) if args.config else RefcheckConfig()
    excluded = None
    if args.exclude_path:
        excluded = config.excluded_paths + tuple(args.exclude_path)
    suppress = None
    if args.suppress:
        suppress = config.suppress + tuple(args.suppress)
    return config.merged(
        owned_prefix=args.owned_prefix,
        fail_fast=args.fail_fast,
        excluded_paths=excluded,
        suppress=suppress,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the checker CLI and return its exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    dump = Path(args.dump_file).expanduser()
    if not dump.exists():
        _log.error("dump file not found: %s", dump)
        return EXIT_INFRA

    try:
        config = _resolve_config(args)
    except ConfigError as exc:
        _log.error("%s", exc)
        return EXIT_INFRA

    try:
        return run_addon(dump, config=config, output=args.output)
    except KeyboardInterrupt:
        _log.info("Interrupted by user.")
        return 130
    except Exception as exc:
        _log.error("Unhandled exception: %s", exc, exc_info=True)
        return EXIT_INFRA


if __name__ == "__main__":
    raise SystemExit(main())
