"""Command-line entry point for the cache optimiser."""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from pydantic import ValidationError

from cache_optimise.config import OptimiseSettings
from cache_optimise.pipeline import run_once

logger = logging.getLogger("cache_optimise.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cache-optimise",
        description="Inline critical CSS and defer scripts in cached HTML pages.",
    )
    parser.add_argument(
        "--only",
        nargs="+",
        type=Path,
        metavar="PATH",
        help="Process only these cache entries (they must still belong to the domain)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log progress to stderr",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        settings = OptimiseSettings()
    except ValidationError as e:
        print(f"cache-optimise: invalid configuration\n{e}", file=sys.stderr)
        return 2

    report = run_once(settings, only=args.only)
    if report is None:
        # Lock held by another run.
        return 0

    counts = report.counts()
    logger.info("Processed %d entries: %s", len(report.results), counts)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
