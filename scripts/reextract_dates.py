#!/usr/bin/env python3
"""Re-run digest extraction for one or more publication dates, replacing stored content."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import List


def parse_date_arg(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid date '{value}'. Use YYYY-MM-DD format") from exc


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from digest_extractor.config import Settings  # noqa: E402
from digest_extractor.observability import setup_logging  # noqa: E402
from digest_extractor.processor import ExtractionProcessor  # noqa: E402


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--dates", nargs="+", type=parse_date_arg,
                        help="Explicit publication dates to re-extract (YYYY-MM-DD)")
    parser.add_argument("--start-date", type=parse_date_arg, help="Earliest publication date to include")
    parser.add_argument("--end-date", type=parse_date_arg, help="Latest publication date to include")
    parser.add_argument("--limit", type=int, help="Only process the most recent N dates after filtering")
    parser.add_argument("--init-db", action="store_true", help="Create tables before running")
    parser.add_argument("--log-level", default="INFO", help="Python logging level (default: INFO)")
    return parser


def available_dates(pdf_dir: Path) -> List[date]:
    """Publication dates with a downloaded PDF in ``pdf_dir``."""
    found = []
    for path in Path(pdf_dir).glob("*.pdf"):
        try:
            found.append(parse_date_arg(path.stem))
        except argparse.ArgumentTypeError:
            logging.debug("Skipping %s: not a dated PDF", path.name)
    return found


def resolve_target_dates(args: argparse.Namespace, pdf_dir: Path) -> List[date]:
    """Return the ordered list of publication dates to process."""
    if args.dates:
        base = sorted(set(args.dates))
    elif args.start_date and args.end_date:
        start, end = sorted((args.start_date, args.end_date))
        base = [start + timedelta(days=i) for i in range((end - start).days + 1)]
    else:
        base = sorted(available_dates(pdf_dir))

    if args.start_date:
        base = [d for d in base if d >= args.start_date]
    if args.end_date:
        base = [d for d in base if d <= args.end_date]

    if args.limit and args.limit > 0:
        base = base[-args.limit:]

    return base


async def run_reextraction(dates: List[date], init_db: bool) -> dict:
    summary = {
        "requested_dates": [d.isoformat() for d in dates],
        "processed": [],
        "total_articles": 0,
        "total_images": 0,
        "failed_dates": [],
    }

    if not dates:
        summary["skipped"] = True
        return summary

    processor = ExtractionProcessor()
    await processor.initialize(create_schema=init_db)
    try:
        for publication_date in dates:
            result = await processor.run_extraction(publication_date)
            if not result.success:
                summary["failed_dates"].append({
                    "date": result.date,
                    "errors": [e.message for e in result.errors if e.stage in ("reading", "persisting")],
                })
                continue
            summary["processed"].append({
                "date": result.date,
                "articles": result.total_articles,
                "images": result.total_images,
                "recovered_errors": len(result.errors),
            })
            summary["total_articles"] += result.total_articles
            summary["total_images"] += result.total_images
    finally:
        await processor.close()

    return summary


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    setup_logging(args.log_level)
    dates = resolve_target_dates(args, Settings().pdf_dir)
    logging.info("Re-extracting %d date(s)", len(dates))
    summary = asyncio.run(run_reextraction(dates, args.init_db))
    logging.info("Re-extraction summary: %s", summary)
    raise SystemExit(1 if summary["failed_dates"] else 0)


if __name__ == "__main__":
    main()
