#!/usr/bin/env python3
"""Story Ledger - Character continuity for serialized generation.

Inspect and drive the continuity hooks from the command line:
- register: Store a work and its character roster from a JSON file
- context:  Print the continuity block for the next unit
- process:  Run extraction, voice review and revision on a finished unit
- review:   Review a unit's voices without revising it
- metrics:  Print continuity health and usage numbers

Usage:
    python main.py register work.json
    python main.py context WORK_ID 4
    python main.py process WORK_ID 3 chapter3.txt --title "The Crossing"
    python main.py metrics --work WORK_ID
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from story_ledger.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def _create_service(args: argparse.Namespace):
    from story_ledger.memory.ledger_database import LedgerDatabase
    from story_ledger.services.ledger_service import LedgerService
    from story_ledger.settings import Settings

    settings = Settings.load()
    db = LedgerDatabase(args.db) if args.db else None
    return LedgerService(settings=settings, db=db, timeout=args.timeout)


def _read_text(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def cmd_register(args: argparse.Namespace) -> int:
    """Register a work and its roster.

    The file holds ``{"work": {...}, "characters": [...]}``.
    """
    from story_ledger.memory.ledger_models import CharacterRoster, Work

    data = json.loads(_read_text(args.file))
    work = Work.model_validate(data["work"])
    service = _create_service(args)
    service.register_work(work)
    if data.get("characters"):
        roster = CharacterRoster(work_id=work.id, characters=data["characters"])
        service.register_roster(roster)
        print(f"Registered {work.id} with {len(roster.characters)} characters")
    else:
        print(f"Registered {work.id} (no roster)")
    return 0


def cmd_context(args: argparse.Namespace) -> int:
    """Print the continuity block for a unit."""
    from story_ledger.services.continuity_pipeline import ContinuityPipeline

    pipeline = ContinuityPipeline(_create_service(args))
    block = pipeline.before_unit(args.work_id, args.unit)
    if not block:
        print("(no continuity context)", file=sys.stderr)
        return 0
    print(block)
    return 0


def cmd_process(args: argparse.Namespace) -> int:
    """Run the after-unit hook on a unit file."""
    from story_ledger.services.continuity_pipeline import ContinuityPipeline

    pipeline = ContinuityPipeline(_create_service(args), review_enabled=not args.no_review)
    text = _read_text(args.file)
    result = pipeline.after_unit(args.work_id, args.unit, text, unit_title=args.title)

    print(f"Ledger entry: {'stored' if result.entry else 'skipped'}")
    if result.review:
        avg = result.review.review.average_score
        score = f"{avg:.2f}" if avg is not None else "n/a"
        print(f"Voice review: {result.review.flags_count} flags, avg score {score}")
    else:
        print("Voice review: skipped")
    print(f"Revision: {'applied' if result.was_revised else 'none'}")

    if result.was_revised and args.output:
        Path(args.output).write_text(result.final_text, encoding="utf-8")
        print(f"Revised text written to {args.output}")
    return 0


def cmd_review(args: argparse.Namespace) -> int:
    """Review a unit and print the review as JSON."""
    service = _create_service(args)
    record = service.review_unit(args.work_id, args.unit, _read_text(args.file))
    if record is None:
        print("Review skipped (no ledger history or malformed output)", file=sys.stderr)
        return 1
    print(record.model_dump_json(indent=2))
    return 0


def cmd_metrics(args: argparse.Namespace) -> int:
    """Print continuity health metrics and, optionally, a work's usage."""
    service = _create_service(args)
    output = {"health": service.get_health_metrics().model_dump()}
    if args.work:
        output["usage"] = service.get_usage_summary(args.work).model_dump()
    print(json.dumps(output, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        description="Story Ledger - Character continuity for serialized generation"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: the persisted setting)",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        default="default",
        help="Log file path (default: logs/story_ledger.log, use 'none' to disable)",
    )
    parser.add_argument(
        "--db",
        type=str,
        metavar="PATH",
        help="Ledger database path (default: from settings)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds allowed per model call (default: from settings)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    register = subparsers.add_parser("register", help="Register a work and its roster")
    register.add_argument("file", help="JSON file with 'work' and 'characters' ('-' for stdin)")
    register.set_defaults(func=cmd_register)

    context = subparsers.add_parser("context", help="Print the continuity block for a unit")
    context.add_argument("work_id")
    context.add_argument("unit", type=int, help="Unit about to be generated")
    context.set_defaults(func=cmd_context)

    process = subparsers.add_parser("process", help="Extract, review and revise a finished unit")
    process.add_argument("work_id")
    process.add_argument("unit", type=int)
    process.add_argument("file", help="Unit text file ('-' for stdin)")
    process.add_argument("--title", default="", help="Unit title")
    process.add_argument("--no-review", action="store_true", help="Skip voice review and revision")
    process.add_argument("--output", metavar="PATH", help="Write revised text here if revised")
    process.set_defaults(func=cmd_process)

    review = subparsers.add_parser("review", help="Review a unit's character voices")
    review.add_argument("work_id")
    review.add_argument("unit", type=int)
    review.add_argument("file", help="Unit text file ('-' for stdin)")
    review.set_defaults(func=cmd_review)

    metrics = subparsers.add_parser("metrics", help="Print continuity health metrics")
    metrics.add_argument("--work", metavar="WORK_ID", help="Include usage for this work")
    metrics.set_defaults(func=cmd_metrics)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    level = args.log_level
    if level is None:
        from story_ledger.settings import Settings
        from story_ledger.utils.exceptions import ConfigError

        try:
            level = Settings.load().log_level
        except ConfigError as e:
            logger.debug("Could not apply persisted log level: %s", e)
            level = "INFO"
    log_file = None if args.log_file.lower() == "none" else args.log_file
    setup_logging(level=level, log_file=log_file)

    from story_ledger.utils.exceptions import StoryLedgerError

    try:
        return args.func(args)
    except StoryLedgerError as e:
        logger.error("%s: %s", type(e).__name__, e)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
