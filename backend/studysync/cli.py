"""
Command line import: ``studysync-import FILE [--format csv|json|text] [--confirm]``.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from studysync.core.config import settings
from studysync.core.database import AsyncSessionLocal, init_db
from studysync.services.sync.import_service import ImportService, UnsupportedImportFile
from studysync.services.sync.types import ParseOutcome, SyncResult

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="studysync-import",
        description="Preview a school portal export and optionally import it into the planner.",
    )
    parser.add_argument("file", type=Path, help="Export to import (.txt, .csv or .json)")
    parser.add_argument("--format", choices=["csv", "json", "text"], help="Skip format detection")
    parser.add_argument("--confirm", action="store_true", help="Save the parsed records")
    return parser


def print_preview(outcome: ParseOutcome) -> None:
    print(f"Format: {outcome.format.value if outcome.format else 'unknown'}")
    for assignment in outcome.assignments:
        kind = assignment.test_kind or assignment.type
        print(f"  [{kind}] {assignment.date} {assignment.subject}: {assignment.description}")
    for grade in outcome.grades:
        print(f"  [grade] {grade.date} {grade.subject}: {grade.grade}")
    for warning in outcome.warnings:
        print(f"  warning: {warning}")
    print(outcome.summary())


def print_result(result: SyncResult) -> None:
    print(
        f"Imported {result.exams_added} tests, {result.homework_added} homework, "
        f"{result.grades_added} grades; {result.subjects_updated} new subjects, "
        f"{result.duplicates_skipped} duplicates skipped"
    )


async def run_import(path: Path, hint: Optional[str], confirm: bool) -> int:
    text = path.read_text(encoding="utf-8-sig")

    async with AsyncSessionLocal() as db:
        service = ImportService(db)
        try:
            outcome = service.preview(text, filename=path.name, hint=hint)
        except UnsupportedImportFile as e:
            print(str(e), file=sys.stderr)
            return 2

        print_preview(outcome)
        if not confirm:
            return 0
        if outcome.is_empty:
            print("Nothing to import", file=sys.stderr)
            return 1

        await init_db()
        print_result(await service.confirm(outcome.assignments, outcome.grades))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    args = build_parser().parse_args(argv)
    if not args.file.is_file():
        print(f"File not found: {args.file}", file=sys.stderr)
        return 2
    return asyncio.run(run_import(args.file, args.format, args.confirm))


if __name__ == "__main__":
    sys.exit(main())
