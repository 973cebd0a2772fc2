"""
Manual import: parse pasted text or an uploaded file into a preview, then
reconcile the confirmed records.
"""

import logging
from datetime import date
from typing import Callable, Iterable, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from studysync.models.planner import RecordSource
from .reconciliation import ReconciliationEngine
from .record_parser import RecordParser, hint_from_filename
from .repositories import PlannerRepository
from .types import (
    DetectedFormat, NormalizedAssignment, NormalizedGrade, ParseOutcome, SyncResult
)

logger = logging.getLogger(__name__)


SUPPORTED_EXTENSIONS = ('.txt', '.csv', '.json')


class UnsupportedImportFile(ValueError):
    """Uploaded file extension is not one of .txt, .csv or .json."""


class ImportService:
    def __init__(self, db: AsyncSession, today: Callable[[], date] = date.today):
        self.db = db
        self.today = today

    def preview(
        self,
        text: str,
        filename: Optional[str] = None,
        hint: Optional[Union[str, DetectedFormat]] = None
    ) -> ParseOutcome:
        """
        Parse without touching the store.

        Raises:
            UnsupportedImportFile: if ``filename`` has an unsupported extension
        """
        if filename is not None:
            file_hint = hint_from_filename(filename)
            if file_hint is None:
                raise UnsupportedImportFile(
                    f"Unsupported file {filename!r}, expected one of {', '.join(SUPPORTED_EXTENSIONS)}"
                )
            hint = hint or file_hint

        outcome = RecordParser(self.today()).parse(text, hint)
        if outcome.is_empty:
            logger.warning("Import preview recognized no records")
        return outcome

    async def confirm(
        self,
        assignments: Iterable[NormalizedAssignment],
        grades: Iterable[NormalizedGrade]
    ) -> SyncResult:
        engine = ReconciliationEngine(PlannerRepository(self.db), RecordSource.IMPORT, self.today)
        return await engine.reconcile(assignments, grades)

    async def import_text(
        self,
        text: str,
        filename: Optional[str] = None,
        hint: Optional[Union[str, DetectedFormat]] = None
    ) -> SyncResult:
        """Preview and confirm in one step; parse warnings are carried into the result."""
        outcome = self.preview(text, filename, hint)
        result = await self.confirm(outcome.assignments, outcome.grades)
        result.warnings = outcome.warnings + result.warnings
        return result
