"""
Tests for the manual import preview/confirm flow.
"""

import pytest
from datetime import date

from studysync.services.sync.import_service import ImportService, UnsupportedImportFile
from studysync.services.sync.repositories import PlannerRepository
from studysync.services.sync.types import DetectedFormat


def today():
    return date(2025, 1, 10)


PASTED = (
    "15/01/2025 - Matematica - Verifica su derivate e integrali\n"
    "Matematica: 8+ (10/01/2025)\n"
    "riga non valida"
)


class TestImportService:

    def test_preview_does_not_touch_the_store(self):
        service = ImportService(db=None, today=today)

        outcome = service.preview(PASTED)

        assert outcome.format == DetectedFormat.FREE_TEXT
        assert len(outcome.assignments) == 1
        assert len(outcome.grades) == 1
        assert outcome.warnings == ["Line 3 not recognized: riga non valida"]

    def test_unsupported_extension_rejected(self):
        with pytest.raises(UnsupportedImportFile):
            ImportService(db=None, today=today).preview("x", filename="pagella.pdf")

    def test_filename_extension_used_as_hint(self):
        text = "Data,Materia,Tipo,Descrizione\n15/01/2025,Fisica,Compiti,Esercizi"

        outcome = ImportService(db=None, today=today).preview(text, filename="agenda.txt")

        assert outcome.format == DetectedFormat.FREE_TEXT

    def test_explicit_hint_beats_filename(self):
        text = "Data,Materia,Tipo,Descrizione\n15/01/2025,Fisica,Compiti,Esercizi"

        outcome = ImportService(db=None, today=today).preview(text, filename="agenda.txt", hint="csv")

        assert outcome.format == DetectedFormat.CSV
        assert len(outcome.assignments) == 1

    @pytest.mark.asyncio
    async def test_confirm_reconciles_previewed_records(self, db):
        service = ImportService(db, today=today)
        outcome = service.preview(PASTED)

        result = await service.confirm(outcome.assignments, outcome.grades)

        assert result.success is True
        assert result.exams_added == 1
        assert result.grades_added == 1
        exam = (await PlannerRepository(db).get_exams())[0]
        assert exam.source == "import"

    @pytest.mark.asyncio
    async def test_import_text_carries_parse_warnings(self, db):
        result = await ImportService(db, today=today).import_text(PASTED)

        assert result.exams_added == 1
        assert result.warnings[0] == "Line 3 not recognized: riga non valida"

    @pytest.mark.asyncio
    async def test_reimport_adds_nothing(self, db):
        service = ImportService(db, today=today)
        await service.import_text(PASTED)

        result = await service.import_text(PASTED)

        assert result.total_added == 0
        assert result.duplicates_skipped == 2
