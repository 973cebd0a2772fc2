"""
Record Parser

Turns a pasted or uploaded export (CSV, JSON or free text) into normalized
assignments and grades. Parsing is best effort: a bad line or item is skipped
and reported in ``ParseOutcome.warnings``, it never aborts the batch.
"""

import csv
import io
import json
import logging
import re
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Union

from studysync.integrations.portal.error_handler import ParseFailure
from .normalizer import (
    normalize_date,
    parse_date,
    extract_topics,
    classify_assignment,
    classify_test_kind,
    normalize_grade,
)
from .types import (
    DetectedFormat,
    NormalizedAssignment,
    NormalizedGrade,
    NormalizedLesson,
    ParseOutcome,
    RawRecord,
    RecordKind,
)

logger = logging.getLogger(__name__)


HINT_ALIASES = {
    'csv': DetectedFormat.CSV,
    'json': DetectedFormat.JSON,
    'text': DetectedFormat.FREE_TEXT,
    'txt': DetectedFormat.FREE_TEXT,
}

MIN_CSV_COLUMNS = 4
GRADE_TYPE_KEYWORDS = ('voto', 'grade')

# Date-first lines are tried before the grade line, which is tried before the
# subject-first line: "Matematica: 8+ (10/01/2025)" would otherwise read as an
# assignment with description "8+". Date-first patterns are not anchored, so a
# leading weekday ("Lun 15/01/2025 - ...") is allowed.
DATE_FIRST_PATTERNS = [
    re.compile(r"(?<!\d)(\d{2}/\d{2}/\d{4})\s*[-–]\s*([^-–]+?)\s*[-–]\s*(.+)$"),
    re.compile(r"(?<!\d)(\d{2}-\d{2}-\d{4})\s*[-–]\s*([^-–]+?)\s*[-–]\s*(.+)$"),
]
GRADE_LINE_PATTERN = re.compile(
    r"^\s*([^:]+):\s*(\d+(?:[,.]\d+)?[+\-]?)\s*\((\d{2}/\d{2}/\d{4})\)"
)
SUBJECT_FIRST_PATTERN = re.compile(r"^\s*([^:]+):\s*(.+?)\s*\((\d{2}/\d{2}/\d{4})\)")


def detect_format(text: str, hint: Optional[Union[str, DetectedFormat]] = None) -> DetectedFormat:
    """
    Classify an import payload.

    A hint always wins. Otherwise JSON when the trimmed text starts with
    '{' or '[', CSV when the first line has more than three comma fields and
    every following line is comma-delimited, free text in any other case.
    """
    if hint:
        if isinstance(hint, DetectedFormat):
            return hint
        resolved = HINT_ALIASES.get(str(hint).strip().lower().lstrip('.'))
        if resolved:
            return resolved
        logger.warning(f"Unknown format hint {hint!r}, detecting from content")

    trimmed = (text or "").strip()
    if trimmed.startswith('{') or trimmed.startswith('['):
        return DetectedFormat.JSON

    lines = [line for line in trimmed.splitlines() if line.strip()]
    if lines and len(lines[0].split(',')) > 3 and all(',' in line for line in lines[1:]):
        return DetectedFormat.CSV

    return DetectedFormat.FREE_TEXT


def hint_from_filename(filename: Optional[str]) -> Optional[DetectedFormat]:
    """Format hint for an uploaded file, or None for an unsupported extension."""
    if not filename or '.' not in filename:
        return None
    return HINT_ALIASES.get(filename.rsplit('.', 1)[-1].lower())


def _split_topics(value: Any) -> List[str]:
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    if isinstance(value, str):
        return [part.strip() for part in value.split(';') if part.strip()]
    return []


def _pick(item: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = item.get(key)
        if value not in (None, ''):
            return value
    return None


class RecordParser:
    """Parser for manual imports; ``today`` anchors relative and fallback dates."""

    def __init__(self, today: Optional[date] = None):
        self.today = today

    def parse(self, text: str, hint: Optional[Union[str, DetectedFormat]] = None) -> ParseOutcome:
        detected = detect_format(text, hint)
        outcome = ParseOutcome(format=detected)

        if detected == DetectedFormat.JSON:
            self._parse_json(text, outcome)
        elif detected == DetectedFormat.CSV:
            self._parse_csv(text, outcome)
        else:
            self._parse_free_text(text, outcome)

        logger.info(f"Parsed {detected.value} import: {outcome.summary()}")
        return outcome

    def _date(self, value: Any, outcome: ParseOutcome) -> str:
        return normalize_date(str(value) if value is not None else None, self.today, outcome.warnings)

    def _assignment(
        self,
        outcome: ParseOutcome,
        subject: str,
        raw_date: Any,
        description: str,
        topics: List[str],
        is_test: bool,
        kind: str = ""
    ) -> NormalizedAssignment:
        assignment = NormalizedAssignment(
            date=self._date(raw_date, outcome),
            subject=subject.strip(),
            type="test" if is_test else "homework",
            description=description.strip(),
            topics=topics or extract_topics(description),
            test_kind=classify_test_kind(f"{kind} {description}") if is_test else None,
        )
        outcome.assignments.append(assignment)
        return assignment

    def _warn(self, outcome: ParseOutcome, message: str) -> None:
        logger.warning(message)
        outcome.warnings.append(message)

    # CSV

    def _parse_csv(self, text: str, outcome: ParseOutcome) -> None:
        rows = list(csv.reader(io.StringIO(text.strip())))
        for line_number, row in enumerate(rows[1:], start=2):
            cells = [cell.strip() for cell in row]
            if not any(cells):
                continue
            try:
                self._csv_row(outcome, line_number, cells)
            except ParseFailure as e:
                self._warn(outcome, e.message)

    def _csv_row(self, outcome: ParseOutcome, line_number: int, cells: List[str]) -> None:
        if len(cells) < MIN_CSV_COLUMNS:
            raise ParseFailure(
                f"CSV line {line_number}: expected at least {MIN_CSV_COLUMNS} columns, got {len(cells)}"
            )

        raw_date, subject, kind, description = cells[:4]
        topics_cell = cells[4] if len(cells) > 4 else ""

        if any(keyword in kind.lower() for keyword in GRADE_TYPE_KEYWORDS):
            self._csv_grade(outcome, line_number, subject, description, raw_date, topics_cell)
        elif subject.lower() in GRADE_TYPE_KEYWORDS:
            # Template layout: Subject,Voto,grade,description
            template_subject, template_grade = cells[0], cells[2]
            embedded = parse_date(description, self.today)
            self._csv_grade(
                outcome, line_number, template_subject, template_grade,
                embedded.isoformat() if embedded else description, description
            )
        elif not subject or not description:
            raise ParseFailure(f"CSV line {line_number}: missing subject or description")
        else:
            self._assignment(
                outcome, subject, raw_date, description,
                _split_topics(topics_cell),
                classify_assignment(kind) == "test",
                kind
            )

    def _csv_grade(self, outcome, line_number, subject, grade, raw_date, description) -> None:
        if not subject or not grade:
            raise ParseFailure(f"CSV line {line_number}: grade row without subject or grade")
        outcome.grades.append(NormalizedGrade(
            date=self._date(raw_date, outcome),
            subject=subject,
            grade=normalize_grade(grade),
            type="written",
            description=description or None,
        ))

    # JSON

    def _parse_json(self, text: str, outcome: ParseOutcome) -> None:
        try:
            data = json.loads(text)
        except (ValueError, RecursionError) as e:
            # Deeply nested input exhausts the decoder's recursion limit
            self._warn(outcome, f"Malformed JSON: {e}")
            return

        if isinstance(data, list):
            for index, item in enumerate(data):
                if isinstance(item, dict) and _pick(item, 'grade', 'voto') is not None:
                    self._json_item(outcome, self._json_grade, index, item)
                else:
                    self._json_item(outcome, self._json_assignment, index, item)
            return

        if not isinstance(data, dict):
            self._warn(outcome, f"Unsupported JSON document of type {type(data).__name__}")
            return

        agenda = _pick(data, 'agenda', 'assignments') or []
        grades = _pick(data, 'grades', 'voti') or []
        if not isinstance(agenda, list) or not isinstance(grades, list):
            self._warn(outcome, "JSON agenda and grades must be lists")
            return

        for index, item in enumerate(agenda):
            self._json_item(outcome, self._json_assignment, index, item)
        for index, item in enumerate(grades):
            self._json_item(outcome, self._json_grade, index, item)

    def _json_item(self, outcome: ParseOutcome, handler, index: int, item: Any) -> None:
        try:
            handler(outcome, index, item)
        except ParseFailure as e:
            self._warn(outcome, e.message)

    def _json_assignment(self, outcome: ParseOutcome, index: int, item: Any) -> None:
        if not isinstance(item, dict):
            raise ParseFailure(f"JSON item {index}: not an object")
        subject = _pick(item, 'subject', 'materia')
        description = _pick(item, 'description', 'descrizione')
        if not subject or not description:
            raise ParseFailure(f"JSON item {index}: missing subject or description")

        kind = str(_pick(item, 'type', 'tipo') or '')
        is_test = (
            kind.lower() in ('test', 'verifica')
            or classify_assignment(kind) == "test"
            or 'verifica' in str(description).lower()
        )
        self._assignment(
            outcome, str(subject), _pick(item, 'date', 'data'), str(description),
            _split_topics(_pick(item, 'topics', 'argomenti')), is_test, kind
        )

    def _json_grade(self, outcome: ParseOutcome, index: int, item: Any) -> None:
        if not isinstance(item, dict):
            raise ParseFailure(f"JSON grade {index}: not an object")
        subject = _pick(item, 'subject', 'materia')
        grade = _pick(item, 'grade', 'voto')
        if not subject or grade is None:
            raise ParseFailure(f"JSON grade {index}: missing subject or grade")
        outcome.grades.append(NormalizedGrade(
            date=self._date(_pick(item, 'date', 'data'), outcome),
            subject=str(subject).strip(),
            grade=normalize_grade(grade),
            type=str(_pick(item, 'type', 'tipo') or 'written'),
            description=_pick(item, 'description', 'descrizione'),
        ))

    # Free text

    def _parse_free_text(self, text: str, outcome: ParseOutcome) -> None:
        for line_number, line in enumerate((text or "").splitlines(), start=1):
            if not line.strip():
                continue
            if not self._match_line(line, outcome):
                self._warn(outcome, f"Line {line_number} not recognized: {line.strip()[:80]}")

    def _match_line(self, line: str, outcome: ParseOutcome) -> bool:
        for pattern in DATE_FIRST_PATTERNS:
            match = pattern.search(line)
            if match:
                raw_date, subject, description = match.groups()
                self._assignment(
                    outcome, subject, raw_date, description, [],
                    classify_assignment(description) == "test"
                )
                return True

        match = GRADE_LINE_PATTERN.search(line)
        if match:
            subject, grade, raw_date = match.groups()
            outcome.grades.append(NormalizedGrade(
                date=self._date(raw_date, outcome),
                subject=subject.strip(),
                grade=normalize_grade(grade),
            ))
            return True

        match = SUBJECT_FIRST_PATTERN.search(line)
        if match:
            subject, description, raw_date = match.groups()
            self._assignment(
                outcome, subject, raw_date, description, [],
                classify_assignment(description) == "test"
            )
            return True

        return False


def normalize_raw_records(records: Iterable[RawRecord], today: Optional[date] = None) -> ParseOutcome:
    """
    Run scraped records through the same normalization as manual imports.

    Incomplete records are passed on unchanged; reconciliation decides whether
    to skip them.
    """
    outcome = ParseOutcome()
    for record in records:
        extra: Dict[str, str] = record.extra or {}
        record_date = normalize_date(record.date, today, outcome.warnings)

        if record.kind == RecordKind.GRADE:
            outcome.grades.append(NormalizedGrade(
                date=record_date,
                subject=record.subject.strip(),
                grade=normalize_grade(extra.get('grade', '')),
                type=classify_test_kind(extra.get('type', '')),
                description=record.description or None,
            ))
        elif record.kind == RecordKind.LESSON:
            outcome.lessons.append(NormalizedLesson(
                date=record_date,
                subject=record.subject.strip(),
                hour=extra.get('hour', ''),
                topic=extra.get('topic') or record.description,
                homework=extra.get('homework', ''),
            ))
        else:
            is_test = record.kind == RecordKind.TEST
            outcome.assignments.append(NormalizedAssignment(
                date=record_date,
                subject=record.subject.strip(),
                type=record.kind.value,
                description=record.description.strip(),
                topics=_split_topics(extra.get('topics')) or extract_topics(record.description),
                test_kind=(extra.get('test_kind') or classify_test_kind(record.description)) if is_test else None,
            ))
    return outcome
