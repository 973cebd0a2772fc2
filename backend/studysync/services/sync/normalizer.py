"""
Date and Text Normalizer

Pure helpers turning locale-variant dates, grade tokens and free-text
descriptions into canonical values. Nothing here raises on bad input: dates
fall back to a near-future default and the fallback is logged so the source
can be fixed.
"""

import hashlib
import logging
import re
from datetime import date, timedelta
from typing import Iterable, List, Optional

from studysync.core.config import settings

logger = logging.getLogger(__name__)


ITALIAN_MONTHS = {
    'gennaio': 1, 'febbraio': 2, 'marzo': 3, 'aprile': 4,
    'maggio': 5, 'giugno': 6, 'luglio': 7, 'agosto': 8,
    'settembre': 9, 'ottobre': 10, 'novembre': 11, 'dicembre': 12,
}
_MONTH_ABBREVIATIONS = {name[:3]: number for name, number in ITALIAN_MONTHS.items()}

MIN_YEAR = 2020
MAX_YEAR = 2030

_DMY_PATTERN = re.compile(r"(?<![\d/\-])(\d{1,2})[/\-](\d{1,2})[/\-](\d{4}|\d{2})(?!\d)")
_ISO_PATTERN = re.compile(r"(?<!\d)(\d{4})-(\d{2})-(\d{2})(?!\d)")
_ITALIAN_PATTERN = re.compile(r"(?<!\d)(\d{1,2})\s+([^\W\d_]+)\.?\s+(\d{4})(?!\d)")
_DAY_MONTH_PATTERN = re.compile(r"(?<![\d/\-])(\d{1,2})[/\-](\d{1,2})(?![/\-]?\d)")

TEST_KEYWORDS = ("verifica", "interrogazione", "test")

GRADE_PATTERN = re.compile(r"^\d+([,.]\d+)?[+-]?$")

SUBJECT_COLORS = [
    '#3B82F6', '#10B981', '#F59E0B', '#EF4444',
    '#8B5CF6', '#EC4899', '#14B8A6', '#F97316'
]

_TOPIC_LIST_PATTERN = re.compile(
    r"\b(?:argomenti|argomento|topics?|contenuti|contenuto)\s*:\s*([^.\n]+)", re.IGNORECASE
)
_TOPIC_PHRASE_PATTERN = re.compile(r"\b(?:su|riguardante)\s+([^,.;:\n]+)", re.IGNORECASE)
_TOPIC_SECTION_PATTERN = re.compile(r"\b(?:capitolo|cap\.|unità)\s*[^,.;:\n]+", re.IGNORECASE)

SHORT_DESCRIPTION_LENGTH = 50


def italian_month_number(name: str) -> Optional[int]:
    """Month number for an Italian month name or its three-letter abbreviation."""
    key = name.strip().lower().rstrip('.')
    if key in ITALIAN_MONTHS:
        return ITALIAN_MONTHS[key]
    if len(key) >= 3:
        return _MONTH_ABBREVIATIONS.get(key[:3])
    return None


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_numeric_date(text: str) -> Optional[date]:
    """First DD/MM/YYYY (or dashed, two-digit year) date found in the text."""
    match = _DMY_PATTERN.search(text)
    if not match:
        return None
    day, month, year = (int(part) for part in match.groups())
    if len(match.group(3)) == 2:
        year += 2000
    if not (1 <= day <= 31 and 1 <= month <= 12 and MIN_YEAR <= year <= MAX_YEAR):
        return None
    return _safe_date(year, month, day)


def _parse_iso(text: str) -> Optional[date]:
    match = _ISO_PATTERN.search(text)
    if not match:
        return None
    year, month, day = (int(part) for part in match.groups())
    return _safe_date(year, month, day)


def _parse_italian_long_form(text: str) -> Optional[date]:
    for match in _ITALIAN_PATTERN.finditer(text):
        month = italian_month_number(match.group(2))
        if month is None:
            continue
        parsed = _safe_date(int(match.group(3)), month, int(match.group(1)))
        if parsed:
            return parsed
    return None


def _parse_day_month(text: str, today: date) -> Optional[date]:
    match = _DAY_MONTH_PATTERN.search(text)
    if not match:
        return None
    day, month = int(match.group(1)), int(match.group(2))
    candidate = _safe_date(today.year, month, day)
    if candidate is None:
        return None
    if candidate < today:
        return _safe_date(today.year + 1, month, day)
    return candidate


def parse_date(value: Optional[str], today: Optional[date] = None) -> Optional[date]:
    """
    Strictly parse a date string.

    Formats are tried in priority order: DD/MM/YYYY (or with dashes, 2- or
    4-digit year), YYYY-MM-DD, Italian long form ("lunedì 15 gennaio 2025"),
    then day/month only resolved against today (rolled to next year when
    already past).

    Returns:
        The parsed date or None when nothing matched
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    today = today or date.today()

    return (
        parse_numeric_date(text)
        or _parse_iso(text)
        or _parse_italian_long_form(text)
        or _parse_day_month(text, today)
    )


def fallback_date(today: Optional[date] = None) -> date:
    return (today or date.today()) + timedelta(days=settings.DATE_FALLBACK_DAYS)


def normalize_date(
    value: Optional[str],
    today: Optional[date] = None,
    warnings: Optional[List[str]] = None
) -> str:
    """
    Convert any supported date string to YYYY-MM-DD.

    Never raises. Unrecognized input yields today + DATE_FALLBACK_DAYS; the
    fallback is logged and, when a warnings list is given, recorded there.
    """
    parsed = parse_date(value, today)
    if parsed is None:
        parsed = fallback_date(today)
        message = f"Unrecognized date {value!r}, defaulted to {parsed.isoformat()}"
        logger.warning(message)
        if warnings is not None:
            warnings.append(message)
    return parsed.isoformat()


def _unique(items: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for item in items:
        key = item.lower()
        if item and key not in seen:
            seen.add(key)
            result.append(item)
    return result


def extract_topics(description: Optional[str]) -> List[str]:
    """
    Pull topic phrases out of an assignment description.

    Explicit lists ("argomenti: a; b, c") are split on ';' and ','. Phrases
    introduced by "su"/"riguardante" and section references ("capitolo 5")
    are taken as single topics. A short description with no keyword becomes a
    topic on its own.
    """
    if not description:
        return []
    text = description.strip()
    topics: List[str] = []

    for match in _TOPIC_LIST_PATTERN.finditer(text):
        topics.extend(part.strip() for part in re.split(r"[;,]", match.group(1)))
    for match in _TOPIC_PHRASE_PATTERN.finditer(text):
        topics.append(match.group(1).strip())
    for match in _TOPIC_SECTION_PATTERN.finditer(text):
        topics.append(match.group(0).strip())

    topics = _unique(topic for topic in topics if topic)
    if not topics and len(text) < SHORT_DESCRIPTION_LENGTH:
        topics = [text]
    return topics


def classify_assignment(text: Optional[str]) -> str:
    """'test' when the text mentions a test keyword, otherwise 'homework'."""
    lowered = (text or "").lower()
    if any(keyword in lowered for keyword in TEST_KEYWORDS):
        return "test"
    return "homework"


def classify_test_kind(text: Optional[str]) -> str:
    lowered = (text or "").lower()
    if "orale" in lowered or "interrogazione" in lowered:
        return "oral"
    if "pratic" in lowered or "laboratorio" in lowered:
        return "practical"
    return "written"


def normalize_grade(value) -> str:
    """Trim a grade token and write half points as '.5'."""
    if value is None:
        return ""
    text = re.sub(r"\s+", "", str(value))
    return text.replace("½", ".5")


def is_valid_grade(value: Optional[str]) -> bool:
    return bool(value) and GRADE_PATTERN.match(value) is not None


def grade_to_number(value: str) -> Optional[float]:
    """Numeric value of a grade token; a trailing '+' on a whole grade is a half point."""
    grade = normalize_grade(value)
    if not is_valid_grade(grade):
        return None
    suffix = grade[-1] if grade[-1] in "+-" else ""
    number = float(grade.rstrip("+-").replace(",", "."))
    if suffix == "+" and number.is_integer():
        number += 0.5
    return number


def average_grade(grades: Iterable[str]) -> float:
    numbers = [n for n in (grade_to_number(g) for g in grades) if n is not None]
    if not numbers:
        return 0.0
    return round(sum(numbers) / len(numbers), 1)


def subject_color(name: str) -> str:
    """Palette color picked from a stable digest of the subject name."""
    digest = hashlib.md5(name.strip().lower().encode("utf-8")).hexdigest()
    return SUBJECT_COLORS[int(digest, 16) % len(SUBJECT_COLORS)]
