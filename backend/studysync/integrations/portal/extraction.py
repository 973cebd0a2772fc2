"""
Extraction strategies for portal pages.

Each strategy is a pure function of the rendered HTML (and the date the page
refers to) returning ``RawRecord`` objects. The scraper runs the strategies of
a page type in order and keeps the first non-empty result.
"""

import logging
import re
from datetime import date
from typing import List, Optional, Sequence, Tuple
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from studysync.services.sync.normalizer import (
    italian_month_number,
    parse_date,
    parse_numeric_date,
    classify_test_kind,
)
from studysync.services.sync.types import RawRecord, RecordKind

logger = logging.getLogger(__name__)


UNKNOWN_SUBJECT = "Materia non specificata"
DEFAULT_GRADE_TYPE = "Scritto"

CALENDAR_TITLE_PATTERNS = [
    re.compile(r"COMPITI DI ([^:]+):\s*(.+)", re.IGNORECASE | re.DOTALL),
    re.compile(r"VERIFICA DI ([^:]+):\s*(.+)", re.IGNORECASE | re.DOTALL),
    re.compile(r"([^:]+):\s*(.+)", re.DOTALL),
]
BOLD_PREFIX_PATTERN = re.compile(r"COMPITI DI|VERIFICA DI|:", re.IGNORECASE)
DAY_CLASS_PATTERN = re.compile(r"fc-day-(\d{4})(\d{2})(\d{2})")
MONTH_YEAR_PATTERN = re.compile(r"([^\W\d_]+)\s+(\d{4})")
AGENDA_TOPIC_PATTERN = re.compile(r"(?:\bsu |\briguardante |\bargomento: )([^,.;]+)", re.IGNORECASE)

GRADES_LINK_KEYWORDS = ("voti", "scrutinio", "valutazioni", "pagelle")


def _text(element: Optional[Tag]) -> str:
    if element is None:
        return ""
    return element.get_text(" ", strip=True)


def split_calendar_title(title: str) -> Tuple[str, str]:
    """Split "COMPITI DI <SUBJECT>: <description>" into (subject, description)."""
    for pattern in CALENDAR_TITLE_PATTERNS:
        match = pattern.search(title)
        if match:
            return match.group(1).strip(), match.group(2).strip()
    return "", title.strip()


def classify_agenda_text(text: str) -> Tuple[RecordKind, Optional[str]]:
    """Record kind and test kind of an agenda entry."""
    lowered = text.lower()
    if "verifica" in lowered or "test" in lowered or "compito in classe" in lowered:
        return RecordKind.TEST, classify_test_kind(lowered)
    if "interrogazione" in lowered:
        return RecordKind.TEST, "oral"
    return RecordKind.HOMEWORK, None


def agenda_topics(description: str) -> List[str]:
    return [m.group(1).strip() for m in AGENDA_TOPIC_PATTERN.finditer(description) if m.group(1).strip()]


def agenda_record(record_date: str, subject: str, description: str, classify_from: str,
                  **extra: str) -> RawRecord:
    kind, kind_of_test = classify_agenda_text(classify_from)
    fields = {key: value for key, value in extra.items() if value}
    if kind_of_test:
        fields["test_kind"] = kind_of_test
    topics = agenda_topics(description)
    if topics:
        fields["topics"] = ";".join(topics)
    return RawRecord(
        date=record_date,
        subject=subject or UNKNOWN_SUBJECT,
        kind=kind,
        description=description,
        extra=fields,
    )


class ExtractionStrategy:
    """Base class: ``extract`` returns records or an empty list, never raises on odd markup."""

    name = "strategy"

    def extract(self, soup: BeautifulSoup, page_date: date) -> List[RawRecord]:
        raise NotImplementedError


class CalendarEventStrategy(ExtractionStrategy):
    """FullCalendar events whose title encodes kind, subject and description."""

    name = "calendar_event"

    def extract(self, soup: BeautifulSoup, page_date: date) -> List[RawRecord]:
        records = []
        for event in soup.select(".fc-event"):
            title = event.get("title") or ""
            title_span = event.select_one(".fc-event-title")
            if not title:
                title = _text(title_span) or _text(event)

            subject, description = split_calendar_title(title)
            if not subject and title_span is not None:
                bold = title_span.select_one('font[style*="bold"]')
                if bold is not None and _text(bold):
                    subject = BOLD_PREFIX_PATTERN.sub("", _text(bold)).strip()
                    description = _text(title_span).replace(_text(bold), "").strip() or title

            if not subject and not description:
                continue

            event_date = self.resolve_date(event, soup, title, page_date)
            time_text = _text(event.select_one(".fc-event-time")).strip("() ")
            records.append(agenda_record(
                event_date.isoformat(), subject, description, title, time=time_text
            ))
        return records

    def resolve_date(self, event: Tag, soup: BeautifulSoup, title: str, page_date: date) -> date:
        """
        Date of a calendar event.

        Tried in order: ``data-date`` of the enclosing day cell, a
        ``fc-day-YYYYMMDD`` class on that cell, a date written in the title or
        the event text, the day number of the enclosing row combined with the
        calendar's "Mese YYYY" header. Falls back to ``page_date``.
        """
        cell = None
        for parent in event.parents:
            classes = parent.get("class") or []
            if ("fc-day" in classes or "fc-day-content" in classes
                    or (parent.name == "td" and parent.has_attr("data-date"))):
                cell = parent
                break

        if cell is not None:
            from_attribute = parse_date(cell.get("data-date") or "", page_date)
            if from_attribute:
                return from_attribute
            match = DAY_CLASS_PATTERN.search(" ".join(cell.get("class") or []))
            if match:
                try:
                    return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
                except ValueError:
                    pass

        embedded = parse_numeric_date(title) or parse_numeric_date(_text(event))
        if embedded:
            return embedded

        from_header = self._date_from_header(event, soup)
        if from_header:
            return from_header

        logger.warning(f"No date found for calendar event {title[:60]!r}, using {page_date.isoformat()}")
        return page_date

    @staticmethod
    def _date_from_header(event: Tag, soup: BeautifulSoup) -> Optional[date]:
        row = event.find_parent(class_="fc-row")
        day_number = _text(row.select_one(".fc-day-number")) if row is not None else ""
        header = _text(soup.select_one(".fc-header-title, .fc-toolbar-title"))
        match = MONTH_YEAR_PATTERN.search(header)
        if not day_number.isdigit() or not match:
            return None
        month = italian_month_number(match.group(1))
        if month is None:
            return None
        try:
            return date(int(match.group(2)), month, int(day_number))
        except ValueError:
            return None


class AgendaRowStrategy(ExtractionStrategy):
    """Agenda list rows with date, subject and description cells."""

    name = "agenda_row"

    def extract(self, soup: BeautifulSoup, page_date: date) -> List[RawRecord]:
        records = []
        for item in soup.select(".agenda_row, .agenda-item, table tr.compito, table tr.verifica"):
            date_el = item.select_one(".data, .date, td:first-child")
            subject_el = item.select_one(".materia, .subject, td:nth-child(2)")
            description_el = item.select_one(".compito, .descrizione, .description, td:nth-child(3)")
            if date_el is None or subject_el is None or description_el is None:
                continue

            date_text, subject, description = _text(date_el), _text(subject_el), _text(description_el)
            if date_text and subject:
                records.append(agenda_record(date_text, subject, description, description))
        return records


class AgendaCardStrategy(ExtractionStrategy):
    """Generic calendar items carrying ``data-date`` and a "Subject - description" title."""

    name = "agenda_card"

    def extract(self, soup: BeautifulSoup, page_date: date) -> List[RawRecord]:
        records = []
        for item in soup.select(".calendar-item, .event"):
            title = item.get("title") or _text(item)
            date_attr = item.get("data-date") or ""
            if not title or not date_attr:
                continue
            parts = title.split(" - ")
            if len(parts) >= 2:
                records.append(agenda_record(date_attr, parts[0].strip(), parts[1].strip(), title))
        return records


class GradeTableStrategy(ExtractionStrategy):
    """Grade tables: date, subject, grade, optional type and description cells."""

    name = "grade_table"

    ROW_SELECTOR = (
        'table tr[class*="voto"], table tbody tr, .voti tr, '
        'tr[class*="list"], .registro tr'
    )

    def extract(self, soup: BeautifulSoup, page_date: date) -> List[RawRecord]:
        records = []
        for row in soup.select(self.ROW_SELECTOR):
            if row.find("th") is not None:
                continue
            cells = [_text(cell) for cell in row.find_all("td")]
            if len(cells) < 3:
                continue

            date_text, subject, grade = cells[0], cells[1], cells[2]
            grade_type = cells[3] if len(cells) > 3 and cells[3] else DEFAULT_GRADE_TYPE
            description = cells[4] if len(cells) > 4 else ""
            if date_text and subject and grade and re.search(r"\d", grade):
                records.append(RawRecord(
                    date=date_text,
                    subject=subject,
                    kind=RecordKind.GRADE,
                    description=description,
                    extra={"grade": grade, "type": grade_type},
                ))
        return records


class GradeCardStrategy(ExtractionStrategy):
    name = "grade_card"

    def extract(self, soup: BeautifulSoup, page_date: date) -> List[RawRecord]:
        records = []
        for card in soup.select(".voto-card, .grade-item, .voto"):
            date_text = _text(card.select_one(".data, .date"))
            subject = _text(card.select_one(".materia, .subject"))
            grade = _text(card.select_one(".voto, .grade-value"))
            grade_type = _text(card.select_one(".tipo, .type")) or DEFAULT_GRADE_TYPE
            if date_text and subject and grade:
                records.append(RawRecord(
                    date=date_text,
                    subject=subject,
                    kind=RecordKind.GRADE,
                    description="",
                    extra={"grade": grade, "type": grade_type},
                ))
        return records


class LessonRowStrategy(ExtractionStrategy):
    """Class register rows: hour, subject, topic and homework of the page's day."""

    name = "lesson_row"

    def extract(self, soup: BeautifulSoup, page_date: date) -> List[RawRecord]:
        records = []
        for row in soup.select(".registro_row, table tr.lezione, .lesson-item"):
            hour_el = row.select_one(".ora, .time, td:first-child")
            subject_el = row.select_one(".materia, .subject, td:nth-child(2)")
            if hour_el is None or subject_el is None or not _text(subject_el):
                continue
            topic = _text(row.select_one(".argomento, .topic, td:nth-child(3)"))
            records.append(RawRecord(
                date=page_date.isoformat(),
                subject=_text(subject_el),
                kind=RecordKind.LESSON,
                description=topic,
                extra={
                    "hour": _text(hour_el),
                    "topic": topic,
                    "homework": _text(row.select_one(".compiti, .homework, td:nth-child(4)")),
                },
            ))
        return records


AGENDA_STRATEGIES: Sequence[ExtractionStrategy] = (
    CalendarEventStrategy(), AgendaRowStrategy(), AgendaCardStrategy()
)
GRADE_STRATEGIES: Sequence[ExtractionStrategy] = (GradeTableStrategy(), GradeCardStrategy())
LESSON_STRATEGIES: Sequence[ExtractionStrategy] = (LessonRowStrategy(),)


def run_strategies(
    strategies: Sequence[ExtractionStrategy],
    html: str,
    page_date: date
) -> Tuple[List[RawRecord], Optional[str]]:
    """
    Run strategies in order and return the first non-empty result.

    Returns:
        The records and the name of the strategy that produced them, or an
        empty list and None when no strategy matched
    """
    soup = BeautifulSoup(html or "", "html.parser")
    for strategy in strategies:
        records = strategy.extract(soup, page_date)
        if records:
            logger.debug(f"Strategy {strategy.name} extracted {len(records)} records")
            return records, strategy.name
    return [], None


def find_grades_link(html: str, base_url: str) -> Optional[str]:
    """Absolute URL of the first menu link pointing at the grades module."""
    soup = BeautifulSoup(html or "", "html.parser")
    for link in soup.select("a[href]"):
        href = link.get("href") or ""
        text = _text(link).lower()
        if "logout" in href:
            continue
        if any(keyword in href.lower() or keyword in text for keyword in GRADES_LINK_KEYWORDS):
            return urljoin(base_url, href)
    return None
