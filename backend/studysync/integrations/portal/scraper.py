"""
Portal Scraper

Navigates the authenticated portal and extracts agenda, grade and lesson
records through the ordered strategies in ``extraction``. An empty page is a
legitimate outcome; an unreachable page degrades that page type to an empty
list without affecting the others.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, List, Optional
from urllib.parse import urlsplit

from studysync.core.config import settings
from studysync.services.sync.types import RawRecord
from .browser import BrowserAutomation
from .error_handler import (
    AuthenticationFailure,
    NavigationFailure,
    NotAuthenticated,
    collect_warning,
    log_sync_error,
)
from .extraction import (
    AGENDA_STRATEGIES,
    GRADE_STRATEGIES,
    LESSON_STRATEGIES,
    find_grades_link,
    run_strategies,
)
from .session_manager import PortalSessionManager

logger = logging.getLogger(__name__)


AGENDA_ROUTE_MARKER = "agenda"
MENU_ROUTE_MARKER = "menu_webinfoschool"
LESSONS_READY_SELECTOR = ".registro, table, .lessons"


def _same_page(current: str, requested: str) -> bool:
    """Same host and path; query strings are ignored."""
    a, b = urlsplit(current), urlsplit(requested)
    return (a.netloc, a.path) == (b.netloc, b.path)


@dataclass
class ScrapeResult:
    agenda: List[RawRecord] = field(default_factory=list)
    grades: List[RawRecord] = field(default_factory=list)
    lessons: List[RawRecord] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def records(self) -> List[RawRecord]:
        return self.agenda + self.grades + self.lessons


class PortalScraper:
    """
    Scraper for the three portal page types.

    All page types share the session manager's single browser page, so
    navigation and HTML capture are serialised on one lock while extraction
    runs outside it.
    """

    def __init__(
        self,
        session_manager: PortalSessionManager,
        today: Callable[[], date] = date.today,
        page_timeout: Optional[float] = None
    ):
        self.session_manager = session_manager
        self.today = today
        self.page_timeout = page_timeout or settings.NAVIGATION_TIMEOUT_SECONDS * 3
        self._lock = asyncio.Lock()

    async def _open(self, browser: BrowserAutomation, url: str) -> str:
        """
        Navigate to a page, logging in again if the section bounced to the
        login route. When that login lands somewhere else (usually the menu)
        the requested page is loaded once more.
        """
        await browser.goto(url)
        current = await browser.current_url()
        if settings.PORTAL_LOGIN_ROUTE_MARKER not in current:
            return current

        logger.info(f"{url} requires a module login")
        if not await self.session_manager.reauthenticate_module(browser):
            return await browser.current_url()

        current = await browser.current_url()
        if not _same_page(current, url):
            logger.info(f"Module login landed on {current}, reopening {url}")
            await browser.goto(url)
            current = await browser.current_url()
        return current

    def _reached(self, url: str, label: str, warnings: List[str]) -> bool:
        if settings.PORTAL_LOGIN_ROUTE_MARKER in url:
            collect_warning(warnings, f"{label} page not reached, ended on {url}", logger)
            return False
        return True

    def _extract(self, label: str, strategies, html: str, warnings: Optional[List[str]]) -> List[RawRecord]:
        records, strategy = run_strategies(strategies, html, self.today())
        if strategy is None:
            collect_warning(warnings, f"No {label} found on the portal page", logger)
        else:
            logger.info(f"Found {len(records)} {label} using {strategy}")
        return records

    async def _load(self, load, warnings: List[str]) -> Optional[str]:
        """
        Run one page load on the shared browser page.

        The timeout only starts once the page lock is held, so a page type
        waiting behind the others keeps its whole budget.
        """
        async with self._lock:
            browser = await self.session_manager.get_browser()
            return await asyncio.wait_for(load(browser, warnings), timeout=self.page_timeout)

    async def scrape_agenda(self, warnings: Optional[List[str]] = None) -> List[RawRecord]:
        warnings = warnings if warnings is not None else []
        await self.session_manager.ensure_session()
        html = await self._load(self._load_agenda, warnings)
        if html is None:
            return []
        return self._extract("agenda entries", AGENDA_STRATEGIES, html, warnings)

    async def _load_agenda(self, browser: BrowserAutomation, warnings: List[str]) -> Optional[str]:
        url = await self._open(browser, settings.PORTAL_AGENDA_URL)
        if AGENDA_ROUTE_MARKER not in url:
            collect_warning(warnings, f"Agenda page not reached, ended on {url}", logger)
            return None
        await browser.wait_for("body", settings.SELECTOR_TIMEOUT_SECONDS)
        return await browser.content()

    async def scrape_grades(self, warnings: Optional[List[str]] = None) -> List[RawRecord]:
        """Grades are linked from the student menu; no link means no grades module."""
        warnings = warnings if warnings is not None else []
        await self.session_manager.ensure_session()
        html = await self._load(self._load_grades, warnings)
        if html is None:
            return []
        return self._extract("grades", GRADE_STRATEGIES, html, warnings)

    async def _load_grades(self, browser: BrowserAutomation, warnings: List[str]) -> Optional[str]:
        url = await browser.current_url()
        if MENU_ROUTE_MARKER not in url:
            url = await self._open(browser, settings.PORTAL_MENU_URL)
            if not self._reached(url, "Menu", warnings):
                return None

        grades_url = find_grades_link(await browser.content(), url)
        if grades_url is None:
            collect_warning(warnings, "No grades link in the portal menu, grades module unavailable", logger)
            return None

        url = await self._open(browser, grades_url)
        if not self._reached(url, "Grades", warnings):
            return None
        await browser.wait_for("body", settings.SELECTOR_TIMEOUT_SECONDS)
        return await browser.content()

    async def scrape_lessons(self, warnings: Optional[List[str]] = None) -> List[RawRecord]:
        warnings = warnings if warnings is not None else []
        await self.session_manager.ensure_session()
        html = await self._load(self._load_lessons, warnings)
        if html is None:
            return []
        return self._extract("lessons", LESSON_STRATEGIES, html, warnings)

    async def _load_lessons(self, browser: BrowserAutomation, warnings: List[str]) -> Optional[str]:
        url = await self._open(browser, settings.PORTAL_LESSONS_URL)
        if not self._reached(url, "Lessons", warnings):
            return None
        if not await browser.wait_for(LESSONS_READY_SELECTOR, settings.SELECTOR_TIMEOUT_SECONDS):
            collect_warning(warnings, "Lesson register did not render", logger)
            return None
        return await browser.content()

    async def _guarded(self, label: str, scrape, warnings: List[str]) -> List[RawRecord]:
        try:
            return await scrape(warnings)
        except (NotAuthenticated, AuthenticationFailure):
            raise
        except NavigationFailure as e:
            log_sync_error(e, {'page_type': label})
            collect_warning(warnings, f"{label} unavailable: {e.message}", logger)
        except asyncio.TimeoutError:
            collect_warning(warnings, f"{label} timed out after {self.page_timeout:g}s", logger)
        except Exception as e:
            log_sync_error(e, {'page_type': label})
            collect_warning(warnings, f"{label} extraction failed: {e}", logger)
        return []

    async def scrape_all(self) -> ScrapeResult:
        """
        Scrape agenda, grades and lessons concurrently.

        Raises:
            NotAuthenticated: if there is no session and no stored credentials
            AuthenticationFailure: if the portal rejects the stored credentials
        """
        await self.session_manager.ensure_session()

        result = ScrapeResult()
        result.agenda, result.grades, result.lessons = await asyncio.gather(
            self._guarded("agenda", self.scrape_agenda, result.warnings),
            self._guarded("grades", self.scrape_grades, result.warnings),
            self._guarded("lessons", self.scrape_lessons, result.warnings),
        )
        logger.info(
            f"Scraped {len(result.agenda)} agenda entries, {len(result.grades)} grades, "
            f"{len(result.lessons)} lessons with {len(result.warnings)} warnings"
        )
        return result
