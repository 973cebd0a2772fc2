"""
Automated sync pipeline: portal session, scrape, normalize, reconcile.
"""

import logging
from datetime import date
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from studysync.integrations.portal.scraper import PortalScraper
from studysync.integrations.portal.session_manager import PortalSessionManager
from studysync.models.planner import RecordSource
from .reconciliation import ReconciliationEngine
from .record_parser import normalize_raw_records
from .repositories import PlannerRepository
from .types import SyncResult

logger = logging.getLogger(__name__)


class SyncPipeline:
    """
    One full portal sync.

    ``run`` raises ``NotAuthenticated`` or ``AuthenticationFailure`` when no
    session can be established; every other problem is absorbed into the
    result's warnings.
    """

    def __init__(
        self,
        session_manager: PortalSessionManager,
        session_factory: async_sessionmaker,
        scraper: Optional[PortalScraper] = None,
        today: Callable[[], date] = date.today
    ):
        self.session_manager = session_manager
        self.session_factory = session_factory
        self.scraper = scraper or PortalScraper(session_manager, today=today)
        self.today = today

    async def run(self) -> SyncResult:
        try:
            scraped = await self.scraper.scrape_all()
        finally:
            # The session survives; the next run starts a fresh browser
            await self.session_manager.close()

        outcome = normalize_raw_records(scraped.records, self.today())

        async with self.session_factory() as db:
            engine = ReconciliationEngine(PlannerRepository(db), RecordSource.PORTAL, self.today)
            result = await engine.reconcile(outcome.assignments, outcome.grades)
            result.merge(await engine.reconcile_lessons(outcome.lessons))

        result.warnings = scraped.warnings + outcome.warnings + result.warnings
        logger.info(
            f"Portal sync finished: {result.total_added} records added, "
            f"{result.lessons_found} lessons, {len(result.warnings)} warnings"
        )
        return result
