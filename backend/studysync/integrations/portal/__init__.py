"""
School portal integration: browser automation, session management and
page extraction.
"""

from .error_handler import (
    SyncError,
    AuthenticationFailure,
    NotAuthenticated,
    NavigationFailure,
    ParseFailure,
    ConcurrentSyncRejected,
)
from .browser import BrowserAutomation, PlaywrightBrowser
from .session_manager import PortalSessionManager, SessionState
from .scraper import PortalScraper, ScrapeResult

__all__ = [
    'SyncError',
    'AuthenticationFailure',
    'NotAuthenticated',
    'NavigationFailure',
    'ParseFailure',
    'ConcurrentSyncRejected',
    'BrowserAutomation',
    'PlaywrightBrowser',
    'PortalSessionManager',
    'SessionState',
    'PortalScraper',
    'ScrapeResult',
]
