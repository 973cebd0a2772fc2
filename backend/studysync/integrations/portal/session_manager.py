"""
Portal Session Manager

Owns the authentication state against the school portal: the login form
round-trip, the 24 hour session, encrypted credential storage for silent
re-authentication, and logout.
"""

import logging
import time
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studysync.core.config import settings
from studysync.core.security import CredentialCipher, CredentialVault
from studysync.services.sync.repositories import SessionRepository
from studysync.services.sync.types import Credentials, PortalSession
from .browser import BrowserAutomation, PlaywrightBrowser
from .error_handler import (
    AuthenticationFailure,
    NotAuthenticated,
    SyncError,
    log_sync_error,
)

logger = logging.getLogger(__name__)


BrowserFactory = Callable[[], Awaitable[BrowserAutomation]]


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"
    LOGGED_OUT = "logged_out"


def is_login_successful(url: str, content: str) -> bool:
    """
    Whether a post-submit page belongs to the logged-in area.

    The login page itself lives under ``/home/``, so URL markers only count
    once the URL has left the login route; the DOM marker is conclusive on
    its own.
    """
    if settings.PORTAL_SUCCESS_DOM_MARKER and settings.PORTAL_SUCCESS_DOM_MARKER in content:
        return True
    if settings.PORTAL_LOGIN_ROUTE_MARKER in url:
        return False
    return any(marker in url for marker in settings.PORTAL_SUCCESS_MARKERS)


class PortalSessionManager:
    """
    Explicit, injected owner of one user's portal session.

    Args:
        session_factory: Factory for database sessions (credential vault and
            persisted session row)
        cipher: Encryption for the credential blob
        browser_factory: Coroutine returning a started browser
        user_id: Local user the session belongs to
        now: Clock, injectable for tests
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        cipher: Optional[CredentialCipher] = None,
        browser_factory: Optional[BrowserFactory] = None,
        user_id: str = "default",
        now: Callable[[], datetime] = datetime.now
    ):
        self.session_factory = session_factory
        self.cipher = cipher or CredentialCipher.from_settings()
        self.browser_factory = browser_factory or PlaywrightBrowser.launch
        self.user_id = user_id
        self.now = now

        self._browser: Optional[BrowserAutomation] = None
        self._session: Optional[PortalSession] = None
        self._state = SessionState.UNAUTHENTICATED

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[PortalSession]:
        return self._session

    def _vault(self, db: AsyncSession) -> CredentialVault:
        return CredentialVault(db, self.cipher, self.user_id)

    async def get_browser(self) -> BrowserAutomation:
        if self._browser is None:
            self._browser = await self.browser_factory()
        return self._browser

    async def _submit_login_form(self, browser: BrowserAutomation, credentials: Credentials) -> None:
        if not await browser.wait_for(settings.PORTAL_USERNAME_SELECTOR, settings.SELECTOR_TIMEOUT_SECONDS):
            raise AuthenticationFailure(
                "Login form not found",
                details={'url': await browser.current_url()}
            )
        await browser.type(settings.PORTAL_USERNAME_SELECTOR, credentials.username)
        await browser.type(settings.PORTAL_PASSWORD_SELECTOR, credentials.password)
        await browser.click(settings.PORTAL_SUBMIT_SELECTOR)
        await browser.wait_for_navigation(settings.NAVIGATION_TIMEOUT_SECONDS)

    async def login(self, credentials: Credentials) -> bool:
        """
        Submit the portal login form.

        On success the session is stored for SESSION_TTL_HOURS and the
        credentials are persisted encrypted. Never raises: every failure is
        logged and reported as False.
        """
        if not credentials.username or not credentials.password:
            logger.warning("Login attempted with empty username or password")
            return False

        self._state = SessionState.AUTHENTICATING
        try:
            browser = await self.get_browser()
            await browser.goto(settings.PORTAL_LOGIN_URL)
            await self._submit_login_form(browser, credentials)

            url = await browser.current_url()
            content = await browser.content()
            if is_login_successful(url, content):
                session = PortalSession(
                    session_id=f"scraper-session-{int(time.time() * 1000)}",
                    user_id=credentials.username,
                    expires_at=self.now() + timedelta(hours=settings.SESSION_TTL_HOURS),
                )
                async with self.session_factory() as db:
                    await SessionRepository(db).save(self.user_id, session)
                    await self._vault(db).store(credentials)

                self._session = session
                self._state = SessionState.AUTHENTICATED
                logger.info(f"Logged in to portal as {credentials.username}")
                return True

            log_sync_error(
                AuthenticationFailure("Portal rejected the credentials", operation_type='login',
                                      details={'url': url}),
            )
        except SyncError as e:
            log_sync_error(e, {'operation_type': 'login'})
        except Exception as e:
            log_sync_error(
                AuthenticationFailure(f"Login failed: {e}", operation_type='login', original_exception=e)
            )

        self._session = None
        self._state = SessionState.UNAUTHENTICATED
        return False

    async def is_authenticated(self) -> bool:
        """True while an in-memory or persisted session has not expired."""
        now = self.now()
        if self._session is None:
            async with self.session_factory() as db:
                self._session = await SessionRepository(db).load(self.user_id)

        if self._session is not None and self._session.is_valid(now):
            self._state = SessionState.AUTHENTICATED
            return True

        if self._session is not None:
            logger.info(f"Portal session {self._session.session_id} expired")
            self._state = SessionState.EXPIRED
            self._session = None
        return False

    async def ensure_session(self) -> PortalSession:
        """
        Return a valid session, logging in silently from stored credentials.

        Raises:
            NotAuthenticated: if there is no session and nothing stored to renew it
            AuthenticationFailure: if the portal rejects the stored credentials
        """
        if await self.is_authenticated():
            return self._session

        async with self.session_factory() as db:
            credentials = await self._vault(db).load()
        if credentials is None:
            raise NotAuthenticated()

        if not await self.login(credentials):
            raise AuthenticationFailure(
                "Portal rejected the stored credentials",
                operation_type='ensure_session'
            )
        return self._session

    async def reauthenticate_module(self, browser: Optional[BrowserAutomation] = None) -> bool:
        """
        Re-submit the login form a portal section bounced us back to.

        Some sections keep their own session scope, so a valid portal session
        can still land on the login route. Returns whether the page left the
        login route.
        """
        browser = browser or await self.get_browser()
        async with self.session_factory() as db:
            credentials = await self._vault(db).load()
        if credentials is None:
            logger.warning("No stored credentials found for module login")
            return False

        try:
            await self._submit_login_form(browser, credentials)
        except SyncError as e:
            log_sync_error(e, {'operation_type': 'reauthenticate_module'})
            return False

        url = await browser.current_url()
        logger.info(f"Module login completed, now on {url}")
        return settings.PORTAL_LOGIN_ROUTE_MARKER not in url

    async def logout(self) -> None:
        """
        End the portal session.

        The remote logout is best effort. Local session and credential state
        is cleared unconditionally afterwards.
        """
        browser, self._browser = self._browser, None
        try:
            if browser is not None:
                await browser.goto(settings.PORTAL_LOGOUT_URL)
        except Exception as e:
            logger.warning(f"Remote portal logout failed: {e}")
        finally:
            if browser is not None:
                try:
                    await browser.close()
                except Exception as e:
                    logger.warning(f"Closing the browser failed: {e}")

            self._session = None
            self._state = SessionState.LOGGED_OUT
            async with self.session_factory() as db:
                await SessionRepository(db).clear(self.user_id)
                await self._vault(db).clear()
            logger.info(f"Cleared portal session and credentials for {self.user_id}")

    async def close(self) -> None:
        """Release the browser and keep the session for the next run."""
        browser, self._browser = self._browser, None
        if browser is not None:
            await browser.close()

    def status(self) -> Dict[str, Any]:
        return {
            'state': self._state.value,
            'user': self._session.user_id if self._session else None,
            'expires_at': self._session.expires_at.isoformat() if self._session else None,
        }
