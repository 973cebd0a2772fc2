"""
Tests for portal authentication state.
"""

import pytest
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

from studysync.core.config import settings
from studysync.core.security import CredentialVault
from studysync.integrations.portal.error_handler import (
    AuthenticationFailure, NavigationFailure, NotAuthenticated
)
from studysync.integrations.portal.session_manager import (
    PortalSessionManager, SessionState, is_login_successful
)
from studysync.services.sync.repositories import SessionRepository
from studysync.services.sync.types import Credentials


MENU_URL = "https://web.spaggiari.eu/home/app/default/menu_webinfoschool_studenti.php"
LOGIN_ERROR_URL = "https://web.spaggiari.eu/home/app/default/login.php?error=1"


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock(datetime(2025, 1, 10, 8, 0))


@pytest.fixture
def credentials():
    return Credentials(username="S1234567", password="segreta!")


@pytest.fixture
def browser(fake_browser_class):
    return fake_browser_class(login_result=(MENU_URL, "<div id='menu_webinfoschool'></div>"))


@pytest.fixture
def rejecting_browser(fake_browser_class):
    return fake_browser_class(login_result=(LOGIN_ERROR_URL, "<p>Credenziali errate</p>"))


def make_manager(session_factory, cipher, browser, clock):
    factory = AsyncMock(return_value=browser)
    return PortalSessionManager(
        session_factory,
        cipher=cipher,
        browser_factory=factory,
        user_id="student",
        now=clock,
    )


class TestLoginDetection:

    def test_dom_marker_is_conclusive(self):
        assert is_login_successful(LOGIN_ERROR_URL, "<div class='menu_webinfoschool'>")

    def test_login_route_is_never_success(self):
        assert not is_login_successful("https://web.spaggiari.eu/home/app/default/login.php", "")

    def test_success_marker_in_url(self):
        assert is_login_successful("https://web.spaggiari.eu/cvv/app/default/genitori.php", "")

    def test_unrelated_page(self):
        assert not is_login_successful("https://example.com/", "")


class TestLogin:
    """Test the login form round-trip."""

    @pytest.mark.asyncio
    async def test_successful_login(self, session_factory, cipher, browser, clock, credentials):
        manager = make_manager(session_factory, cipher, browser, clock)

        assert await manager.login(credentials) is True

        assert manager.state == SessionState.AUTHENTICATED
        assert manager.session.session_id.startswith("scraper-session-")
        assert manager.session.user_id == "S1234567"
        assert manager.session.expires_at == clock.now + timedelta(hours=settings.SESSION_TTL_HOURS)
        assert browser.visited == [settings.PORTAL_LOGIN_URL]
        assert browser.typed == {
            settings.PORTAL_USERNAME_SELECTOR: "S1234567",
            settings.PORTAL_PASSWORD_SELECTOR: "segreta!",
        }

        async with session_factory() as db:
            stored = await SessionRepository(db).load("student")
            vault_credentials = await CredentialVault(db, cipher, "student").load()
        assert stored.session_id == manager.session.session_id
        assert vault_credentials == credentials

    @pytest.mark.asyncio
    async def test_rejected_login(self, session_factory, cipher, rejecting_browser, clock, credentials):
        manager = make_manager(session_factory, cipher, rejecting_browser, clock)

        assert await manager.login(credentials) is False

        assert manager.state == SessionState.UNAUTHENTICATED
        assert manager.session is None
        async with session_factory() as db:
            assert await CredentialVault(db, cipher, "student").load() is None
            assert await SessionRepository(db).load("student") is None

    @pytest.mark.asyncio
    async def test_empty_credentials_fail_without_browser(self, session_factory, cipher, browser, clock):
        manager = make_manager(session_factory, cipher, browser, clock)

        assert await manager.login(Credentials(username="", password="x")) is False
        assert await manager.login(Credentials(username="x", password="")) is False

        manager.browser_factory.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_login_form(self, session_factory, cipher, fake_browser_class, clock, credentials):
        manager = make_manager(session_factory, cipher, fake_browser_class(form_present=False), clock)

        assert await manager.login(credentials) is False

    @pytest.mark.asyncio
    async def test_navigation_failure_reported_as_false(self, session_factory, cipher, fake_browser_class,
                                                        clock, credentials):
        failing = fake_browser_class(fail_urls={
            settings.PORTAL_LOGIN_URL: NavigationFailure("down", url=settings.PORTAL_LOGIN_URL)
        })
        manager = make_manager(session_factory, cipher, failing, clock)

        assert await manager.login(credentials) is False
        assert manager.state == SessionState.UNAUTHENTICATED


class TestSessionLifetime:
    """Test expiry, rehydration and silent renewal."""

    @pytest.mark.asyncio
    async def test_session_expires_after_ttl(self, session_factory, cipher, browser, clock, credentials):
        manager = make_manager(session_factory, cipher, browser, clock)
        await manager.login(credentials)

        clock.now += timedelta(hours=settings.SESSION_TTL_HOURS, seconds=1)

        assert await manager.is_authenticated() is False
        assert manager.state == SessionState.EXPIRED

    @pytest.mark.asyncio
    async def test_persisted_session_rehydrated(self, session_factory, cipher, browser, clock, credentials):
        await make_manager(session_factory, cipher, browser, clock).login(credentials)

        restarted = make_manager(session_factory, cipher, browser, clock)

        assert await restarted.is_authenticated() is True
        assert restarted.state == SessionState.AUTHENTICATED

    @pytest.mark.asyncio
    async def test_ensure_session_without_credentials(self, session_factory, cipher, browser, clock):
        manager = make_manager(session_factory, cipher, browser, clock)

        with pytest.raises(NotAuthenticated):
            await manager.ensure_session()

    @pytest.mark.asyncio
    async def test_ensure_session_renews_from_stored_credentials(self, session_factory, cipher, browser,
                                                                 clock, credentials):
        manager = make_manager(session_factory, cipher, browser, clock)
        await manager.login(credentials)
        first = manager.session

        clock.now += timedelta(hours=25)
        session = await manager.ensure_session()

        assert session is not None
        assert session.expires_at == clock.now + timedelta(hours=settings.SESSION_TTL_HOURS)
        assert session.expires_at > first.expires_at
        assert manager.state == SessionState.AUTHENTICATED

    @pytest.mark.asyncio
    async def test_ensure_session_with_rejected_credentials(self, session_factory, cipher,
                                                            rejecting_browser, clock, credentials):
        async with session_factory() as db:
            await CredentialVault(db, cipher, "student").store(credentials)
        manager = make_manager(session_factory, cipher, rejecting_browser, clock)

        with pytest.raises(AuthenticationFailure):
            await manager.ensure_session()


class TestModuleLogin:

    @pytest.mark.asyncio
    async def test_reauthenticate_module(self, session_factory, cipher, browser, clock, credentials):
        manager = make_manager(session_factory, cipher, browser, clock)
        await manager.login(credentials)
        browser.url = settings.PORTAL_LOGIN_URL

        assert await manager.reauthenticate_module(browser) is True
        assert browser.url == MENU_URL

    @pytest.mark.asyncio
    async def test_reauthenticate_module_without_credentials(self, session_factory, cipher, browser, clock):
        manager = make_manager(session_factory, cipher, browser, clock)

        assert await manager.reauthenticate_module(browser) is False
        assert browser.typed == {}


class TestLogout:

    @pytest.mark.asyncio
    async def test_logout_clears_everything(self, session_factory, cipher, browser, clock, credentials):
        manager = make_manager(session_factory, cipher, browser, clock)
        await manager.login(credentials)

        await manager.logout()

        assert manager.state == SessionState.LOGGED_OUT
        assert manager.session is None
        assert browser.visited[-1] == settings.PORTAL_LOGOUT_URL
        assert browser.closed is True
        async with session_factory() as db:
            assert await SessionRepository(db).load("student") is None
            assert await CredentialVault(db, cipher, "student").load() is None
        assert await manager.is_authenticated() is False

    @pytest.mark.asyncio
    async def test_logout_clears_state_when_portal_unreachable(self, session_factory, cipher, fake_browser_class,
                                                               clock, credentials):
        browser = fake_browser_class(
            login_result=(MENU_URL, ""),
            fail_urls={settings.PORTAL_LOGOUT_URL: NavigationFailure("down", url=settings.PORTAL_LOGOUT_URL)},
        )
        manager = make_manager(session_factory, cipher, browser, clock)
        await manager.login(credentials)

        await manager.logout()

        assert manager.state == SessionState.LOGGED_OUT
        assert browser.closed is True
        async with session_factory() as db:
            assert await CredentialVault(db, cipher, "student").load() is None

    @pytest.mark.asyncio
    async def test_close_keeps_session(self, session_factory, cipher, browser, clock, credentials):
        manager = make_manager(session_factory, cipher, browser, clock)
        await manager.login(credentials)

        await manager.close()

        assert browser.closed is True
        assert await manager.is_authenticated() is True

    @pytest.mark.asyncio
    async def test_status(self, session_factory, cipher, browser, clock, credentials):
        manager = make_manager(session_factory, cipher, browser, clock)
        assert manager.status() == {'state': 'unauthenticated', 'user': None, 'expires_at': None}

        await manager.login(credentials)

        status = manager.status()
        assert status['state'] == 'authenticated'
        assert status['user'] == "S1234567"
        assert status['expires_at'] == "2025-01-11T08:00:00"
