"""
Shared fixtures: an in-memory database and a scripted browser.
"""

import asyncio
import pytest
from cryptography.fernet import Fernet
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from studysync import models  # noqa: F401
from studysync.core.database import Base
from studysync.core.config import settings
from studysync.core.security import CredentialCipher


@pytest.fixture
async def session_factory():
    """Session factory bound to a fresh in-memory SQLite database."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def cipher():
    return CredentialCipher(Fernet.generate_key())


class FakeBrowser:
    """
    Scripted ``BrowserAutomation``.

    ``pages`` maps a requested URL to the (final URL, HTML) it lands on, so a
    redirect to the login page is just a different final URL. Submitting the
    login form lands on ``login_result``. ``delays`` maps a URL to the seconds
    its navigation takes.
    """

    def __init__(self, pages=None, login_result=None, form_present=True, fail_urls=None, delays=None):
        self.pages = dict(pages or {})
        self.login_result = login_result
        self.form_present = form_present
        self.fail_urls = fail_urls or {}
        self.delays = delays or {}
        self.url = "about:blank"
        self.html = ""
        self.visited = []
        self.typed = {}
        self.clicked = []
        self.closed = False

    async def goto(self, url, timeout=None):
        self.visited.append(url)
        if url in self.delays:
            await asyncio.sleep(self.delays[url])
        if url in self.fail_urls:
            raise self.fail_urls[url]
        self.url, self.html = self.pages.get(url, (url, ""))

    async def type(self, selector, text):
        self.typed[selector] = text

    async def click(self, selector):
        self.clicked.append(selector)

    async def wait_for(self, selector, timeout=None):
        if selector == settings.PORTAL_USERNAME_SELECTOR:
            return self.form_present
        return True

    async def wait_for_navigation(self, timeout=None):
        if self.login_result is not None:
            self.url, self.html = self.login_result

    async def content(self):
        return self.html

    async def current_url(self):
        return self.url

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_browser_class():
    return FakeBrowser
