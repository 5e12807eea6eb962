"""
Tests for the browser session manager, driven with fake browser objects.
"""
import asyncio

import pytest

from monitor.errors import AuthenticationError
from monitor.models import Target
from monitor.session import (
    BROWSER_RESTART_TIMEOUT_MS,
    LOGIN_TIMEOUT_MS,
    RECENT_LOGIN_GRACE_MS,
    SessionManager,
    has_session_markers,
    login_succeeded,
)
from monitor.settings import WebsiteSettings

LOGIN_URL = "https://site.example/identity/login"
TARGET = Target(url="https://site.example/l/fietsen/", selector="#content")

SIGNED_IN = {"url": "https://site.example/", "hasUserMenu": True, "hasLoginButton": False}
SIGNED_OUT = {"url": "https://site.example/l/fietsen/", "hasLoginButton": True}


class Clock:
    def __init__(self, now=1_000_000):
        self.now = now

    def __call__(self):
        return self.now


class FakeNavigation:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakePage:
    def __init__(self, ctx):
        self.ctx = ctx
        self.url = "about:blank"
        self.closed = False
        self.typed = {}

    async def goto(self, url, wait_until=None, timeout=None):
        if url in self.ctx.failing_urls:
            raise TimeoutError(f"Timeout {timeout}ms exceeded navigating to {url}")
        self.url = url
        self.ctx.visits.append(url)

    async def wait_for_selector(self, selector, state=None, timeout=None):
        return None

    async def type(self, selector, text, delay=None):
        self.typed[selector] = text

    def expect_navigation(self, wait_until=None, timeout=None):
        return FakeNavigation()

    async def click(self, selector):
        self.ctx.logins += 1
        # Let concurrent callers run while the form submits
        await asyncio.sleep(0)
        await asyncio.sleep(0)

    async def evaluate(self, script):
        if self.ctx.status_error is not None:
            raise self.ctx.status_error
        if self.url == LOGIN_URL:
            return dict(self.ctx.login_status)
        return dict(self.ctx.target_status)

    async def close(self):
        self.closed = True


class FakeContext:
    def __init__(self):
        self.login_status = SIGNED_IN
        self.target_status = SIGNED_IN
        self.visits = []
        self.pages = []
        self.logins = 0
        self.failing_urls = set()
        self.status_error = None

    def set_default_timeout(self, ms):
        pass

    def set_default_navigation_timeout(self, ms):
        pass

    async def new_page(self):
        page = FakePage(self)
        self.pages.append(page)
        return page


class FakeBrowser:
    def __init__(self):
        self.ctx = FakeContext()
        self.closed = False

    async def new_context(self, **kwargs):
        return self.ctx

    async def close(self):
        self.closed = True


class Launcher:
    def __init__(self):
        self.browsers = []

    async def __call__(self):
        browser = FakeBrowser()
        self.browsers.append(browser)
        return browser


def website(**overrides):
    data = {
        "loginUrl": LOGIN_URL,
        "targetUrl": TARGET.url,
        "selectors": [TARGET.selector],
        "usernameSelector": "#email",
        "passwordSelector": "#password",
        "submitSelector": "button[type=submit]",
        "username": "me@example.com",
        "password": "secret",
    }
    data.update(overrides)
    return WebsiteSettings.from_dict(data)


def make_session(clock=None, **overrides):
    launcher = Launcher()
    session = SessionManager(website=website(**overrides), launcher=launcher, clock=clock or Clock(), settle_seconds=0)
    return session, launcher


def test_login_succeeded_verdicts():
    assert login_succeeded(SIGNED_IN)
    assert login_succeeded({"url": "https://site.example/"})
    assert not login_succeeded({"url": LOGIN_URL, "hasUserMenu": True})
    assert not login_succeeded({"url": "https://site.example/l/x", "hasLoginButton": True})
    assert not has_session_markers({"hasUserAvatar": True, "hasLoginButton": True})


def test_ensure_ready_logs_in_once():
    clock = Clock()
    session, launcher = make_session(clock)
    asyncio.run(session.ensure_ready())

    ctx = launcher.browsers[0].ctx
    assert session.is_logged_in
    assert session.last_login_ms == clock.now
    assert ctx.logins == 1
    login_page = ctx.pages[0]
    assert login_page.typed == {"#email": "me@example.com", "#password": "secret"}
    assert login_page.closed

    asyncio.run(session.ensure_ready())
    assert ctx.logins == 1


def test_failed_login_raises_and_stays_logged_out():
    session, launcher = make_session()

    async def scenario():
        await session._start_browser()
        session.context.login_status = {"url": LOGIN_URL, "hasLoginButton": True}
        await session.ensure_ready()

    with pytest.raises(AuthenticationError):
        asyncio.run(scenario())
    assert session.is_logged_in is False
    assert session.last_login_ms is None
    assert all(p.closed for p in launcher.browsers[0].ctx.pages)


def test_missing_login_configuration():
    session, _ = make_session(loginUrl="", submitSelector="")
    with pytest.raises(AuthenticationError):
        asyncio.run(session.ensure_ready())


def test_concurrent_callers_share_one_login():
    session, launcher = make_session()

    async def scenario():
        await asyncio.gather(session.ensure_ready(), session.ensure_ready(), session.ensure_ready())

    asyncio.run(scenario())
    assert launcher.browsers[0].ctx.logins == 1
    assert session.is_logged_in
    assert not session.login_in_progress


def test_login_expires_after_timeout():
    clock = Clock()
    session, launcher = make_session(clock)
    asyncio.run(session.ensure_ready())

    clock.now += LOGIN_TIMEOUT_MS - 1
    assert not session.needs_login()
    clock.now += 2
    assert session.needs_login()


def test_browser_recycled_when_old():
    clock = Clock()
    session, launcher = make_session(clock)
    asyncio.run(session.ensure_ready())

    clock.now += BROWSER_RESTART_TIMEOUT_MS + 1
    asyncio.run(session.ensure_ready())

    assert len(launcher.browsers) == 2
    assert launcher.browsers[0].closed
    # The fresh context starts logged out
    assert launcher.browsers[1].ctx.logins == 1
    assert session.last_browser_start_ms == clock.now


def test_logged_out_status_ignored_within_grace_window():
    clock = Clock()
    session, launcher = make_session(clock)
    asyncio.run(session.ensure_ready())
    ctx = launcher.browsers[0].ctx
    ctx.target_status = SIGNED_OUT

    clock.now += RECENT_LOGIN_GRACE_MS - 1
    page = asyncio.run(session.open_target(TARGET))
    assert page.url == TARGET.url
    assert ctx.logins == 1


def test_expired_session_relogs_and_renavigates():
    clock = Clock()
    session, launcher = make_session(clock)
    asyncio.run(session.ensure_ready())
    ctx = launcher.browsers[0].ctx
    ctx.target_status = SIGNED_OUT

    clock.now += RECENT_LOGIN_GRACE_MS + 1
    page = asyncio.run(session.open_target(TARGET))

    assert ctx.logins == 2
    assert ctx.visits == [LOGIN_URL, TARGET.url, LOGIN_URL, TARGET.url]
    assert page.url == TARGET.url
    assert not page.closed
    assert session.last_login_ms == clock.now


def test_close_resets_state():
    session, launcher = make_session()
    asyncio.run(session.ensure_ready())
    asyncio.run(session.close())
    assert session.browser is None
    assert not session.is_logged_in
    assert launcher.browsers[0].closed


def test_failed_navigation_closes_its_page():
    session, launcher = make_session()
    asyncio.run(session.ensure_ready())
    ctx = launcher.browsers[0].ctx
    ctx.failing_urls.add(TARGET.url)

    for _ in range(3):
        with pytest.raises(TimeoutError):
            asyncio.run(session.open_target(TARGET))

    assert len(ctx.pages) == 4
    assert all(p.closed for p in ctx.pages)


def test_failed_session_check_closes_its_page():
    session, launcher = make_session()
    asyncio.run(session.ensure_ready())
    ctx = launcher.browsers[0].ctx
    ctx.status_error = RuntimeError("Execution context was destroyed")

    with pytest.raises(RuntimeError):
        asyncio.run(session.open_target(TARGET))

    target_pages = [p for p in ctx.pages if p.url == TARGET.url]
    assert len(target_pages) == 1
    assert target_pages[0].closed
