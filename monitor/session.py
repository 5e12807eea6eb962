"""
Browser session management.

One long-lived Chromium instance per process. The manager logs in when
needed, notices expired sessions after navigating to a target page, and
recycles the browser once it gets old. Concurrent callers never start a
second login; they wait on the one already running.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import urlsplit

from playwright.async_api import async_playwright

from .errors import AuthenticationError
from .models import Target
from .settings import WebsiteSettings
from .utils import now_ms

logger = logging.getLogger(__name__)

# Constants
LOGIN_TIMEOUT_MS = 24 * 60 * 60 * 1000
BROWSER_RESTART_TIMEOUT_MS = 12 * 60 * 60 * 1000
RECENT_LOGIN_GRACE_MS = 10 * 60 * 1000
LOGIN_NAVIGATION_TIMEOUT_MS = 30_000
TARGET_NAVIGATION_TIMEOUT_MS = 60_000
SELECTOR_TIMEOUT_MS = 30_000
TYPING_DELAY_MS = 100

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)

# Collects authenticated-only and login-page markers from the current DOM
SESSION_STATUS_JS = """
() => {
    const has = (sel) => !!document.querySelector(sel);
    return {
        url: window.location.href,
        title: document.title,
        hasUserMenu: has('[data-testid="user-menu"], .user-menu, [class*="UserMenu"], [class*="user-menu"]'),
        hasLogoutButton: has('[data-testid="logout-button"], .logout-button, [class*="LogoutButton"], [class*="logout-button"]'),
        hasUserAvatar: has('[data-testid="user-avatar"], .user-avatar, [class*="UserAvatar"], [class*="user-avatar"]'),
        hasUserProfile: has('[href*="/mijn-marktplaats"], [href*="/my-marktplaats"]'),
        hasLoginButton: has('[data-testid="login-button"], .login-button, [class*="LoginButton"], [class*="login-button"]'),
    };
}
"""


def is_login_url(url: str) -> bool:
    u = (url or "").lower()
    return "/login" in u or "/identity" in u


def is_home_url(url: str) -> bool:
    parts = urlsplit(url or "")
    return bool(parts.netloc) and parts.path in ("", "/") and not parts.query


def has_session_markers(status: Dict[str, Any]) -> bool:
    """True when the DOM shows a signed-in user and no login control."""
    signed_in = any(
        status.get(k) for k in ("hasUserMenu", "hasLogoutButton", "hasUserAvatar", "hasUserProfile")
    )
    return signed_in and not status.get("hasLoginButton")


def login_succeeded(status: Dict[str, Any]) -> bool:
    """Post-submit verdict: off the login page and either signed in or redirected home."""
    url = status.get("url", "")
    if is_login_url(url):
        return False
    return has_session_markers(status) or is_home_url(url)


class SessionManager:
    """Owns the browser, its context and the login state."""

    def __init__(
        self,
        website: Optional[WebsiteSettings] = None,
        headless: bool = True,
        launcher: Optional[Callable[[], Awaitable[Any]]] = None,
        clock: Callable[[], int] = now_ms,
        settle_seconds: float = 3.0,
    ):
        self.website = website or WebsiteSettings()
        self.headless = headless
        self.clock = clock
        self.settle_seconds = settle_seconds
        self._launcher = launcher or self._launch_chromium
        self._playwright = None

        self.browser = None
        self.context = None
        self.is_logged_in = False
        self.last_login_ms: Optional[int] = None
        self.last_browser_start_ms: Optional[int] = None
        self._login_task: Optional[asyncio.Task] = None

    @property
    def login_in_progress(self) -> bool:
        return self._login_task is not None and not self._login_task.done()

    def update_settings(self, website: WebsiteSettings):
        self.website = website

    def invalidate(self):
        """Forget the login so the next ensure_ready() signs in again."""
        self.is_logged_in = False
        self.last_login_ms = None

    def needs_login(self, now: Optional[int] = None) -> bool:
        now = self.clock() if now is None else now
        if not self.is_logged_in or self.last_login_ms is None:
            return True
        return now - self.last_login_ms > LOGIN_TIMEOUT_MS

    def within_grace(self, now: Optional[int] = None) -> bool:
        """A login happened recently enough to distrust a logged-out reading."""
        now = self.clock() if now is None else now
        return self.last_login_ms is not None and now - self.last_login_ms < RECENT_LOGIN_GRACE_MS

    async def _launch_chromium(self):
        launch_args = ["--disable-blink-features=AutomationControlled"]
        if self.headless:
            launch_args += ["--disable-dev-shm-usage", "--no-sandbox", "--disable-gpu"]
        self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch(headless=self.headless, args=launch_args)

    async def _start_browser(self):
        logger.info("Initializing browser...")
        self.browser = await self._launcher()
        self.context = await self.browser.new_context(
            viewport={"width": 1920, "height": 1080},
            user_agent=USER_AGENT,
            locale="en-US",
            extra_http_headers={
                "Accept-Language": "en-US,en;q=0.9",
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
            },
        )
        self.context.set_default_timeout(SELECTOR_TIMEOUT_MS)
        self.context.set_default_navigation_timeout(TARGET_NAVIGATION_TIMEOUT_MS)
        self.last_browser_start_ms = self.clock()
        # Cookies live in the context, a fresh one is logged out
        self.invalidate()

    async def close(self):
        """Close the browser, best-effort."""
        if self.browser is not None:
            try:
                await self.browser.close()
            except Exception as e:
                logger.warning(f"Error closing browser: {e}")
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.warning(f"Error stopping playwright: {e}")
        self._playwright = None
        self.browser = None
        self.context = None
        self.last_browser_start_ms = None
        self.invalidate()

    async def ensure_ready(self):
        """Make sure a browser is running and the session is signed in."""
        now = self.clock()
        if (
            self.browser is not None
            and self.last_browser_start_ms is not None
            and now - self.last_browser_start_ms > BROWSER_RESTART_TIMEOUT_MS
        ):
            logger.info("Browser session too old, restarting...")
            await self.close()

        if self.browser is None:
            await self._start_browser()

        if self.needs_login(now):
            await self._login_once()
        else:
            logger.debug("Using existing login session")

    async def _login_once(self):
        """Run login(), or wait for the one already in flight."""
        if self.login_in_progress:
            logger.info("Login already in progress, waiting...")
            await asyncio.shield(self._login_task)
            return
        self._login_task = asyncio.ensure_future(self.login())
        try:
            await asyncio.shield(self._login_task)
        finally:
            if self._login_task is not None and self._login_task.done():
                self._login_task = None

    async def login(self):
        """Sign in through the configured login form."""
        w = self.website
        if not w.login_url:
            raise AuthenticationError("Login URL not configured")
        if not (w.username_selector and w.password_selector and w.submit_selector):
            raise AuthenticationError("Login form selectors not configured")

        logger.info("Logging in...")
        page = await self.context.new_page()
        try:
            await page.goto(w.login_url, wait_until="domcontentloaded", timeout=LOGIN_NAVIGATION_TIMEOUT_MS)

            await page.wait_for_selector(w.username_selector, state="visible", timeout=SELECTOR_TIMEOUT_MS)
            await page.type(w.username_selector, w.username, delay=TYPING_DELAY_MS)

            await page.wait_for_selector(w.password_selector, state="visible", timeout=SELECTOR_TIMEOUT_MS)
            await page.type(w.password_selector, w.password, delay=TYPING_DELAY_MS)

            async with page.expect_navigation(wait_until="domcontentloaded", timeout=LOGIN_NAVIGATION_TIMEOUT_MS):
                await page.click(w.submit_selector)

            status = await page.evaluate(SESSION_STATUS_JS)
            logger.debug(f"Login status: {status}")
            if not login_succeeded(status):
                raise AuthenticationError(
                    f"Login verification failed. Current page: {status.get('title')} ({status.get('url')})"
                )

            self.is_logged_in = True
            self.last_login_ms = self.clock()
            logger.info("Successfully logged in")
        except AuthenticationError:
            self.invalidate()
            raise
        except Exception as e:
            self.invalidate()
            raise AuthenticationError(f"Login failed: {e}") from e
        finally:
            try:
                await page.close()
            except Exception as e:
                logger.debug(f"Error closing login page: {e}")

    async def check_still_logged_in(self, page) -> bool:
        status = await page.evaluate(SESSION_STATUS_JS)
        logger.debug(f"Session check: {status}")
        return has_session_markers(status) and not is_login_url(status.get("url", ""))

    async def _discard(self, page):
        try:
            await page.close()
        except Exception as e:
            logger.debug(f"Error closing page: {e}")

    async def _goto(self, url: str):
        page = await self.context.new_page()
        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=TARGET_NAVIGATION_TIMEOUT_MS)
        except BaseException:
            await self._discard(page)
            raise
        return page

    async def open_target(self, target: Target):
        """
        Navigate to a target page with a valid session.

        When the page looks logged out, and no login happened within the grace
        window, the page is discarded, the session renewed and the navigation
        repeated.
        """
        logger.info(f"Navigating to target page: {target.url}")
        page = await self._goto(target.url)
        try:
            await asyncio.sleep(self.settle_seconds)
            needs_login = not await self.check_still_logged_in(page)
        except BaseException:
            await self._discard(page)
            raise

        if needs_login and self.within_grace():
            logger.info("Session check indicated login required, but we logged in recently. Continuing.")
            needs_login = False

        if needs_login:
            logger.info("Session expired, re-logging in...")
            await self._discard(page)
            self.invalidate()
            await self._login_once()
            page = await self._goto(target.url)
        else:
            logger.debug("Session is valid, proceeding with check")
        return page
