"""
Check scheduling and orchestration.

A short fixed tick compares the clock with the next-check deadline. Automatic
and manual checks share one guard flag, so two check cycles never overlap.
"""
import asyncio
import glob
import logging
import os
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .database import db_get_config, db_get_listings, db_latest_timestamp, get_db_connection
from .detector import process_check_result
from .errors import CheckAlreadyRunning, MonitorError, error_code
from .extractor import extract, wait_for_listings
from .models import CheckResult, Target
from .notifier import EmailNotifier
from .publisher import RealtimePublisher
from .session import SessionManager
from .settings import DEFAULT_SCHEDULE, MonitorSettings, load_settings
from .utils import iso_to_ms, now_ms

logger = logging.getLogger(__name__)

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DEFAULT_INTERVAL_MS = 5 * MINUTE_MS


def _step(field: str) -> Optional[int]:
    """N for a ``*/N`` field, None when the field has another shape or N is not positive."""
    if not field.startswith("*/"):
        return None
    try:
        n = int(field[2:])
    except ValueError:
        return None
    return n if n > 0 else None


def parse_cron_to_ms(cron: Optional[str], default_ms: int = DEFAULT_INTERVAL_MS) -> int:
    """
    Interval for the supported cron subset.

    ``*/N * * * *`` -> N minutes, ``0 */H * * *`` -> H hours, ``0 * * * *`` -> one
    hour. Anything else yields ``default_ms``.
    """
    if not cron or not isinstance(cron, str):
        return default_ms
    parts = cron.split()
    if len(parts) != 5:
        return default_ms
    minute, hour = parts[0], parts[1]

    if minute.startswith("*/"):
        n = _step(minute)
        return n * MINUTE_MS if n else default_ms
    if minute == "0":
        if hour.startswith("*/"):
            h = _step(hour)
            return h * HOUR_MS if h else HOUR_MS
        if hour == "*":
            return HOUR_MS
    return default_ms


async def save_screenshot(page, directory: str):
    """Replace older debug screenshots with one of the current page."""
    try:
        for old in glob.glob(os.path.join(directory, "screenshot-*.png")):
            os.remove(old)
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
        path = os.path.join(directory, f"screenshot-{stamp}.png")
        await page.screenshot(path=path, full_page=True)
        logger.debug(f"Screenshot saved to: {path}")
    except Exception as e:
        logger.warning(f"Could not save screenshot: {e}")


class CheckOrchestrator:
    """Runs check cycles on schedule or on demand, one at a time."""

    def __init__(
        self,
        db_path: str,
        session: SessionManager,
        notifier: Optional[EmailNotifier] = None,
        publisher: Optional[RealtimePublisher] = None,
        clock: Callable[[], int] = now_ms,
        default_schedule: str = DEFAULT_SCHEDULE,
        screenshot_dir: Optional[str] = None,
        settle_seconds: float = 5.0,
    ):
        self.db_path = db_path
        self.session = session
        self.notifier = notifier or EmailNotifier()
        self.publisher = publisher or RealtimePublisher()
        self.clock = clock
        self.default_schedule = default_schedule
        self.screenshot_dir = screenshot_dir
        self.settle_seconds = settle_seconds

        self.schedule = default_schedule
        self.schedule_interval_ms = parse_cron_to_ms(default_schedule)
        self.next_check_deadline = self.clock() + self.schedule_interval_ms
        self.is_check_running = False
        self._task: Optional[asyncio.Task] = None

    # -- schedule -------------------------------------------------------

    def _anchor_deadline(self):
        """Deadline relative to the newest stored listing, never in the past."""
        now = self.clock()
        with get_db_connection(self.db_path) as conn:
            last = iso_to_ms(db_latest_timestamp(conn))
        deadline = (last if last is not None else now) + self.schedule_interval_ms
        if deadline <= now:
            deadline = now + self.schedule_interval_ms
        self.next_check_deadline = deadline

    def load_schedule(self):
        """Read the stored schedule and anchor the first deadline."""
        with get_db_connection(self.db_path) as conn:
            schedule = db_get_config(conn, "schedule") or self.default_schedule
        self.schedule = schedule
        self.schedule_interval_ms = parse_cron_to_ms(schedule)
        self._anchor_deadline()
        logger.info(
            f"Parsed schedule '{schedule}' -> {self.schedule_interval_ms} ms, "
            f"next check at {self.next_check_deadline}"
        )

    async def apply_schedule(self, schedule: str):
        """Recompute the interval after a schedule edit and tell the clients."""
        self.schedule = schedule
        self.schedule_interval_ms = parse_cron_to_ms(schedule)
        self._anchor_deadline()
        logger.info(f"Schedule updated to '{schedule}', next check at {self.next_check_deadline}")
        await self.publisher.next_check(self.next_check_deadline)

    # -- triggering -----------------------------------------------------

    def _begin(self):
        if self.is_check_running:
            raise CheckAlreadyRunning("Check already running")
        self.is_check_running = True
        self.next_check_deadline = self.clock() + self.schedule_interval_ms

    async def trigger(self) -> dict:
        """Manual check. Raises CheckAlreadyRunning while another check runs."""
        self._begin()
        logger.info("Manual website check triggered")
        return await self._run_guarded(raise_errors=True)

    async def tick(self) -> bool:
        """Start a check when the deadline has passed. Returns True if one ran."""
        if self.is_check_running:
            return False
        if self.clock() < self.next_check_deadline:
            return False
        self._begin()
        logger.info("[Scheduler] next check deadline reached, starting automated check...")
        await self._run_guarded(raise_errors=False)
        return True

    async def _run_guarded(self, raise_errors: bool) -> Optional[dict]:
        try:
            await self.publisher.checking()
            try:
                return await self.check_cycle()
            except Exception as e:
                logger.exception(f"Check cycle failed: {e}")
                await self.publisher.error(str(e), error_code(e))
                if raise_errors:
                    raise
                return None
            finally:
                await self._publish_listings()
        finally:
            self.is_check_running = False

    async def _publish_listings(self):
        self.next_check_deadline = self.clock() + self.schedule_interval_ms
        try:
            with get_db_connection(self.db_path) as conn:
                listings = [l.to_dict() for l in db_get_listings(conn)]
            await self.publisher.listings_update(listings, self.next_check_deadline)
            await self.publisher.next_check(self.next_check_deadline)
        except Exception as e:
            logger.error(f"Error emitting listings update: {e}")

    async def run_forever(self, tick_seconds: float = 1.0):
        logger.info("Scheduler loop started")
        while True:
            try:
                await self.tick()
            except Exception as e:
                logger.exception(f"Scheduler tick failed: {e}")
            await asyncio.sleep(tick_seconds)

    def start(self, tick_seconds: float = 1.0) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever(tick_seconds))
        return self._task

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    # -- check cycle ----------------------------------------------------

    async def check_cycle(self) -> dict:
        """Login-or-reuse, then navigate, extract, diff, persist and notify per target."""
        logger.info("Starting website check...")
        with get_db_connection(self.db_path) as conn:
            settings = load_settings(conn, self.default_schedule)
        if settings.schedule != self.schedule:
            self.schedule = settings.schedule
            self.schedule_interval_ms = parse_cron_to_ms(settings.schedule)

        targets = settings.website.active_targets()
        if not targets:
            raise MonitorError("No target URL and selector configured")

        self.session.update_settings(settings.website)
        await self.session.ensure_ready()

        results: List[CheckResult] = []
        for target in targets:
            results.append(await self.check_target(target, settings))

        return {
            "message": "Website check completed",
            "targets": [r.summary() for r in results],
        }

    async def check_target(self, target: Target, settings: MonitorSettings) -> CheckResult:
        page = await self.session.open_target(target)
        try:
            await wait_for_listings(page, target.selector, settle_seconds=self.settle_seconds)
            if self.screenshot_dir:
                await save_screenshot(page, self.screenshot_dir)
            content = await extract(page, target.selector)
        finally:
            try:
                await page.close()
            except Exception as e:
                logger.debug(f"Error closing page: {e}")

        items = content["items"]
        logger.info(f"Extracted {len(items)} items for {target.key}")

        with get_db_connection(self.db_path) as conn:
            result = process_check_result(conn, target.key, items)

        if result.new_items:
            await self.notifier.notify(result.new_items, target.key, settings.email, target.url)
        return result
