"""
Process-wide monitor components shared by the HTTP routes and the realtime channel.
"""
import logging
from typing import Callable, Optional

from fastapi import Request

from monitor.database import db_connect, db_init
from monitor.notifier import EmailNotifier
from monitor.publisher import RealtimePublisher
from monitor.scheduler import CheckOrchestrator
from monitor.session import SessionManager
from monitor.settings import DEFAULT_SCHEDULE, seed_defaults
from monitor.utils import now_ms

logger = logging.getLogger(__name__)


class MonitorService:
    """Owns the session, publisher, notifier and orchestrator of one process."""

    def __init__(
        self,
        db_path: str,
        headless: bool = True,
        default_schedule: str = DEFAULT_SCHEDULE,
        screenshot_dir: Optional[str] = None,
        session: Optional[SessionManager] = None,
        notifier: Optional[EmailNotifier] = None,
        publisher: Optional[RealtimePublisher] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.db_path = db_path
        self.default_schedule = default_schedule
        self.session = session or SessionManager(headless=headless, clock=clock)
        self.notifier = notifier or EmailNotifier()
        self.publisher = publisher or RealtimePublisher()
        self.orchestrator = CheckOrchestrator(
            db_path,
            self.session,
            notifier=self.notifier,
            publisher=self.publisher,
            clock=clock,
            default_schedule=default_schedule,
            screenshot_dir=screenshot_dir,
        )

    def startup(self):
        """Create the schema, seed missing config sections and anchor the schedule."""
        conn = db_connect(self.db_path)
        try:
            db_init(conn)
            seed_defaults(conn, self.default_schedule)
        finally:
            conn.close()
        self.orchestrator.load_schedule()
        logger.info(f"Monitor ready, database: {self.db_path}")

    async def shutdown(self):
        await self.orchestrator.stop()
        await self.session.close()


def get_service(request: Request) -> MonitorService:
    """Dependency returning the service attached to the running app."""
    return request.app.state.service
