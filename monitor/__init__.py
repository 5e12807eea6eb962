"""
Classifieds Site Monitor Package
"""
from .models import Listing, Target, CheckResult
from .database import (
    db_connect,
    db_init,
    get_db_connection,
    db_get_listings,
    db_replace_listings,
    db_get_config,
    db_set_config,
)
from .detector import fingerprint, process_check_result
from .errors import (
    MonitorError,
    AuthenticationError,
    ContentNotFoundError,
    TransportError,
    CheckAlreadyRunning,
)
from .extractor import extract, parse_listings
from .notifier import EmailNotifier
from .publisher import RealtimePublisher
from .scheduler import CheckOrchestrator, parse_cron_to_ms
from .session import SessionManager
from .settings import load_settings, seed_defaults
from .utils import init_logger, now_iso

__version__ = "1.0.0"

__all__ = [
    "Listing",
    "Target",
    "CheckResult",
    "db_connect",
    "db_init",
    "get_db_connection",
    "db_get_listings",
    "db_replace_listings",
    "db_get_config",
    "db_set_config",
    "fingerprint",
    "process_check_result",
    "MonitorError",
    "AuthenticationError",
    "ContentNotFoundError",
    "TransportError",
    "CheckAlreadyRunning",
    "extract",
    "parse_listings",
    "EmailNotifier",
    "RealtimePublisher",
    "CheckOrchestrator",
    "parse_cron_to_ms",
    "SessionManager",
    "load_settings",
    "seed_defaults",
    "init_logger",
    "now_iso"
]
