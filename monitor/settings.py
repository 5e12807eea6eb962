"""
Runtime settings stored in the key/value config table.

Sections are read at the start of every check so edits made through the API
apply on the next cycle. Missing sections are seeded once from the
environment.
"""
import logging
import os
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .database import db_get_config, db_set_config
from .models import Target

logger = logging.getLogger(__name__)

DEFAULT_SCHEDULE = "*/10 * * * *"
DEFAULT_SUBJECT = "SiteMonitor Notification"


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default) or default


def _parse_port(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring invalid email port: {value!r}")
        return None


@dataclass
class WebsiteSettings:
    """Login and target page configuration."""

    login_url: str = ""
    target_url: str = ""
    selectors: List[str] = field(default_factory=list)
    targets: List[Target] = field(default_factory=list)
    username_selector: str = ""
    password_selector: str = ""
    submit_selector: str = ""
    username: str = ""
    password: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "WebsiteSettings":
        data = data or {}
        selectors = data.get("selectors") or []
        if isinstance(selectors, str):
            selectors = [selectors]
        if not selectors and data.get("selector"):
            selectors = [data["selector"]]
        if not selectors and _env("CONTENT_SELECTOR"):
            selectors = [_env("CONTENT_SELECTOR")]

        targets = [
            Target(url=t["url"], selector=t["selector"], name=t.get("name"))
            for t in data.get("targets") or []
            if t.get("url") and t.get("selector")
        ]

        return cls(
            login_url=data.get("loginUrl") or _env("LOGIN_URL"),
            target_url=data.get("targetUrl") or _env("TARGET_URL"),
            selectors=[s for s in selectors if s],
            targets=targets,
            username_selector=data.get("usernameSelector") or _env("USERNAME_SELECTOR"),
            password_selector=data.get("passwordSelector") or _env("PASSWORD_SELECTOR"),
            submit_selector=data.get("submitSelector") or _env("SUBMIT_SELECTOR"),
            username=data.get("username") or _env("USERNAME"),
            password=data.get("password") or _env("PASSWORD"),
        )

    def active_targets(self) -> List[Target]:
        """Explicit targets, else the legacy (targetUrl, first selector) pair."""
        if self.targets:
            return list(self.targets)
        if self.target_url and self.selectors:
            return [Target(url=self.target_url, selector=self.selectors[0])]
        return []


@dataclass
class EmailSettings:
    """Notification transport configuration."""

    enabled: bool = False
    service: str = ""
    host: str = ""
    port: Optional[int] = None
    secure: Optional[bool] = None
    user: str = ""
    password: str = ""
    sender: str = ""
    to: str = ""
    subject: str = DEFAULT_SUBJECT
    api_key: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EmailSettings":
        data = data or {}
        auth = data.get("auth") or {}
        return cls(
            enabled=bool(data.get("enabled", False)),
            service=data.get("service") or "",
            host=data.get("host") or "",
            port=_parse_port(data.get("port")),
            secure=data.get("secure"),
            user=auth.get("user") or "",
            password=auth.get("pass") or "",
            sender=data.get("from") or auth.get("user") or "",
            to=data.get("to") or data.get("from") or "",
            subject=data.get("subject") or DEFAULT_SUBJECT,
            api_key=data.get("apiKey") or "",
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.user and self.password and self.sender)


@dataclass
class MonitorSettings:
    website: WebsiteSettings
    email: EmailSettings
    schedule: str = DEFAULT_SCHEDULE


def default_website() -> Dict[str, Any]:
    selector = _env("CONTENT_SELECTOR")
    return {
        "loginUrl": _env("LOGIN_URL"),
        "targetUrl": _env("TARGET_URL"),
        "selectors": [selector] if selector else [],
        "usernameSelector": _env("USERNAME_SELECTOR"),
        "passwordSelector": _env("PASSWORD_SELECTOR"),
        "submitSelector": _env("SUBMIT_SELECTOR"),
        "username": _env("USERNAME"),
        "password": _env("PASSWORD"),
    }


def default_email() -> Dict[str, Any]:
    user = _env("EMAIL_USER")
    sender = _env("EMAIL_FROM", user)
    return {
        "enabled": _env("EMAIL_ENABLED").lower() == "true",
        "service": _env("EMAIL_SERVICE", "gmail"),
        "host": _env("EMAIL_HOST"),
        "port": int(_env("EMAIL_PORT", "465")),
        "secure": _env("EMAIL_SECURE").lower() != "false",
        "auth": {"user": user, "pass": _env("EMAIL_PASS")},
        "from": sender,
        "to": _env("EMAIL_TO", sender),
        "subject": _env("EMAIL_SUBJECT", DEFAULT_SUBJECT),
        "apiKey": _env("EMAIL_SERVICE_API_KEY"),
    }


def seed_defaults(conn: sqlite3.Connection, default_schedule: str = DEFAULT_SCHEDULE):
    """Store env-derived sections that are missing. Existing ones are kept."""
    if db_get_config(conn, "website") is None:
        db_set_config(conn, "website", default_website())
        logger.info("Seeded website config from environment variables")
    if not db_get_config(conn, "schedule"):
        db_set_config(conn, "schedule", _env("SCHEDULE", default_schedule))
        logger.info("Seeded schedule config")
    if db_get_config(conn, "email") is None:
        db_set_config(conn, "email", default_email())
        logger.info("Seeded email config from environment variables")


def load_settings(conn: sqlite3.Connection, default_schedule: str = DEFAULT_SCHEDULE) -> MonitorSettings:
    """Current settings from the config table."""
    return MonitorSettings(
        website=WebsiteSettings.from_dict(db_get_config(conn, "website")),
        email=EmailSettings.from_dict(db_get_config(conn, "email")),
        schedule=db_get_config(conn, "schedule") or default_schedule,
    )
