"""
Email notifications for newly detected listings.
"""
import asyncio
import logging
import smtplib
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import List, Optional, Tuple

from .errors import TransportError
from .models import Listing
from .settings import EmailSettings

logger = logging.getLogger(__name__)

SMTP_TIMEOUT_SECONDS = 30

# service name -> (host, port, implicit TLS)
SMTP_SERVICES = {
    "gmail": ("smtp.gmail.com", 465, True),
    "outlook": ("smtp-mail.outlook.com", 587, False),
    "hotmail": ("smtp-mail.outlook.com", 587, False),
    "office365": ("smtp.office365.com", 587, False),
    "yahoo": ("smtp.mail.yahoo.com", 465, True),
}


def resolve_transport(settings: EmailSettings) -> Tuple[str, int, bool]:
    """SMTP host, port and implicit-TLS flag for the configured service."""
    if settings.host:
        port = settings.port or 465
        ssl = port == 465 if settings.secure is None else bool(settings.secure)
        return settings.host, port, ssl

    service = SMTP_SERVICES.get(settings.service.lower())
    if service is None:
        raise TransportError(f"Unknown email service '{settings.service}' and no host configured")
    return service


def send_mail(settings: EmailSettings, to: str, subject: str, html: str) -> str:
    """
    Deliver one HTML message synchronously.

    Raises TransportError when the transport is not configured or the SMTP
    exchange fails. Returns the server's final reply.
    """
    if not settings.is_configured:
        raise TransportError("Email service not configured: missing credentials or from address")
    recipients = [r.strip() for r in (to or settings.to).split(",") if r.strip()]
    if not recipients:
        raise TransportError("No recipient configured")

    host, port, ssl = resolve_transport(settings)

    msg = MIMEMultipart()
    msg["From"] = settings.sender
    msg["To"] = ", ".join(recipients)
    msg["Subject"] = subject
    msg.attach(MIMEText(html, "html", "utf-8"))

    smtp_class = smtplib.SMTP_SSL if ssl else smtplib.SMTP
    try:
        with smtp_class(host, port, timeout=SMTP_TIMEOUT_SECONDS) as server:
            if not ssl:
                server.starttls()
            server.login(settings.user, settings.password)
            server.sendmail(settings.sender, recipients, msg.as_string())
            code, reply = server.noop()
    except Exception as e:
        # smtplib also raises UnicodeEncodeError for non-ASCII credentials
        raise TransportError(f"Failed to send email: {e}") from e

    logger.info(f"Email sent: {subject} ({len(recipients)} recipient(s))")
    return f"{code} {reply.decode('utf-8', 'replace') if isinstance(reply, bytes) else reply}"


def _item_card(item: Listing) -> str:
    title = escape(item.title)
    badge = escape(item.seller or item.title.split(" ")[0])
    if item.image_url:
        image = (
            f'<img src="{escape(item.image_url, quote=True)}" alt="{title}" '
            f'style="width: 120px; height: 120px; object-fit: cover; border-radius: 4px;">'
        )
    else:
        image = (
            '<div style="width: 120px; height: 120px; background: #ccc; border-radius: 4px; '
            'line-height: 120px; font-size: 2rem; color: #555; margin: 0 auto;">'
            f'{escape(item.title[:1])}</div>'
        )
    tags = "".join(
        '<span style="display: inline-block; background: #eee; color: #333; padding: 2px 8px; '
        f'border-radius: 12px; margin: 2px; font-size: 0.75rem;">{escape(attr)}</span>'
        for attr in item.attributes
    )
    meta = " &middot; ".join(escape(x) for x in (item.date, item.location) if x)
    link = (
        f'<a href="{escape(item.url, quote=True)}" style="color: #c96b60; font-weight: 600;">Bekijk advertentie</a>'
        if item.url else ""
    )
    return f"""
    <table role="presentation" width="100%" style="margin-bottom: 20px; border-collapse: collapse; box-shadow: 0 4px 12px rgba(0,0,0,0.15);">
      <tr>
        <td style="width: 220px; padding: 16px; background-color: #c96b60; color: #fff; text-align: center; vertical-align: top;">
          <div style="margin-bottom: 12px;"><span style="background-color: #b45b52; padding: 4px 8px; border-radius: 16px; font-weight: 600;">{badge}</span></div>
          <div style="margin-bottom: 12px;">{image}</div>
          <div><span style="background-color: #b45b52; padding: 4px 8px; border-radius: 16px; font-weight: 600;">{escape(item.price)}</span></div>
        </td>
        <td style="background: #fff; padding: 16px; vertical-align: top;">
          <h2 style="margin: 0 0 8px; font-size: 1.1rem; color: #333;">{title}</h2>
          <p style="margin: 0 0 8px; color: #555;">{escape(item.description)}</p>
          <p style="margin: 0 0 8px; color: #888; font-size: 0.85rem;">{meta}</p>
          <div style="margin-bottom: 8px;">{tags}</div>
          {link}
        </td>
      </tr>
    </table>"""


def render_new_items_html(items: List[Listing], target_url: str = "") -> str:
    """HTML body listing every new item as a card."""
    source = f" op {escape(target_url)}" if target_url else ""
    cards = "".join(_item_card(i) for i in items)
    return f"""
<div style="font-family: 'Abel', sans-serif; max-width: 800px; margin: 0 auto;">
  <h1 style="color: #333;">Nieuwe items gevonden</h1>
  <p style="color: #666;">De volgende nieuwe items werden gevonden{source}:</p>
  <div style="margin-top: 20px;">{cards}</div>
</div>"""


def render_test_html() -> str:
    return f"""
<h2>Test Email</h2>
<p>This is a test email from your website monitor service.</p>
<p>If you received this email, your email service is working correctly!</p>
<p>Time sent: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}</p>"""


class EmailNotifier:
    """Sends at most one email per detected change; failures are only logged."""

    def __init__(self, sender=send_mail):
        self._send = sender

    async def notify(
        self,
        new_items: List[Listing],
        target: str,
        settings: EmailSettings,
        target_url: str = ""
    ) -> bool:
        if not new_items:
            return False
        if not settings.enabled:
            logger.debug("Email notifications disabled, skipping")
            return False

        html = render_new_items_html(new_items, target_url)
        logger.info(f"Sending email notification for {len(new_items)} new items ({target})")
        try:
            await asyncio.to_thread(self._send, settings, settings.to, settings.subject, html)
            return True
        except Exception as e:
            logger.error(f"Error sending email for selector {target}: {e}")
            return False

    async def send(self, settings: EmailSettings, to: Optional[str], subject: str, html: str) -> str:
        """Send an arbitrary message; TransportError propagates to the caller."""
        return await asyncio.to_thread(self._send, settings, to or settings.to, subject, html)
