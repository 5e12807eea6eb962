"""
Email endpoints sharing the notifier's transport.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse

from monitor.database import db_get_config, get_db_connection
from monitor.errors import TransportError
from monitor.notifier import render_test_html
from monitor.settings import EmailSettings

from ..models import EmailTestRequest, SendEmailRequest
from ..service import MonitorService, get_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["email"])

TEST_SUBJECT = "Test Email from Website Monitor"


def _email_settings(service: MonitorService) -> EmailSettings:
    with get_db_connection(service.db_path) as conn:
        return EmailSettings.from_dict(db_get_config(conn, "email"))


def _rejection(settings: EmailSettings, api_key: Optional[str]) -> Optional[JSONResponse]:
    """Error response for a bad key or an unconfigured transport, else None."""
    if (api_key or "") != settings.api_key:
        logger.error("Invalid API key provided")
        return JSONResponse(status_code=401, content={"error": "Invalid API key"})
    if not settings.is_configured:
        logger.error("Email configuration (auth/from) is missing")
        return JSONResponse(
            status_code=500,
            content={"error": "Email service not configured", "details": "Missing credentials or from address"},
        )
    return None


@router.post("/test-email")
async def test_email(
    body: Optional[EmailTestRequest] = None,
    x_api_key: Optional[str] = Header(default=None),
    service: MonitorService = Depends(get_service),
):
    settings = _email_settings(service)
    rejected = _rejection(settings, x_api_key)
    if rejected is not None:
        return rejected

    to = body.to if body else None
    try:
        info = await service.notifier.send(settings, to, TEST_SUBJECT, render_test_html())
    except TransportError as e:
        logger.error(f"Error sending test email: {e}")
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to send test email", "details": str(e), "code": e.code},
        )
    return {"success": True, "message": "Test email sent successfully", "info": info}


@router.post("/send-email")
async def send_email(
    body: SendEmailRequest,
    x_api_key: Optional[str] = Header(default=None),
    service: MonitorService = Depends(get_service),
):
    settings = _email_settings(service)
    rejected = _rejection(settings, x_api_key)
    if rejected is not None:
        return rejected

    try:
        info = await service.notifier.send(settings, body.to, body.subject, body.content)
    except TransportError as e:
        logger.error(f"Error sending email: {e}")
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to send email", "details": str(e), "code": e.code},
        )
    return {"success": True, "message": "Email sent successfully", "info": info}
