"""
API route handlers for the configuration sections.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException

from monitor.database import db_get_all_config, db_set_config, get_db_connection

from ..models import ConfigOut, ConfigUpdate
from ..service import MonitorService, get_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["config"])


@router.get("/config", response_model=ConfigOut)
async def get_config(service: MonitorService = Depends(get_service)):
    try:
        with get_db_connection(service.db_path) as conn:
            stored = db_get_all_config(conn)
    except Exception as e:
        logger.error(f"Error fetching configuration: {e}")
        raise HTTPException(status_code=500, detail="Error fetching configuration")

    return ConfigOut(
        website=stored.get("website") or {},
        schedule=stored.get("schedule"),
        email=stored.get("email") or {},
        theme=stored.get("theme"),
    )


@router.post("/config")
async def update_config(update: ConfigUpdate, service: MonitorService = Depends(get_service)):
    """
    Persist every provided section.

    A new schedule re-anchors the next-check deadline; new website settings
    force a fresh login on the next check.
    """
    with get_db_connection(service.db_path) as conn:
        if update.website:
            db_set_config(conn, "website", update.website)
            logger.info("Updated website config")
        if update.schedule:
            db_set_config(conn, "schedule", update.schedule)
            logger.info("Updated schedule config")
        if update.email:
            db_set_config(conn, "email", update.email)
            logger.info("Updated email config")
        if update.theme:
            db_set_config(conn, "theme", update.theme)
            logger.info("Updated theme config")

    if update.website:
        service.session.invalidate()
    if update.schedule:
        await service.orchestrator.apply_schedule(update.schedule)

    return {"success": True, "message": "Configuration updated successfully"}
