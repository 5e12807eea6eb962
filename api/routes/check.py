"""
Manual check trigger.
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from monitor.errors import CheckAlreadyRunning, error_code

from ..service import MonitorService, get_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["check"])


@router.post("/check")
async def trigger_check(service: MonitorService = Depends(get_service)):
    """Run a check now; 429 while another check is in flight."""
    try:
        results = await service.orchestrator.trigger()
    except CheckAlreadyRunning:
        return JSONResponse(status_code=429, content={"error": "Check already running"})
    except Exception as e:
        logger.error(f"Error during manual website check: {e}")
        return JSONResponse(
            status_code=500,
            content={"error": "Error checking website", "details": str(e), "code": error_code(e)},
        )
    return {"success": True, "results": results}
