"""
API route handlers for stored listings.
"""
import logging

import pandas as pd
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from monitor.database import db_clear_listings, db_get_listings, get_db_connection
from monitor.export import EXPORT_COLUMNS, listings_frame

from ..models import ListingOut, ListingsResponse
from ..service import MonitorService, get_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["listings"])


@router.get("/items", response_model=ListingsResponse)
async def get_items(service: MonitorService = Depends(get_service)):
    """All stored listings across targets, newest first."""
    try:
        with get_db_connection(service.db_path) as conn:
            listings = db_get_listings(conn)
        logger.debug(f"Retrieved {len(listings)} listings from database")
        return ListingsResponse(listings=[ListingOut(**l.to_dict()) for l in listings])
    except Exception as e:
        logger.error(f"Error fetching listings: {e}")
        raise HTTPException(status_code=500, detail="Error fetching listings")


@router.post("/reset")
async def reset_items(service: MonitorService = Depends(get_service)):
    """Delete every stored listing."""
    with get_db_connection(service.db_path) as conn:
        removed = db_clear_listings(conn)
    logger.info(f"Reset: removed {removed} listings")
    await service.publisher.listings_update([], service.orchestrator.next_check_deadline)
    return {"success": True, "removed": removed}


@router.get("/export/csv")
async def export_listings_csv(service: MonitorService = Depends(get_service)):
    """Export stored listings as CSV."""
    try:
        with get_db_connection(service.db_path) as conn:
            listings = db_get_listings(conn)

        if not listings:
            # Return empty CSV with headers
            df = pd.DataFrame(columns=EXPORT_COLUMNS)
        else:
            df = listings_frame(listings)

        csv_content = df.to_csv(index=False).encode("utf-8")

        return StreamingResponse(
            iter([csv_content]),
            media_type="text/csv",
            headers={"Content-Disposition": 'attachment; filename="sitemonitor_listings.csv"'}
        )

    except Exception as e:
        logger.error(f"Error exporting CSV: {e}")
        raise HTTPException(status_code=500, detail="Error generating CSV export")
