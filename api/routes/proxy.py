"""
Image relay so the dashboard can show listing thumbnails from the monitored site.
"""
import asyncio
import logging
from typing import Optional

import requests
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["proxy"])

IMAGE_TIMEOUT_SECONDS = 30
CHUNK_SIZE = 64 * 1024
CACHE_CONTROL = "public, max-age=31536000"
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


def fetch_image(url: str, referer: str = "") -> requests.Response:
    resp = requests.get(
        url,
        headers={
            "User-Agent": USER_AGENT,
            "Accept": "image/webp,image/apng,image/*,*/*;q=0.8",
            "Referer": referer,
        },
        timeout=IMAGE_TIMEOUT_SECONDS,
        stream=True,
    )
    try:
        resp.raise_for_status()
    except requests.HTTPError:
        resp.close()
        raise
    return resp


def iter_body(resp: requests.Response):
    """Yield the upstream body in chunks, releasing the connection at the end."""
    try:
        yield from resp.iter_content(chunk_size=CHUNK_SIZE)
    finally:
        resp.close()


@router.get("/proxy-image")
async def proxy_image(request: Request, url: Optional[str] = None):
    if not url:
        return JSONResponse(status_code=400, content={"error": "URL is required"})

    try:
        resp = await asyncio.to_thread(fetch_image, url, request.headers.get("referer", ""))
    except requests.RequestException as e:
        logger.error(f"Image proxy error: {e}")
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})

    return StreamingResponse(
        iter_body(resp),
        media_type=resp.headers.get("content-type") or "image/jpeg",
        headers={"Cache-Control": CACHE_CONTROL},
    )
