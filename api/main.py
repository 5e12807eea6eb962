"""
Site Monitor API - main application.

Serves the dashboard API, the realtime channel and runs the check scheduler
in the same event loop.
"""
import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from monitor.database import get_db_connection

from .config import config
from .routes import (
    check_router,
    config_router,
    email_router,
    listings_router,
    proxy_router,
    realtime_router,
)
from .service import MonitorService

# Configure logging
_handlers = [logging.StreamHandler(sys.stdout)]
if config.LOG_FILE:
    _handlers.append(logging.FileHandler(config.LOG_FILE))
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=_handlers
)

logger = logging.getLogger(__name__)


def build_service() -> MonitorService:
    return MonitorService(
        db_path=config.DB_PATH,
        headless=config.HEADLESS,
        default_schedule=config.DEFAULT_SCHEDULE,
        screenshot_dir=config.screenshot_dir(),
    )


def create_app(service: Optional[MonitorService] = None, scheduler_enabled: Optional[bool] = None) -> FastAPI:
    """Build the application around ``service`` (a fresh one by default)."""
    run_scheduler = config.SCHEDULER_ENABLED if scheduler_enabled is None else scheduler_enabled

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan management."""
        # Startup
        logger.info("Starting Site Monitor API...")
        svc: MonitorService = app.state.service
        try:
            config.validate()
            svc.startup()
            if run_scheduler:
                svc.orchestrator.start(config.SCHEDULER_TICK_SECONDS)
            logger.info("API startup complete")
            yield
        except Exception as e:
            logger.error(f"Startup failed: {e}")
            raise
        finally:
            # Shutdown
            logger.info("Shutting down Site Monitor API...")
            await svc.shutdown()

    app = FastAPI(
        title=config.API_TITLE,
        version=config.API_VERSION,
        description=config.API_DESCRIPTION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.service = service or build_service()

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=config.CORS_ALLOW_CREDENTIALS,
        allow_methods=config.CORS_ALLOW_METHODS,
        allow_headers=config.CORS_ALLOW_HEADERS,
    )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler for unhandled errors."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"}
        )

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        try:
            with get_db_connection(app.state.service.db_path) as conn:
                conn.execute("SELECT 1").fetchone()
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            raise HTTPException(status_code=503, detail="Service unavailable")
        return {"status": "ok", "version": config.API_VERSION, "database": "connected"}

    # Include routers
    app.include_router(listings_router)
    app.include_router(config_router)
    app.include_router(check_router)
    app.include_router(email_router)
    app.include_router(proxy_router)
    app.include_router(realtime_router)

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=3000,
        log_level=config.LOG_LEVEL.lower()
    )
