"""
Route package initialization.
"""
from .check import router as check_router
from .config import router as config_router
from .email import router as email_router
from .listings import router as listings_router
from .proxy import router as proxy_router
from .realtime import router as realtime_router

__all__ = [
    "check_router",
    "config_router",
    "email_router",
    "listings_router",
    "proxy_router",
    "realtime_router",
]
