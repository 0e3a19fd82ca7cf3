# API module exports
from app.api import health, time
from app.api.base import api_router

__all__ = ["health", "time", "api_router"]
