"""HTTP API: reprocessing jobs and ledger window queries."""
from .auth import get_settings, require_api_key
from .routes import health_router, router

__all__ = ["get_settings", "health_router", "require_api_key", "router"]
