"""AOM FastAPI application entry point (uvicorn aom_core.main:app)."""
import logging
from typing import Optional

from fastapi import FastAPI

from .api.routes import health_router
from .api.routes import router as api_router
from .settings import Settings


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create the API for the given settings (default: from environment).

    Submitted jobs are tracked in memory on app.state.jobs and are lost on
    restart; the ledger itself lives in settings.db_path.
    """
    app = FastAPI(
        title="AOM API",
        version="0.1.0",
        description="Cost-to-visit reconciliation jobs and attribution ledger queries",
    )
    app.state.settings = settings or Settings.from_env()
    app.state.jobs = {}

    app.include_router(health_router)
    app.include_router(api_router)

    return app


app = create_app()
