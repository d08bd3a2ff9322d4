"""
EventNexus Autopilot - Main FastAPI Application
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from .routes import autonomous
from .. import __version__
from ..automation.operations import AutonomousOperations, build_operations
from ..core.config import AutopilotSettings
from ..core.exceptions import AutopilotException, exception_to_http_status
from ..monitoring.metrics import metrics

logger = logging.getLogger(__name__)

APP_TITLE = "EventNexus Autopilot API"
APP_DESCRIPTION = """
## Autonomous campaign optimization

* **Cycles** - evaluate active campaigns, pause losers, scale winners, cross-post strong creative
* **Rollback** - restore the state captured before any executed action
* **Opportunities** - review soft signals flagged for humans
* **Rules** - toggle the rules that drive the evaluator
"""


def create_app(
    operations: Optional[AutonomousOperations] = None,
    settings: Optional[AutopilotSettings] = None
) -> FastAPI:
    """Build the API around an operations facade (wired from settings if omitted)."""
    if operations is None:
        operations = build_operations(settings or AutopilotSettings.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {APP_TITLE} v{__version__}")
        await operations.orchestrator.locks.initialize()
        yield
        logger.info("Shutting down...")
        await operations.close()

    app = FastAPI(
        title=APP_TITLE,
        description=APP_DESCRIPTION,
        version=__version__,
        lifespan=lifespan
    )
    app.state.operations = operations

    @app.exception_handler(AutopilotException)
    async def autopilot_exception_handler(request: Request, exc: AutopilotException):
        status_code = exception_to_http_status(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected: {exc.message}")
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    app.include_router(autonomous.router, prefix="/api")

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "version": __version__,
            "cycle_running": operations.orchestrator.is_running,
        }

    @app.get("/metrics")
    async def prometheus_metrics():
        return Response(content=metrics.get_metrics(), media_type=metrics.get_content_type())

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        create_app(),
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000))
    )
