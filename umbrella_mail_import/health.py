"""Health check endpoints for the import worker."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.responses import JSONResponse

if TYPE_CHECKING:
    from .worker import ImportWorker


def create_health_app(worker: ImportWorker) -> FastAPI:
    """Create a FastAPI app with health and readiness probes."""
    app = FastAPI(title="email-import health", docs_url=None, redoc_url=None)

    @app.get("/health")
    async def health() -> JSONResponse:
        return JSONResponse({
            "service": "email-import",
            "imports_succeeded": worker.imports_succeeded,
            "imports_failed": worker.imports_failed,
            "requests_rejected": worker.requests_rejected,
            "attachment_downloads": worker.attachment_status().model_dump(),
        })

    @app.get("/ready")
    async def ready() -> JSONResponse:
        is_ready = worker.is_ready
        return JSONResponse(
            {"ready": is_ready},
            status_code=200 if is_ready else 503,
        )

    return app
