"""
FastAPI application for the Spond integration.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from spond_sync import __version__
from spond_sync.api.spond_api import RemoteAuthFailure, SpondAPIError
from spond_sync.service import NotConfiguredError, SpondService
from spond_sync.sync.engine import SyncInProgressError
from spond_sync.sync.event import EventValidationError
from spond_sync.sync.exporter import EventNotLinkedError
from spond_sync.sync.links import LinkConflictError
from spond_sync.web import routes

logger = logging.getLogger(__name__)

# Most specific first; the first matching class decides the status
ERROR_STATUS: list[tuple[type[Exception], int]] = [
    (NotConfiguredError, 400),
    (RemoteAuthFailure, 401),
    (SyncInProgressError, 409),
    (LinkConflictError, 409),
    (LookupError, 404),
    (EventNotLinkedError, 400),
    (EventValidationError, 400),
    (ValueError, 400),
    (SpondAPIError, 502),
]


def status_for(exc: Exception) -> int:
    for error_class, status_code in ERROR_STATUS:
        if isinstance(exc, error_class):
            return status_code
    return 500


async def _handle_error(request: Request, exc: Exception) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {status_code}: {exc}")
    return JSONResponse(
        status_code=status_code, content={"success": False, "error": str(exc)}
    )


def create_app(service: SpondService) -> FastAPI:
    """
    Build the HTTP application around a service.

    Usage:
        app = create_app(SpondService(AppSettings.load()))
        uvicorn.run(app, host="127.0.0.1", port=8000)
    """
    app = FastAPI(
        title="Spond Sync API",
        description="Two-way event sync between the club database and Spond",
        version=__version__,
    )
    app.state.service = service

    for error_class, _ in ERROR_STATUS:
        app.add_exception_handler(error_class, _handle_error)

    app.include_router(routes.router)

    @app.get("/health")
    def health() -> dict:
        """Unauthenticated liveness check."""
        return {"status": "healthy", "version": __version__}

    return app
