"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from scan_share.api.live import router as live_router
from scan_share.api.routes import router as api_router
from scan_share.api.schemas import AccessRequestOut
from scan_share.app_logging import configure_logging
from scan_share.containers import AppContainer
from scan_share.domain.errors import (
    AuthenticationError,
    InvalidStateError,
    NotFoundError,
    PartialFailure,
    ScanShareError,
    StaleSessionError,
    TransientIOError,
    ValidationError,
)

_STATUS_CODES: list[tuple[type[ScanShareError], int]] = [
    (ValidationError, status.HTTP_422_UNPROCESSABLE_CONTENT),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (StaleSessionError, status.HTTP_409_CONFLICT),
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (TransientIOError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging(container.settings.log_level)
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(api_router)
    app.include_router(live_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.exception_handler(PartialFailure)
    async def partial_failure(_request: Request, exc: PartialFailure) -> JSONResponse:
        logger.error("Partial failure: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={
                "detail": str(exc),
                "retry": "authorization",
                "request": AccessRequestOut.model_validate(exc.request).model_dump(
                    mode="json"
                ),
            },
        )

    @app.exception_handler(ScanShareError)
    async def scan_share_error(_request: Request, exc: ScanShareError) -> JSONResponse:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        for error_type, code in _STATUS_CODES:
            if isinstance(exc, error_type):
                status_code = code
                break
        if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            logger.error("Request failed: %s", exc)
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    return app
