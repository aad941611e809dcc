"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from game_cocreator.api.admin import router as admin_router
from game_cocreator.api.interactive import router as interactive_router
from game_cocreator.app_logging import configure_logging
from game_cocreator.containers import AppContainer
from game_cocreator.domain.errors import (
    CocreatorError,
    InvalidStateError,
    NotFoundError,
    ProviderFailure,
    ValidationError,
)

_ERROR_STATUS: dict[type[CocreatorError], int] = {
    NotFoundError: 404,
    InvalidStateError: 409,
    ValidationError: 422,
    ProviderFailure: 502,
}


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.container.store.start_cleanup(
            app.state.container.controller.sweep
        )
        yield
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(interactive_router)
    app.include_router(admin_router)

    @app.exception_handler(CocreatorError)
    async def handle_cocreator_error(
        request: Request, exc: CocreatorError
    ) -> JSONResponse:
        status_code = _error_status(exc)
        if status_code >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status_code,
            content={"error": type(exc).__name__, "detail": str(exc)},
        )

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    return app


def _error_status(exc: CocreatorError) -> int:
    for error_type, status_code in _ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return status_code
    return 500
