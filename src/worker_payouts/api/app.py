"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from worker_payouts import __version__
from worker_payouts.api.routes import health_router, worker_payments_router
from worker_payouts.container import Services, build_services_from_settings
from worker_payouts.errors import (
    DuplicateError,
    InsufficientBalanceError,
    InvalidStateError,
    NotFoundError,
    PayoutError,
    ProviderError,
    ValidationError,
)
from worker_payouts.services.state_machine import InvalidTransitionError

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[PayoutError], int] = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    DuplicateError: status.HTTP_409_CONFLICT,
    InvalidStateError: status.HTTP_409_CONFLICT,
    InsufficientBalanceError: 422,
    ProviderError: status.HTTP_502_BAD_GATEWAY,
}


def _error_body(message: str, code: str) -> dict[str, object]:
    return {"success": False, "message": message, "code": code}


def create_app(services: Services | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        services: Pre-built service graph. Built from the environment at
            startup when omitted.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        app.state.services = services or build_services_from_settings()
        app.state.services.start()
        yield
        app.state.services.close()

    app = FastAPI(
        title="Worker Payouts API",
        description="Worker payment creation, payouts and earnings",
        version=__version__,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(PayoutError)
    async def payout_error_handler(request: Request, exc: PayoutError) -> JSONResponse:
        """Map domain errors to HTTP status codes."""
        status_code = next(
            (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
            status.HTTP_400_BAD_REQUEST,
        )
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=status_code, content=_error_body(exc.message, exc.code))

    @app.exception_handler(InvalidTransitionError)
    async def transition_error_handler(
        request: Request, exc: InvalidTransitionError
    ) -> JSONResponse:
        """Status changes not allowed by the payment lifecycle."""
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=_error_body(str(exc), "INVALID_STATE"),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Malformed request bodies and parameters."""
        errors = exc.errors()
        message = "; ".join(
            f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}"
            for err in errors
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_error_body(message or "Invalid request", "VALIDATION_ERROR"),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body("An unexpected error occurred", "INTERNAL_ERROR"),
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(worker_payments_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
