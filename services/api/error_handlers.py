"""Global exception handlers for the gateway API.

- PaygateError: structured JSON with its code and HTTP status
- RequestValidationError: 400 with field-level details
- Exception: 500 that never leaks internal details
"""

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from services.shared.errors import PaygateError

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    """Register all global error handlers on the FastAPI app."""

    @app.exception_handler(PaygateError)
    async def paygate_error_handler(request: Request, exc: PaygateError) -> JSONResponse:
        log = logger.error if exc.http_status >= 500 else logger.info
        log(f"{exc.code} on {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.http_status, content=exc.to_response())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.info(f"Validation error on {request.url.path}: {exc.errors()}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_build_validation_error_response(exc),
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "ok": False,
                "error": {
                    "code": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                    "category": "internal",
                },
            },
        )


def _build_validation_error_response(exc: RequestValidationError) -> dict[str, Any]:
    return {
        "ok": False,
        "error": {
            "code": "INVALID_INPUT",
            "message": "Invalid request data",
            "category": "validation",
            "details": [
                {
                    "field": ".".join(str(loc) for loc in e["loc"]),
                    "message": e["msg"],
                    "type": e["type"],
                }
                for e in exc.errors()
            ],
        },
    }
