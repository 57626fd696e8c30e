"""Global exception handlers for FastAPI."""

import logging

import pydantic
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from clients.object_store_client import ObjectStoreError
from clients.rate_client import RateServiceError
from core.exceptions import BillingError

logger = logging.getLogger(__name__)


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_response(code, message).model_dump(mode="json"),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(BillingError)
    async def billing_error_handler(request: Request, exc: BillingError):
        if exc.status_code >= 500:
            logger.error(f"{exc.code}: {exc}")
        return _error(exc.status_code, exc.code, str(exc))

    @app.exception_handler(RateServiceError)
    async def rate_service_error_handler(request: Request, exc: RateServiceError):
        logger.warning(f"Rate service failure: {exc}")
        return _error(502, ErrorCodes.UPSTREAM_ERROR, str(exc))

    @app.exception_handler(ObjectStoreError)
    async def object_store_error_handler(request: Request, exc: ObjectStoreError):
        logger.error(f"Object store failure: {exc}")
        return _error(502, ErrorCodes.UPSTREAM_ERROR, str(exc))

    # Action payloads are validated by the handlers, after routing
    @app.exception_handler(pydantic.ValidationError)
    async def payload_validation_error_handler(request: Request, exc: pydantic.ValidationError):
        return _error(422, ErrorCodes.VALIDATION_ERROR, str(exc.errors(include_url=False)))

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        message = str(exc)
        if "not found" in message.lower():
            return _error(404, ErrorCodes.NOT_FOUND, message)
        return _error(400, ErrorCodes.INVALID_REQUEST, message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _error(422, ErrorCodes.VALIDATION_ERROR, str(exc.errors()))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return _error(500, ErrorCodes.INTERNAL_ERROR, "An internal error occurred")
