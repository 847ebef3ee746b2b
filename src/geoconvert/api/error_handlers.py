"""
Exception handlers that render every API failure as an ``ErrorResponse``.
"""

import logging
import traceback
from typing import Optional, Union

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from geoconvert.core.config import settings
from geoconvert.core.errors import GeoConvertException
from geoconvert.models.errors import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)


def get_request_id(request: Request) -> Optional[str]:
    """Request id set by the correlation middleware, if any."""
    return getattr(request.state, "request_id", None)


async def geoconvert_exception_handler(
    request: Request, exc: GeoConvertException
) -> JSONResponse:
    """Our own exceptions keep their status code, details and suggestions."""
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        level,
        f"{type(exc).__name__} on {request.url.path}: {exc.message}",
        extra={"error_code": exc.error_code, "status_code": exc.status_code},
    )
    body = ErrorResponse.from_exception(exc, request_id=get_request_id(request))
    return JSONResponse(status_code=exc.status_code, content=body.to_content())


async def validation_error_handler(
    request: Request, exc: Union[RequestValidationError, PydanticValidationError]
) -> JSONResponse:
    """
    Request body and options validation failures.

    Both FastAPI's request validation and pydantic errors raised while
    building ``ConversionOptions`` end up here as a 422.
    """
    errors = []
    for error in exc.errors():
        # Drop the "body" prefix FastAPI puts on request body locations
        location = [str(part) for part in error.get("loc", ()) if part != "body"]
        errors.append(
            ErrorDetail(
                field=".".join(location) or None,
                message=error.get("msg", "Invalid value"),
                code=error.get("type"),
            )
        )

    logger.warning(f"Rejected {request.url.path}: {len(errors)} invalid field(s)")
    body = ErrorResponse(
        error_code="VALIDATION_ERROR",
        message="Request validation failed",
        request_id=get_request_id(request),
        suggestions=["Check the request format and field values"],
        errors=errors,
    )
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=body.to_content())


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything unexpected becomes a 500; internals are shown in development only."""
    logger.error(f"Unhandled {type(exc).__name__} on {request.url.path}: {exc}", exc_info=exc)

    details = None
    if settings.environment == "development":
        details = {
            "exception_type": type(exc).__name__,
            "exception_message": str(exc),
            "traceback": "".join(traceback.format_exception(exc)),
        }

    body = ErrorResponse(
        error_code="INTERNAL_ERROR",
        message="An unexpected error occurred",
        details=details,
        request_id=get_request_id(request),
        suggestions=["Try again later"],
    )
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body.to_content())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(GeoConvertException, geoconvert_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(PydanticValidationError, validation_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
