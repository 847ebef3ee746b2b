"""
Request correlation for the conversion API.
"""

import logging
import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from geoconvert.core.logging_config import LogContext

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

CallNext = Callable[[Request], Awaitable[Response]]


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


class RequestCorrelationMiddleware(BaseHTTPMiddleware):
    """
    Tag each request with an id and echo it back in ``X-Request-ID``.

    A client-supplied id is reused as is. Every record logged while the
    request runs carries ``request_id``, ``http_method`` and ``request_path``.
    """

    def __init__(self, app: ASGIApp, header_name: str = REQUEST_ID_HEADER):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        request_id = request.headers.get(self.header_name) or uuid.uuid4().hex
        request.state.request_id = request_id
        route = f"{request.method} {request.url.path}"

        with LogContext(
            request_id=request_id,
            http_method=request.method,
            request_path=request.url.path,
        ):
            logger.debug(f"-> {route}")
            started = time.perf_counter()
            try:
                response = await call_next(request)
            except Exception as e:
                logger.error(
                    f"{route} raised {type(e).__name__} after {_elapsed_ms(started):.1f}ms",
                    exc_info=True,
                )
                raise

            response.headers[self.header_name] = request_id
            level = logging.WARNING if response.status_code >= 500 else logging.INFO
            logger.log(
                level,
                f"{route} -> {response.status_code} in {_elapsed_ms(started):.1f}ms",
                extra={"status_code": response.status_code},
            )
            return response
