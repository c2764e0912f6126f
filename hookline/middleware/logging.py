"""
Request logging middleware.

Logs every API request with its duration, status and the API key that made it.
"""
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from hookline.logging_config import get_logger

logger = get_logger(component="http")


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Log each request once it completes.

    api_key_id is set on request.state by the get_api_key dependency, so it
    is only present for authenticated routes.
    """

    async def dispatch(self, request: Request, call_next):
        start_time = time.monotonic()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                api_key_id=getattr(request.state, "api_key_id", None),
                status_code=500,
                duration_ms=round((time.monotonic() - start_time) * 1000, 2),
                error=str(e)
            )
            raise

        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            api_key_id=getattr(request.state, "api_key_id", None),
            status_code=response.status_code,
            duration_ms=round((time.monotonic() - start_time) * 1000, 2)
        )

        return response
