import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from storefront.core import config

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

logger = logging.getLogger("storefront.requests")


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(level=(level or config.LOG_LEVEL).upper(), format=LOG_FORMAT)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status and latency for every request."""

    async def dispatch(self, request: Request, call_next) -> Response:
        start_time = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            latency_ms = round((time.perf_counter() - start_time) * 1000, 2)
            logger.info(
                "%s %s -> %s (%sms)",
                request.method,
                request.url.path,
                status_code,
                latency_ms,
            )
