import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

log = logging.getLogger(__name__)


class ResponseTimeMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        t0 = time.perf_counter()
        request.state.started_at = t0
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["x-response-time"] = f"{(time.perf_counter() - t0) * 1000.0:.2f}ms"
            return response
        finally:
            latency_ms = (time.perf_counter() - t0) * 1000.0
            log.debug("%s %s -> %s (%.1fms)", request.method, request.url.path, status_code, latency_ms)
