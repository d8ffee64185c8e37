import time
import logging
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from typing import Callable
import psutil

from ..core.cache import cache

perf_logger = logging.getLogger("performance")

SLOW_REQUESTS_KEY = "slow_requests"
SLOW_REQUESTS_KEPT = 100


class PerformanceMiddleware(BaseHTTPMiddleware):
    """Request timing, request ids and slow-request tracking"""

    def __init__(self, app, slow_request_threshold: float = 1.0):
        super().__init__(app)
        self.slow_request_threshold = slow_request_threshold
        self.request_count = 0

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        process = psutil.Process()
        memory_before = process.memory_info().rss

        self.request_count += 1
        request_id = f"req_{self.request_count}_{int(start_time)}"
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            perf_logger.error(
                f"Request error: {request.method} {request.url.path} - "
                f"Error: {str(e)} - Time: {process_time:.3f}s"
            )
            return JSONResponse(
                status_code=500,
                content={
                    "error": "Internal server error",
                    "message": "An unexpected error occurred. Please try again later.",
                    "request_id": request_id,
                }
            )

        process_time = time.time() - start_time
        memory_delta = process.memory_info().rss - memory_before

        response.headers["X-Process-Time"] = str(process_time)
        response.headers["X-Request-ID"] = request_id

        if process_time > self.slow_request_threshold:
            perf_logger.warning(
                f"Slow request: {request.method} {request.url.path} "
                f"took {process_time:.3f}s (threshold: {self.slow_request_threshold}s)"
            )
            await self._store_slow_request({
                'request_id': request_id,
                'method': request.method,
                'path': request.url.path,
                'status_code': response.status_code,
                'response_time': round(process_time, 3),
                'timestamp': start_time,
            })

        perf_logger.info(
            f"{request.method} {request.url.path} - "
            f"{response.status_code} - {process_time:.3f}s - "
            f"Memory: {memory_delta/1024/1024:.1f}MB"
        )
        return response

    async def _store_slow_request(self, metrics: dict):
        slow_requests = await cache.aget(SLOW_REQUESTS_KEY) or []
        slow_requests.append(metrics)
        await cache.aset(SLOW_REQUESTS_KEY, slow_requests[-SLOW_REQUESTS_KEPT:], ttl=3600)
