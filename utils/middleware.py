"""
Custom middleware for request logging and metrics
"""

import time
import uuid
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from utils.metrics_collector import metrics
from utils.structured_logging import get_structured_logger, set_request_context


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging API requests and responses"""

    def __init__(self, app):
        super().__init__(app)
        self.logger = get_structured_logger("api")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Generate request ID
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        set_request_context(request_id)

        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        # Query strings are omitted; OAuth callbacks carry codes there
        self.logger.info(
            "API request",
            method=request.method,
            endpoint=request.url.path,
            status_code=response.status_code,
            response_time_ms=int(duration * 1000),
        )
        metrics.track_request(
            method=request.method,
            endpoint=request.url.path,
            status_code=response.status_code,
            duration=duration,
        )

        response.headers["X-Request-ID"] = request_id
        return response
