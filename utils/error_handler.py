"""
Global error handler middleware
"""

import sentry_sdk
from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from datetime import datetime, timezone

from utils.exceptions import (
    SocialBridgeException,
    ConfigurationError,
    UnsupportedPlatformError,
    InvalidStateError,
    ExpiredStateError,
    OAuthExchangeError,
    RefreshFailedError,
    TokenRevokedError,
    RateLimitedError,
    PlatformAPIError,
    AccountNotFoundError,
    PostNotFoundError,
    DatabaseError,
)
from utils.logging import get_logger
from utils.metrics_collector import metrics

logger = get_logger(__name__)


def classify_exception(exc: Exception):
    """Map an exception to (status_code, public message)"""
    if isinstance(exc, UnsupportedPlatformError):
        return 404, exc.message
    if isinstance(exc, ConfigurationError):
        return 400, f"Configuration error: {exc.message}"
    if isinstance(exc, (InvalidStateError, ExpiredStateError, OAuthExchangeError)):
        return 400, exc.message
    if isinstance(exc, (AccountNotFoundError, PostNotFoundError)):
        return 404, exc.message
    if isinstance(exc, RateLimitedError):
        return 429, exc.message
    if isinstance(exc, (RefreshFailedError, TokenRevokedError)):
        return 409, f"Account must be reconnected: {exc.message}"
    if isinstance(exc, PlatformAPIError):
        return 502, f"Platform API error: {exc.message}"
    if isinstance(exc, DatabaseError):
        return 500, "Database error occurred"
    if isinstance(exc, SocialBridgeException):
        return 400, exc.message
    return 500, "Internal server error"


class GlobalExceptionHandler(BaseHTTPMiddleware):
    """Global exception handling middleware with Sentry integration"""

    async def dispatch(self, request: Request, call_next):
        try:
            response = await call_next(request)
            return response
        except HTTPException:
            # Re-raise HTTP exceptions as-is
            raise
        except Exception as e:
            return await self._handle_exception(request, e)

    async def _handle_exception(self, request: Request, exc: Exception) -> JSONResponse:
        """Handle and log exceptions with Sentry integration"""
        request_id = getattr(request.state, "request_id", "unknown")
        status_code, message = classify_exception(exc)

        if status_code >= 500:
            with sentry_sdk.new_scope() as scope:
                scope.set_tag("request_id", request_id)
                scope.set_context("request", {
                    "method": request.method,
                    "path": request.url.path,
                })
                sentry_sdk.capture_exception(exc)
            logger.exception(
                f"Unhandled exception in {request.method} {request.url.path}",
                extra={"request_id": request_id, "exception_type": type(exc).__name__}
            )
        else:
            logger.warning(
                f"{type(exc).__name__} in {request.method} {request.url.path}: {exc}"
            )

        metrics.track_request(
            method=request.method,
            endpoint=request.url.path,
            status_code=status_code,
            duration=0  # Duration not available in error case
        )

        details = {"request_id": request_id}
        if isinstance(exc, SocialBridgeException):
            details.update(exc.details)
        if isinstance(exc, RateLimitedError) and exc.retry_after is not None:
            details["retry_after"] = exc.retry_after
        return self._create_error_response(status_code, message, details)

    def _create_error_response(
        self,
        status_code: int,
        message: str,
        details: dict
    ) -> JSONResponse:
        """Create standardized error response"""
        return JSONResponse(
            status_code=status_code,
            content={
                "error": message,
                "details": details,
                "status_code": status_code,
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        )
