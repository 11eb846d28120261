"""
Centralized exception handling and custom exceptions
"""

from typing import Any, Dict, Optional
from fastapi import HTTPException, status


class SocialBridgeException(Exception):
    """Base exception for SocialBridge application"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(SocialBridgeException):
    """Platform has no usable credentials or the app is misconfigured"""
    pass


class UnsupportedPlatformError(SocialBridgeException):
    """No adapter exists for the requested platform"""
    pass


class InvalidStateError(SocialBridgeException):
    """OAuth state token unknown or already consumed"""
    pass


class ExpiredStateError(SocialBridgeException):
    """OAuth state token outlived its session"""
    pass


class OAuthExchangeError(SocialBridgeException):
    """Provider rejected the authorization code or credentials"""
    pass


class RefreshFailedError(SocialBridgeException):
    """Token refresh rejected by the provider"""
    pass


class TokenRevokedError(SocialBridgeException):
    """Provider kept rejecting the token after a forced refresh"""
    pass


class RateLimitedError(SocialBridgeException):
    """Platform signalled a rate limit; retry on a later tick"""

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.retry_after = retry_after
        super().__init__(message, details)


class PlatformAPIError(SocialBridgeException):
    """Platform API answered with a non-success status"""

    def __init__(
        self,
        message: str,
        status_code: int,
        details: Optional[Dict[str, Any]] = None
    ):
        self.status_code = status_code
        super().__init__(message, details)

    @property
    def is_server_error(self) -> bool:
        return self.status_code >= 500


class PublishError(SocialBridgeException):
    """Publishing a single target failed"""
    pass


class TransientPublishError(PublishError):
    """Network, 5xx or rate-limit failure; eligible for retry"""
    pass


class PermanentPublishError(PublishError):
    """Content rejected or credentials revoked; target terminates"""
    pass


class SyncError(SocialBridgeException):
    """Analytics fetch failed for one account or post"""
    pass


class AccountNotFoundError(SocialBridgeException):
    """Platform account missing or outside the caller's site"""
    pass


class PostNotFoundError(SocialBridgeException):
    """Post missing or outside the caller's site"""
    pass


class DatabaseError(SocialBridgeException):
    """Database operation error"""
    pass


def create_http_exception(
    status_code: int,
    message: str,
    details: Optional[Dict[str, Any]] = None
) -> HTTPException:
    """Create standardized HTTP exception"""
    return HTTPException(
        status_code=status_code,
        detail={
            "error": message,
            "details": details or {},
            "status_code": status_code
        }
    )


def handle_platform_error(e: Exception, platform: str) -> HTTPException:
    """Handle platform-specific errors"""
    if isinstance(e, HTTPException):
        return e
    if isinstance(e, (ConfigurationError, UnsupportedPlatformError)):
        return create_http_exception(
            status.HTTP_400_BAD_REQUEST,
            f"Platform unavailable: {e.message}",
            {"platform": platform, **e.details}
        )
    elif isinstance(e, (InvalidStateError, ExpiredStateError, OAuthExchangeError)):
        return create_http_exception(
            status.HTTP_400_BAD_REQUEST,
            e.message,
            {"platform": platform, **e.details}
        )
    elif isinstance(e, (AccountNotFoundError, PostNotFoundError)):
        return create_http_exception(
            status.HTTP_404_NOT_FOUND,
            e.message,
            {"platform": platform}
        )
    elif isinstance(e, RateLimitedError):
        return create_http_exception(
            status.HTTP_429_TOO_MANY_REQUESTS,
            e.message,
            {"platform": platform, "retry_after": e.retry_after}
        )
    elif isinstance(e, (RefreshFailedError, TokenRevokedError)):
        return create_http_exception(
            status.HTTP_409_CONFLICT,
            f"Account must be reconnected: {e.message}",
            {"platform": platform}
        )
    elif isinstance(e, PlatformAPIError):
        return create_http_exception(
            status.HTTP_502_BAD_GATEWAY,
            f"{platform} API error: {e.message}",
            {"platform": platform, "upstream_status": e.status_code}
        )
    elif isinstance(e, ValueError):
        return create_http_exception(
            status.HTTP_400_BAD_REQUEST,
            f"Invalid {platform} request: {str(e)}",
            {"platform": platform}
        )
    else:
        return create_http_exception(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            f"Unexpected error with {platform} integration",
            {"platform": platform}
        )
