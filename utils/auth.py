"""
Authentication utilities for bearer JWTs issued by the dashboard
"""

import jwt
from dataclasses import dataclass
from typing import Optional
from fastapi import HTTPException, status, Depends, Header
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from utils.config import get_config
from utils.structured_logging import set_request_context, request_id_var


security = HTTPBearer()


@dataclass
class CurrentUser:
    """Caller identity; every account and post query is scoped to site_id"""
    user_id: str
    site_id: str
    tenant_id: Optional[str] = None


def verify_token(token: str) -> dict:
    """Verify dashboard JWT token"""
    try:
        return jwt.decode(
            token,
            get_config().jwt_secret_key,
            algorithms=["HS256"],
            options={"require": ["sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired"
        )
    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token"
        )


def issue_token(user_id: str, site_id: str, tenant_id: Optional[str] = None) -> str:
    """Mint a token for scripts and tests"""
    payload = {"sub": user_id, "site_id": site_id}
    if tenant_id:
        payload["tenant_id"] = tenant_id
    return jwt.encode(payload, get_config().jwt_secret_key, algorithm="HS256")


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CurrentUser:
    """Get current authenticated user"""

    payload = verify_token(credentials.credentials)
    user_id = payload.get("sub")
    site_id = payload.get("site_id")

    if not user_id or not site_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload"
        )

    set_request_context(request_id_var.get() or "", site_id=site_id, user_id=user_id)
    return CurrentUser(user_id=user_id, site_id=site_id, tenant_id=payload.get("tenant_id"))


async def verify_cron_secret(x_cron_secret: Optional[str] = Header(None)) -> None:
    """Guard for externally triggered scheduler endpoints"""
    expected = get_config().cron_secret
    if not expected or x_cron_secret != expected:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid cron secret"
        )
