"""
Dashboard bearer tokens and the cron secret
"""

import jwt
import pytest
from fastapi import HTTPException

from conftest import CRON_SECRET, SITE_ID, USER_ID
from utils.auth import issue_token, verify_cron_secret, verify_token


class TestTokens:
    def test_issued_token_verifies(self):
        payload = verify_token(issue_token(USER_ID, SITE_ID, tenant_id="tenant-9"))

        assert payload["sub"] == USER_ID
        assert payload["site_id"] == SITE_ID
        assert payload["tenant_id"] == "tenant-9"

    def test_foreign_signature_rejected(self):
        token = jwt.encode({"sub": USER_ID, "site_id": SITE_ID}, "another-secret-of-enough-length!", algorithm="HS256")

        with pytest.raises(HTTPException) as exc_info:
            verify_token(token)

        assert exc_info.value.status_code == 401

    def test_subject_is_required(self):
        token = jwt.encode({"site_id": SITE_ID}, "test-jwt-secret-32-chars-long-456", algorithm="HS256")

        with pytest.raises(HTTPException):
            verify_token(token)


class TestCronSecret:
    async def test_matching_secret(self):
        assert await verify_cron_secret(CRON_SECRET) is None

    async def test_missing_secret(self):
        with pytest.raises(HTTPException) as exc_info:
            await verify_cron_secret(None)

        assert exc_info.value.status_code == 401
