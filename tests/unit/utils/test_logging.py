"""
Log redaction and worker log context
"""

import logging

from utils.logging import SiteContextFilter
from utils.structured_logging import REDACTED, redact, site_id_var


class TestRedaction:
    def test_credential_keys_are_redacted(self):
        cleaned = redact({
            "account_id": "a-1",
            "access_token": "secret-value",
            "response": {"refresh_token": "r", "status": 200},
            "code_verifier": "v",
        })

        assert cleaned == {
            "account_id": "a-1",
            "access_token": REDACTED,
            "response": {"refresh_token": REDACTED, "status": 200},
            "code_verifier": REDACTED,
        }


class TestSiteContextFilter:
    def test_record_carries_current_site(self):
        record = logging.LogRecord("worker", logging.INFO, __file__, 1, "synced", None, None)
        token = site_id_var.set("site-42")
        try:
            assert SiteContextFilter().filter(record)
        finally:
            site_id_var.reset(token)

        assert record.site_id == "site-42"

    def test_record_without_site(self):
        record = logging.LogRecord("worker", logging.INFO, __file__, 1, "tick", None, None)

        SiteContextFilter().filter(record)

        assert record.site_id == "-"
