"""
Structured Logging Test Suite
"""

import json
import logging
import unittest

from withdrawauth.logging_config import (
    AuditLogger,
    StructuredFormatter,
    get_attempt_id,
    set_attempt_id,
)


class TestAttemptId(unittest.TestCase):

    def test_generated(self):
        attempt_id = set_attempt_id()
        self.assertTrue(attempt_id)
        self.assertEqual(get_attempt_id(), attempt_id)

    def test_explicit(self):
        set_attempt_id("attempt-1")
        self.assertEqual(get_attempt_id(), "attempt-1")


class TestStructuredFormatter(unittest.TestCase):

    def test_json_output(self):
        set_attempt_id("attempt-2")
        record = logging.LogRecord("withdrawauth.test", logging.INFO, __file__, 10, "hello %s", ("world",), None)
        record.extra_fields = {"signature": "abc"}

        data = json.loads(StructuredFormatter().format(record))

        self.assertEqual(data["message"], "hello world")
        self.assertEqual(data["level"], "INFO")
        self.assertEqual(data["attempt_id"], "attempt-2")
        self.assertEqual(data["signature"], "abc")


class TestAuditLogger(unittest.TestCase):

    def setUp(self):
        self.audit = AuditLogger("withdrawauth.audit.test")

    def test_event_fields(self):
        set_attempt_id("attempt-3")
        with self.assertLogs("withdrawauth.audit.test", level="INFO") as cm:
            self.audit.approval_checked("record-address", already_approved=True)

        fields = cm.records[0].extra_fields
        self.assertEqual(fields["event_type"], "APPROVAL_CHECKED")
        self.assertEqual(fields["attempt_id"], "attempt-3")
        self.assertTrue(fields["already_approved"])

    def test_failure_is_error_level(self):
        with self.assertLogs("withdrawauth.audit.test", level="INFO") as cm:
            self.audit.withdrawal_failed("CUSTODY_APPROVAL_CHECKED", RuntimeError("boom"))

        record = cm.records[0]
        self.assertEqual(record.levelno, logging.ERROR)
        self.assertEqual(record.extra_fields["error_type"], "RuntimeError")

    def test_duplicate_is_warning(self):
        with self.assertLogs("withdrawauth.audit.test", level="INFO") as cm:
            self.audit.duplicate_approval("record-address", "SignatureAlreadySubmitted")
        self.assertEqual(cm.records[0].levelno, logging.WARNING)


if __name__ == "__main__":
    unittest.main()
