"""
Tests for the JSON log formatter.
"""

import json
import logging
import uuid

from aquabeacon.logging_config import JSONFormatter


def make_record(**extra):
    record = logging.LogRecord(
        name="aquabeacon.services.payment_service",
        level=logging.INFO,
        pathname=__file__,
        lineno=10,
        msg="Payment %s -> %s",
        args=("AQB-1", "completed"),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:

    def test_basic_fields(self):
        entry = json.loads(JSONFormatter().format(make_record()))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "aquabeacon.services.payment_service"
        assert entry["message"] == "Payment AQB-1 -> completed"
        assert "payment_id" not in entry

    def test_correlation_ids(self):
        payment_id = uuid.uuid4()
        entry = json.loads(
            JSONFormatter().format(make_record(payment_id=payment_id, checkout_request_id="ws_CO_1"))
        )

        assert entry["payment_id"] == str(payment_id)
        assert entry["checkout_request_id"] == "ws_CO_1"
