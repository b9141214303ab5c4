import json
import logging

from app.core.logging import REDACTED, JsonFormatter, RequestContextFilter


def _record(**extra) -> logging.LogRecord:
    record = logging.makeLogRecord({"name": "app.services.payments", "levelname": "INFO", "msg": "Payment initiated"})
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_sensitive_extras_are_redacted():
    record = _record(aadhar_number="123456789012", enc_request="abcdef", payment_id="PAY1")

    assert RequestContextFilter().filter(record) is True
    payload = json.loads(JsonFormatter("payment").format(record))

    assert payload["aadhar_number"] == REDACTED
    assert payload["enc_request"] == REDACTED
    assert payload["payment_id"] == "PAY1"
    assert payload["stream"] == "payment"
    assert payload["message"] == "Payment initiated"
