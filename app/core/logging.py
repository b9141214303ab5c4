import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Optional

from app.core.context import get_request_id, get_user_id
from app.core.settings import settings

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_RESERVED_ATTRS = set(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
    "user_id",
    "request_id",
    "stream",
}

# ``extra=`` keys that must never reach the log sink in clear text.
REDACTED_FIELDS = {
    "aadhar_number",
    "pan_number",
    "password",
    "smtp_password",
    "enc_request",
    "enc_response",
    "encResp",
    "working_key",
    "token",
}
REDACTED = "[redacted]"

PAYMENT_LOGGERS = ("app.services.payments", "app.services.payment_gateway", "app.api.v1.routers.payments")


class RequestContextFilter(logging.Filter):
    """Inject user/request ids into log records and blank out sensitive extras."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.user_id = get_user_id()
        record.request_id = get_request_id()
        for key in REDACTED_FIELDS.intersection(record.__dict__):
            setattr(record, key, REDACTED)
        return True


class JsonFormatter(logging.Formatter):
    def __init__(self, stream_label: str = "transactional") -> None:
        super().__init__()
        self.stream_label = stream_label

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "stream": self.stream_label,
            "environment": settings.environment,
            "user_id": getattr(record, "user_id", "-"),
            "request_id": getattr(record, "request_id", "-"),
        }
        payload.update({k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS})
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _handler(formatter: str, level: str) -> dict:
    return {
        "class": "logging.StreamHandler",
        "level": level,
        "formatter": formatter,
        "filters": ["request_context"],
        "stream": "ext://sys.stdout",
    }


def configure_logging(level: Optional[str] = None) -> None:
    """JSON logs on stdout, split into transactional, audit and payment streams."""
    log_level = (level or settings.log_level).upper()
    loggers = {
        "": {"handlers": ["default"], "level": log_level, "propagate": False},
        "app.audit": {"handlers": ["audit"], "level": log_level, "propagate": False},
        "botocore": {"handlers": ["default"], "level": "WARNING", "propagate": False},
        "aiosmtplib": {"handlers": ["default"], "level": "WARNING", "propagate": False},
    }
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        loggers[name] = {"handlers": ["default"], "level": log_level, "propagate": False}
    for name in PAYMENT_LOGGERS:
        loggers[name] = {"handlers": ["payments"], "level": log_level, "propagate": False}

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"request_context": {"()": RequestContextFilter}},
            "formatters": {
                "json": {"()": JsonFormatter, "stream_label": "transactional"},
                "audit_json": {"()": JsonFormatter, "stream_label": "audit"},
                "payment_json": {"()": JsonFormatter, "stream_label": "payment"},
            },
            "handlers": {
                "default": _handler("json", log_level),
                "audit": _handler("audit_json", log_level),
                "payments": _handler("payment_json", log_level),
            },
            "loggers": loggers,
        }
    )
    logging.getLogger(__name__).info(
        "Logging configured",
        extra={"storage_provider": settings.storage_provider, "log_level": log_level},
    )


def get_audit_logger() -> logging.Logger:
    return logging.getLogger("app.audit")
