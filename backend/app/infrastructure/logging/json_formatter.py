import json
import logging
from datetime import UTC, datetime

from app.infrastructure.logging.context import get_request_id, get_site_id

# Attributes callers may attach with ``extra=`` that are lifted into the payload.
PUBLISH_EXTRA_FIELDS = ("version", "error_code", "artifact")


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "request_id": get_request_id(),
            "site_id": get_site_id() or getattr(record, "site_id", None),
            "logger": record.name,
        }
        for field_name in PUBLISH_EXTRA_FIELDS:
            value = getattr(record, field_name, None)
            if value is not None:
                payload[field_name] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)
