import json
import logging
import sys
from datetime import UTC, datetime

from image_builder.config import get_settings
from image_builder.sanitize import sanitize_error_message


_PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


class JsonLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": sanitize_error_message(record.getMessage()),
        }
        if record.exc_info:
            payload["exc"] = sanitize_error_message(self.formatException(record.exc_info))
        return json.dumps(payload, sort_keys=True)


class SanitizingFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return sanitize_error_message(super().format(record))


def configure_logging() -> None:
    settings = get_settings()
    handler = logging.StreamHandler(sys.stderr)
    if settings.log_json:
        handler.setFormatter(JsonLineFormatter())
    else:
        handler.setFormatter(SanitizingFormatter(_PLAIN_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        if getattr(existing, "_image_builder", False):
            root.removeHandler(existing)
    setattr(handler, "_image_builder", True)
    root.addHandler(handler)
    root.setLevel(settings.log_level.upper())
