import json
import logging
import sys
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from bonus_core.core.config import settings

# copied from `extra=` when present
CONTEXT_FIELDS = ("user_id", "bonus_id", "request_id", "deal")


def _json_default(value: Any) -> Any:
    # money goes out as a string so cents are never lost to float
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for k in CONTEXT_FIELDS:
            if hasattr(record, k):
                payload[k] = getattr(record, k)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=_json_default)


def setup_logging(level: str | None = None) -> None:
    """JSON lines on stdout. SQL statements only with DB_ECHO."""
    root = logging.getLogger()
    root.setLevel((level or settings.log_level).upper())
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.handlers.clear()
    root.addHandler(handler)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if settings.db_echo else logging.WARNING)
