import logging
import json
import sys
from datetime import timezone, datetime

from ledgersync.settings import settings

# Context passed through `extra=` that is copied onto the JSON line.
CONTEXT_FIELDS = (
    "request_id",
    "method",
    "connection",
    "source",
    "operation",
    "topic",
    "partition",
    "offset",
)

class JsonFormatter(logging.Formatter):
    def format(self, record):
        log_obj = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "path": record.pathname,
            "lineno": record.lineno,
        }

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_obj[field] = value

        if hasattr(record, "path_url"): # 'path' is reserved for file path
            log_obj["url"] = record.path_url

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, default=str)

def configure_logging(level: str = None):
    logger = logging.getLogger()
    logger.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))

    # Clear existing handlers
    if logger.handlers:
        logger.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)

    logging.getLogger("uvicorn.access").disabled = True
    logging.getLogger("aiokafka").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
