import logging
import os
import sys
from pythonjsonlogger import jsonlogger

REDACTED_KEYS = {"password", "token", "secret", "authorization"}


class RedactFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        for key in REDACTED_KEYS:
            if getattr(record, key, None):
                setattr(record, key, "***")
        return True


logger = logging.getLogger("clipvault")
logger.setLevel(os.getenv("CLIPVAULT_LOG_LEVEL", "INFO").upper())

handler = logging.StreamHandler(sys.stdout)
formatter = jsonlogger.JsonFormatter(
    "%(asctime)s %(levelname)s %(name)s %(message)s",
    rename_fields={"levelname": "level", "asctime": "timestamp"}
)
handler.setFormatter(formatter)
handler.addFilter(RedactFilter())
logger.addHandler(handler)
