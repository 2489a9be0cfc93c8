import logging
from logging.handlers import RotatingFileHandler
import os
from audit.request_context import get_request_id

LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_FILE = "gateway.log"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s | %(levelname)s | request_id=%(request_id)s | %(message)s"

os.makedirs(LOG_DIR, exist_ok=True)

_base_logger = logging.getLogger("gateway_logger")
_base_logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))

# Avoid duplicated handlers if Flask reloads in debug mode
if not _base_logger.handlers:
    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = RotatingFileHandler(
        filename=os.path.join(LOG_DIR, LOG_FILE),
        maxBytes=5_000_000,  # 5MB
        backupCount=3
    )
    file_handler.setFormatter(formatter)
    _base_logger.addHandler(file_handler)

    # Store fallbacks and dropped webhooks should also reach the console
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(formatter)
    _base_logger.addHandler(console_handler)


class RequestIdAdapter(logging.LoggerAdapter):
    """
    Injects request_id into log records automatically.
    Records emitted outside a Flask request (maintenance ticks, CLI)
    carry request_id=unknown.
    """
    def process(self, msg, kwargs):
        extra = kwargs.get("extra", {})
        extra.setdefault("request_id", get_request_id())
        kwargs["extra"] = extra
        return msg, kwargs


logger = RequestIdAdapter(_base_logger, {})
