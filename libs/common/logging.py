import json
import logging
import sys

from libs.common.config import get_settings

NOISY_LOGGERS = ("uvicorn.access", "httpx", "stripe", "sqlalchemy.engine")


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line, for log shipping outside local development.

    Context passed as ``extra={"extra_fields": {...}}`` (order ids, intent ids,
    event types) is merged into the object.
    """

    def __init__(self, service: str):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "service": self.service,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            payload.update(extra_fields)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(service: str = "ordering") -> None:
    """
    Install a single stdout handler on the root logger.

    Plain text in ``local`` and ``test``, JSON everywhere else.
    """
    settings = get_settings()
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    if settings.ENVIRONMENT in ("local", "test"):
        handler.setFormatter(
            logging.Formatter(
                f"%(asctime)s - {service} - %(name)s - %(levelname)s - %(message)s"
            )
        )
    else:
        handler.setFormatter(JsonFormatter(service))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    # Reconfiguring (app reload, tests) must not stack handlers
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
