import json
import logging
from logging.config import dictConfig

from linkup.utils.env_helper import env_bool, env_none_or_str

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per line; tracebacks go in `exc_info`."""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            log_record["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(log_record, ensure_ascii=False, default=str)


def setup_logging(level=None, json_logs=None):
    """Configure the root logger for the API process.

    Falls back to LINKUP_LOG_LEVEL / LINKUP_LOG_JSON when no explicit
    arguments are given.
    """
    if level is None:
        level = (env_none_or_str("LINKUP_LOG_LEVEL", "INFO") or "INFO").upper()
    if json_logs is None:
        json_logs = env_bool("LINKUP_LOG_JSON", False)

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": LOG_FORMAT,
                },
                "json": {  # structured logs for prod
                    "()": JsonFormatter,
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "json" if json_logs else "default",
                },
            },
            "loggers": {
                # the http client logs every PostgREST request at INFO
                "httpx": {"level": "WARNING"},
            },
            "root": {
                "level": level,
                "handlers": ["console"],
            },
        }
    )

    logging.getLogger(__name__).debug("Logging configured level=%s json=%s", level, json_logs)
