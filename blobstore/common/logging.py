import json
import logging
from logging.config import dictConfig

from blobstore.infra.storage.client import StorageError

# boto 系列在 DEBUG 级别会输出签名和请求体细节
QUIET_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3")


def logging_config(level: str = "INFO") -> dict:
    loggers: dict = {
        "blobstore.startup": {
            "handlers": ["startup_console"],
            "level": "INFO",
            "propagate": False,
        },
    }
    for name in QUIET_LOGGERS:
        loggers[name] = {"level": "WARNING"}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": JsonFormatter},
            "startup": {"format": "%(levelname)s %(name)s: %(message)s"},
        },
        "handlers": {
            "console": {"class": "logging.StreamHandler", "formatter": "json"},
            "startup_console": {
                "class": "logging.StreamHandler",
                "formatter": "startup",
            },
        },
        "root": {"level": level.upper(), "handlers": ["console"]},
        "loggers": loggers,
    }


def setup_logging(level: str = "INFO") -> None:
    dictConfig(logging_config(level))


def setup_cli_logging(prefix: str) -> None:
    logging.basicConfig(level=logging.INFO, format=f"{prefix}: %(message)s")
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class JsonFormatter(logging.Formatter):
    """One JSON object per record.

    Fields passed as ``extra={"extra": {...}}`` are merged in. When the record
    carries a :class:`StorageError`, its op, ref and bucket are added too.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if isinstance(getattr(record, "extra", None), dict):
            payload.update(record.extra)
        if record.exc_info:
            exc = record.exc_info[1]
            if isinstance(exc, StorageError):
                for field in ("op", "ref", "bucket"):
                    value = getattr(exc, field)
                    if value is not None:
                        payload.setdefault(field, value)
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)
