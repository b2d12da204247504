import logging
import sys
from typing import Any, Dict

from pythonjsonlogger import jsonlogger

NOISY_LOGGERS = ("apscheduler", "urllib3")


def setup_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stdout)
    formatter = jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = [handler]
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_extra(user_id: str | None = None, **kwargs: Any) -> Dict[str, Any]:
    data: Dict[str, Any] = {"user_id": str(user_id) if user_id is not None else None}
    for key, value in kwargs.items():
        data[key] = str(value) if value is not None and not isinstance(value, (int, float, bool)) else value
    return {"extra": data}
