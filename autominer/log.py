"""Logging setup: console output plus an optional structured JSON file."""

import json
import logging
from logging.handlers import RotatingFileHandler

LOG_FORMAT = "%(asctime)s - %(levelname)s - [%(name)s] - %(message)s"


class JsonFormatter(logging.Formatter):
    """Formats log records into a JSON string."""

    def format(self, record):
        log_object = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "funcName": record.funcName,
            "lineNo": record.lineno,
        }
        if record.exc_info:
            log_object["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_object)


def setup_logging(level: str | int = logging.INFO, log_file: str | None = None):
    logger = logging.getLogger()
    logger.setLevel(level)
    if logger.hasHandlers():
        logger.handlers.clear()

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(console)

    if log_file:
        json_handler = RotatingFileHandler(log_file, maxBytes=5 * 1024 * 1024, backupCount=2)
        json_handler.setFormatter(JsonFormatter())
        logger.addHandler(json_handler)

    # web3 and its transports are chatty at INFO
    for noisy in ("web3", "urllib3", "aiohttp", "websockets"):
        logging.getLogger(noisy).setLevel(max(logging.WARNING, logger.level))
