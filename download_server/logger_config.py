import json
import logging
import platform
import socket
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from logzio.handler import LogzioHandler

LOGGER_NAME = "download_server"


class StructuredMessage:
    def __init__(self, message, **kwargs):
        self.message = message
        self.kwargs = kwargs

    def __str__(self):
        if not self.kwargs:
            return '%s' % (self.message)
        fields = ' '.join(f"{k}={v}" for k, v in self.kwargs.items())
        return '%s [%s]' % (self.message, fields)


class StructuredLogzioFormatter(logging.Formatter):
    def __init__(self, environment: str = "development"):
        super().__init__()
        self.hostname = socket.gethostname()
        self.environment = environment

    def format(self, record):
        if isinstance(record.msg, StructuredMessage):
            message = record.msg.message
            extra = record.msg.kwargs
        else:
            message = record.getMessage()
            extra = {}

        log_data = {
            'message': message,
            'level': record.levelname,
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'logger': record.name,
            'environment': self.environment,
            'application': 'download-server',
            'hostname': self.hostname,
            'python_version': platform.python_version(),
            'function': record.funcName,
            'line_number': record.lineno,
            'filename': record.filename,
        }
        log_data.update(extra)

        return json.dumps(log_data, default=str)


def setup_logger(
    debug: bool = False,
    logs_dir: str = "logs",
    logzio_token: Optional[str] = None,
    logzio_url: str = "https://listener.logz.io:8071",
) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)

    # Handlers are attached once per process; later calls only adjust the level
    if logger.handlers:
        return logger

    logs_path = Path(logs_dir)
    logs_path.mkdir(exist_ok=True, parents=True)

    file_formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
    )
    console_formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s'
    )

    # File handler (for detailed logging)
    file_handler = logging.FileHandler(logs_path / "download_server.log")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(file_formatter)

    # Console handler (for basic logging)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    console_handler.setFormatter(console_formatter)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    if logzio_token:
        logzio_handler = LogzioHandler(
            token=logzio_token,
            url=logzio_url,
            logs_drain_timeout=5,
            network_timeout=10.0,
        )
        logzio_handler.setFormatter(StructuredLogzioFormatter())
        logger.addHandler(logzio_handler)

    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Child of the service logger; inherits whatever setup_logger attached."""
    if not name:
        return logging.getLogger(LOGGER_NAME)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


def structured_log(message, **kwargs):
    return StructuredMessage(message, **kwargs)
