"""Queue operations on IBM MQ driven by declarative actions.

An action (`SendMessage`, `ReceiveMessage`, `BrowseMessages` or `MQSize`) describes a queue, the queue manager to reach it
through and the operation to perform. Each action opens its own connection, performs exactly one operation and publishes
the normalized result in a variable store, see `anteater_mq.actions`.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from os import environ
from pathlib import Path
from platform import node as hostname

__version__ = '1.0.0'

__all__ = [
    '__version__',
    'configure_logging',
]


def _get_log_dir() -> Path:
    log_dir_path = environ.get('ANTEATER_MQ_LOG_DIR', None)
    if log_dir_path is None:
        message = 'ANTEATER_MQ_LOG_DIR environment variable is not set'
        raise ValueError(message)

    log_dir_root = Path(log_dir_path)
    log_dir_root.mkdir(parents=True, exist_ok=True)

    return log_dir_root


def configure_logging() -> None:
    """Log to stderr, and to a file in `ANTEATER_MQ_LOG_DIR` if set. Meant to be called by the host application."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]

    try:
        log_file = _get_log_dir() / f'anteater-mq.{hostname()}.{datetime.now().strftime("%Y%m%dT%H%M%S%f")}.log'
        handlers.append(logging.FileHandler(log_file))
    except ValueError:
        pass

    level = environ.get('ANTEATER_MQ_LOGLEVEL', 'INFO')

    logging.basicConfig(
        level=level,
        format='[%(asctime)s] %(levelname)-5s: %(name)s: %(message)s',
        handlers=handlers,
    )


logging.getLogger(__name__).addHandler(logging.NullHandler())
