"""
Central logging configuration for burst-stack

Called by the command line entry points. Library modules only create
module-level loggers and never configure handlers themselves.
"""

import logging
import sys
import os
from logging.handlers import RotatingFileHandler
from datetime import datetime
from typing import Optional, Union

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logging(
    log_level: Union[int, str] = logging.INFO,
    log_dir: Optional[str] = None,
    log_prefix: str = 'burst_stack',
    stream=None,
):
    """
    Configure the root logger

    Args:
        log_level: Logging level, int or level name (default: INFO)
        log_dir: Directory for rotating log files; no file logging if None
        log_prefix: Prefix for log file names
        stream: Console stream (default: stderr, stdout carries JSON events)

    Returns:
        The configured root logger
    """
    if isinstance(log_level, str):
        log_level = logging.getLevelName(log_level.upper())
        if not isinstance(log_level, int):
            raise ValueError(f"Unknown log level: {log_level}")

    logger = logging.getLogger()
    logger.setLevel(log_level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)

    logger.handlers.clear()
    logger.addHandler(console_handler)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = os.path.join(log_dir, f"{log_prefix}_{timestamp}.log")

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10*1024*1024,  # 10 MB
            backupCount=5
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logging.getLogger('astropy').setLevel(logging.WARNING)

    return logger
