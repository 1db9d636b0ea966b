from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, TextIO


class LoggerFactory:
    FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"

    @staticmethod
    def create(
        name: str,
        log_file: Optional[Path] = None,
        *,
        level: str = "INFO",
        stream: Optional[TextIO] = None,
    ) -> logging.Logger:
        logger = logging.getLogger(name)
        logger.setLevel(level)
        if logger.handlers:
            return logger

        formatter = logging.Formatter(LoggerFactory.FORMAT)

        # Log to stderr by default; stdout carries forwarded tool output.
        stream_handler = logging.StreamHandler(stream)
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)

        if log_file is not None:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_path, maxBytes=1_000_000, backupCount=3
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

        return logger
