#!/usr/bin/env python3
"""
AppDynamics Agent Control - Logging System
One append-only log file plus console echo, shared by every component.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import IO, Optional

ROOT_LOGGER = 'appd-agentctl'
LOG_FORMAT = '%(asctime)s | %(levelname)s | %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class AgentCtlLogger:
    """Centralized logging with rotation."""

    _configured_file: Optional[Path] = None

    @classmethod
    def configure(cls, log_file: Optional[Path] = None, level: str = 'INFO',
                  console: Optional[IO] = None) -> logging.Logger:
        """Attach file and console handlers to the package root logger.

        The console stream defaults to whatever sys.stdout is at call time.
        Safe to call more than once; handlers are replaced, not stacked.
        """
        if console is None:
            console = sys.stdout
        root = logging.getLogger(ROOT_LOGGER)
        root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        root.propagate = False

        formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

        console_handler = logging.StreamHandler(console)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)

        cls._configured_file = None
        if log_file is not None:
            log_file = Path(log_file)
            try:
                log_file.parent.mkdir(parents=True, exist_ok=True)
                file_handler = RotatingFileHandler(
                    log_file,
                    maxBytes=10*1024*1024,  # 10MB per file
                    backupCount=5,
                    encoding='utf-8'
                )
            except OSError as e:
                root.warning(f"Cannot write log file {log_file} ({e}); console only")
            else:
                file_handler.setFormatter(formatter)
                root.addHandler(file_handler)
                cls._configured_file = log_file

        return root

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Get a component logger under the package root."""
        return logging.getLogger(f"{ROOT_LOGGER}.{name}")

    @classmethod
    def log_file(cls) -> Optional[Path]:
        return cls._configured_file


def configure_logging(log_file: Optional[Path] = None, level: str = 'INFO',
                      console: Optional[IO] = None) -> logging.Logger:
    """Configure the shared handlers."""
    return AgentCtlLogger.configure(log_file, level, console)


def get_logger(name: str) -> logging.Logger:
    """Get a logger by name."""
    return AgentCtlLogger.get_logger(name)
