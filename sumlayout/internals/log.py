"""Logger setup for the command line tool.

Library modules only create module loggers; handlers are attached here,
once, by the CLI.
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional


class LoggerSetup:
    """Manages logging configuration for the application."""

    _initialized = False
    _log_file_path: Optional[Path] = None

    @classmethod
    def initialize(cls, verbose: bool = False, log_file: Optional[Path] = None,
                   level: Optional[str] = None) -> None:
        """Attach a stderr handler (and optionally a file handler) to the package logger.

        Args:
            verbose: If True, log DEBUG to the console; otherwise ``level`` or WARNING.
            log_file: Optional file that receives every record at DEBUG level.
            level: Console level name from configuration (e.g. "info").
        """
        if cls._initialized:
            return

        package_logger = logging.getLogger("sumlayout")
        package_logger.setLevel(logging.DEBUG)
        package_logger.handlers.clear()

        console_level = logging.DEBUG if verbose else _level_from_name(level)
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(console_level)
        console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        package_logger.addHandler(console_handler)

        if log_file is not None:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            ))
            package_logger.addHandler(file_handler)
            cls._log_file_path = log_file

        cls._initialized = True

        logger = logging.getLogger(__name__)
        logger.debug("Logging initialized (verbose=%s, log file=%s)", verbose, log_file)

    @classmethod
    def get_log_file_path(cls) -> Optional[Path]:
        return cls._log_file_path

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._initialized

    @classmethod
    def reset(cls) -> None:
        """Detach handlers so that a later initialize() reconfigures logging."""
        package_logger = logging.getLogger("sumlayout")
        for handler in list(package_logger.handlers):
            package_logger.removeHandler(handler)
            handler.close()
        cls._initialized = False
        cls._log_file_path = None


def _level_from_name(name: Optional[str]) -> int:
    if not name:
        return logging.WARNING
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.WARNING
