"""
Logging infrastructure for weno_fv.

Provides structured logging with configurable levels, formatting, and optional
color support, plus helpers that report stencil, cache and limiter statistics
in a uniform layout.
"""

from __future__ import annotations

import logging
import sys
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any, ClassVar

try:
    import colorlog

    COLORLOG_AVAILABLE = True
except ImportError:
    COLORLOG_AVAILABLE = False


class WENOFormatter(logging.Formatter):
    """Formatter for weno_fv log records."""

    def __init__(self, use_colors: bool = False, include_location: bool = False):
        self.use_colors = use_colors and COLORLOG_AVAILABLE
        self.include_location = include_location

        if self.use_colors:
            self.colored_formatter = colorlog.ColoredFormatter(
                "%(log_color)s%(asctime)s - %(name)-20s - %(levelname)-8s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
                log_colors={
                    "DEBUG": "cyan",
                    "INFO": "green",
                    "WARNING": "yellow",
                    "ERROR": "red",
                    "CRITICAL": "red,bg_white",
                },
            )

        format_str = "%(asctime)s - %(name)-20s - %(levelname)-8s - %(message)s"
        if self.include_location:
            format_str += " [%(filename)s:%(lineno)d]"

        super().__init__(format_str, datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record):
        if self.use_colors:
            return self.colored_formatter.format(record)
        return super().format(record)


class WENOLogger:
    """
    Central logging manager for weno_fv with configuration management.

    Thread Safety:
        Partitions of a decomposed run may live on separate threads of one
        process, so logger creation uses double-check locking. Concurrent
        get_logger() calls never attach duplicate handlers.
    """

    _instance = None
    _lock: ClassVar[threading.Lock] = threading.Lock()
    _loggers: ClassVar[dict[str, logging.Logger]] = {}
    _log_level = logging.INFO
    _log_to_file = False
    _log_file_path: Path | None = None
    _use_colors = True
    _include_location = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @classmethod
    def configure(
        cls,
        level: str | int = "INFO",
        log_to_file: bool = False,
        log_file_path: str | Path | None = None,
        use_colors: bool = True,
        include_location: bool = False,
        suppress_external: bool = True,
    ):
        """
        Configure global logging settings for weno_fv.

        Args:
            level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_to_file: Whether to log to file
            log_file_path: Path to log file (optional)
            use_colors: Use colored terminal output if available
            include_location: Include file location in log messages
            suppress_external: Suppress verbose logging from external libraries
        """
        with cls._lock:
            if isinstance(level, str):
                cls._log_level = getattr(logging, level.upper())
            else:
                cls._log_level = level

            cls._log_to_file = log_to_file
            cls._use_colors = use_colors and COLORLOG_AVAILABLE
            cls._include_location = include_location

            if log_to_file:
                if log_file_path is None:
                    log_dir = Path.cwd() / "logs"
                    log_dir.mkdir(exist_ok=True)
                    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
                    cls._log_file_path = log_dir / f"weno_fv_{timestamp}.log"
                else:
                    cls._log_file_path = Path(log_file_path)
                    cls._log_file_path.parent.mkdir(parents=True, exist_ok=True)

            if suppress_external:
                logging.getLogger("h5py").setLevel(logging.WARNING)

            for logger in cls._loggers.values():
                cls._setup_logger(logger)

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """
        Get or create a logger for the specified module/component.

        Args:
            name: Logger name (typically __name__ from calling module)

        Returns:
            Configured logger instance
        """
        if name in cls._loggers:
            return cls._loggers[name]

        with cls._lock:
            if name not in cls._loggers:
                logger = logging.getLogger(name)

                if not logger.handlers:
                    cls._setup_logger(logger)

                cls._loggers[name] = logger

        return cls._loggers[name]

    @classmethod
    def _setup_logger(cls, logger: logging.Logger):
        """Configure individual logger with current settings."""
        logger.handlers.clear()
        logger.setLevel(cls._log_level)

        formatter = WENOFormatter(use_colors=cls._use_colors, include_location=cls._include_location)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        console_handler.setLevel(cls._log_level)
        logger.addHandler(console_handler)

        if cls._log_to_file and cls._log_file_path:
            file_handler = logging.FileHandler(cls._log_file_path)
            file_formatter = WENOFormatter(use_colors=False, include_location=cls._include_location)
            file_handler.setFormatter(file_formatter)
            file_handler.setLevel(cls._log_level)
            logger.addHandler(file_handler)

        logger.propagate = False


def get_logger(name: str | None = None) -> logging.Logger:
    """
    Get a logger for the current module.

    Args:
        name: Logger name (if None, uses calling module name)

    Returns:
        Configured logger instance
    """
    if name is None:
        import inspect

        frame = inspect.currentframe()
        if frame and frame.f_back:
            name = frame.f_back.f_globals.get("__name__", "weno_fv")
        else:
            name = "weno_fv"

    return WENOLogger.get_logger(name)


def configure_logging(**kwargs):
    """
    Configure global logging settings.

    Keyword Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_to_file: Whether to log to file
        log_file_path: Path to log file
        use_colors: Use colored terminal output
        include_location: Include file location in messages
        suppress_external: Suppress external library logging
    """
    WENOLogger.configure(**kwargs)


def configure_development_logging(include_location: bool = True):
    """
    Configure logging for development and debugging.

    Args:
        include_location: Include file:line information
    """
    configure_logging(
        level="DEBUG",
        log_to_file=False,
        use_colors=True,
        include_location=include_location,
        suppress_external=False,
    )

    logger = get_logger("weno_fv.development")
    logger.info("Development logging enabled - DEBUG level with full details")


def log_stencil_statistics(
    logger: logging.Logger,
    rank: int,
    stencil_sizes: list[int],
    n_sectorial: int,
    n_dropped: int,
    max_condition_number: float,
):
    """Log a summary of the constructed stencils of one partition."""
    if stencil_sizes:
        size_info = f"central size min/max {min(stencil_sizes)}/{max(stencil_sizes)}"
    else:
        size_info = "no central stencils"
    logger.info(
        f"Stencils on rank {rank}: {len(stencil_sizes)} cells, {size_info}, "
        f"{n_sectorial} sectorial, {n_dropped} sectors dropped"
    )
    logger.debug(f"Largest least-squares condition number on rank {rank}: {max_condition_number:.3e}")


def log_cache_event(logger: logging.Logger, event: str, path: str | Path, reason: str | None = None):
    """Log geometry cache hits, misses and writes."""
    msg = f"Geometry cache {event}: {path}"
    if reason:
        msg += f" ({reason})"
    if event == "miss":
        logger.debug(msg)
    else:
        logger.info(msg)


def log_limiter_statistics(logger: logging.Logger, theta, limiting_factor: float):
    """Log the distribution of limiter values of one reconstruction call."""
    if theta.size == 0:
        return
    n_limited = int((theta < 1.0).sum())
    logger.debug(
        f"Limiter (limFac={limiting_factor:g}): theta min {float(theta.min()):.4f}, "
        f"{n_limited}/{theta.size} entries below one"
    )


def log_performance_metric(
    logger: logging.Logger,
    operation: str,
    duration: float,
    additional_metrics: dict[str, Any] | None = None,
):
    """Log performance metrics with enhanced details."""
    msg = f"Performance - {operation}: {duration:.3f}s"
    if additional_metrics:
        metrics_str = ", ".join(f"{k}: {v}" for k, v in additional_metrics.items())
        msg += f" ({metrics_str})"
    logger.info(msg)


class LoggedOperation:
    """Context manager for logging timed operations."""

    def __init__(self, logger: logging.Logger, operation_name: str, log_level: int = logging.INFO):
        self.logger = logger
        self.operation_name = operation_name
        self.log_level = log_level
        self.start_time: float | None = None

    def __enter__(self):
        self.logger.log(self.log_level, f"Starting {self.operation_name}")
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.time() - (self.start_time or 0)

        if exc_type is None:
            self.logger.log(self.log_level, f"Completed {self.operation_name} in {duration:.3f}s")
        else:
            self.logger.error(f"Failed {self.operation_name} after {duration:.3f}s: {exc_val}")

        return False
