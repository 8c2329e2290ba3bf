"""Logging configuration for asterisk-sync.

Provides configurable logging with:
- File-based logging with rotation
- Console output for real-time debugging
- Performance timing decorator and context manager

Environment Variables:
    ASTERISK_SYNC_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    ASTERISK_SYNC_LOG_FILE: Path to log file (default: ~/.asterisk-sync/asterisk-sync.log)
    ASTERISK_SYNC_LOG_MAX_SIZE: Max log file size in MB (default: 10)
    ASTERISK_SYNC_LOG_BACKUPS: Number of backup files to keep (default: 5)

Usage:
    from asterisk_sync.utils.logging_config import setup_logging, timed

    setup_logging()  # Call once at startup

    @timed("push_to_config")
    def push_to_config(self, identity=None):
        ...

    with timed_section("reload", target="res_pjsip.so"):
        ...
"""
import functools
import logging
import os
import time
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Optional

# Performance logger - separate from main logger for easy filtering
perf_logger = logging.getLogger("asterisk_sync.perf")
main_logger = logging.getLogger("asterisk_sync")


def get_log_level() -> int:
    """Get log level from environment."""
    level_str = os.environ.get("ASTERISK_SYNC_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_str, logging.INFO)


def get_log_file() -> Path:
    """Get log file path from environment."""
    default_path = Path.home() / ".asterisk-sync" / "asterisk-sync.log"
    path_str = os.environ.get("ASTERISK_SYNC_LOG_FILE", str(default_path))
    return Path(path_str)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application.

    Sets up:
    - Console handler (INFO+ by default, respects ASTERISK_SYNC_LOG_LEVEL)
    - File handler with rotation (DEBUG level - captures everything)
    - Performance logger for timing metrics (file only)
    """
    log_level = logging.DEBUG if verbose else get_log_level()
    log_file = get_log_file()
    max_size_mb = int(os.environ.get("ASTERISK_SYNC_LOG_MAX_SIZE", "10"))
    backup_count = int(os.environ.get("ASTERISK_SYNC_LOG_BACKUPS", "5"))

    log_file.parent.mkdir(parents=True, exist_ok=True)

    main_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | %(name)-28s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    perf_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | PERF | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(main_format)

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8"
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(main_format)

    perf_log_file = log_file.parent / "asterisk-sync-perf.log"
    perf_handler = RotatingFileHandler(
        perf_log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8"
    )
    perf_handler.setLevel(logging.DEBUG)
    perf_handler.setFormatter(perf_format)

    main_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    main_logger.handlers.clear()
    main_logger.addHandler(console_handler)
    main_logger.addHandler(file_handler)

    # Timings go to their own file, not the console
    perf_logger.setLevel(logging.DEBUG)
    perf_logger.handlers.clear()
    perf_logger.addHandler(perf_handler)
    perf_logger.propagate = False

    main_logger.debug(f"Logging initialized: level={logging.getLevelName(log_level)}, file={log_file}")


def _format_timing(operation: str, target: Optional[str], elapsed: float, outcome: str) -> str:
    return f"{operation:20s} | {target or 'N/A':15s} | {elapsed:8.2f}ms | {outcome}"


def timed(operation: str, target: Optional[str] = None):
    """Decorator to log execution time of a function.

    Args:
        operation: Name of the operation (e.g., "connect", "push_to_config")
        target: Optional target label; inferred from ``self.host`` when absent
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            label = target
            if label is None and args and hasattr(args[0], "host"):
                label = str(args[0].host)

            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                elapsed = (time.perf_counter() - start) * 1000
                perf_logger.warning(_format_timing(operation, label, elapsed, f"FAIL: {e}"))
                raise
            elapsed = (time.perf_counter() - start) * 1000
            perf_logger.info(_format_timing(operation, label, elapsed, "OK"))
            return result

        return wrapper

    return decorator


@contextmanager
def timed_section(operation: str, target: Optional[str] = None, **extra):
    """Context manager for timing code sections.

    Usage:
        with timed_section("reload", target="res_pjsip.so"):
            reloader.reload()
    """
    start = time.perf_counter()
    extra_str = " | ".join(f"{k}={v}" for k, v in extra.items()) if extra else ""

    try:
        yield
    except Exception as e:
        elapsed = (time.perf_counter() - start) * 1000
        msg = _format_timing(operation, target, elapsed, f"FAIL: {e}")
        if extra_str:
            msg += f" | {extra_str}"
        perf_logger.warning(msg)
        raise
    elapsed = (time.perf_counter() - start) * 1000
    msg = _format_timing(operation, target, elapsed, "OK")
    if extra_str:
        msg += f" | {extra_str}"
    perf_logger.info(msg)
