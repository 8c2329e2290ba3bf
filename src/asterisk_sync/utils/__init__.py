"""Utility modules for logging, auditing and retry policy."""
from .audit_log import ChangeRecord, ChangeTracker, audit_logger, setup_audit_logging
from .connection import RETRYABLE_EXCEPTIONS, is_retryable, retrying
from .logging_config import perf_logger, setup_logging, timed, timed_section

__all__ = [
    "ChangeRecord",
    "ChangeTracker",
    "audit_logger",
    "setup_audit_logging",
    "RETRYABLE_EXCEPTIONS",
    "is_retryable",
    "retrying",
    "perf_logger",
    "setup_logging",
    "timed",
    "timed_section",
]
