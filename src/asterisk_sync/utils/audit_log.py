"""Audit logging for PJSIP configuration changes.

Every push, pull and removal of a managed identity is written as one
JSON line to a dedicated, non-propagating logger.
"""
import json
import logging
import os
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

audit_logger = logging.getLogger("asterisk_sync.audit")


def setup_audit_logging(log_dir: Optional[str] = None) -> Path:
    """Configure audit logging to file.

    Args:
        log_dir: Directory for audit logs. Defaults to ~/.asterisk-sync/

    Returns:
        Path of the audit log file
    """
    if log_dir is None:
        log_dir = os.path.expanduser("~/.asterisk-sync")

    Path(log_dir).mkdir(parents=True, exist_ok=True)
    audit_file = Path(log_dir) / "audit.log"

    audit_logger.setLevel(logging.INFO)
    audit_logger.handlers.clear()

    handler = RotatingFileHandler(
        audit_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=10,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    audit_logger.addHandler(handler)
    audit_logger.propagate = False
    return audit_file


@dataclass
class ChangeRecord:
    """Record of one change applied to a managed identity."""
    timestamp: str
    target: str  # config file path or repository path
    operation: str  # push, pull, remove, ensure_transports
    identity: str
    success: bool
    parameters: dict
    error: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(asdict(self), indent=None)

    @classmethod
    def from_json(cls, json_str: str) -> "ChangeRecord":
        return cls(**json.loads(json_str))


class ChangeTracker:
    """Track and log configuration changes against one target."""

    def __init__(self, target: str):
        self.target = target

    def log_change(
        self,
        operation: str,
        identity: str,
        success: bool,
        parameters: Optional[dict] = None,
        error: Optional[str] = None,
    ) -> ChangeRecord:
        """Log a configuration change.

        Args:
            operation: The operation performed (e.g., "push")
            identity: Extension number or trunk name the change applies to
            success: Whether the operation succeeded
            parameters: Extra context for the change
            error: Error message if failed

        Returns:
            The ChangeRecord that was logged
        """
        record = ChangeRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            target=self.target,
            operation=operation,
            identity=identity,
            success=success,
            parameters=parameters or {},
            error=error,
        )
        audit_logger.info(record.to_json())
        return record


def read_changes(log_file: str, identity: Optional[str] = None, limit: int = 100) -> list[ChangeRecord]:
    """Read recent changes from an audit log, most recent first."""
    if not os.path.exists(log_file):
        return []

    records = []
    with open(log_file, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                record = ChangeRecord.from_json(line)
            except (json.JSONDecodeError, TypeError):
                continue  # Skip malformed lines
            if identity and record.identity != identity:
                continue
            records.append(record)

    return list(reversed(records[-limit:]))
