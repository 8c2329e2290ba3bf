"""Result types for reconciliation runs."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .errors import ReconciliationPartialFailure


class Membership(str, Enum):
    """Where an identity was found."""
    DB_ONLY = "db_only"
    CONFIG_ONLY = "config_only"
    BOTH = "both"


@dataclass
class ScannedExtension:
    """Extension fields recovered from the configuration file.

    None means the file did not say.
    """
    extension_number: str
    context: Optional[str] = None
    transport: Optional[str] = None
    codecs: list[str] = field(default_factory=list)
    caller_id: Optional[str] = None
    direct_media: str = "no"
    secret: Optional[str] = None
    max_contacts: int = 1
    qualify_frequency: int = 60


@dataclass
class SyncStatus:
    """Three-way comparison for one identity."""
    identity: str
    name: str
    membership: Membership
    registered: Optional[bool] = None  # None when live state is unknown
    diff_fields: list[str] = field(default_factory=list)

    @property
    def in_db(self) -> bool:
        return self.membership in (Membership.DB_ONLY, Membership.BOTH)

    @property
    def in_config(self) -> bool:
        return self.membership in (Membership.CONFIG_ONLY, Membership.BOTH)

    @property
    def synced(self) -> bool:
        return self.membership is Membership.BOTH and not self.diff_fields

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "name": self.name,
            "membership": self.membership.value,
            "in_db": self.in_db,
            "in_config": self.in_config,
            "registered": self.registered,
            "diff_fields": list(self.diff_fields),
        }


def summarize_status(statuses: list[SyncStatus]) -> dict[str, int]:
    """Counts for a status report."""
    return {
        "total": len(statuses),
        "synced": sum(1 for s in statuses if s.synced),
        "db_only": sum(1 for s in statuses if s.membership is Membership.DB_ONLY),
        "config_only": sum(1 for s in statuses if s.membership is Membership.CONFIG_ONLY),
        "mismatched": sum(1 for s in statuses if s.membership is Membership.BOTH and s.diff_fields),
    }


@dataclass
class BatchResult:
    """Outcome of a push, pull or remove over one or more identities."""
    operation: str
    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    unchanged: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    cancelled: bool = False
    reloaded: bool = False
    reload_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.failed and self.reload_error is None

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def summary(self) -> str:
        if self.cancelled:
            return f"{self.operation}: cancelled"
        parts = [f"{len(self.succeeded)} succeeded"]
        if self.unchanged:
            parts.append(f"{len(self.unchanged)} unchanged")
        if self.skipped:
            parts.append(f"{len(self.skipped)} skipped")
        if self.failed:
            parts.append(f"{len(self.failed)} failed")
        text = f"{self.operation}: " + ", ".join(parts)
        if self.reloaded:
            text += ", server reloaded"
        elif self.reload_error:
            text += f", reload failed: {self.reload_error}"
        return text

    def raise_for_failures(self) -> None:
        if not self.ok:
            raise ReconciliationPartialFailure(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "succeeded": list(self.succeeded),
            "failed": dict(self.failed),
            "unchanged": list(self.unchanged),
            "skipped": list(self.skipped),
            "cancelled": self.cancelled,
            "reloaded": self.reloaded,
            "reload_error": self.reload_error,
        }
