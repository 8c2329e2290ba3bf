"""Reconciliation between the endpoint database, pjsip.conf and Asterisk."""
from .engine import ReconciliationEngine, ensure_transport_sections, merge_scanned
from .errors import LiveStatusError, ReconciliationPartialFailure, ReloadError, SyncError
from .live_status import (
    AmiLiveStatusProvider,
    AmiReloader,
    CliLiveStatusProvider,
    CliReloader,
    EndpointState,
    LiveStatusProvider,
    Reloader,
)
from .repository import EndpointRepository, YamlEndpointRepository
from .scanner import scan_extensions
from .schema import BatchResult, Membership, ScannedExtension, SyncStatus, summarize_status

__all__ = [
    "ReconciliationEngine",
    "ensure_transport_sections",
    "merge_scanned",
    "LiveStatusError",
    "ReconciliationPartialFailure",
    "ReloadError",
    "SyncError",
    "AmiLiveStatusProvider",
    "AmiReloader",
    "CliLiveStatusProvider",
    "CliReloader",
    "EndpointState",
    "LiveStatusProvider",
    "Reloader",
    "EndpointRepository",
    "YamlEndpointRepository",
    "scan_extensions",
    "BatchResult",
    "Membership",
    "ScannedExtension",
    "SyncStatus",
    "summarize_status",
]
