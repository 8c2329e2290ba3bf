"""Reconciliation errors."""


class SyncError(Exception):
    """Base class for reconciliation errors."""
    pass


class LiveStatusError(SyncError):
    """Live endpoint state could not be queried."""
    pass


class ReloadError(SyncError):
    """The server did not accept a configuration reload."""
    pass


class ReconciliationPartialFailure(SyncError):
    """One or more identities failed in a batch while others may have succeeded."""

    def __init__(self, result):
        self.result = result
        failed = ", ".join(f"{k} ({v})" for k, v in result.failed.items())
        message = f"{result.operation}: {len(result.failed)} failed: {failed}"
        if result.reload_error:
            message += f"; reload failed: {result.reload_error}"
        super().__init__(message)
