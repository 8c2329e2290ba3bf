"""AMI error types."""
from enum import Enum


class ConnectFailure(str, Enum):
    """Why a session could not be established."""
    REFUSED = "refused"
    TIMEOUT = "timeout"
    AUTH_FAILED = "auth_failed"


class AmiError(Exception):
    """Base class for AMI protocol errors."""
    pass


class AmiConnectError(AmiError, ConnectionError):
    """Connecting or logging in to the manager interface failed."""

    def __init__(self, reason: ConnectFailure, message: str):
        super().__init__(message)
        self.reason = reason


class AmiFrameError(AmiError):
    """A response frame was unterminated or could not be interpreted."""
    pass


class AmiConnectionClosed(AmiError, EOFError):
    """The server closed the connection."""
    pass
