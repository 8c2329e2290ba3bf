"""Asterisk Manager Interface client."""
from .client import AmiSession
from .errors import AmiConnectError, AmiConnectionClosed, AmiError, AmiFrameError, ConnectFailure
from .protocol import (
    DEFAULT_PORT,
    DEFAULT_TIMEOUT,
    MAX_READ_ITERATIONS,
    AmiResponse,
    encode_action,
    parse_frame,
)

__all__ = [
    "AmiSession",
    "AmiConnectError",
    "AmiConnectionClosed",
    "AmiError",
    "AmiFrameError",
    "ConnectFailure",
    "DEFAULT_PORT",
    "DEFAULT_TIMEOUT",
    "MAX_READ_ITERATIONS",
    "AmiResponse",
    "encode_action",
    "parse_frame",
]
