from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    TRANSPORT = "transport"
    STATUS = "status"
    DECODE = "decode"
    DATA = "data"
    CONFIG = "config"
    CANCELLED = "cancelled"


class YFError(Exception):
    """Base class for all yfkit exceptions."""

    kind: ErrorKind = ErrorKind.DATA


class TransportError(YFError):
    """Raised when the connection fails or times out before a response arrives."""

    kind = ErrorKind.TRANSPORT


class StatusError(YFError):
    """Raised when the provider answers with a non-2xx status."""

    kind = ErrorKind.STATUS

    def __init__(self, code: int, url: str, retry_after: Optional[float] = None) -> None:
        super().__init__(f"unexpected response status: {code} at {url}")
        self.code = code
        self.url = url
        self.retry_after = retry_after

    @property
    def is_server_error(self) -> bool:
        return 500 <= self.code < 600


class DecodeError(YFError):
    """Raised for malformed JSON bodies or undecodable stream frames."""

    kind = ErrorKind.DECODE


class DataError(YFError):
    """Raised when a well-formed payload is missing required data."""

    kind = ErrorKind.DATA


class ConfigError(YFError):
    """Raised for missing/malformed parameters or configuration."""

    kind = ErrorKind.CONFIG


class FetchCancelled(YFError):
    """Raised when a caller-supplied cancel signal aborts a fetch."""

    kind = ErrorKind.CANCELLED


__all__ = [
    "ErrorKind",
    "YFError",
    "TransportError",
    "StatusError",
    "DecodeError",
    "DataError",
    "ConfigError",
    "FetchCancelled",
]
