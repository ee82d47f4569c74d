"""
Exceptions raised by chaindelve.

Only structural or infrastructure failures are raised. Failures of a single
link probe, measurement or action are recorded in the produced data instead.
"""

from typing import Any, Dict, Optional


class ChainDelveError(Exception):
    """Base exception for all chaindelve errors."""

    def __init__(self, message: str, code: str = "UNKNOWN", details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details,
        }


class MetadataError(ChainDelveError):
    """The block-explorer metadata service failed."""

    def __init__(self, message: str, address: Optional[str] = None):
        details = {"address": address} if address else {}
        super().__init__(message, "METADATA_ERROR", details)


class RpcError(ChainDelveError):
    """The ledger JSON-RPC endpoint returned an error object."""

    def __init__(self, method: str, error: Any):
        if isinstance(error, dict):
            message = error.get("message", str(error))
        else:
            message = str(error)
        super().__init__(f"{method}: {message}", "RPC_ERROR", {"method": method, "error": error})
        self.method = method
        self.error = error


class SnapshotError(ChainDelveError):
    """Taking or restoring a ledger snapshot failed."""

    def __init__(self, message: str, handle: Optional[str] = None):
        details = {"handle": handle} if handle else {}
        super().__init__(message, "SNAPSHOT_ERROR", details)


class MeasurementShapeError(ChainDelveError):
    """Two measurement sets cannot be compared position by position."""

    def __init__(self, message: str, position: Optional[int] = None):
        details = {"position": position} if position is not None else {}
        super().__init__(message, "MEASUREMENT_SHAPE_ERROR", details)


class TableFormatError(ChainDelveError, ValueError):
    """A data table is malformed (bad header or wrong row width)."""

    def __init__(self, message: str, line: Optional[int] = None):
        details = {"line": line} if line is not None else {}
        super().__init__(message, "TABLE_FORMAT_ERROR", details)


class ConfigError(ChainDelveError):
    """Configuration is missing or invalid."""

    def __init__(self, message: str, path: Optional[str] = None):
        details = {"path": path} if path else {}
        super().__init__(message, "CONFIG_ERROR", details)


def error_message(error: BaseException) -> str:
    """The text recorded for a failed measurement or action."""
    if isinstance(error, ChainDelveError):
        return error.message
    return str(error) or type(error).__name__
