"""Exception hierarchy shared by the proxy, the classifier and driver adapters."""

from __future__ import annotations


class DatabaseError(RuntimeError):
    """Base class for every error raised by dbreconnect."""


class ConfigError(DatabaseError, ValueError):
    """Raised when connection parameters are missing or invalid."""


class ConnectError(DatabaseError):
    """Raised when a connection cannot be opened or initialized."""


class ConcurrentAccessError(DatabaseError):
    """Raised when a proxy is used from two execution contexts at once."""


class DriverError(DatabaseError):
    """Failure reported by an open connection, carrying a structured code."""

    def __init__(self, message: str, *, code: str = "HY000") -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class StaleConnectionError(DriverError):
    """The server dropped the session (timeout, restart, "server has gone away")."""


class OperationError(DriverError):
    """Any other failure: bad SQL, constraint violations, type mismatches."""


__all__ = [
    "ConcurrentAccessError",
    "ConfigError",
    "ConnectError",
    "DatabaseError",
    "DriverError",
    "OperationError",
    "StaleConnectionError",
]
