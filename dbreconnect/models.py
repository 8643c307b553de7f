"""Shared value types used across the config, proxy and driver modules."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .config import DriverOptions


class ErrorMode(str, Enum):
    """How a driver reports a failed statement."""

    RAISE = "raise"
    WARNING = "warning"
    SILENT = "silent"


class FetchMode(str, Enum):
    """Shape of rows returned by a statement."""

    OBJECT = "object"
    MAPPING = "mapping"
    TUPLE = "tuple"


@dataclass(frozen=True, slots=True)
class ConnectionParameters:
    """Validated, immutable inputs for opening a connection."""

    dsn: str
    user: str
    password: str = ""
    options: DriverOptions | None = None
    charset: str = "utf8"
    connect_timeout: float = 10.0

    def __repr__(self) -> str:
        return (
            f"ConnectionParameters(dsn={self.dsn!r}, user={self.user!r}, password='***', "
            f"options={self.options!r}, charset={self.charset!r})"
        )


__all__ = ["ConnectionParameters", "ErrorMode", "FetchMode"]
