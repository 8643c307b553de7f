"""Transparent reconnect-and-replay for long-running database clients."""

from __future__ import annotations

from .classifier import FailureClassifier, FailureKind, classify, is_stale_connection
from .config import DatabaseConfig, DriverOptions, load_config, merge_driver_options, resolve_parameters
from .connections import AsyncpgConnectionFactory, Connection, ConnectionFactory, Statement
from .errors import (
    ConcurrentAccessError,
    ConfigError,
    ConnectError,
    DatabaseError,
    DriverError,
    OperationError,
    StaleConnectionError,
)
from .models import ConnectionParameters, ErrorMode, FetchMode
from .proxy import Forwarded, ResilientConnection, forward_once

__version__ = "0.1.0"

__all__ = [
    "AsyncpgConnectionFactory",
    "ConcurrentAccessError",
    "ConfigError",
    "ConnectError",
    "Connection",
    "ConnectionFactory",
    "ConnectionParameters",
    "DatabaseConfig",
    "DatabaseError",
    "DriverError",
    "DriverOptions",
    "ErrorMode",
    "FailureClassifier",
    "FailureKind",
    "FetchMode",
    "Forwarded",
    "OperationError",
    "ResilientConnection",
    "StaleConnectionError",
    "Statement",
    "__version__",
    "classify",
    "forward_once",
    "is_stale_connection",
    "load_config",
    "merge_driver_options",
    "resolve_parameters",
]
