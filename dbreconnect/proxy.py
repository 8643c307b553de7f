"""Resilient connection proxy: reconnect once and replay on a stale session."""

from __future__ import annotations

import logging
import operator
import threading
from dataclasses import dataclass
from typing import Any, Callable, Generic, Mapping, Protocol, Sequence, TypeVar

from .classifier import DEFAULT_CLASSIFIER, FailureClassifier
from .config import DEFAULT_DRIVER_OPTIONS, DatabaseConfig, mask_dsn, resolve_parameters
from .connections import AsyncpgConnectionFactory, Connection, ConnectionFactory, Statement
from .errors import ConcurrentAccessError, ConnectError
from .models import ConnectionParameters

LOG = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[Connection], T]
QueryParams = Mapping[int | str, object] | Sequence[object]

PING_SQL = "SELECT 1"


class ConnectionProvider(Protocol):
    """What ``forward_once`` needs from its owner."""

    def connection(self) -> Connection: ...

    def reconnect(self) -> Connection: ...


@dataclass(frozen=True, slots=True)
class Forwarded(Generic[T]):
    """Result of a forwarded operation plus how many reconnects it took."""

    result: T
    reconnects: int = 0


def forward_once(
    operation: Operation[T],
    provider: ConnectionProvider,
    classifier: FailureClassifier = DEFAULT_CLASSIFIER,
) -> Forwarded[T]:
    """Run ``operation`` and replay it exactly once after a stale-connection failure.

    Non-stale failures propagate untouched. The replay's outcome, success or
    failure, is final: a second stale failure is not retried.
    """

    connection = provider.connection()
    try:
        return Forwarded(operation(connection))
    except Exception as exc:
        if not classifier.is_stale(exc):
            raise
        LOG.warning(
            "Connection went stale; reconnecting and replaying once",
            extra={"code": getattr(exc, "code", None), "error": str(exc)},
        )
    replacement = provider.reconnect()
    return Forwarded(operation(replacement), reconnects=1)


class ResilientConnection:
    """Single-owner proxy that heals "server has gone away" failures.

    The proxy holds at most one live connection and opens it lazily. It is
    meant for one execution context at a time; run one proxy per worker or
    serialize access externally. Callers must not keep the object returned by
    :meth:`connection` across calls since a reconnect replaces it.
    """

    def __init__(
        self,
        params: ConnectionParameters,
        factory: ConnectionFactory | None = None,
        *,
        classifier: FailureClassifier = DEFAULT_CLASSIFIER,
        guard_reentry: bool = True,
    ) -> None:
        self._params = params
        self._owns_factory = factory is None
        self._factory = factory if factory is not None else AsyncpgConnectionFactory()
        self._classifier = classifier
        self._guard = threading.Lock() if guard_reentry else None
        self._connection: Connection | None = None
        self._connections_opened = 0
        self._reconnects = 0

    @classmethod
    def from_config(
        cls,
        config: DatabaseConfig | Mapping[str, object],
        factory: ConnectionFactory | None = None,
        **kwargs: Any,
    ) -> ResilientConnection:
        """Validate ``config`` and build a proxy from it."""

        return cls(resolve_parameters(config), factory, **kwargs)

    @property
    def params(self) -> ConnectionParameters:
        return self._params

    @property
    def connected(self) -> bool:
        return self._connection is not None

    @property
    def connections_opened(self) -> int:
        """Physical connections opened over the proxy's lifetime."""

        return self._connections_opened

    @property
    def reconnects(self) -> int:
        """Reconnects performed, automatic or explicit."""

        return self._reconnects

    def connect(self) -> Connection:
        """Open a new connection, initialize the session and make it current."""

        try:
            connection = self._factory.open(self._params)
        except ConnectError:
            raise
        except Exception as exc:
            raise ConnectError(f"Failed to connect to {mask_dsn(self._params.dsn)}: {exc}") from exc
        try:
            connection.set_charset(self._params.charset)
        except Exception as exc:
            _close_quietly(connection)
            raise ConnectError(f"Failed to initialize session: {exc}") from exc
        self._connection = connection
        self._connections_opened += 1
        LOG.debug("Connected", extra={"dsn": mask_dsn(self._params.dsn)})
        return connection

    def disconnect(self) -> None:
        """Release the current connection; safe to call when not connected."""

        connection, self._connection = self._connection, None
        if connection is None:
            return
        release = getattr(self._factory, "release", None)
        options = self._params.options or DEFAULT_DRIVER_OPTIONS
        if options.persistent and callable(release):
            release(connection)
        else:
            _close_quietly(connection)
        LOG.debug("Disconnected", extra={"dsn": mask_dsn(self._params.dsn)})

    def close(self) -> None:
        """Disconnect and stop the connection factory if this proxy created it."""

        self.disconnect()
        if self._owns_factory:
            self._owns_factory = False
            shutdown = getattr(self._factory, "shutdown", None)
            if callable(shutdown):
                shutdown()

    def reconnect(self) -> Connection:
        """Discard the current connection and open a fresh one."""

        connection, self._connection = self._connection, None
        if connection is not None:
            _close_quietly(connection)
        self._reconnects += 1
        return self.connect()

    def connection(self) -> Connection:
        """Return the live connection, opening one if needed."""

        if self._connection is None:
            return self.connect()
        return self._connection

    def ping(self) -> None:
        """Round-trip a trivial query, reconnecting if the session went stale."""

        self.query(PING_SQL)

    def forward(self, operation: Operation[T]) -> T:
        """Run ``operation`` against the connection with one stale-connection retry."""

        guard = self._guard
        if guard is not None and not guard.acquire(blocking=False):
            raise ConcurrentAccessError(
                "ResilientConnection is already running an operation; "
                "use one proxy per worker or serialize access"
            )
        try:
            forwarded = forward_once(operation, self, self._classifier)
        finally:
            if guard is not None:
                guard.release()
        return forwarded.result

    def call(self, name: str, /, *args: Any, **kwargs: Any) -> Any:
        """Invoke any connection method by name through :meth:`forward`."""

        return self.forward(operator.methodcaller(name, *args, **kwargs))

    def exec(self, sql: str) -> int | bool:
        """Run ``sql`` directly and return the affected row count."""

        return self.forward(lambda connection: connection.exec(sql))

    def query(
        self,
        sql: str,
        params: QueryParams | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> Statement:
        """Prepare, bind and execute ``sql`` as one retryable operation.

        Integer keys are 0-based and bind to 1-based positions; string keys
        bind ``:name`` placeholders. A plain sequence binds positionally.
        """

        prepare_options = dict(options or {})

        def _run(connection: Connection) -> Statement:
            statement = connection.prepare(sql, **prepare_options)
            for param, value in _bindings(params):
                statement.bind_value(param, value)
            statement.execute()
            return statement

        return self.forward(_run)

    def __enter__(self) -> ResilientConnection:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _bindings(params: QueryParams | None) -> list[tuple[int | str, object]]:
    if not params:
        return []
    if isinstance(params, Mapping):
        items = params.items()
    else:
        items = enumerate(params)
    bindings: list[tuple[int | str, object]] = []
    for key, value in items:
        if isinstance(key, int):
            bindings.append((key + 1, value))
        else:
            bindings.append((key if key.startswith(":") else f":{key}", value))
    return bindings


def _close_quietly(connection: Connection) -> None:
    try:
        connection.close()
    except Exception:
        LOG.debug("Ignoring failure while closing connection", exc_info=True)


__all__ = [
    "ConnectionProvider",
    "Forwarded",
    "Operation",
    "PING_SQL",
    "ResilientConnection",
    "forward_once",
]
