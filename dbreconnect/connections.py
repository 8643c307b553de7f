"""Connection factory and synchronous asyncpg connection/statement facades."""

from __future__ import annotations

import asyncio
import logging
import threading
from types import SimpleNamespace
from typing import Any, Coroutine, Iterator, Mapping, NoReturn, Protocol, Sequence, TypeVar, runtime_checkable

import asyncpg

from .classifier import GENERIC_ERROR_CODE, STALE_CONNECTION_PHRASE
from .config import DEFAULT_DRIVER_OPTIONS, DriverOptions, mask_dsn
from .errors import ConnectError, DriverError, OperationError, StaleConnectionError
from .models import ConnectionParameters, ErrorMode, FetchMode
from .placeholders import PARAMETER_NUMBER_CODE, CompiledSql, compile_placeholders

LOG = logging.getLogger(__name__)

T = TypeVar("T")

# admin_shutdown, crash_shutdown, cannot_connect_now, idle_session_timeout,
# idle_in_transaction_session_timeout
_LOST_CONNECTION_SQLSTATES = frozenset({"57P01", "57P02", "57P03", "57P05", "25P03"})


@runtime_checkable
class Statement(Protocol):
    """Prepared statement contract."""

    def bind_value(self, param: int | str, value: object) -> bool:
        """Bind ``value`` to a 1-based position or a ``:name`` placeholder."""

    def execute(self, params: Sequence[object] | Mapping[str, object] | None = None) -> bool:
        """Run the statement with the bound values."""

    def fetch(self, mode: FetchMode | None = None) -> Any:
        """Return the next row, or ``None`` once exhausted."""

    def fetch_all(self, mode: FetchMode | None = None) -> list[Any]:
        """Return every remaining row."""


@runtime_checkable
class Connection(Protocol):
    """Live database session contract."""

    def prepare(self, sql: str, **options: Any) -> Statement:
        """Compile ``sql`` into a statement."""

    def exec(self, sql: str) -> int | bool:
        """Run ``sql`` directly and return the affected row count."""

    def set_charset(self, charset: str) -> None:
        """Apply the session character encoding."""

    def is_closed(self) -> bool:
        """Whether the session has been torn down."""

    def close(self) -> None:
        """Tear the session down."""


@runtime_checkable
class ConnectionFactory(Protocol):
    """Opens physical connections from validated parameters."""

    def open(self, params: ConnectionParameters) -> Connection:
        """Open a connection or raise ``ConnectError``."""


def translate_error(exc: BaseException) -> DriverError:
    """Map a driver exception onto the structured ``DriverError`` family."""

    if isinstance(exc, DriverError):
        return exc
    if _is_connection_lost(exc):
        return StaleConnectionError(
            f"{STALE_CONNECTION_PHRASE}: {exc or type(exc).__name__}",
            code=GENERIC_ERROR_CODE,
        )
    sqlstate = getattr(exc, "sqlstate", None)
    return OperationError(
        str(exc) or type(exc).__name__,
        code=sqlstate if isinstance(sqlstate, str) and sqlstate else GENERIC_ERROR_CODE,
    )


def _is_connection_lost(exc: BaseException) -> bool:
    sqlstate = getattr(exc, "sqlstate", None)
    if isinstance(sqlstate, str) and (sqlstate.startswith("08") or sqlstate in _LOST_CONNECTION_SQLSTATES):
        return True
    if isinstance(exc, asyncpg.InterfaceError) and "closed" in str(exc).lower():
        return True
    return isinstance(exc, OSError) and not isinstance(exc, TimeoutError)


class AsyncpgConnectionFactory:
    """Opens PostgreSQL sessions via asyncpg on a background event loop."""

    def __init__(self, *, loop_name: str = "dbreconnect-asyncpg") -> None:
        self._idle: dict[tuple[str, str], list[AsyncpgConnection]] = {}
        self._loop = asyncio.new_event_loop()
        self._loop_thread = threading.Thread(
            target=self._loop.run_forever,
            name=loop_name,
            daemon=True,
        )
        self._loop_thread.start()

    def open(self, params: ConnectionParameters) -> AsyncpgConnection:
        options = params.options or DEFAULT_DRIVER_OPTIONS
        if options.persistent:
            parked = self._take_idle(params)
            if parked is not None:
                LOG.debug("Reusing persistent connection", extra={"dsn": mask_dsn(params.dsn)})
                return parked
        try:
            raw = self._run(
                asyncpg.connect(
                    dsn=params.dsn,
                    user=params.user,
                    password=params.password,
                    timeout=params.connect_timeout,
                )
            )
        except Exception as exc:
            raise ConnectError(f"Failed to connect to {mask_dsn(params.dsn)}: {exc}") from exc
        LOG.debug("Opened connection", extra={"dsn": mask_dsn(params.dsn)})
        return AsyncpgConnection(raw, self._run, options=options, key=_cache_key(params))

    def release(self, connection: AsyncpgConnection) -> None:
        """Park a healthy connection for reuse by the next ``open()``."""

        if connection.is_closed() or connection.key is None:
            return
        self._idle.setdefault(connection.key, []).append(connection)

    def shutdown(self) -> None:
        """Close parked connections and stop the background loop."""

        parked = [conn for conns in self._idle.values() for conn in conns]
        self._idle.clear()
        for connection in parked:
            try:
                connection.close()
            except Exception:  # pragma: no cover - best effort
                LOG.debug("Ignoring close failure for parked connection", exc_info=True)
        if not self._loop.is_running():  # pragma: no cover - defensive
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._loop_thread.join(timeout=1)

    def __del__(self) -> None:
        # Must not wait on the loop thread: it may already be gone at
        # interpreter shutdown.
        parked = [conn for conns in self._idle.values() for conn in conns]
        self._idle.clear()
        if not self._loop.is_running():
            return
        for connection in parked:
            self._loop.call_soon_threadsafe(connection.terminate)
        self._loop.call_soon_threadsafe(self._loop.stop)

    def _take_idle(self, params: ConnectionParameters) -> AsyncpgConnection | None:
        parked = self._idle.get(_cache_key(params), [])
        while parked:
            connection = parked.pop()
            if not connection.is_closed():
                return connection
        return None

    def _run(self, coro: Coroutine[Any, Any, T]) -> T:
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result()


class AsyncpgConnection:
    """Blocking facade over an ``asyncpg.Connection``."""

    def __init__(
        self,
        raw: asyncpg.Connection,
        run: Any,
        *,
        options: DriverOptions = DEFAULT_DRIVER_OPTIONS,
        key: tuple[str, str] | None = None,
    ) -> None:
        self._raw = raw
        self._run = run
        self._options = options
        self._last_error: DriverError | None = None
        self.key = key

    @property
    def options(self) -> DriverOptions:
        return self._options

    def prepare(
        self,
        sql: str,
        *,
        fetch_mode: FetchMode | str | None = None,
        timeout: float | None = None,
    ) -> AsyncpgStatement:
        compiled = compile_placeholders(sql)
        try:
            prepared = self._run(self._raw.prepare(compiled.text, timeout=timeout))
        except Exception as exc:
            _raise_translated(exc)
        return AsyncpgStatement(
            prepared,
            compiled,
            self._run,
            options=self._options,
            fetch_mode=FetchMode(fetch_mode) if fetch_mode is not None else None,
            timeout=timeout,
        )

    def exec(self, sql: str) -> int | bool:
        try:
            status = self._run(self._raw.execute(sql))
        except Exception as exc:
            return self._fail(exc)
        self._last_error = None
        return _affected_rows(status)

    def set_charset(self, charset: str) -> None:
        self._run(self._raw.execute(f"SET NAMES {self.quote(charset)}"))

    def begin(self) -> None:
        self._simple("BEGIN")

    def commit(self) -> None:
        self._simple("COMMIT")

    def rollback(self) -> None:
        self._simple("ROLLBACK")

    def in_transaction(self) -> bool:
        return bool(self._raw.is_in_transaction())

    def last_insert_id(self, sequence: str | None = None) -> int:
        try:
            if sequence is None:
                return self._run(self._raw.fetchval("SELECT lastval()"))
            return self._run(self._raw.fetchval("SELECT currval($1)", sequence))
        except Exception as exc:
            _raise_translated(exc)

    def quote(self, value: object) -> str:
        """Quote ``value`` as a SQL string literal."""

        text = str(value).replace("'", "''")
        return f"'{text}'"

    def server_version(self) -> str:
        version = self._raw.get_server_version()
        return f"{version.major}.{version.minor}"

    def error_info(self) -> tuple[str, str] | None:
        if self._last_error is None:
            return None
        return self._last_error.code, self._last_error.message

    def is_closed(self) -> bool:
        return bool(self._raw.is_closed())

    def close(self) -> None:
        if self._raw.is_closed():
            return
        self._run(self._raw.close())

    def terminate(self) -> None:
        """Abort the session without a graceful close; never blocks."""

        if not self._raw.is_closed():
            self._raw.terminate()

    def _simple(self, sql: str) -> None:
        try:
            self._run(self._raw.execute(sql))
        except Exception as exc:
            _raise_translated(exc)

    def _fail(self, exc: BaseException) -> bool:
        error = translate_error(exc)
        self._last_error = error
        return _apply_error_mode(self._options.error_mode, error, exc)


class AsyncpgStatement:
    """Prepared, bindable statement with PDO-style fetch helpers."""

    def __init__(
        self,
        prepared: Any,
        compiled: CompiledSql,
        run: Any,
        *,
        options: DriverOptions = DEFAULT_DRIVER_OPTIONS,
        fetch_mode: FetchMode | None = None,
        timeout: float | None = None,
    ) -> None:
        self._prepared = prepared
        self._compiled = compiled
        self._run = run
        self._options = options
        self._fetch_mode = fetch_mode or options.fetch_mode
        self._timeout = timeout
        self._bound: dict[int | str, object] = {}
        self._rows: list[Any] = []
        self._cursor = 0
        self._status = ""
        self._last_error: DriverError | None = None

    @property
    def sql(self) -> str:
        return self._compiled.text

    def bind_value(self, param: int | str, value: object) -> bool:
        self._bound[self._normalize(param)] = value
        return True

    bind_param = bind_value

    def execute(self, params: Sequence[object] | Mapping[str, object] | None = None) -> bool:
        bound = dict(self._bound)
        if params is not None:
            if isinstance(params, Mapping):
                items = params.items()
            else:
                items = enumerate(params, start=1)
            for key, value in items:
                bound[self._normalize(key)] = value
        try:
            args = self._compiled.arguments(bound)
            records = self._run(self._prepared.fetch(*args, timeout=self._timeout))
        except Exception as exc:
            return self._fail(exc)
        self._rows = list(records)
        self._cursor = 0
        self._status = self._prepared.get_statusmsg() or ""
        self._last_error = None
        return True

    def fetch(self, mode: FetchMode | None = None) -> Any:
        if self._cursor >= len(self._rows):
            return None
        record = self._rows[self._cursor]
        self._cursor += 1
        return _shape(record, mode or self._fetch_mode)

    def fetch_all(self, mode: FetchMode | None = None) -> list[Any]:
        remaining = self._rows[self._cursor:]
        self._cursor = len(self._rows)
        return [_shape(record, mode or self._fetch_mode) for record in remaining]

    def fetch_column(self, index: int = 0) -> Any:
        row = self.fetch(FetchMode.TUPLE)
        if row is None:
            return None
        return row[index]

    def row_count(self) -> int:
        if not self._status:
            return 0
        return _affected_rows(self._status)

    def column_names(self) -> tuple[str, ...]:
        return tuple(attr.name for attr in self._prepared.get_attributes())

    def close_cursor(self) -> bool:
        self._rows = []
        self._cursor = 0
        return True

    def error_info(self) -> tuple[str, str] | None:
        if self._last_error is None:
            return None
        return self._last_error.code, self._last_error.message

    def __iter__(self) -> Iterator[Any]:
        while True:
            row = self.fetch()
            if row is None:
                return
            yield row

    def _normalize(self, param: int | str) -> int | str:
        compiled = self._compiled
        if isinstance(param, int):
            if not compiled.positional or not 1 <= param <= compiled.positional:
                raise OperationError(
                    f"Invalid parameter number: position {param} is not defined",
                    code=PARAMETER_NUMBER_CODE,
                )
            return param
        name = param[1:] if param.startswith(":") else param
        if name not in compiled.names:
            raise OperationError(
                f"Invalid parameter number: :{name} is not defined",
                code=PARAMETER_NUMBER_CODE,
            )
        return name

    def _fail(self, exc: BaseException) -> bool:
        error = translate_error(exc)
        self._last_error = error
        return _apply_error_mode(self._options.error_mode, error, exc)


def _raise_translated(exc: BaseException) -> NoReturn:
    error = translate_error(exc)
    if error is exc:
        raise error
    raise error from exc


def _apply_error_mode(mode: ErrorMode, error: DriverError, cause: BaseException) -> bool:
    if mode is ErrorMode.RAISE:
        if error is cause:
            raise error
        raise error from cause
    if mode is ErrorMode.WARNING:
        LOG.warning("Statement failed", extra={"code": error.code, "error": error.message})
    return False


def _affected_rows(status: str) -> int:
    tail = status.rsplit(" ", 1)[-1] if status else ""
    return int(tail) if tail.isdigit() else 0


def _shape(record: Any, mode: FetchMode) -> Any:
    if mode is FetchMode.TUPLE:
        return tuple(record.values())
    data = dict(record.items())
    if mode is FetchMode.MAPPING:
        return data
    return SimpleNamespace(**data)


def _cache_key(params: ConnectionParameters) -> tuple[str, str]:
    return params.dsn, params.user


__all__ = [
    "AsyncpgConnection",
    "AsyncpgConnectionFactory",
    "AsyncpgStatement",
    "Connection",
    "ConnectionFactory",
    "Statement",
    "translate_error",
]
