"""Tests for the command line entry point."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from dbreconnect.cli import main
from dbreconnect.errors import StaleConnectionError
from dbreconnect.models import ConnectionParameters, FetchMode


class _FakeStatement:
    def __init__(self, factory: "_FakeFactory", sql: str) -> None:
        self.factory = factory
        self.sql = sql
        self.bound: dict[int | str, object] = {}

    def bind_value(self, param: int | str, value: object) -> bool:
        self.bound[param] = value
        return True

    def execute(self, params=None) -> bool:  # type: ignore[no-untyped-def]
        self.factory.statements.append(self)
        if self.factory.stale_once:
            self.factory.stale_once = False
            raise StaleConnectionError("server has gone away", code="HY000")
        return True

    def fetch_all(self, mode: FetchMode | None = None) -> list[tuple[object, ...]]:
        assert mode is FetchMode.TUPLE
        return [(1, "alice"), (2, None)]


class _FakeConnection:
    def __init__(self, factory: "_FakeFactory") -> None:
        self.factory = factory
        self.closed = False

    def prepare(self, sql: str, **options: Any) -> _FakeStatement:
        return _FakeStatement(self.factory, sql)

    def set_charset(self, charset: str) -> None:
        return None

    def close(self) -> None:
        self.closed = True


class _FakeFactory:
    def __init__(self, *, stale_once: bool = False) -> None:
        self.stale_once = stale_once
        self.opened: list[ConnectionParameters] = []
        self.statements: list[_FakeStatement] = []

    def open(self, params: ConnectionParameters) -> _FakeConnection:
        self.opened.append(params)
        return _FakeConnection(self)


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    path = tmp_path / "config.toml"
    path.write_text(
        """
[database]
dsn = "postgresql://db/app"
user = "app"
pass = "secret"
"""
    )
    return path


def test_ping_reports_reconnects(config_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    factory = _FakeFactory(stale_once=True)

    exit_code = main(["--config", str(config_path), "ping"], factory=factory)

    assert exit_code == 0
    assert capsys.readouterr().out.strip() == "ok (reconnects: 1)"
    assert len(factory.opened) == 2


def test_query_prints_rows_and_binds_named_params(config_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    factory = _FakeFactory()

    exit_code = main(
        ["--config", str(config_path), "query", "SELECT id, name FROM t WHERE id > :id", "-p", "id=0"],
        factory=factory,
    )

    assert exit_code == 0
    assert capsys.readouterr().out.splitlines() == ["1\talice", "2\tNULL"]
    assert factory.statements[0].bound == {":id": 0}


def test_query_binds_positional_params(config_path: Path) -> None:
    factory = _FakeFactory()

    main(["--config", str(config_path), "query", "SELECT ?, ?", "-p", "1.5", "-p", "x"], factory=factory)

    assert factory.statements[0].bound == {1: 1.5, 2: "x"}


def test_missing_credentials_exit_with_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = main(["--config", str(tmp_path / "absent.toml"), "ping"], factory=_FakeFactory())

    assert exit_code == 1
    assert capsys.readouterr().err.startswith("error: ")


def test_mixed_params_are_rejected(config_path: Path) -> None:
    with pytest.raises(SystemExit):
        main(["--config", str(config_path), "query", "SELECT ?", "-p", "a=1", "-p", "2"], factory=_FakeFactory())
