"""Command line helpers for checking a configured database connection."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

from .config import CONFIG_FILE, load_config, resolve_parameters
from .connections import ConnectionFactory
from .errors import DatabaseError
from .models import FetchMode
from .proxy import QueryParams, ResilientConnection

LOG = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dbreconnect", description=__doc__)
    parser.add_argument("--config", type=Path, default=CONFIG_FILE, help=f"Config file (default: {CONFIG_FILE})")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("ping", help="Open a connection and round-trip SELECT 1")
    query = commands.add_parser("query", help="Run a statement and print its rows")
    query.add_argument("sql", help="SQL text with ? or :name placeholders")
    query.add_argument(
        "-p",
        "--param",
        action="append",
        default=[],
        metavar="[NAME=]VALUE",
        help="Bind a value; repeat for several parameters",
    )
    return parser


def main(argv: Sequence[str] | None = None, *, factory: ConnectionFactory | None = None) -> int:
    """Entry point for the ``dbreconnect`` console script."""

    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        params = _parse_params(args.param) if args.command == "query" else None
    except ValueError as exc:
        parser.error(str(exc))

    try:
        proxy = ResilientConnection(resolve_parameters(load_config(args.config)), factory)
        with proxy:
            if args.command == "ping":
                proxy.ping()
                print(f"ok (reconnects: {proxy.reconnects})")
            else:
                statement = proxy.query(args.sql, params)
                for row in statement.fetch_all(FetchMode.TUPLE):
                    print("\t".join("NULL" if value is None else str(value) for value in row))
    except DatabaseError as exc:
        LOG.debug("Command failed", exc_info=True)
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


def _parse_params(raw: Sequence[str]) -> QueryParams | None:
    if not raw:
        return None
    named = [item for item in raw if "=" in item]
    if not named:
        return [_coerce(item) for item in raw]
    if len(named) != len(raw):
        raise ValueError("mix of named (NAME=VALUE) and positional parameters")
    params: dict[int | str, object] = {}
    for item in named:
        name, value = item.split("=", 1)
        params[name.strip()] = _coerce(value)
    return params


def _coerce(value: str) -> object:
    for convert in (int, float):
        try:
            return convert(value)
        except ValueError:
            continue
    return value


__all__ = ["build_parser", "main"]
