"""Configuration loading and connection-parameter resolution."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse, urlunparse

import tomllib

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigError
from .models import ConnectionParameters, ErrorMode, FetchMode

CONFIG_FILE = Path.home() / ".config" / "dbreconnect" / "config.toml"


class DriverOptions(BaseModel):
    """Allow-listed driver options merged over the defaults."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    persistent: bool = True
    error_mode: ErrorMode = ErrorMode.RAISE
    fetch_mode: FetchMode = FetchMode.OBJECT


DEFAULT_DRIVER_OPTIONS = DriverOptions()


class DatabaseConfig(BaseModel):
    """The ``[database]`` table of config.toml."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    dsn: str | None = None
    host: str | None = None
    port: int | None = None
    database: str | None = None
    driver: str | None = "postgresql"
    user: str | None = None
    password: str | None = Field(default=None, alias="pass")
    charset: str = "utf8"
    connect_timeout: float = 10.0
    options: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> DatabaseConfig:
        """Validate raw config data, reporting problems as ``ConfigError``."""

        try:
            return cls.model_validate(dict(data))
        except ValidationError as exc:
            raise ConfigError(f"Invalid database configuration: {exc}") from exc


def merge_driver_options(
    overrides: Mapping[str, object] | DriverOptions | None,
    defaults: DriverOptions = DEFAULT_DRIVER_OPTIONS,
) -> DriverOptions:
    """Return ``defaults`` with ``overrides`` applied; unknown names are rejected."""

    if overrides is None:
        return defaults
    if isinstance(overrides, DriverOptions):
        updates = overrides.model_dump(exclude_unset=True)
    else:
        updates = dict(overrides)
    unknown = sorted(set(updates) - set(DriverOptions.model_fields))
    if unknown:
        raise ConfigError(f"Unsupported driver option(s): {', '.join(unknown)}")
    merged = defaults.model_dump()
    merged.update(updates)
    try:
        return DriverOptions.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid driver options: {exc}") from exc


def build_dsn(driver: str, host: str, database: str, port: int | None = None) -> str:
    """Synthesize a DSN from the host/database/driver triple."""

    netloc = f"{host}:{port}" if port is not None else host
    return f"{driver}://{netloc}/{database}"


def mask_dsn(dsn: str) -> str:
    """Hide an embedded password so the DSN can be logged."""

    try:
        parsed = urlparse(dsn)
        if parsed.password:
            netloc = parsed.netloc.replace(f":{parsed.password}@", ":***@")
            return urlunparse(parsed._replace(netloc=netloc))
        return dsn
    except ValueError:
        if "@" not in dsn:
            return dsn
        pre, post = dsn.split("@", 1)
        scheme_user = pre.rsplit(":", 1)[0]
        return f"{scheme_user}:***@{post}"


def resolve_parameters(config: DatabaseConfig | Mapping[str, object]) -> ConnectionParameters:
    """Turn a config record into immutable ``ConnectionParameters``."""

    if not isinstance(config, DatabaseConfig):
        config = DatabaseConfig.from_mapping(config)
    dsn = config.dsn
    if not dsn and config.host and config.database and config.driver:
        dsn = build_dsn(config.driver, config.host, config.database, config.port)
    if not dsn or config.user is None or config.password is None:
        raise ConfigError("DSN or host/driver/database, and/or user and/or pass, not supplied.")
    return ConnectionParameters(
        dsn=dsn,
        user=config.user,
        password=config.password,
        options=merge_driver_options(config.options),
        charset=config.charset,
        connect_timeout=config.connect_timeout,
    )


def load_config(path: Path | None = None) -> DatabaseConfig:
    """Load the database config from disk; fall back to defaults if missing."""

    try:
        data = _read_config_file(path or CONFIG_FILE)
    except FileNotFoundError:
        return DatabaseConfig()
    except (tomllib.TOMLDecodeError, OSError):
        return DatabaseConfig()
    return DatabaseConfig.from_mapping(data)


def save_config(config: DatabaseConfig, path: Path | None = None) -> None:
    """Persist the database config to disk."""

    target = path or CONFIG_FILE
    target.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = ["[database]"]
    for key in ("dsn", "host", "port", "database", "driver", "user"):
        value = getattr(config, key)
        if value is not None:
            lines.append(f"{key} = {_toml_value(value)}")
    if config.password is not None:
        lines.append(f"pass = {_toml_value(config.password)}")
    lines.append(f"charset = {_toml_value(config.charset)}")
    lines.append(f"connect_timeout = {_toml_value(config.connect_timeout)}")
    if config.options:
        lines.append("")
        lines.append("[database.options]")
        for name in sorted(config.options):
            lines.append(f"{name} = {_toml_value(config.options[name])}")
    target.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _read_config_file(path: Path) -> dict[str, object]:
    with path.open("rb") as handle:
        raw = tomllib.load(handle)
    section = raw.get("database")
    if not isinstance(section, dict):
        return {}
    return dict(section)


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, ErrorMode | FetchMode):
        return json.dumps(value.value, ensure_ascii=False)
    return json.dumps(str(value), ensure_ascii=False)


__all__ = [
    "CONFIG_FILE",
    "DEFAULT_DRIVER_OPTIONS",
    "DatabaseConfig",
    "DriverOptions",
    "build_dsn",
    "load_config",
    "mask_dsn",
    "merge_driver_options",
    "resolve_parameters",
    "save_config",
]
