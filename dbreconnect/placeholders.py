"""Rewrite ``?`` and ``:name`` placeholders into asyncpg's ``$n`` parameters."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Mapping, Sequence

from sqlglot.errors import TokenError
from sqlglot.dialects.postgres import Postgres
from sqlglot.tokens import Token, TokenType

from .errors import OperationError

PARAMETER_NUMBER_CODE = "HY093"
SYNTAX_ERROR_CODE = "42000"

_DIALECT = Postgres()
_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True, slots=True)
class CompiledSql:
    """SQL text with numbered parameters plus the binding layout."""

    text: str
    positional: int = 0
    names: tuple[str, ...] = ()

    @property
    def parameter_count(self) -> int:
        return self.positional or len(self.names)

    def arguments(self, bound: Mapping[int | str, object]) -> list[object]:
        """Order bound values to match the ``$n`` parameters."""

        keys: Sequence[int | str]
        if self.positional:
            keys = range(1, self.positional + 1)
        else:
            keys = self.names
        missing = [key for key in keys if key not in bound]
        if missing:
            raise OperationError(
                f"Invalid parameter number: parameter(s) {_describe(missing)} were not bound",
                code=PARAMETER_NUMBER_CODE,
            )
        return [bound[key] for key in keys]


def compile_placeholders(sql: str) -> CompiledSql:
    """Translate placeholders outside of literals and comments."""

    try:
        tokens = _DIALECT.tokenize(sql)
    except TokenError as exc:
        raise OperationError(f"Syntax error: {exc}", code=SYNTAX_ERROR_CODE) from exc

    spans: list[tuple[int, int, int | str]] = []
    positional = 0
    names: list[str] = []
    index = 0
    while index < len(tokens):
        token = tokens[index]
        if token.token_type == TokenType.PLACEHOLDER and token.text == "?":
            positional += 1
            spans.append((token.start, token.end, positional))
        elif token.token_type == TokenType.COLON and index + 1 < len(tokens):
            following = tokens[index + 1]
            if _is_adjacent_name(token, following):
                if following.text not in names:
                    names.append(following.text)
                spans.append((token.start, following.end, following.text))
                index += 1
        index += 1

    if positional and names:
        raise OperationError(
            "Invalid parameter number: mixed named and positional parameters",
            code=PARAMETER_NUMBER_CODE,
        )
    if not spans:
        return CompiledSql(text=sql)

    parts: list[str] = []
    cursor = 0
    for start, end, key in spans:
        slot = key if isinstance(key, int) else names.index(key) + 1
        parts.append(sql[cursor:start])
        parts.append(f"${slot}")
        cursor = end + 1
    parts.append(sql[cursor:])
    return CompiledSql(text="".join(parts), positional=positional, names=tuple(names))


def _is_adjacent_name(colon: Token, following: Token) -> bool:
    return following.start == colon.end + 1 and bool(_NAME_RE.match(following.text))


def _describe(keys: Sequence[int | str]) -> str:
    return ", ".join(f":{key}" if isinstance(key, str) else str(key) for key in keys)


__all__ = ["CompiledSql", "compile_placeholders"]
