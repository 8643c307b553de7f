"""Tests for placeholder rewriting."""

from __future__ import annotations

import pytest

from dbreconnect.errors import OperationError
from dbreconnect.placeholders import CompiledSql, compile_placeholders


def test_positional_placeholders_are_numbered_in_order() -> None:
    compiled = compile_placeholders("SELECT * FROM t WHERE a = ? AND b = ?")

    assert compiled.text == "SELECT * FROM t WHERE a = $1 AND b = $2"
    assert compiled.positional == 2
    assert compiled.names == ()


def test_named_placeholders_share_a_slot_when_repeated() -> None:
    compiled = compile_placeholders("SELECT * FROM t WHERE id = :id OR parent_id = :id AND kind = :kind")

    assert compiled.text == "SELECT * FROM t WHERE id = $1 OR parent_id = $1 AND kind = $2"
    assert compiled.names == ("id", "kind")
    assert compiled.parameter_count == 2


def test_literals_comments_and_casts_are_left_alone() -> None:
    compiled = compile_placeholders("SELECT '?', ':skip', id::text FROM t WHERE id = ? -- really?\n")

    assert compiled.text == "SELECT '?', ':skip', id::text FROM t WHERE id = $1 -- really?\n"
    assert compiled.positional == 1


def test_sql_without_placeholders_is_unchanged() -> None:
    compiled = compile_placeholders("SET NAMES 'utf8'")

    assert compiled == CompiledSql(text="SET NAMES 'utf8'")

def test_dollar_quoted_bodies_are_left_alone() -> None:
    compiled = compile_placeholders("SELECT $$it's ? here$$ WHERE id = ?")

    assert compiled.text == "SELECT $$it's ? here$$ WHERE id = $1"
    assert compiled.positional == 1


def test_tagged_dollar_quotes_hide_named_placeholders() -> None:
    compiled = compile_placeholders("SELECT $tag$ :x $tag$ WHERE id = ?")

    assert compiled.text == "SELECT $tag$ :x $tag$ WHERE id = $1"
    assert compiled.positional == 1
    assert compiled.names == ()


def test_escape_string_literals_are_left_alone() -> None:
    compiled = compile_placeholders("SELECT E'it\\'s ?' WHERE id = ?")

    assert compiled.text == "SELECT E'it\\'s ?' WHERE id = $1"
    assert compiled.positional == 1



def test_mixed_placeholders_are_rejected() -> None:
    with pytest.raises(OperationError) as excinfo:
        compile_placeholders("SELECT * FROM t WHERE a = ? AND b = :b")

    assert excinfo.value.code == "HY093"


def test_unterminated_literal_is_a_syntax_error() -> None:
    with pytest.raises(OperationError) as excinfo:
        compile_placeholders("SELECT 'oops")

    assert excinfo.value.code == "42000"


def test_arguments_follow_slot_order_and_require_every_binding() -> None:
    named = compile_placeholders("SELECT :b, :a")
    positional = compile_placeholders("SELECT ?, ?")

    assert named.arguments({"a": 1, "b": 2}) == [2, 1]
    assert positional.arguments({2: "y", 1: "x"}) == ["x", "y"]
    with pytest.raises(OperationError) as excinfo:
        positional.arguments({1: "x"})
    assert excinfo.value.code == "HY093"
