"""Tests for stale-connection classification."""

from __future__ import annotations

import pytest

from dbreconnect.classifier import FailureClassifier, FailureKind, classify, is_stale_connection
from dbreconnect.errors import DriverError, OperationError, StaleConnectionError


@pytest.mark.parametrize(
    ("code", "message", "expected"),
    [
        ("HY000", "MySQL server has gone away", FailureKind.STALE_CONNECTION),
        ("HY000", "SQLSTATE[HY000]: General error: 2006 MySQL SERVER HAS GONE AWAY", FailureKind.STALE_CONNECTION),
        ("HY000", "Duplicate entry '1' for key 'PRIMARY'", FailureKind.OTHER),
        ("23000", "server has gone away", FailureKind.OTHER),
        ("08006", "connection failure", FailureKind.OTHER),
    ],
)
def test_classify_requires_generic_code_and_gone_away_message(
    code: str, message: str, expected: FailureKind
) -> None:
    assert classify(DriverError(message, code=code)) is expected


def test_classify_ignores_exception_type() -> None:
    assert classify(OperationError("server has gone away", code="HY000")) is FailureKind.STALE_CONNECTION
    assert classify(StaleConnectionError("lost connection", code="HY000")) is FailureKind.OTHER


def test_classify_treats_errors_without_code_as_other() -> None:
    assert classify(RuntimeError("MySQL server has gone away")) is FailureKind.OTHER
    assert is_stale_connection(ConnectionResetError("server has gone away")) is False


def test_classify_falls_back_to_str_when_message_is_missing() -> None:
    class _PdoStyleError(Exception):
        code = "HY000"

    assert is_stale_connection(_PdoStyleError("2006 MySQL server has gone away")) is True


def test_custom_classifier_signature() -> None:
    classifier = FailureClassifier(code="08006", phrase="terminating connection")

    assert classifier.is_stale(DriverError("FATAL: Terminating connection due to timeout", code="08006"))
    assert not classifier.is_stale(DriverError("MySQL server has gone away", code="HY000"))
