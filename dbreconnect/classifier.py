"""Decide whether a failure means the connection itself has gone stale."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

GENERIC_ERROR_CODE = "HY000"
STALE_CONNECTION_PHRASE = "server has gone away"


class FailureKind(str, Enum):
    """Outcome of classifying a failed operation."""

    STALE_CONNECTION = "stale_connection"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class FailureClassifier:
    """Narrow stale-connection matcher.

    A failure only counts as stale when its code is the driver's generic
    "unclassified" code *and* its message mentions the gone-away phrase. A
    false negative just means no automatic reconnect; a false positive could
    replay a write, so both conditions are required.
    """

    code: str = GENERIC_ERROR_CODE
    phrase: str = STALE_CONNECTION_PHRASE

    def classify(self, failure: BaseException) -> FailureKind:
        code = getattr(failure, "code", None)
        if code is None or str(code) != self.code:
            return FailureKind.OTHER
        message = getattr(failure, "message", None)
        if not isinstance(message, str):
            message = str(failure)
        if self.phrase.casefold() in message.casefold():
            return FailureKind.STALE_CONNECTION
        return FailureKind.OTHER

    def is_stale(self, failure: BaseException) -> bool:
        return self.classify(failure) is FailureKind.STALE_CONNECTION


DEFAULT_CLASSIFIER = FailureClassifier()

classify = DEFAULT_CLASSIFIER.classify
is_stale_connection = DEFAULT_CLASSIFIER.is_stale


__all__ = [
    "DEFAULT_CLASSIFIER",
    "FailureClassifier",
    "FailureKind",
    "GENERIC_ERROR_CODE",
    "STALE_CONNECTION_PHRASE",
    "classify",
    "is_stale_connection",
]
