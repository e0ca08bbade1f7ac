"""Explicit success/failure values returned at component boundaries."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Failure categories; callers collapse all of them to "no data"."""

    PARSE = "parse"  # Malformed URL
    NETWORK = "network"  # Transport error, timeout or non-2xx after retries
    STORAGE = "storage"  # SQLite / session store fault
    PROTOCOL = "protocol"  # Remote answered with an unusable payload


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str = ""

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]
