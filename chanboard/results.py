"""
Result type returned by every forum operation.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Optional


class ErrorKind(enum.Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    THREAD_LOCKED = "thread_locked"
    UNAUTHORIZED = "unauthorized"
    STORAGE = "storage"
    RATE_LIMITED = "rate_limited"


@dataclass(frozen=True)
class Result:
    """Success-with-data or failure-with-kind.

    Operations never raise past their own boundary; the HTTP layer maps
    ``error`` to a status code and ``message`` to the response body.
    """

    ok: bool
    data: Any = None
    error: Optional[ErrorKind] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, data: Any = None, message: str | None = None) -> "Result":
        return cls(ok=True, data=data, message=message)

    @classmethod
    def failure(cls, error: ErrorKind, message: str) -> "Result":
        return cls(ok=False, error=error, message=message)
