from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

"""Shared outcome types: error classification and side-channel results.

ErrorKind is the closed set of error classifications surfaced by the parser,
the import pipelines and the POS sync orchestrator. SideEffectResult is the
return value of every best-effort call (cache write, POS file export, audit log)
so that failures travel as data instead of exceptions.
"""

__all__ = [
    "AuditEntry",
    "ErrorKind",
    "SideEffectResult",
]


class ErrorKind(str, Enum):
    """Error classification (UPPER_SNAKE values are written to the error log)."""
    SIZE = "SIZE"  # file exceeds max size (parse-time, fatal)
    FORMAT = "FORMAT"  # empty / undecodable file (parse-time, fatal)
    HEADER = "HEADER"  # required header absent (parse-time, fatal)
    VALIDATION = "VALIDATION"  # row-level, row excluded
    DUPLICATE = "DUPLICATE"  # row-level, key already in catalog
    EXPIRED_TOKEN = "EXPIRED_TOKEN"
    ALREADY_COMMITTED = "ALREADY_COMMITTED"
    TOKEN_NOT_FOUND = "TOKEN_NOT_FOUND"
    CONSTRAINT_RACE = "CONSTRAINT_RACE"  # unique violation at commit, row counted as failed
    UNEXPECTED = "UNEXPECTED"


@dataclass(frozen=True)
class SideEffectResult:
    """Outcome of a best-effort side-channel call."""
    ok: bool
    error: str | None = None

    @staticmethod
    def success() -> SideEffectResult:
        return SideEffectResult(ok=True)

    @staticmethod
    def failure(error: str) -> SideEffectResult:
        return SideEffectResult(ok=False, error=error)


@dataclass(frozen=True)
class AuditEntry:
    """Audit log row written through the catalog store."""
    action: str
    table_name: str
    record_id: str | None
    user_id: str | None
    new_values: dict[str, Any] = field(default_factory=dict)
    reason: str | None = None
