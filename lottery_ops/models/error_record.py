from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the import error log.

One record per rejected import row (or per file-level failure). The key set is
fixed: timestamp, file, row, error_type, message. row=0 marks a file-level
error that is not tied to a data row.
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: Import file name (or validation token for commit-phase errors)
        row: Data row number (1-based). 0 for file-level errors
        error_type: ErrorKind value (UPPER_SNAKE)
        message: Human-readable reason
    """
    timestamp: str  # ISO8601 UTC
    file: str
    row: int  # 0 = ファイル単位のエラー
    error_type: str  # UPPER_SNAKE
    message: str

    @staticmethod
    def create(file: str, row: int, error_type: str, message: str) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            row=row,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        # dataclass -> dict で余計なキーを出さない
        return json.dumps(asdict(self), ensure_ascii=False)
