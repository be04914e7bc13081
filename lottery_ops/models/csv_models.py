from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from .outcome import ErrorKind

"""CSV parsing models for the bulk import pipeline.

CsvParseOptions carries every tunable of the tokenizer with its default, and
CsvParseResult is the immutable value returned by a single parse call.
"""

__all__ = [
    "DEFAULT_MAX_FILE_SIZE",
    "DEFAULT_MAX_ROWS",
    "CsvParseOptions",
    "CsvParseResult",
    "ParseIssue",
    "ParsedRow",
]

DEFAULT_MAX_FILE_SIZE = 5 * 1024 * 1024  # 5MB
DEFAULT_MAX_ROWS = 1000


@dataclass(frozen=True)
class CsvParseOptions:
    """Tokenizer options.

    Attributes:
        max_file_size: Raw byte limit, checked before decoding
        max_rows: Data rows kept; extra rows are dropped with a warning
        delimiter: Fixed delimiter, or None to auto-detect from the first line
        has_headers: First record is the header row
        header_normalizer: Header name -> normalized key. None = default normalizer
        required_headers: Normalized headers that must be present
        skip_empty_rows: Drop records whose trimmed cells are all empty
        trim_values: Strip surrounding whitespace from every cell
    """
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    max_rows: int = DEFAULT_MAX_ROWS
    delimiter: str | None = None
    has_headers: bool = True
    header_normalizer: Callable[[str], str] | None = None
    required_headers: Sequence[str] = ()
    skip_empty_rows: bool = True
    trim_values: bool = True


@dataclass(frozen=True)
class ParseIssue:
    """File- or row-level parse problem. row_number=0 means file-level."""
    kind: ErrorKind | str
    message: str
    row_number: int = 0


@dataclass(frozen=True)
class ParsedRow:
    """One data record after header mapping.

    row_number is 1-based and counts data records after the header, including
    skipped empty records, so it stays aligned with what the user sees in the file.
    """
    row_number: int
    raw_values: list[str]
    data: dict[str, str]


@dataclass(frozen=True)
class CsvParseResult:
    original_headers: list[str]
    header_mapping: dict[str, str]  # original header -> normalized header
    rows: list[ParsedRow]
    delimiter: str
    errors: list[ParseIssue] = field(default_factory=list)
    warnings: list[ParseIssue] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def total_rows(self) -> int:
        return len(self.rows)
