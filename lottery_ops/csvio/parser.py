from __future__ import annotations

import logging
import re

from lottery_ops.models.csv_models import (
    CsvParseOptions,
    CsvParseResult,
    ParsedRow,
    ParseIssue,
)
from lottery_ops.models.outcome import ErrorKind

"""Generic CSV tokenizer for bulk import files.

Pure functions over an in-memory buffer: no file or network I/O.

Pipeline:
    bytes --size check--> decode (UTF-8, BOM stripped) --> normalize newlines
          --> detect delimiter --> tokenize --> header mapping --> ParsedRow list

Parse-time failures (SIZE / FORMAT / HEADER) abort the parse and are returned in
CsvParseResult.errors. Row content is never validated here.
"""

__all__ = [
    "CANDIDATE_DELIMITERS",
    "detect_delimiter",
    "normalize_header",
    "parse_csv_buffer",
    "tokenize",
]

logger = logging.getLogger(__name__)

CANDIDATE_DELIMITERS = (",", ";", "\t", "|")  # 同数の場合は先頭 (カンマ) 優先
BOM = "\ufeff"
QUOTE = '"'

_WS_RE = re.compile(r"\s+")


def normalize_header(header: str) -> str:
    """Default header normalizer: trim, lowercase, whitespace runs -> '_'."""
    return _WS_RE.sub("_", header.strip().lower())


def detect_delimiter(first_line: str) -> str:
    """Pick the candidate delimiter occurring most often outside quoted spans.

    Ties resolve to the earlier candidate, so comma wins. A line with no
    candidate at all yields comma.
    """
    counts = dict.fromkeys(CANDIDATE_DELIMITERS, 0)
    in_quotes = False
    for ch in first_line:
        if ch == QUOTE:
            # "" の連続はトグル 2 回で相殺される
            in_quotes = not in_quotes
        elif not in_quotes and ch in counts:
            counts[ch] += 1
    best = CANDIDATE_DELIMITERS[0]
    for cand in CANDIDATE_DELIMITERS[1:]:
        if counts[cand] > counts[best]:
            best = cand
    return best


def tokenize(content: str, delimiter: str) -> list[list[str]]:
    """Split normalized content ('\\n' line endings) into records.

    Single pass with an in_quotes flag. Inside quotes a doubled quote is a
    literal quote and a lone quote closes the span. The last record is flushed
    without a trailing newline only when it has pending content.
    """
    records: list[list[str]] = []
    record: list[str] = []
    fld: list[str] = []
    in_quotes = False
    pending = False  # 現在のレコードに未確定の内容があるか
    i = 0
    n = len(content)
    while i < n:
        ch = content[i]
        if in_quotes:
            if ch == QUOTE:
                if i + 1 < n and content[i + 1] == QUOTE:
                    fld.append(QUOTE)
                    i += 1
                else:
                    in_quotes = False
            else:
                fld.append(ch)
        elif ch == QUOTE:
            in_quotes = True
            pending = True
        elif ch == delimiter:
            record.append("".join(fld))
            fld = []
            pending = True
        elif ch == "\n":
            record.append("".join(fld))
            records.append(record)
            record = []
            fld = []
            pending = False
        else:
            fld.append(ch)
            pending = True
        i += 1
    if pending:
        record.append("".join(fld))
        records.append(record)
    return records


def _issue(kind: ErrorKind, message: str, row_number: int = 0) -> ParseIssue:
    return ParseIssue(kind=kind, message=message, row_number=row_number)


def _failed(
    errors: list[ParseIssue],
    warnings: list[ParseIssue],
    delimiter: str = ",",
    headers: list[str] | None = None,
    mapping: dict[str, str] | None = None,
) -> CsvParseResult:
    return CsvParseResult(
        original_headers=headers or [],
        header_mapping=mapping or {},
        rows=[],
        delimiter=delimiter,
        errors=errors,
        warnings=warnings,
    )


def parse_csv_buffer(data: bytes, options: CsvParseOptions | None = None) -> CsvParseResult:
    """Parse a CSV buffer into header-mapped rows.

    Args:
        data: Raw file bytes (UTF-8, optional BOM, any newline convention)
        options: Tokenizer options. None = all defaults

    Returns:
        CsvParseResult. On SIZE / FORMAT / HEADER the result carries the error
        and no rows.
    """
    opts = options or CsvParseOptions()
    normalizer = opts.header_normalizer or normalize_header
    warnings: list[ParseIssue] = []

    if len(data) > opts.max_file_size:
        return _failed(
            [_issue(ErrorKind.SIZE, f"File size {len(data)} bytes exceeds maximum of {opts.max_file_size} bytes")],
            warnings,
        )

    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        return _failed([_issue(ErrorKind.FORMAT, f"File is not valid UTF-8 text: {e.reason} at byte {e.start}")], warnings)

    if text.startswith(BOM):
        text = text[len(BOM):]
        warnings.append(_issue(ErrorKind.FORMAT, "UTF-8 byte order mark removed"))

    text = text.replace("\r\n", "\n").replace("\r", "\n")
    if not text.strip():
        return _failed([_issue(ErrorKind.FORMAT, "File is empty or contains no lines")], warnings)

    delimiter = opts.delimiter or detect_delimiter(text.split("\n", 1)[0])
    records = tokenize(text, delimiter)
    if not records:
        return _failed([_issue(ErrorKind.FORMAT, "File is empty or contains no lines")], warnings, delimiter)

    def clean(values: list[str]) -> list[str]:
        return [v.strip() for v in values] if opts.trim_values else list(values)

    if opts.has_headers:
        original_headers = clean(records[0])
        body = records[1:]
    else:
        width = max(len(r) for r in records)
        original_headers = [f"column_{i}" for i in range(1, width + 1)]
        body = records

    normalized = [normalizer(h) for h in original_headers]
    header_mapping = dict(zip(original_headers, normalized))

    missing = [h for h in opts.required_headers if h not in normalized]
    if missing:
        return _failed(
            [_issue(ErrorKind.HEADER, f"Missing required column(s): {', '.join(missing)}")],
            warnings,
            delimiter,
            original_headers,
            header_mapping,
        )

    rows: list[ParsedRow] = []
    truncated = 0
    for idx, raw in enumerate(body, start=1):
        values = clean(raw)
        if opts.skip_empty_rows and all(v.strip() == "" for v in values):
            continue
        if len(rows) >= opts.max_rows:
            truncated += 1
            continue
        if len(values) > len(normalized):
            warnings.append(
                _issue(
                    ErrorKind.FORMAT,
                    f"Row has {len(values)} values but only {len(normalized)} columns; extra values ignored",
                    idx,
                )
            )
        padded = values + [""] * (len(normalized) - len(values))
        rows.append(ParsedRow(row_number=idx, raw_values=values, data=dict(zip(normalized, padded))))

    if truncated:
        warnings.append(
            _issue(
                ErrorKind.SIZE,
                f"File contains more than {opts.max_rows} data rows; {truncated} row(s) ignored",
            )
        )
        logger.warning(f"csv truncated at max_rows={opts.max_rows} dropped={truncated}")

    return CsvParseResult(
        original_headers=original_headers,
        header_mapping=header_mapping,
        rows=rows,
        delimiter=delimiter,
        errors=[],
        warnings=warnings,
    )
