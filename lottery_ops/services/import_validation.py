from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

from lottery_ops.config.loader import ImportSettings
from lottery_ops.csvio.game_schema import (
    REQUIRED_HEADERS,
    normalize_import_header,
    validate_game_row,
)
from lottery_ops.csvio.parser import parse_csv_buffer
from lottery_ops.db.catalog_store import CatalogStore
from lottery_ops.models.csv_models import CsvParseOptions, ParseIssue
from lottery_ops.models.import_models import (
    DuplicateRow,
    ErrorRow,
    ExistingGame,
    ImportStatus,
    PendingImport,
    PreviewSummary,
    ValidatedRow,
    ValidateImportParams,
    ValidateImportResult,
    ValidRow,
)
from lottery_ops.models.outcome import ErrorKind
from lottery_ops.services.clock import Clock, utc_now

"""Import validation ("prepare") phase.

validate() checks the target state, parses the CSV, classifies every row and,
when at least one row is valid, persists a pending import with a single-use
token that expires after token_ttl_minutes (15 by default).

Row classification order:
    1. schema validation          -> ErrorRow
    2. duplicate within the file  -> ErrorRow (first occurrence wins)
    3. catalog lookup             -> ValidRow(update) | DuplicateRow | ValidRow(create)
"""

__all__ = [
    "ImportValidator",
    "cleanup_expired_imports",
    "get_import_status",
    "get_user_import_history",
    "row_error_kind",
]

logger = logging.getLogger(__name__)

MSG_STATE_NOT_FOUND = "Invalid state ID. State not found."
MSG_NO_DATA_ROWS = "CSV file contains no data rows."
MSG_NO_VALID_ROWS = "No valid games to import. Please fix errors and try again."
DUPLICATE_IN_FILE_PREFIX = "Duplicate game_code"


def row_error_kind(row: ErrorRow) -> ErrorKind:
    """Error-log classification of an error row."""
    if any(e.startswith(DUPLICATE_IN_FILE_PREFIX) for e in row.errors):
        return ErrorKind.DUPLICATE
    return ErrorKind.VALIDATION


def _new_token() -> str:
    return str(uuid.uuid4())


def _issue_text(issue: ParseIssue) -> str:
    if issue.row_number > 0:
        return f"Row {issue.row_number}: {issue.message}"
    return issue.message


def _rejected(
    kind: ErrorKind, errors: list[str], warnings: list[str] | None = None
) -> ValidateImportResult:
    return ValidateImportResult(
        success=False,
        preview=PreviewSummary(),
        rows=[],
        errors=errors,
        warnings=warnings or [],
        error_code=kind.value,
    )


class ImportValidator:
    def __init__(
        self,
        store: CatalogStore,
        settings: ImportSettings | None = None,
        clock: Clock = utc_now,
        token_factory: Callable[[], str] = _new_token,
    ) -> None:
        self.store = store
        self.settings = settings or ImportSettings()
        self.clock = clock
        self.token_factory = token_factory

    def _parse_options(self) -> CsvParseOptions:
        return CsvParseOptions(
            max_file_size=self.settings.max_file_size_bytes,
            max_rows=self.settings.max_rows,
            header_normalizer=normalize_import_header,
            required_headers=REQUIRED_HEADERS,
            skip_empty_rows=True,
            trim_values=True,
        )

    def validate(self, params: ValidateImportParams) -> ValidateImportResult:
        state = self.store.find_state_by_id(params.state_id)
        if state is None:
            return _rejected(ErrorKind.VALIDATION, [MSG_STATE_NOT_FOUND])
        if not state.is_active:
            return _rejected(ErrorKind.VALIDATION, [f"State {state.name} is not active."])
        if not state.lottery_enabled:
            return _rejected(
                ErrorKind.VALIDATION, [f"Lottery operations are not enabled for {state.name}."]
            )

        parsed = parse_csv_buffer(params.file_buffer, self._parse_options())
        warnings = [_issue_text(w) for w in parsed.warnings]
        if not parsed.success:
            return _rejected(
                parsed.errors[0].kind, [_issue_text(e) for e in parsed.errors], warnings
            )
        if parsed.total_rows == 0:
            return _rejected(ErrorKind.FORMAT, [MSG_NO_DATA_ROWS], warnings)

        existing_by_code = {
            g.game_code: g for g in self.store.list_active_games_by_state(params.state_id)
        }
        update_existing = params.options.update_existing

        rows: list[ValidatedRow] = []
        seen_codes: dict[str, int] = {}  # game_code -> 最初に出現した行番号
        valid = errors = duplicates = to_create = to_update = 0

        for prow in parsed.rows:
            game, messages = validate_game_row(prow.data, self.settings.default_pack_value)
            if game is None:
                rows.append(ErrorRow(row_number=prow.row_number, data=dict(prow.data), errors=messages))
                errors += 1
                continue

            first_row = seen_codes.get(game.game_code)
            if first_row is not None:
                rows.append(
                    ErrorRow(
                        row_number=prow.row_number,
                        data=dict(prow.data),
                        errors=[f"{DUPLICATE_IN_FILE_PREFIX} {game.game_code} (also on row {first_row})"],
                    )
                )
                errors += 1
                continue
            seen_codes[game.game_code] = prow.row_number

            existing = existing_by_code.get(game.game_code)
            if existing is None:
                rows.append(ValidRow(row_number=prow.row_number, data=game, action="create"))
                valid += 1
                to_create += 1
                continue

            snapshot = ExistingGame(
                game_id=existing.game_id,
                name=existing.name,
                price=existing.price,
                status=existing.status,
            )
            if update_existing:
                rows.append(
                    ValidRow(row_number=prow.row_number, data=game, action="update", existing_game=snapshot)
                )
                valid += 1
                to_update += 1
            else:
                rows.append(DuplicateRow(row_number=prow.row_number, data=game, existing_game=snapshot))
                duplicates += 1

        preview = PreviewSummary(
            total_rows=parsed.total_rows,
            valid_rows=valid,
            error_rows=errors,
            duplicate_rows=duplicates,
            games_to_create=to_create,
            games_to_update=to_update,
        )
        logger.info(
            f"import validated state={state.code} rows={preview.total_rows} valid={valid} "
            f"errors={errors} duplicates={duplicates}"
        )

        if valid == 0:
            return ValidateImportResult(
                success=False,
                preview=preview,
                rows=rows,
                errors=[MSG_NO_VALID_ROWS],
                warnings=warnings,
                error_code=ErrorKind.VALIDATION.value,
            )

        expires_at = self.clock() + timedelta(minutes=self.settings.token_ttl_minutes)
        pending = self.store.create_pending_import(
            state_id=params.state_id,
            created_by_user_id=params.user_id,
            validated_rows=rows,
            import_options=params.options,
            total_rows=preview.total_rows,
            valid_rows=valid,
            error_rows=errors,
            duplicate_rows=duplicates,
            validation_token=self.token_factory(),
            expires_at=expires_at,
        )
        return ValidateImportResult(
            success=True,
            preview=preview,
            rows=rows,
            errors=[],
            validation_token=pending.validation_token,
            expires_at=pending.expires_at,
            warnings=warnings,
        )


def get_import_status(store: CatalogStore, token: str, clock: Clock = utc_now) -> ImportStatus | None:
    pending = store.find_pending_import_by_token(token)
    if pending is None:
        return None
    return _status_of(pending, clock())


def _status_of(pending: PendingImport, now: datetime) -> ImportStatus:
    return ImportStatus(
        import_id=pending.import_id,
        validation_token=pending.validation_token,
        state_id=pending.state_id,
        total_rows=pending.total_rows,
        valid_rows=pending.valid_rows,
        error_rows=pending.error_rows,
        duplicate_rows=pending.duplicate_rows,
        expires_at=pending.expires_at,
        committed_at=pending.committed_at,
        commit_result=pending.commit_result,
        is_expired=now >= pending.expires_at,
        is_committed=pending.committed_at is not None,
    )


def cleanup_expired_imports(store: CatalogStore, clock: Clock = utc_now) -> int:
    """Delete uncommitted pending imports past their expiry. Returns the count."""
    deleted = store.delete_expired_pending_imports(clock())
    logger.info(f"expired pending imports deleted={deleted}")
    return deleted


def get_user_import_history(
    store: CatalogStore, user_id: str, limit: int = 20, clock: Clock = utc_now
) -> list[ImportStatus]:
    now = clock()
    return [_status_of(p, now) for p in store.list_pending_imports_by_user(user_id, limit)]
