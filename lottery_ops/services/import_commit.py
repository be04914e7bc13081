from __future__ import annotations

import logging

from lottery_ops.config.loader import ImportSettings
from lottery_ops.csvio.game_schema import derive_tickets_per_pack
from lottery_ops.db.catalog_store import CatalogStore, UniqueConstraintError
from lottery_ops.models.import_models import (
    CommitImportParams,
    CommitImportResult,
    CommitSummary,
    CreatedGame,
    DuplicateRow,
    ErrorRow,
    GameRow,
    GameValues,
    RowError,
    ValidRow,
)
from lottery_ops.models.outcome import AuditEntry, ErrorKind
from lottery_ops.services.audit import record_audit
from lottery_ops.services.clock import Clock, utc_now
from lottery_ops.services.progress import ProgressTracker

"""Import commit phase.

Guards (each rejects without mutating anything):
    TOKEN_NOT_FOUND -> ALREADY_COMMITTED -> EXPIRED_TOKEN -> VALIDATION (skip_errors=False)

All creates / updates and the committed_at stamp run in one store transaction.
A unique violation on a row is recorded as CONSTRAINT_RACE and the loop
continues; any other exception rolls the whole transaction back. The audit entry
is written after the transaction, best-effort.

Accounting: created + updated + skipped + failed == total_rows, where skipped
covers duplicate rows left alone and error rows dropped under skip_errors.
"""

__all__ = [
    "AUDIT_ACTION",
    "ImportCommitter",
]

logger = logging.getLogger(__name__)

AUDIT_ACTION = "LOTTERY_GAMES_IMPORT"
AUDIT_TABLE = "lottery_games"

MSG_TOKEN_NOT_FOUND = "Invalid validation token"
MSG_ALREADY_COMMITTED = "This import has already been committed"


class _CommitLost(Exception):
    """Another commit stamped committed_at first; forces rollback."""


def _rejected(kind: ErrorKind, errors: list[RowError]) -> CommitImportResult:
    return CommitImportResult(
        success=False,
        summary=CommitSummary(),
        created_games=[],
        errors=errors,
        error_code=kind.value,
    )


class ImportCommitter:
    def __init__(
        self,
        store: CatalogStore,
        settings: ImportSettings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.settings = settings or ImportSettings()
        self.clock = clock

    def _values(self, data: GameRow, fallback_status: str) -> GameValues:
        pack_value = data.pack_value if data.pack_value is not None else self.settings.default_pack_value
        return GameValues(
            game_code=data.game_code,
            name=data.name,
            description=data.description or None,
            price=data.price,
            pack_value=pack_value,
            tickets_per_pack=derive_tickets_per_pack(
                data.price, data.pack_value, data.tickets_per_pack, self.settings.default_pack_value
            ),
            status=data.status or fallback_status,
        )

    def commit(self, params: CommitImportParams) -> CommitImportResult:
        pending = self.store.find_pending_import_by_token(params.validation_token)
        if pending is None:
            return _rejected(
                ErrorKind.TOKEN_NOT_FOUND,
                [RowError(0, MSG_TOKEN_NOT_FOUND, ErrorKind.TOKEN_NOT_FOUND.value)],
            )
        if pending.committed_at is not None:
            return _rejected(
                ErrorKind.ALREADY_COMMITTED,
                [RowError(0, MSG_ALREADY_COMMITTED, ErrorKind.ALREADY_COMMITTED.value)],
            )
        if self.clock() >= pending.expires_at:
            msg = (
                f"Validation token expired at {pending.expires_at.isoformat()}. "
                "Please re-upload and validate the file."
            )
            return _rejected(ErrorKind.EXPIRED_TOKEN, [RowError(0, msg, ErrorKind.EXPIRED_TOKEN.value)])

        opts = params.options
        rows = pending.validated_rows
        error_rows = [r for r in rows if isinstance(r, ErrorRow)]
        if not opts.skip_errors and error_rows:
            return _rejected(
                ErrorKind.VALIDATION,
                [
                    RowError(r.row_number, ", ".join(r.errors) or "Validation error", ErrorKind.VALIDATION.value)
                    for r in error_rows
                ],
            )

        state = self.store.find_state_by_id(pending.state_id)
        created = updated = skipped = failed = 0
        created_games: list[CreatedGame] = []
        errors: list[RowError] = []

        try:
            with self.store.transaction() as tx, ProgressTracker(len(rows)) as progress:
                for row in rows:
                    progress.advance()
                    if isinstance(row, ErrorRow):
                        skipped += 1
                        continue
                    if isinstance(row, DuplicateRow) and not opts.update_duplicates:
                        skipped += 1
                        continue
                    try:
                        if isinstance(row, ValidRow) and row.action == "create":
                            game = self.store.create_game(
                                tx, pending.state_id, self._values(row.data, "ACTIVE"), params.user_id
                            )
                            created_games.append(
                                CreatedGame(
                                    game_id=game.game_id,
                                    game_code=game.game_code,
                                    name=game.name,
                                    price=game.price,
                                    row_number=row.row_number,
                                )
                            )
                            created += 1
                        else:
                            # update 行、または update_duplicates 指定時の duplicate 行
                            existing = row.existing_game
                            self.store.update_game(
                                tx, existing.game_id, self._values(row.data, existing.status)
                            )
                            updated += 1
                    except UniqueConstraintError:
                        errors.append(
                            RowError(
                                row.row_number,
                                f"Game code {row.data.game_code} already exists (possible race condition)",
                                ErrorKind.CONSTRAINT_RACE.value,
                            )
                        )
                        failed += 1
                    progress.set_postfix(created=created, updated=updated, failed=failed)

                summary = CommitSummary(created=created, updated=updated, skipped=skipped, failed=failed)
                if not self.store.mark_pending_import_committed(
                    tx, pending.import_id, self.clock(), summary.to_dict()
                ):
                    raise _CommitLost()
        except _CommitLost:
            logger.warning(f"commit lost race import={pending.import_id}; rolled back")
            return _rejected(
                ErrorKind.ALREADY_COMMITTED,
                [RowError(0, MSG_ALREADY_COMMITTED, ErrorKind.ALREADY_COMMITTED.value)],
            )

        audit = record_audit(
            self.store,
            AuditEntry(
                action=AUDIT_ACTION,
                table_name=AUDIT_TABLE,
                record_id=pending.import_id,
                user_id=params.user_id,
                new_values={
                    "state_id": pending.state_id,
                    "state_code": state.code if state else None,
                    "total_rows": pending.total_rows,
                    **summary.to_dict(),
                },
            ),
        )
        logger.info(
            f"import committed import={pending.import_id} created={created} updated={updated} "
            f"skipped={skipped} failed={failed}"
        )
        return CommitImportResult(
            success=failed == 0,
            summary=summary,
            created_games=created_games,
            errors=errors,
            audit_logged=audit.ok,
        )
