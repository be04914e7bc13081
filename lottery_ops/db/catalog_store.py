from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2.extras import Json, RealDictCursor

from lottery_ops.models.import_models import (
    GameRecord,
    GameValues,
    ImportOptions,
    PendingImport,
    StateRecord,
    ValidatedRow,
)
from lottery_ops.models.outcome import AuditEntry
from lottery_ops.models.pack_models import PosIntegration
from lottery_ops.models.snapshot import dump_validated_rows, load_validated_rows

"""Catalog / relational store collaborator.

CatalogStore is the narrow repository interface the import pipelines and the
pack POS sync depend on. PostgresCatalogStore implements it with psycopg2.

Transaction model:
- transaction() yields a cursor; COMMIT on normal exit, ROLLBACK on exception
- create_game / update_game wrap each statement in a SAVEPOINT so that a unique
  violation is reported as UniqueConstraintError and the outer transaction
  stays usable for the remaining rows
- mark_pending_import_committed is a conditional UPDATE (committed_at IS NULL);
  False means another commit already consumed the token
"""

__all__ = [
    "CatalogStore",
    "CatalogStoreError",
    "PostgresCatalogStore",
    "UniqueConstraintError",
]

logger = logging.getLogger(__name__)


class CatalogStoreError(Exception):
    pass


class UniqueConstraintError(CatalogStoreError):
    """Duplicate business key (e.g. game_code within a state)."""


class CatalogStore(Protocol):
    def find_state_by_id(self, state_id: str) -> StateRecord | None: ...

    def list_active_games_by_state(self, state_id: str) -> list[GameRecord]: ...

    def find_pos_integration(self, store_id: str) -> PosIntegration | None: ...

    def transaction(self) -> Any: ...

    def create_game(
        self, tx: Any, state_id: str, values: GameValues, user_id: str
    ) -> GameRecord: ...

    def update_game(self, tx: Any, game_id: str, values: GameValues) -> GameRecord: ...

    def mark_pending_import_committed(
        self, tx: Any, import_id: str, committed_at: datetime, commit_result: dict[str, int]
    ) -> bool: ...

    def create_pending_import(
        self,
        *,
        state_id: str,
        created_by_user_id: str,
        validated_rows: list[ValidatedRow],
        import_options: ImportOptions,
        total_rows: int,
        valid_rows: int,
        error_rows: int,
        duplicate_rows: int,
        validation_token: str,
        expires_at: datetime,
    ) -> PendingImport: ...

    def find_pending_import_by_token(self, token: str) -> PendingImport | None: ...

    def delete_expired_pending_imports(self, now: datetime) -> int: ...

    def list_pending_imports_by_user(self, user_id: str, limit: int) -> list[PendingImport]: ...

    def write_audit_log_entry(self, entry: AuditEntry) -> None: ...


_PENDING_COLUMNS = """
    import_id, state_id, created_by_user_id, validated_data, import_options,
    total_rows, valid_rows, error_rows, duplicate_rows, validation_token,
    expires_at, committed_at, commit_result, created_at
"""

_GAME_RETURNING = "RETURNING game_id, game_code, name, price, status"


def _pending_from_row(row: dict[str, Any]) -> PendingImport:
    return PendingImport(
        import_id=str(row["import_id"]),
        state_id=str(row["state_id"]),
        created_by_user_id=str(row["created_by_user_id"]),
        validated_rows=load_validated_rows(row["validated_data"]),
        import_options=ImportOptions.from_dict(row["import_options"]),
        total_rows=row["total_rows"],
        valid_rows=row["valid_rows"],
        error_rows=row["error_rows"],
        duplicate_rows=row["duplicate_rows"],
        validation_token=str(row["validation_token"]),
        expires_at=row["expires_at"],
        committed_at=row["committed_at"],
        commit_result=row["commit_result"],
        created_at=row.get("created_at"),
    )


def _game_from_row(row: dict[str, Any]) -> GameRecord:
    return GameRecord(
        game_id=str(row["game_id"]),
        game_code=row["game_code"],
        name=row["name"],
        price=Decimal(str(row["price"])),
        status=row["status"],
    )


class PostgresCatalogStore:
    """CatalogStore over a single psycopg2 connection (autocommit off)."""

    def __init__(self, conn: Any) -> None:
        self.conn = conn

    # --- helpers ------------------------------------------------------

    @contextmanager
    def _cursor(self) -> Iterator[Any]:
        """Short transaction for a single read or write outside commit."""
        try:
            with self.conn:
                with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
                    yield cur
        except psycopg2.Error as e:
            raise CatalogStoreError(str(e).strip()) from e

    @staticmethod
    def _in_savepoint(tx: Any, sql: str, params: tuple[Any, ...], game_code: str) -> dict[str, Any]:
        tx.execute("SAVEPOINT game_row")
        try:
            tx.execute(sql, params)
            row = tx.fetchone()
        except pg_errors.UniqueViolation as e:
            tx.execute("ROLLBACK TO SAVEPOINT game_row")
            raise UniqueConstraintError(f"game_code {game_code} already exists") from e
        except psycopg2.Error as e:
            raise CatalogStoreError(str(e).strip()) from e
        tx.execute("RELEASE SAVEPOINT game_row")
        if row is None:
            raise CatalogStoreError(f"game {game_code} not found")
        return row

    # --- lookups ------------------------------------------------------

    def find_state_by_id(self, state_id: str) -> StateRecord | None:
        with self._cursor() as cur:
            cur.execute(
                "SELECT state_id, code, name, is_active, lottery_enabled "
                "FROM us_states WHERE state_id = %s",
                (state_id,),
            )
            row = cur.fetchone()
        if row is None:
            return None
        return StateRecord(
            state_id=str(row["state_id"]),
            code=row["code"],
            name=row["name"],
            is_active=bool(row["is_active"]),
            lottery_enabled=bool(row["lottery_enabled"]),
        )

    def list_active_games_by_state(self, state_id: str) -> list[GameRecord]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT game_id, game_code, name, price, status FROM lottery_games "
                "WHERE state_id = %s AND status <> 'DISCONTINUED'",
                (state_id,),
            )
            rows = cur.fetchall()
        return [_game_from_row(r) for r in rows]

    def find_pos_integration(self, store_id: str) -> PosIntegration | None:
        with self._cursor() as cur:
            cur.execute(
                "SELECT store_id, pos_type, is_active, connection_mode, xml_gateway_path, "
                "naxml_version, store_location_id FROM pos_integrations WHERE store_id = %s",
                (store_id,),
            )
            row = cur.fetchone()
        if row is None:
            return None
        return PosIntegration(
            store_id=str(row["store_id"]),
            pos_type=row["pos_type"],
            is_active=bool(row["is_active"]),
            connection_mode=row["connection_mode"],
            xml_gateway_path=row["xml_gateway_path"],
            naxml_version=row["naxml_version"],
            store_location_id=row["store_location_id"],
        )

    # --- transactional writes -----------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """COMMIT on normal exit, ROLLBACK when the block raises."""
        with self.conn:
            with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
                yield cur

    def create_game(self, tx: Any, state_id: str, values: GameValues, user_id: str) -> GameRecord:
        row = self._in_savepoint(
            tx,
            "INSERT INTO lottery_games (state_id, game_code, name, description, price, "
            "pack_value, tickets_per_pack, status, created_by_user_id) "
            f"VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s) {_GAME_RETURNING}",
            (
                state_id,
                values.game_code,
                values.name,
                values.description,
                values.price,
                values.pack_value,
                values.tickets_per_pack,
                values.status,
                user_id,
            ),
            values.game_code,
        )
        return _game_from_row(row)

    def update_game(self, tx: Any, game_id: str, values: GameValues) -> GameRecord:
        row = self._in_savepoint(
            tx,
            "UPDATE lottery_games SET name = %s, description = %s, price = %s, "
            "pack_value = %s, tickets_per_pack = %s, status = %s, updated_at = now() "
            f"WHERE game_id = %s {_GAME_RETURNING}",
            (
                values.name,
                values.description,
                values.price,
                values.pack_value,
                values.tickets_per_pack,
                values.status,
                game_id,
            ),
            values.game_code,
        )
        return _game_from_row(row)

    def mark_pending_import_committed(
        self, tx: Any, import_id: str, committed_at: datetime, commit_result: dict[str, int]
    ) -> bool:
        tx.execute(
            "UPDATE lottery_game_imports SET committed_at = %s, commit_result = %s "
            "WHERE import_id = %s AND committed_at IS NULL",
            (committed_at, Json(commit_result), import_id),
        )
        return tx.rowcount == 1

    # --- pending imports ----------------------------------------------

    def create_pending_import(
        self,
        *,
        state_id: str,
        created_by_user_id: str,
        validated_rows: list[ValidatedRow],
        import_options: ImportOptions,
        total_rows: int,
        valid_rows: int,
        error_rows: int,
        duplicate_rows: int,
        validation_token: str,
        expires_at: datetime,
    ) -> PendingImport:
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO lottery_game_imports (state_id, created_by_user_id, validated_data, "
                "import_options, total_rows, valid_rows, error_rows, duplicate_rows, "
                "validation_token, expires_at) "
                "VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s) "
                f"RETURNING {_PENDING_COLUMNS}",
                (
                    state_id,
                    created_by_user_id,
                    Json(dump_validated_rows(validated_rows)),
                    Json(import_options.to_dict()),
                    total_rows,
                    valid_rows,
                    error_rows,
                    duplicate_rows,
                    validation_token,
                    expires_at,
                ),
            )
            row = cur.fetchone()
        return _pending_from_row(row)

    def find_pending_import_by_token(self, token: str) -> PendingImport | None:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_PENDING_COLUMNS} FROM lottery_game_imports WHERE validation_token = %s",
                (token,),
            )
            row = cur.fetchone()
        return _pending_from_row(row) if row else None

    def delete_expired_pending_imports(self, now: datetime) -> int:
        with self._cursor() as cur:
            cur.execute(
                "DELETE FROM lottery_game_imports WHERE expires_at < %s AND committed_at IS NULL",
                (now,),
            )
            return cur.rowcount

    def list_pending_imports_by_user(self, user_id: str, limit: int) -> list[PendingImport]:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_PENDING_COLUMNS} FROM lottery_game_imports "
                "WHERE created_by_user_id = %s ORDER BY created_at DESC LIMIT %s",
                (user_id, limit),
            )
            rows = cur.fetchall()
        return [_pending_from_row(r) for r in rows]

    # --- audit --------------------------------------------------------

    def write_audit_log_entry(self, entry: AuditEntry) -> None:
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO audit_logs (user_id, action, table_name, record_id, new_values, reason) "
                "VALUES (%s, %s, %s, %s, %s, %s)",
                (
                    entry.user_id,
                    entry.action,
                    entry.table_name,
                    entry.record_id,
                    Json(entry.new_values),
                    entry.reason,
                ),
            )
