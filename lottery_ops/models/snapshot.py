from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any

import jsonschema

from .import_models import (
    DuplicateRow,
    ErrorRow,
    ExistingGame,
    GameRow,
    ValidRow,
    ValidatedRow,
)

"""Serialization of validated-row snapshots stored on a pending import.

Rows are written as plain JSON objects and read back through
validated_row_schema.json, so a corrupted or hand-edited snapshot is rejected
before the commit phase acts on it.
"""

__all__ = [
    "SCHEMA_PATH",
    "SnapshotSchemaError",
    "dump_validated_row",
    "dump_validated_rows",
    "load_validated_rows",
]

SCHEMA_PATH = Path(__file__).with_name("validated_row_schema.json")


class SnapshotSchemaError(Exception):
    pass


@lru_cache(maxsize=1)
def _validator() -> jsonschema.Draft7Validator:
    schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
    return jsonschema.Draft7Validator(schema)


def dump_validated_row(row: ValidatedRow) -> dict[str, Any]:
    out: dict[str, Any] = {
        "row_number": row.row_number,
        "status": row.status,
        "action": row.action,
    }
    if isinstance(row, ErrorRow):
        out["data"] = dict(row.data)
        out["errors"] = list(row.errors)
        return out
    out["data"] = row.data.to_dict()
    if row.existing_game is not None:
        out["existing_game"] = row.existing_game.to_dict()
    return out


def dump_validated_rows(rows: list[ValidatedRow]) -> list[dict[str, Any]]:
    return [dump_validated_row(r) for r in rows]


def _load_one(raw: dict[str, Any]) -> ValidatedRow:
    errors = sorted(_validator().iter_errors(raw), key=lambda e: list(e.path))
    if errors:
        first = errors[0]
        where = "/".join(str(p) for p in first.path) or "<root>"
        row_no = raw.get("row_number", "?") if isinstance(raw, dict) else "?"
        raise SnapshotSchemaError(f"row {row_no}: {where}: {first.message}")
    status = raw["status"]
    existing = raw.get("existing_game")
    if status == "error":
        return ErrorRow(row_number=raw["row_number"], data=dict(raw["data"]), errors=list(raw["errors"]))
    data = GameRow.from_dict(raw["data"])
    if status == "duplicate":
        return DuplicateRow(
            row_number=raw["row_number"],
            data=data,
            existing_game=ExistingGame.from_dict(existing),
        )
    return ValidRow(
        row_number=raw["row_number"],
        data=data,
        action=raw["action"],
        existing_game=ExistingGame.from_dict(existing) if existing else None,
    )


def load_validated_rows(raw_rows: Any) -> list[ValidatedRow]:
    """Deserialize a persisted snapshot.

    Raises:
        SnapshotSchemaError: snapshot is not a list or any row violates the schema
    """
    if isinstance(raw_rows, str):
        raw_rows = json.loads(raw_rows)
    if not isinstance(raw_rows, list):
        raise SnapshotSchemaError(
            f"validated rows snapshot must be a list, got {type(raw_rows).__name__}"
        )
    return [_load_one(r) for r in raw_rows]
