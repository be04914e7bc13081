from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

"""Domain models for the two-phase lottery game import (validate -> commit).

ValidatedRow is a tagged variant over the validation outcome:

- ValidRow      status="valid",     action="create" | "update"
- ErrorRow      status="error",     action=None
- DuplicateRow  status="duplicate", action="skip"

The pending import persists a snapshot of these rows (see models/snapshot.py)
so the commit phase applies exactly what the user previewed.
"""

__all__ = [
    "CommitImportParams",
    "CommitImportResult",
    "CommitOptions",
    "CommitSummary",
    "CreatedGame",
    "DuplicateRow",
    "ErrorRow",
    "ExistingGame",
    "GameRecord",
    "GameRow",
    "GameValues",
    "ImportOptions",
    "ImportStatus",
    "PendingImport",
    "PreviewSummary",
    "RowError",
    "StateRecord",
    "ValidRow",
    "ValidateImportParams",
    "ValidateImportResult",
    "ValidatedRow",
]

GAME_STATUSES = ("ACTIVE", "INACTIVE", "DISCONTINUED")


def _dec(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    return Decimal(str(value))


@dataclass(frozen=True)
class GameRow:
    """Schema-validated CSV row for one lottery game."""
    game_code: str
    name: str
    price: Decimal
    description: str | None = None
    pack_value: Decimal | None = None
    tickets_per_pack: int | None = None
    status: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "game_code": self.game_code,
            "name": self.name,
            "price": str(self.price),
            "description": self.description,
            "pack_value": str(self.pack_value) if self.pack_value is not None else None,
            "tickets_per_pack": self.tickets_per_pack,
            "status": self.status,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> GameRow:
        return GameRow(
            game_code=data["game_code"],
            name=data["name"],
            price=Decimal(str(data["price"])),
            description=data.get("description"),
            pack_value=_dec(data.get("pack_value")),
            tickets_per_pack=data.get("tickets_per_pack"),
            status=data.get("status"),
        )


@dataclass(frozen=True)
class ExistingGame:
    """Snapshot of a catalog game taken at validation time (for diff display)."""
    game_id: str
    name: str
    price: Decimal
    status: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "game_id": self.game_id,
            "name": self.name,
            "price": str(self.price),
            "status": self.status,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ExistingGame:
        return ExistingGame(
            game_id=data["game_id"],
            name=data["name"],
            price=Decimal(str(data["price"])),
            status=data["status"],
        )


@dataclass(frozen=True)
class ValidRow:
    row_number: int
    data: GameRow
    action: Literal["create", "update"]
    existing_game: ExistingGame | None = None

    @property
    def status(self) -> str:
        return "valid"


@dataclass(frozen=True)
class ErrorRow:
    row_number: int
    data: dict[str, Any]  # raw cell values; the row never passed the schema
    errors: list[str]

    @property
    def status(self) -> str:
        return "error"

    @property
    def action(self) -> None:
        return None


@dataclass(frozen=True)
class DuplicateRow:
    row_number: int
    data: GameRow
    existing_game: ExistingGame

    @property
    def status(self) -> str:
        return "duplicate"

    @property
    def action(self) -> str:
        return "skip"


ValidatedRow = ValidRow | ErrorRow | DuplicateRow


@dataclass(frozen=True)
class ImportOptions:
    update_existing: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"update_existing": self.update_existing}

    @staticmethod
    def from_dict(data: dict[str, Any] | None) -> ImportOptions:
        data = data or {}
        return ImportOptions(update_existing=bool(data.get("update_existing", False)))


@dataclass(frozen=True)
class PreviewSummary:
    total_rows: int = 0
    valid_rows: int = 0
    error_rows: int = 0
    duplicate_rows: int = 0
    games_to_create: int = 0
    games_to_update: int = 0


@dataclass(frozen=True)
class CommitSummary:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
        }


@dataclass(frozen=True)
class StateRecord:
    """US state (import scope)."""
    state_id: str
    code: str
    name: str
    is_active: bool
    lottery_enabled: bool


@dataclass(frozen=True)
class GameRecord:
    """Catalog game as loaded for duplicate detection."""
    game_id: str
    game_code: str
    name: str
    price: Decimal
    status: str


@dataclass(frozen=True)
class GameValues:
    """Column values written by create/update at commit time."""
    game_code: str
    name: str
    description: str | None
    price: Decimal
    pack_value: Decimal
    tickets_per_pack: int
    status: str


@dataclass(frozen=True)
class PendingImport:
    """Persisted result of the validation phase."""
    import_id: str
    state_id: str
    created_by_user_id: str
    validated_rows: list[ValidatedRow]
    import_options: ImportOptions
    total_rows: int
    valid_rows: int
    error_rows: int
    duplicate_rows: int
    validation_token: str
    expires_at: datetime
    committed_at: datetime | None = None
    commit_result: dict[str, int] | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class ValidateImportParams:
    file_buffer: bytes
    state_id: str
    user_id: str
    options: ImportOptions = field(default_factory=ImportOptions)


@dataclass(frozen=True)
class ValidateImportResult:
    success: bool
    preview: PreviewSummary
    rows: list[ValidatedRow]
    errors: list[str]
    validation_token: str | None = None
    expires_at: datetime | None = None
    warnings: list[str] = field(default_factory=list)
    error_code: str | None = None  # ErrorKind value when the upload was rejected


@dataclass(frozen=True)
class CommitOptions:
    skip_errors: bool = True
    update_duplicates: bool = False


@dataclass(frozen=True)
class CommitImportParams:
    validation_token: str
    user_id: str
    options: CommitOptions = field(default_factory=CommitOptions)


@dataclass(frozen=True)
class CreatedGame:
    game_id: str
    game_code: str
    name: str
    price: Decimal
    row_number: int


@dataclass(frozen=True)
class RowError:
    row_number: int  # 0 = not tied to a row
    error: str
    kind: str | None = None


@dataclass(frozen=True)
class CommitImportResult:
    success: bool
    summary: CommitSummary
    created_games: list[CreatedGame]
    errors: list[RowError]
    error_code: str | None = None  # ErrorKind value when the commit was rejected
    audit_logged: bool = True


@dataclass(frozen=True)
class ImportStatus:
    import_id: str
    validation_token: str
    state_id: str
    total_rows: int
    valid_rows: int
    error_rows: int
    duplicate_rows: int
    expires_at: datetime
    committed_at: datetime | None
    commit_result: dict[str, int] | None
    is_expired: bool
    is_committed: bool
