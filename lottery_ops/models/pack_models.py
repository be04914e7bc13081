from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

"""Domain models for pack UPC generation and POS synchronization.

Lifecycle of a pack on the POS side (not persisted as a state machine):

    activate:   UPCS_GENERATED -> CACHED -> POS_EXPORTED | POS_SKIPPED
    deactivate: CACHE_READ -> CACHE_DELETED -> POS_DELETE_EXPORTED | POS_DELETE_SKIPPED
"""

__all__ = [
    "CachedPackUpcs",
    "FieldCheck",
    "PackActivationDetails",
    "PackActivationInput",
    "PackActivationResult",
    "PackDeactivationResult",
    "ParsedUpc",
    "PosIntegration",
    "PACK_NUMBER_DIGITS",
    "UPC_LENGTH",
    "UpcGenerationInput",
    "UpcGenerationResult",
    "UpcLayout",
    "UpcMetadata",
]


@dataclass(frozen=True)
class FieldCheck:
    valid: bool
    error: str | None = None


@dataclass(frozen=True)
class UpcGenerationInput:
    game_code: str  # 4 digits
    pack_number: str  # 7 digits
    tickets_per_pack: int
    starting_serial: int = 0


@dataclass(frozen=True)
class UpcMetadata:
    game_code_prefix: str
    pack_number: str
    ticket_count: int
    first_upc: str
    last_upc: str


@dataclass(frozen=True)
class UpcGenerationResult:
    success: bool
    upcs: list[str] = field(default_factory=list)
    metadata: UpcMetadata | None = None
    error: str | None = None


@dataclass(frozen=True)
class ParsedUpc:
    game_code_prefix: str
    pack_number: str
    ticket_number: str
    check_digit: str | None = None


@dataclass(frozen=True)
class CachedPackUpcs:
    """UPC set kept for the retry window after activation."""
    pack_id: str
    store_id: str
    game_code: str
    game_name: str
    pack_number: str
    ticket_price: Decimal
    upcs: list[str]
    generated_at: datetime | None = None
    expires_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "packId": self.pack_id,
            "storeId": self.store_id,
            "gameCode": self.game_code,
            "gameName": self.game_name,
            "packNumber": self.pack_number,
            "ticketPrice": str(self.ticket_price),
            "upcs": list(self.upcs),
            "generatedAt": self.generated_at.isoformat() if self.generated_at else None,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> CachedPackUpcs:
        generated = data.get("generatedAt")
        expires = data.get("expiresAt")
        return CachedPackUpcs(
            pack_id=data["packId"],
            store_id=data["storeId"],
            game_code=data["gameCode"],
            game_name=data["gameName"],
            pack_number=data["packNumber"],
            ticket_price=Decimal(str(data["ticketPrice"])),
            upcs=list(data["upcs"]),
            generated_at=datetime.fromisoformat(generated) if generated else None,
            expires_at=datetime.fromisoformat(expires) if expires else None,
        )


@dataclass(frozen=True)
class PosIntegration:
    """Store POS integration row (at most one per store)."""
    store_id: str
    pos_type: str
    is_active: bool
    connection_mode: str | None = None
    xml_gateway_path: str | None = None
    naxml_version: str | None = None
    store_location_id: str | None = None


@dataclass(frozen=True)
class PackActivationInput:
    pack_id: str
    store_id: str
    game_code: str
    game_name: str
    pack_number: str
    tickets_per_pack: int
    ticket_price: Decimal
    starting_serial: int = 0
    user_id: str | None = None


@dataclass(frozen=True)
class PackActivationDetails:
    upcs: list[str]
    first_upc: str | None
    last_upc: str | None
    file_path: str | None = None


@dataclass(frozen=True)
class PackActivationResult:
    success: bool
    upc_count: int
    redis_stored: bool
    pos_exported: bool
    error: str | None = None
    details: PackActivationDetails | None = None
    audit_logged: bool = True


@dataclass(frozen=True)
class PackDeactivationResult:
    success: bool
    redis_deleted: bool
    pos_removed: bool
    upc_count: int = 0
    error: str | None = None
    audit_logged: bool = True


UPC_LENGTH = 12
PACK_NUMBER_DIGITS = 7


@dataclass(frozen=True)
class UpcLayout:
    """Digit layout of a generated ticket UPC.

    game prefix + 7-digit pack number + zero-padded serial [+ mod-10 check digit].
    The layout must add up to exactly 12 digits.
    """
    game_prefix_digits: int = 1
    serial_digits: int = 3
    check_digit: bool = True

    def __post_init__(self) -> None:
        if not 1 <= self.game_prefix_digits <= 4:
            raise ValueError("game_prefix_digits must be between 1 and 4")
        if self.serial_digits < 1:
            raise ValueError("serial_digits must be at least 1")
        if self.total_length != UPC_LENGTH:
            raise ValueError(
                f"UPC layout must total {UPC_LENGTH} digits, got {self.total_length}"
            )

    @property
    def payload_length(self) -> int:
        return self.game_prefix_digits + PACK_NUMBER_DIGITS + self.serial_digits

    @property
    def total_length(self) -> int:
        return self.payload_length + (1 if self.check_digit else 0)

    @property
    def max_tickets(self) -> int:
        return 10 ** self.serial_digits - 1
