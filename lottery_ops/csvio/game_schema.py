from __future__ import annotations

import csv
import io
import json
from decimal import ROUND_FLOOR, Decimal
from functools import lru_cache
from pathlib import Path
from typing import Any

import jsonschema

from lottery_ops.csvio.parser import normalize_header
from lottery_ops.models.import_models import GameRow

"""Row schema for the lottery game import file.

Cells arrive as strings from the CSV parser. Empty optional cells are dropped,
the remainder is checked against game_row_schema.json, and a passing row is
converted to a typed GameRow.

derive_tickets_per_pack() is the single place the pack size is derived; the
validation and commit phases both call it.
"""

__all__ = [
    "OPTIONAL_HEADERS",
    "REQUIRED_HEADERS",
    "TEMPLATE_HEADERS",
    "derive_tickets_per_pack",
    "generate_import_template",
    "normalize_import_header",
    "validate_game_row",
]

SCHEMA_PATH = Path(__file__).with_name("game_row_schema.json")

REQUIRED_HEADERS = ("game_code", "name", "price")
OPTIONAL_HEADERS = ("description", "pack_value", "tickets_per_pack", "status")
TEMPLATE_HEADERS = REQUIRED_HEADERS + OPTIONAL_HEADERS

HEADER_ALIASES = {
    "code": "game_code",
    "game_name": "name",
    "ticket_price": "price",
    "pack_size": "tickets_per_pack",
    "tickets": "tickets_per_pack",
}

# スキーマ違反時のフィールド別メッセージ
FIELD_MESSAGES = {
    "game_code": "game_code must be exactly 4 digits",
    "name": "name must be 1-100 characters",
    "price": "price must be a positive amount with at most 2 decimal places",
    "description": "description cannot exceed 500 characters",
    "pack_value": "pack_value must be a positive amount with at most 2 decimal places",
    "tickets_per_pack": "tickets_per_pack must be a whole number between 1 and 999",
    "status": "status must be one of ACTIVE, INACTIVE, DISCONTINUED",
}

_TEMPLATE_ROWS = (
    ("1234", "Mega Cash", "5.00", "Win up to $50,000", "300.00", "60", "ACTIVE"),
    ("5678", "Lucky 7s", "2.00", "Triple your money", "300.00", "150", "ACTIVE"),
    ("9012", "Golden Ticket", "10.00", "", "500.00", "50", "ACTIVE"),
)


def normalize_import_header(header: str) -> str:
    key = normalize_header(header)
    return HEADER_ALIASES.get(key, key)


@lru_cache(maxsize=1)
def _validator() -> jsonschema.Draft7Validator:
    schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
    return jsonschema.Draft7Validator(schema)


def derive_tickets_per_pack(
    price: Decimal,
    pack_value: Decimal | None,
    tickets_per_pack: int | None,
    default_pack_value: Decimal,
) -> int:
    """Explicit pack size, else floor(pack_value / price).

    pack_value falls back to default_pack_value when the row omits it.
    """
    if tickets_per_pack is not None:
        return tickets_per_pack
    value = pack_value if pack_value is not None else default_pack_value
    return int((value / price).to_integral_value(rounding=ROUND_FLOOR))


def _schema_messages(candidate: dict[str, Any]) -> list[str]:
    messages: list[str] = []
    for err in _validator().iter_errors(candidate):
        if err.validator == "required":
            missing = err.message.split("'")[1] if "'" in err.message else "field"
            msg = f"{missing} is required"
        elif err.path:
            msg = FIELD_MESSAGES.get(str(err.path[0]), err.message)
        else:
            msg = err.message
        if msg not in messages:
            messages.append(msg)
    return messages


def validate_game_row(
    data: dict[str, str], default_pack_value: Decimal
) -> tuple[GameRow | None, list[str]]:
    """Validate one parsed CSV row.

    Args:
        data: normalized header -> cell value
        default_pack_value: pack value used when the row omits it

    Returns:
        (GameRow, []) when the row passes, (None, messages) otherwise
    """
    candidate = {
        k: v for k, v in data.items() if k in TEMPLATE_HEADERS and v is not None and v != ""
    }
    messages = _schema_messages(candidate)
    if messages:
        return None, messages

    price = Decimal(candidate["price"])
    pack_value = Decimal(candidate["pack_value"]) if "pack_value" in candidate else None
    tickets = int(candidate["tickets_per_pack"]) if "tickets_per_pack" in candidate else None
    derived = derive_tickets_per_pack(price, pack_value, tickets, default_pack_value)
    if derived < 1:
        effective = pack_value if pack_value is not None else default_pack_value
        return None, [
            f"tickets_per_pack cannot be derived: pack_value {effective} is less than price {price}"
        ]

    status = candidate.get("status")
    row = GameRow(
        game_code=candidate["game_code"],
        name=candidate["name"],
        price=price,
        description=candidate.get("description"),
        pack_value=pack_value,
        tickets_per_pack=tickets,
        status=status.upper() if status else None,
    )
    return row, []


def generate_import_template() -> str:
    """CSV template with the full header set and three sample rows."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(TEMPLATE_HEADERS)
    writer.writerows(_TEMPLATE_ROWS)
    return buf.getvalue()
