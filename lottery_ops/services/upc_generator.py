from __future__ import annotations

import logging
import re

from lottery_ops.models.pack_models import (
    PACK_NUMBER_DIGITS,
    FieldCheck,
    ParsedUpc,
    UpcGenerationInput,
    UpcGenerationResult,
    UpcLayout,
    UpcMetadata,
)

"""Deterministic ticket UPC generation for serialized lottery packs.

With the default layout each UPC is:

    game prefix (1) + pack number (7) + ticket serial (3) + UPC-A check digit (1)

The layout is injected, so the legacy 2+7+3 form without a check digit is still
reachable through configuration. Output depends only on the inputs, so a pack
regenerated on retry yields byte-identical codes.
"""

__all__ = [
    "UpcGenerator",
    "upc_check_digit",
    "verify_upc_check_digit",
]

logger = logging.getLogger(__name__)

_DIGITS_RE = re.compile(r"[0-9]+")


def upc_check_digit(payload: str) -> str:
    """UPC-A mod-10 check digit over an 11-digit payload.

    Counting from the right, odd positions weigh 3 and even positions weigh 1.
    """
    if len(payload) != 11 or not _DIGITS_RE.fullmatch(payload):
        raise ValueError(f"UPC-A payload must be 11 digits, got {payload!r}")
    total = 0
    for pos, ch in enumerate(reversed(payload), start=1):
        total += int(ch) * (3 if pos % 2 == 1 else 1)
    return str((10 - total % 10) % 10)


def verify_upc_check_digit(upc: str) -> bool:
    """Independent checksum verifier for a 12-digit UPC-A code."""
    if not isinstance(upc, str) or len(upc) != 12 or not _DIGITS_RE.fullmatch(upc):
        return False
    return upc_check_digit(upc[:11]) == upc[11]


class UpcGenerator:
    """Pack UPC family generator bound to one digit layout."""

    def __init__(self, layout: UpcLayout | None = None) -> None:
        self.layout = layout or UpcLayout()

    # --- field checks -------------------------------------------------

    def validate_game_code(self, game_code: object) -> FieldCheck:
        if game_code is None or game_code == "":
            return FieldCheck(False, "Game code is required")
        if not isinstance(game_code, str) or len(game_code) != 4 or not _DIGITS_RE.fullmatch(game_code):
            return FieldCheck(False, "Game code must be exactly 4 digits")
        return FieldCheck(True)

    def validate_pack_number(self, pack_number: object) -> FieldCheck:
        if pack_number is None or pack_number == "":
            return FieldCheck(False, "Pack number is required")
        if (
            not isinstance(pack_number, str)
            or len(pack_number) != PACK_NUMBER_DIGITS
            or not _DIGITS_RE.fullmatch(pack_number)
        ):
            return FieldCheck(False, f"Pack number must be exactly {PACK_NUMBER_DIGITS} digits")
        return FieldCheck(True)

    def validate_tickets_per_pack(self, tickets_per_pack: object) -> FieldCheck:
        # bool は int のサブクラスなので明示的に除外
        if isinstance(tickets_per_pack, bool) or not isinstance(tickets_per_pack, int):
            return FieldCheck(False, "Tickets per pack must be an integer")
        if tickets_per_pack < 1:
            return FieldCheck(False, "Tickets per pack must be at least 1")
        if tickets_per_pack > self.layout.max_tickets:
            return FieldCheck(
                False, f"Tickets per pack cannot exceed {self.layout.max_tickets}"
            )
        return FieldCheck(True)

    # --- generation ---------------------------------------------------

    def _first_error(self, req: UpcGenerationInput) -> str | None:
        for check in (
            self.validate_game_code(req.game_code),
            self.validate_pack_number(req.pack_number),
            self.validate_tickets_per_pack(req.tickets_per_pack),
        ):
            if not check.valid:
                return check.error
        start = req.starting_serial
        if isinstance(start, bool) or not isinstance(start, int) or not 0 <= start < req.tickets_per_pack:
            return f"Starting serial must be between 0 and {req.tickets_per_pack - 1}"
        return None

    def build_upc(self, game_code: str, pack_number: str, serial: int) -> str:
        lay = self.layout
        payload = f"{game_code[:lay.game_prefix_digits]}{pack_number}{serial:0{lay.serial_digits}d}"
        if lay.check_digit:
            return payload + upc_check_digit(payload)
        return payload

    def generate(self, req: UpcGenerationInput) -> UpcGenerationResult:
        """Generate the UPC family for one pack.

        Serials run from req.starting_serial to tickets_per_pack - 1 in order.

        Returns:
            UpcGenerationResult; success=False with an empty list on invalid input
        """
        error = self._first_error(req)
        if error is not None:
            logger.debug(f"upc generation rejected: {error}")
            return UpcGenerationResult(success=False, upcs=[], error=error)

        upcs = [
            self.build_upc(req.game_code, req.pack_number, serial)
            for serial in range(req.starting_serial, req.tickets_per_pack)
        ]
        metadata = UpcMetadata(
            game_code_prefix=req.game_code[: self.layout.game_prefix_digits],
            pack_number=req.pack_number,
            ticket_count=len(upcs),
            first_upc=upcs[0],
            last_upc=upcs[-1],
        )
        return UpcGenerationResult(success=True, upcs=upcs, metadata=metadata)

    # --- parsing ------------------------------------------------------

    def parse_upc(self, upc: str) -> ParsedUpc | None:
        """Split a UPC into its layout components. None when the shape is wrong."""
        lay = self.layout
        if not isinstance(upc, str) or len(upc) != lay.total_length or not _DIGITS_RE.fullmatch(upc):
            return None
        p = lay.game_prefix_digits
        q = p + PACK_NUMBER_DIGITS
        r = q + lay.serial_digits
        return ParsedUpc(
            game_code_prefix=upc[:p],
            pack_number=upc[p:q],
            ticket_number=upc[q:r],
            check_digit=upc[r] if lay.check_digit else None,
        )

    def is_valid_upc(self, upc: str) -> bool:
        if self.parse_upc(upc) is None:
            return False
        if self.layout.check_digit:
            return verify_upc_check_digit(upc)
        return True

    def serial_of(self, upc: str) -> str | None:
        """Zero-padded ticket serial of a UPC, or None when unparseable."""
        parsed = self.parse_upc(upc)
        return parsed.ticket_number if parsed else None
