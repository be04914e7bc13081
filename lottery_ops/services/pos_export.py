from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

from lottery_ops.config.loader import PosSyncSettings
from lottery_ops.models.pack_models import PosIntegration
from lottery_ops.naxml.builder import NaxmlBuildError, PriceBookBuilder, PriceBookItem
from lottery_ops.services.clock import Clock, utc_now

"""POS price-book file export (file-exchange integrations).

The POS polls `{xml_gateway_path}/BOInbox` for price-book maintenance documents.
Export ends at a successful file write; consumption by the POS is not observed.
Filesystem and build failures come back as ExportResult(ok=False), never raised.
"""

__all__ = [
    "FILE_EXCHANGE_MODE",
    "ExportResult",
    "FileExchangeConfig",
    "PackExportInfo",
    "PriceBookExporter",
    "build_export_filename",
    "resolve_file_exchange_config",
]

logger = logging.getLogger(__name__)

FILE_EXCHANGE_MODE = "FILE_EXCHANGE"


@dataclass(frozen=True)
class FileExchangeConfig:
    """Usable POS integration resolved for export."""
    store_id: str
    store_location_id: str
    pos_type: str
    xml_gateway_path: str
    naxml_version: str


@dataclass(frozen=True)
class PackExportInfo:
    pack_id: str
    game_name: str
    ticket_price: Decimal


@dataclass(frozen=True)
class ExportResult:
    ok: bool
    file_path: str | None = None
    item_count: int = 0
    error: str | None = None


def resolve_file_exchange_config(
    integration: PosIntegration | None, settings: PosSyncSettings
) -> FileExchangeConfig | None:
    """Return the export config, or None when the store has no usable integration.

    Usable = active AND (allow-listed POS type OR FILE_EXCHANGE mode) AND a
    non-empty gateway path.
    """
    if integration is None or not integration.is_active:
        return None
    file_capable = (
        integration.pos_type in settings.file_exchange_pos_types
        or integration.connection_mode == FILE_EXCHANGE_MODE
    )
    if not file_capable:
        return None
    gateway = (integration.xml_gateway_path or "").strip()
    if not gateway:
        return None
    return FileExchangeConfig(
        store_id=integration.store_id,
        store_location_id=integration.store_location_id or integration.store_id,
        pos_type=integration.pos_type,
        xml_gateway_path=gateway,
        naxml_version=integration.naxml_version or settings.naxml_version,
    )


def build_export_filename(pack_id: str, action: str, timestamp: str) -> str:
    """PriceBook_LotteryPack_[DELETE_]<pack8>_<ts>.xml, ts made filesystem-safe."""
    safe_ts = timestamp.replace(":", "-").replace(".", "-")[:19]
    marker = "DELETE_" if action == "Delete" else ""
    return f"PriceBook_LotteryPack_{marker}{pack_id[:8]}_{safe_ts}.xml"


class PriceBookExporter:
    def __init__(
        self,
        settings: PosSyncSettings,
        serial_of: Callable[[str], str | None],  # UPC -> 0 埋め serial
        clock: Clock = utc_now,
    ) -> None:
        self.settings = settings
        self.serial_of = serial_of
        self.clock = clock

    def build_items(self, pack: PackExportInfo, upcs: list[str], action: str) -> list[PriceBookItem]:
        short = pack.game_name[: self.settings.short_description_length]
        items = []
        for idx, upc in enumerate(upcs):
            serial = self.serial_of(upc) or f"{idx:03d}"
            items.append(
                PriceBookItem(
                    item_code=upc,
                    description=f"{pack.game_name} #{serial}",
                    short_description=short,
                    department_code=self.settings.department_code,
                    unit_price=pack.ticket_price,
                    tax_rate_code=self.settings.tax_rate_code,
                    is_active=(action != "Delete"),
                    action=action,
                )
            )
        return items

    def export(
        self,
        config: FileExchangeConfig,
        pack: PackExportInfo,
        upcs: list[str],
        action: str = "AddUpdate",
    ) -> ExportResult:
        items = self.build_items(pack, upcs, action)
        try:
            xml = PriceBookBuilder(config.naxml_version, self.clock).build_price_book(
                config.store_location_id, items
            )
        except NaxmlBuildError as e:
            logger.error(f"price book build failed pack={pack.pack_id}: {e}")
            return ExportResult(ok=False, error=f"Failed to build price book: {e}")

        inbox = Path(config.xml_gateway_path) / self.settings.inbox_dir_name
        try:
            inbox.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"inbox create failed path={inbox}: {e}")
            return ExportResult(ok=False, error=f"Failed to create POS inbox directory {inbox}: {e}")

        file_path = inbox / build_export_filename(pack.pack_id, action, self.clock().isoformat())
        try:
            file_path.write_text(xml, encoding="utf-8")
        except OSError as e:
            logger.error(f"price book write failed path={file_path}: {e}")
            return ExportResult(ok=False, error=f"Failed to write POS file {file_path}: {e}")

        logger.info(f"pos export action={action} items={len(items)} file={file_path}")
        return ExportResult(ok=True, file_path=str(file_path), item_count=len(items))
