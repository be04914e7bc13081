from __future__ import annotations

import logging
from typing import Any

from lottery_ops.cache.pack_upc_cache import PackUpcCache
from lottery_ops.config.loader import PosSyncSettings
from lottery_ops.db.catalog_store import CatalogStore
from lottery_ops.models.outcome import AuditEntry
from lottery_ops.models.pack_models import (
    CachedPackUpcs,
    PackActivationDetails,
    PackActivationInput,
    PackActivationResult,
    PackDeactivationResult,
    UpcGenerationInput,
)
from lottery_ops.services.audit import record_audit
from lottery_ops.services.pos_export import (
    PackExportInfo,
    PriceBookExporter,
    resolve_file_exchange_config,
)
from lottery_ops.services.upc_generator import UpcGenerator

"""Pack activation / deactivation sync with the cache and the POS file gateway.

Failure policy:
- UPC generation failure is the only fatal outcome (success=False)
- cache and POS export failures are reported through redis_stored / pos_exported
  (or redis_deleted / pos_removed) plus an error string, with success=True
- a store without a usable file-exchange integration is "not configured", not an error
- catalog store errors on the integration lookup propagate to the caller
- audit writes are best-effort
"""

__all__ = [
    "AUDIT_TABLE",
    "PackPosSync",
]

logger = logging.getLogger(__name__)

AUDIT_TABLE = "lottery_packs"

ACTION_GENERATION_FAILED = "PACK_UPC_GENERATION_FAILED"
ACTION_EXPORT_SUCCESS = "PACK_UPC_POS_EXPORT_SUCCESS"
ACTION_EXPORT_FAILED = "PACK_UPC_POS_EXPORT_FAILED"
ACTION_EXPORT_SKIPPED = "PACK_UPC_POS_EXPORT_SKIPPED"
ACTION_DELETE = "PACK_UPC_POS_DELETE"
ACTION_DELETE_FAILED = "PACK_UPC_POS_DELETE_FAILED"
ACTION_DELETE_SKIPPED = "PACK_UPC_POS_DELETE_SKIPPED"


class PackPosSync:
    def __init__(
        self,
        generator: UpcGenerator,
        cache: PackUpcCache,
        store: CatalogStore,
        exporter: PriceBookExporter,
        settings: PosSyncSettings,
    ) -> None:
        self.generator = generator
        self.cache = cache
        self.store = store
        self.exporter = exporter
        self.settings = settings

    def _audit(
        self,
        action: str,
        pack_id: str,
        user_id: str | None,
        new_values: dict[str, Any],
        reason: str | None = None,
    ) -> bool:
        return record_audit(
            self.store,
            AuditEntry(
                action=action,
                table_name=AUDIT_TABLE,
                record_id=pack_id,
                user_id=user_id,
                new_values=new_values,
                reason=reason,
            ),
        ).ok

    def sync_pack_activation(self, req: PackActivationInput) -> PackActivationResult:
        gen = self.generator.generate(
            UpcGenerationInput(
                game_code=req.game_code,
                pack_number=req.pack_number,
                tickets_per_pack=req.tickets_per_pack,
                starting_serial=req.starting_serial,
            )
        )
        if not gen.success:
            logger.warning(f"upc generation failed pack={req.pack_id}: {gen.error}")
            audit_logged = self._audit(
                ACTION_GENERATION_FAILED,
                req.pack_id,
                req.user_id,
                {
                    "gameCode": req.game_code,
                    "packNumber": req.pack_number,
                    "ticketsPerPack": req.tickets_per_pack,
                },
                reason=gen.error,
            )
            return PackActivationResult(
                success=False,
                upc_count=0,
                redis_stored=False,
                pos_exported=False,
                error=gen.error,
                audit_logged=audit_logged,
            )

        upcs = gen.upcs
        first_upc, last_upc = gen.metadata.first_upc, gen.metadata.last_upc
        errors: list[str] = []

        redis_stored = self.cache.store(
            CachedPackUpcs(
                pack_id=req.pack_id,
                store_id=req.store_id,
                game_code=req.game_code,
                game_name=req.game_name,
                pack_number=req.pack_number,
                ticket_price=req.ticket_price,
                upcs=upcs,
            )
        )
        if not redis_stored:
            errors.append("Failed to store UPCs in cache")

        # DB エラーは呼び出し元へ伝播
        integration = self.store.find_pos_integration(req.store_id)
        config = resolve_file_exchange_config(integration, self.settings)

        pos_exported = False
        file_path: str | None = None
        if config is None:
            logger.info(f"pos export skipped pack={req.pack_id}: no file-exchange integration")
            audit_logged = self._audit(
                ACTION_EXPORT_SKIPPED,
                req.pack_id,
                req.user_id,
                {"upcCount": len(upcs)},
                reason="No file-exchange POS integration configured",
            )
        else:
            result = self.exporter.export(
                config,
                PackExportInfo(req.pack_id, req.game_name, req.ticket_price),
                upcs,
                action="AddUpdate",
            )
            if result.ok:
                pos_exported = True
                file_path = result.file_path
                audit_logged = self._audit(
                    ACTION_EXPORT_SUCCESS,
                    req.pack_id,
                    req.user_id,
                    {
                        "upcCount": len(upcs),
                        "firstUpc": first_upc,
                        "lastUpc": last_upc,
                        "filePath": file_path,
                        "posType": config.pos_type,
                    },
                )
            else:
                errors.append(f"POS export failed: {result.error}")
                audit_logged = self._audit(
                    ACTION_EXPORT_FAILED,
                    req.pack_id,
                    req.user_id,
                    {"upcCount": len(upcs), "posType": config.pos_type},
                    reason=result.error,
                )

        return PackActivationResult(
            success=True,
            upc_count=len(upcs),
            redis_stored=redis_stored,
            pos_exported=pos_exported,
            error="; ".join(errors) if errors else None,
            audit_logged=audit_logged,
            details=PackActivationDetails(
                upcs=upcs,
                first_upc=first_upc,
                last_upc=last_upc,
                file_path=file_path,
            ),
        )

    def sync_pack_deactivation(
        self, pack_id: str, store_id: str, user_id: str | None = None
    ) -> PackDeactivationResult:
        cached = self.cache.get(pack_id)
        redis_deleted = self.cache.delete(pack_id)
        errors: list[str] = []
        if not redis_deleted:
            errors.append("Failed to delete UPCs from cache")

        upc_count = len(cached.upcs) if cached else 0
        pos_removed = False

        if cached is None:
            audit_logged = self._audit(
                ACTION_DELETE_SKIPPED,
                pack_id,
                user_id,
                {"upcCount": 0},
                reason="No cached UPCs for pack",
            )
        else:
            integration = self.store.find_pos_integration(store_id)
            config = resolve_file_exchange_config(integration, self.settings)
            if config is None:
                audit_logged = self._audit(
                    ACTION_DELETE_SKIPPED,
                    pack_id,
                    user_id,
                    {"upcCount": upc_count},
                    reason="No file-exchange POS integration configured",
                )
            else:
                result = self.exporter.export(
                    config,
                    PackExportInfo(pack_id, cached.game_name, cached.ticket_price),
                    cached.upcs,
                    action="Delete",
                )
                if result.ok:
                    pos_removed = True
                    audit_logged = self._audit(
                        ACTION_DELETE,
                        pack_id,
                        user_id,
                        {"upcCount": upc_count, "filePath": result.file_path},
                    )
                else:
                    errors.append(f"POS delete export failed: {result.error}")
                    audit_logged = self._audit(
                        ACTION_DELETE_FAILED,
                        pack_id,
                        user_id,
                        {"upcCount": upc_count},
                        reason=result.error,
                    )

        return PackDeactivationResult(
            success=True,
            redis_deleted=redis_deleted,
            pos_removed=pos_removed,
            upc_count=upc_count,
            error="; ".join(errors) if errors else None,
            audit_logged=audit_logged,
        )
