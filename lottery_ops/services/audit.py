from __future__ import annotations

import logging

from lottery_ops.db.catalog_store import CatalogStore
from lottery_ops.models.outcome import AuditEntry, SideEffectResult

"""Best-effort audit logging.

record_audit never raises: a failing audit write is logged and reported as
SideEffectResult(ok=False) so the primary operation is not affected.
"""

__all__ = ["record_audit"]

logger = logging.getLogger(__name__)


def record_audit(store: CatalogStore, entry: AuditEntry) -> SideEffectResult:
    try:
        store.write_audit_log_entry(entry)
    except Exception as e:  # 監査失敗は主処理に影響させない
        logger.error(f"audit write failed action={entry.action} record={entry.record_id}: {e}")
        return SideEffectResult.failure(str(e))
    logger.debug(f"audit action={entry.action} record={entry.record_id}")
    return SideEffectResult.success()
