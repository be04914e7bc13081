from __future__ import annotations

import json
import logging
from dataclasses import replace
from datetime import timedelta

from lottery_ops.cache.store import CacheStore
from lottery_ops.models.pack_models import CachedPackUpcs
from lottery_ops.services.clock import Clock, utc_now

"""Write-through cache of generated pack UPCs.

Entries live for a retry window (1h by default) after activation so that a
failed POS export can be retried, and so that deactivation can build the Delete
document without regenerating. expires_at is stamped here; a reader treats an
entry past expires_at as absent even if the backing store still holds it.
"""

__all__ = [
    "DEFAULT_KEY_PREFIX",
    "DEFAULT_RETRY_WINDOW",
    "PackUpcCache",
]

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "lottery:pack_upcs"
DEFAULT_RETRY_WINDOW = timedelta(hours=1)


class PackUpcCache:
    def __init__(
        self,
        backend: CacheStore,
        retry_window: timedelta = DEFAULT_RETRY_WINDOW,
        clock: Clock = utc_now,
        key_prefix: str = DEFAULT_KEY_PREFIX,
    ) -> None:
        self.backend = backend
        self.retry_window = retry_window
        self.clock = clock
        self.key_prefix = key_prefix

    def key_for(self, pack_id: str) -> str:
        return f"{self.key_prefix}:{pack_id}"

    def store(self, entry: CachedPackUpcs) -> bool:
        """Stamp generated_at / expires_at and write. True iff the write succeeded."""
        now = self.clock()
        stamped = replace(entry, generated_at=now, expires_at=now + self.retry_window)
        payload = json.dumps(stamped.to_dict())
        ok = self.backend.set(
            self.key_for(entry.pack_id),
            payload,
            int(self.retry_window.total_seconds()),
        )
        if ok:
            logger.debug(f"cached {len(entry.upcs)} upcs pack={entry.pack_id}")
        else:
            logger.warning(f"cache write failed pack={entry.pack_id}")
        return ok

    def get(self, pack_id: str) -> CachedPackUpcs | None:
        raw = self.backend.get(self.key_for(pack_id))
        if raw is None:
            return None
        try:
            entry = CachedPackUpcs.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"unreadable cache entry pack={pack_id}: {e}")
            return None
        if entry.expires_at is not None and self.clock() >= entry.expires_at:
            logger.debug(f"stale cache entry pack={pack_id} expires_at={entry.expires_at.isoformat()}")
            return None
        return entry

    def delete(self, pack_id: str) -> bool:
        return self.backend.delete(self.key_for(pack_id))
