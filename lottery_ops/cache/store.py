from __future__ import annotations

import logging
from typing import Protocol

import redis

from lottery_ops.config.loader import CacheConfig, resolve_redis_url

"""Key-value cache collaborator.

CacheStore is the narrow interface the pack UPC cache depends on. Failures are
converted to False / None at this boundary and never raised to callers.
"""

__all__ = [
    "CacheStore",
    "RedisCacheStore",
]

logger = logging.getLogger(__name__)


class CacheStore(Protocol):
    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> bool: ...

    def get(self, key: str) -> str | None: ...

    def delete(self, key: str) -> bool: ...

    def ping(self) -> bool: ...


class RedisCacheStore:
    """CacheStore backed by redis-py (decode_responses=True)."""

    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    @classmethod
    def from_config(cls, cfg: CacheConfig) -> RedisCacheStore:
        url = resolve_redis_url(cfg)
        if url:
            client = redis.Redis.from_url(url, decode_responses=True)
        else:
            client = redis.Redis(
                host=cfg.host,
                port=cfg.port,
                db=cfg.db,
                password=cfg.password,
                decode_responses=True,
            )
        return cls(client)

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> bool:
        try:
            if ttl_seconds:
                self.client.setex(key, ttl_seconds, value)
            else:
                self.client.set(key, value)
            return True
        except redis.RedisError as e:
            logger.error(f"cache set failed key={key}: {e}")
            return False

    def get(self, key: str) -> str | None:
        try:
            return self.client.get(key)
        except redis.RedisError as e:
            logger.error(f"cache get failed key={key}: {e}")
            return None

    def delete(self, key: str) -> bool:
        try:
            removed = self.client.delete(key)
            logger.debug(f"cache delete key={key} removed={removed}")
            return True
        except redis.RedisError as e:
            logger.error(f"cache delete failed key={key}: {e}")
            return False

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            logger.error(f"cache ping failed: {e}")
            return False
