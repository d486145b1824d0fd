"""RevalCache Redis Store - Redis Entry Store.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Optional

from revalcache_core.cache.entry import CacheEntry
from revalcache_core.protocol.serializer import Serializer, get_serializer
from revalcache_core.store.backend import EntryStore, StorageConfig

logger = logging.getLogger(__name__)

SCAN_BATCH = 100


@dataclass
class RedisConfig(StorageConfig):
    """Connection settings for RedisStore.

    Attributes:
        host: Server host
        port: Server port
        db: Logical database index
        password: AUTH password
        socket_timeout: Seconds per command
        socket_connect_timeout: Seconds to establish a connection
        max_connections: Pool size
        prefix: Namespace prepended to every key
    """

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    socket_timeout: float = 5.0
    socket_connect_timeout: float = 5.0
    max_connections: int = 10
    prefix: str = "revalcache:"


class RedisStore(EntryStore):
    """Entry store keeping serialized entries in Redis.

    Entries are serialized whole, so value, tags and timestamps land in
    one SET. Entries with a hard TTL get a native Redis expiry.

    Backend errors are logged and counted; a failed read is a miss and a
    failed write is reported as False. A missing ``redis`` package is
    raised, not swallowed.

    Example:
        store = RedisStore(RedisConfig(host="redis.local", serializer="json"))
        cache = Cache(store=store)
    """

    def __init__(
        self,
        config: Optional[RedisConfig] = None,
        client: Optional[Any] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Set up the store. No connection is made until first use.

        Args:
            config: Connection settings
            client: Ready-made client, used instead of building a pool
            clock: Time source, should match the owning cache's clock
        """
        config = config or RedisConfig()
        super().__init__(config)
        self.config: RedisConfig = config
        self._client: Optional[Any] = client
        self._pool: Optional[Any] = None
        self._clock = clock
        self._serializer: Serializer = get_serializer(config.serializer)

    def _connection(self) -> Any:
        if self._client is not None:
            return self._client

        try:
            import redis
        except ImportError:
            raise ImportError("redis is required for RedisStore. Run: pip install redis")

        cfg = self.config
        try:
            pool = redis.ConnectionPool(
                host=cfg.host,
                port=cfg.port,
                db=cfg.db,
                password=cfg.password,
                socket_timeout=cfg.socket_timeout,
                socket_connect_timeout=cfg.socket_connect_timeout,
                max_connections=cfg.max_connections,
            )
            client = redis.Redis(connection_pool=pool)
            client.ping()
        except Exception as e:
            logger.error(f"Cannot reach Redis at {cfg.host}:{cfg.port}: {e}")
            raise

        self._pool, self._client = pool, client
        logger.info(f"RedisStore {cfg.name} connected to {cfg.host}:{cfg.port}/{cfg.db}")
        return client

    def _full_key(self, key: str) -> str:
        return self.config.prefix + key

    def _failed(self, operation: str, error: Exception) -> None:
        logger.error(f"Redis {operation} failed on {self.config.name}: {error}")
        self._stats.record_error(str(error))

    def _scan(self, client: Any, pattern: str) -> Iterator[bytes]:
        cursor = 0
        while True:
            cursor, batch = client.scan(cursor, match=pattern, count=SCAN_BATCH)
            yield from batch
            if cursor == 0:
                return

    def read(self, key: str) -> Optional[CacheEntry]:
        try:
            client = self._connection()
            self._stats.reads += 1
            raw = client.get(self._full_key(key))
            return None if raw is None else self._serializer.load_entry(raw)
        except ImportError:
            raise
        except Exception as e:
            self._failed(f"read of {key!r}", e)
            return None

    def write(self, key: str, entry: CacheEntry) -> bool:
        try:
            client = self._connection()
            payload = self._serializer.dump_entry(entry)
            ttl = entry.remaining_ttl(self._clock())
            if ttl is None:
                client.set(self._full_key(key), payload)
            else:
                client.psetex(self._full_key(key), max(1, int(ttl * 1000)), payload)
            self._stats.writes += 1
            return True
        except ImportError:
            raise
        except Exception as e:
            self._failed(f"write of {key!r}", e)
            return False

    def delete(self, key: str) -> bool:
        try:
            removed = self._connection().delete(self._full_key(key))
            self._stats.deletes += 1
            return removed > 0
        except ImportError:
            raise
        except Exception as e:
            self._failed(f"delete of {key!r}", e)
            return False

    def exists(self, key: str) -> bool:
        try:
            return self._connection().exists(self._full_key(key)) > 0
        except ImportError:
            raise
        except Exception as e:
            self._failed(f"exists of {key!r}", e)
            return False

    def keys(self, pattern: Optional[str] = None) -> List[str]:
        strip = len(self.config.prefix)
        try:
            client = self._connection()
            found = []
            for raw in self._scan(client, self._full_key(pattern or "*")):
                name = raw.decode() if isinstance(raw, bytes) else raw
                found.append(name[strip:])
            return found
        except ImportError:
            raise
        except Exception as e:
            self._failed("key scan", e)
            return []

    def clear(self) -> int:
        try:
            client = self._connection()
            batch = list(self._scan(client, self._full_key("*")))
            removed = 0
            for start in range(0, len(batch), SCAN_BATCH):
                removed += client.delete(*batch[start:start + SCAN_BATCH])
            return removed
        except ImportError:
            raise
        except Exception as e:
            self._failed("clear", e)
            return 0

    def close(self) -> None:
        """Disconnect the pool this store created."""
        if self._pool is not None:
            self._pool.disconnect()
            self._pool = None
            self._client = None

    def __repr__(self) -> str:
        cfg = self.config
        return f"RedisStore(host={cfg.host}, port={cfg.port}, prefix={cfg.prefix!r})"


__all__ = ["RedisStore", "RedisConfig"]
