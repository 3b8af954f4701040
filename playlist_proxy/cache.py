#!/usr/bin/env python3
# -*- coding:utf-8 -*-
import asyncio
import json
import logging
import time

RAW_TIER = "raw"
PROCESSED_TIER = "processed"
TIERS = (RAW_TIER, PROCESSED_TIER)

cache_logger = logging.getLogger("cache")


class KeyValueStore:
    """
    Storage binding used by the proxy cache. Values are strings; structured
    values are stored as JSON and read back with ``as_json=True``.
    """
    enabled = True

    async def get(self, key, as_json=False):
        raise NotImplementedError

    async def put(self, key, value, expire_after_seconds=None):
        raise NotImplementedError


class NullKeyValueStore(KeyValueStore):
    enabled = False

    async def get(self, key, as_json=False):
        return None

    async def put(self, key, value, expire_after_seconds=None):
        return None


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self, ttl=86400, max_size=500):
        self.cache = {}
        self.expiration_times = {}
        self._lock = None
        self.ttl = ttl
        self.max_size = max_size

    @property
    def lock(self):
        # Created on first use so it belongs to the serving loop
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    def _cleanup_expired_items(self):
        current_time = time.time()
        expired_keys = [
            k for k, exp in self.expiration_times.items() if current_time > exp
        ]
        for k in expired_keys:
            self.cache.pop(k, None)
            self.expiration_times.pop(k, None)
        return len(expired_keys)

    async def get(self, key, as_json=False):
        async with self.lock:
            if key not in self.cache or time.time() > self.expiration_times.get(key, 0):
                return None
            value = self.cache[key]
        if as_json:
            return json.loads(value)
        return value

    async def put(self, key, value, expire_after_seconds=None):
        if not isinstance(value, str):
            value = json.dumps(value)
        async with self.lock:
            self._cleanup_expired_items()
            if key not in self.cache and len(self.cache) >= self.max_size and self.expiration_times:
                oldest_key = min(self.expiration_times.items(), key=lambda x: x[1])[0]
                self.cache.pop(oldest_key, None)
                self.expiration_times.pop(oldest_key, None)
            ttl = expire_after_seconds if expire_after_seconds is not None else self.ttl
            self.cache[key] = value
            self.expiration_times[key] = time.time() + ttl

    async def evict_expired_items(self):
        async with self.lock:
            return self._cleanup_expired_items()


class ProxyCache:
    """
    Two-tier cache in front of a key-value store.

    The ``raw`` tier holds origin fetch results as ``{"body", "headers"}``;
    the ``processed`` tier holds fully rewritten variant playlists. A missing
    or failing store only ever costs a cache miss.
    """

    def __init__(self, store=None, ttl=86400):
        self.store = store if store is not None else NullKeyValueStore()
        self.ttl = ttl
        self._pending = set()

    @property
    def enabled(self):
        return self.store.enabled

    @staticmethod
    def make_key(tier, key):
        if tier not in TIERS:
            raise ValueError(f"Unknown cache tier '{tier}'")
        return f"{tier}:{key}"

    async def get(self, tier, key):
        cache_key = self.make_key(tier, key)
        try:
            if tier == RAW_TIER:
                value = await self.store.get(cache_key, as_json=True)
            else:
                value = await self.store.get(cache_key)
        except (ValueError, TypeError) as exc:
            cache_logger.warning("Ignoring malformed cache entry '%s': %s", cache_key, exc)
            return None
        except Exception as exc:
            cache_logger.warning("Cache read failed for '%s': %s", cache_key, exc)
            return None

        if value is None:
            cache_logger.info("[MISS] %s", cache_key)
            return None
        if tier == RAW_TIER and not _is_raw_entry(value):
            cache_logger.warning("Ignoring malformed cache entry '%s'", cache_key)
            return None
        if tier == PROCESSED_TIER and not isinstance(value, str):
            cache_logger.warning("Ignoring malformed cache entry '%s'", cache_key)
            return None
        cache_logger.info("[HIT] %s", cache_key)
        return value

    async def put(self, tier, key, value, ttl=None):
        cache_key = self.make_key(tier, key)
        try:
            await self.store.put(cache_key, value, expire_after_seconds=ttl or self.ttl)
            cache_logger.debug("Saved '%s' to cache", cache_key)
        except Exception as exc:
            cache_logger.warning("Cache write failed for '%s': %s", cache_key, exc)

    def put_later(self, tier, key, value, ttl=None):
        """Schedule a cache write without waiting for it to complete."""
        if not self.enabled:
            return None
        task = asyncio.create_task(self.put(tier, key, value, ttl=ttl))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self):
        """Wait for every scheduled write. Used on shutdown and in tests."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def _is_raw_entry(value):
    return (
        isinstance(value, dict)
        and isinstance(value.get("body"), str)
        and isinstance(value.get("headers"), dict)
    )
