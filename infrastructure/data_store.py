import json
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Set

from audit.logger import logger
from exceptions.store_exceptions import BackendUnavailable, MalformedPayload


def pattern_to_regex(pattern: str):
    # "*" is the only wildcard, every other character matches literally
    return re.compile(".*".join(re.escape(part) for part in pattern.split("*")))


@dataclass
class MemoryEntry:
    payload: str
    expires_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class MemoryTier:
    """
    In-process fallback tier.

    One table keyed by string; each entry carries its own optional expiry.
    Reads evict expired entries lazily, so correctness never depends on
    the periodic sweep having run.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._entries = {}
        self._clock = clock
        self._lock = threading.Lock()

    def set(self, key: str, payload: str, expiry_seconds: Optional[int] = None) -> None:
        expires_at = self._clock() + expiry_seconds if expiry_seconds else None
        with self._lock:
            self._entries[key] = MemoryEntry(payload, expires_at)

    def get(self, key: str) -> Optional[str]:
        entry = self._live_entry(key)
        return entry.payload if entry else None

    def exists(self, key: str) -> bool:
        return self._live_entry(key) is not None

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def keys(self, pattern: str) -> Set[str]:
        regex = pattern_to_regex(pattern)
        now = self._clock()
        with self._lock:
            return {
                key for key, entry in self._entries.items()
                if not entry.is_expired(now) and regex.fullmatch(key)
            }

    def sweep(self, now: Optional[float] = None) -> int:
        now = self._clock() if now is None else now
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def size(self) -> int:
        now = self._clock()
        with self._lock:
            return sum(1 for entry in self._entries.values() if not entry.is_expired(now))

    def expiring_size(self) -> int:
        now = self._clock()
        with self._lock:
            return sum(
                1 for entry in self._entries.values()
                if entry.expires_at is not None and not entry.is_expired(now)
            )

    def _live_entry(self, key: str) -> Optional[MemoryEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return None
            return entry


class DataStore:
    """
    Key-value store over Redis with an in-process fallback.

    The remote backend is probed once at construction. If the probe fails,
    or no client is given, every operation is served from memory for the
    life of the instance. Otherwise each operation goes to Redis, and a
    failure of that single operation is served from memory instead.
    Nothing is copied between tiers when Redis comes back.

    Values are stored as JSON text. No operation raises to the caller.
    """

    def __init__(self, redis_client=None, clock: Callable[[], float] = time.time):
        self.redis = redis_client
        self.connected = False
        self.memory = MemoryTier(clock)
        self.degraded_writes = 0
        self._counter_lock = threading.Lock()
        self._probe()

    def _probe(self) -> None:
        if self.redis is None:
            logger.warning("No remote backend configured, using memory store")
            return

        try:
            self.redis.ping()
        except Exception as e:
            logger.warning(f"Redis probe failed, using memory store | error={e}")
            return

        self.connected = True
        logger.info("Redis connected | mode=primary")

    @property
    def mode(self) -> str:
        return "primary" if self.connected else "fallback"

    def _remote(self, operation: str, *args):
        try:
            return getattr(self.redis, operation)(*args)
        except Exception as e:
            raise BackendUnavailable(f"{operation} failed: {e}") from e

    def _dispatch(self, operation: str, key: str, remote: Callable, local: Callable):
        if self.connected:
            try:
                return remote()
            except BackendUnavailable as e:
                logger.warning(
                    f"Remote operation degraded to memory tier | op={operation} | key={key} | error={e}"
                )
        return local()

    # Core key-value contract

    def set(self, key: str, value: Any, expiry_seconds: Optional[int] = None) -> bool:
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.error(f"Value not serializable | key={key} | error={e}")
            return False

        if self.connected:
            try:
                if expiry_seconds:
                    self._remote("setex", key, int(expiry_seconds), payload)
                else:
                    self._remote("set", key, payload)
                return True
            except BackendUnavailable as e:
                # Reported through get_status(), not to the caller
                with self._counter_lock:
                    self.degraded_writes += 1
                logger.warning(f"Write degraded to memory tier | key={key} | error={e}")

        self.memory.set(key, payload, expiry_seconds)
        return True

    def get(self, key: str) -> Any:
        payload = self._dispatch(
            "get", key,
            lambda: self._remote("get", key),
            lambda: self.memory.get(key),
        )
        if payload is None:
            return None

        try:
            return self._decode(key, payload)
        except MalformedPayload as e:
            logger.warning(f"Discarding unreadable value | key={key} | error={e}")
            return None

    def delete(self, key: str) -> bool:
        def local():
            self.memory.delete(key)
            return True

        return self._dispatch(
            "delete", key,
            lambda: self._remote("delete", key) is not None,
            local,
        )

    def exists(self, key: str) -> bool:
        return self._dispatch(
            "exists", key,
            lambda: bool(self._remote("exists", key)),
            lambda: self.memory.exists(key),
        )

    def keys(self, pattern: str) -> Set[str]:
        return self._dispatch(
            "keys", pattern,
            lambda: set(self._remote("keys", pattern)),
            lambda: self.memory.keys(pattern),
        )

    # Set operations. Redis holds a native set; the memory tier a JSON list.

    def add_to_set(self, key: str, member: str) -> bool:
        def local():
            members = self._memory_members(key) or []
            if member not in members:
                members.append(member)
                self.memory.set(key, json.dumps(members))
            return True

        return self._dispatch(
            "sadd", key,
            lambda: self._remote("sadd", key, member) is not None,
            local,
        )

    def remove_from_set(self, key: str, member: str) -> bool:
        def local():
            members = self._memory_members(key)
            if members and member in members:
                members.remove(member)
                self.memory.set(key, json.dumps(members))
            return True

        return self._dispatch(
            "srem", key,
            lambda: self._remote("srem", key, member) is not None,
            local,
        )

    def is_member(self, key: str, member: str) -> bool:
        return self._dispatch(
            "sismember", key,
            lambda: bool(self._remote("sismember", key, member)),
            lambda: member in (self._memory_members(key) or []),
        )

    def members(self, key: str) -> Set[str]:
        return self._dispatch(
            "smembers", key,
            lambda: set(self._remote("smembers", key)),
            lambda: set(self._memory_members(key) or []),
        )

    def _memory_members(self, key: str) -> Optional[List[str]]:
        payload = self.memory.get(key)
        if payload is None:
            return None
        try:
            members = self._decode(key, payload)
        except MalformedPayload:
            return None
        return list(members) if isinstance(members, list) else None

    @staticmethod
    def _decode(key: str, payload):
        try:
            return json.loads(payload)
        except (TypeError, ValueError) as e:
            raise MalformedPayload(f"{key}: {e}") from e

    # Maintenance and status

    def cleanup_expired(self, now: Optional[float] = None) -> int:
        removed = self.memory.sweep(now)
        if removed:
            logger.info(f"Expired memory entries removed | count={removed}")
        return removed

    def _degraded_count(self) -> int:
        with self._counter_lock:
            return self.degraded_writes

    def get_status(self) -> dict:
        return {
            "redis_connected": self.connected,
            "redis_url": "set" if self.redis is not None else "not set",
            "fallback_mode": not self.connected,
            "memory_keys": self.memory.size(),
            "memory_expiry_keys": self.memory.expiring_size(),
            "degraded_writes": self._degraded_count(),
        }
