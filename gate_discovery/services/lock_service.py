"""
Lock Service - one discovery pass per event at a time

Backends:
- redis: a redis-py Lock per event, expiring after the pass timeout so a
  crashed worker cannot hold an event forever
- memory: process-local locks for single-process deployments and tests

Acquisition never blocks. A busy event raises ConcurrencyConflict and the
caller defers the trigger.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Dict, Optional
import redis
from redis.exceptions import LockError
from gate_discovery.config import settings
from gate_discovery.engine.errors import ConcurrencyConflict

logger = logging.getLogger(__name__)


class LockService:
    """Per-event execution locks."""

    KEY_PREFIX = "gate-discovery:lock:"

    def __init__(self, backend: Optional[str] = None, timeout: Optional[int] = None):
        self.backend = (backend or settings.LOCK_BACKEND).lower()
        self.timeout = timeout or settings.PASS_TIMEOUT_SECONDS
        self._redis: Optional[redis.Redis] = None
        self._local_locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _get_redis(self) -> redis.Redis:
        """Get Redis client"""
        if self._redis is None:
            self._redis = redis.from_url(settings.REDIS_URL)
        return self._redis

    def key(self, event_id: str) -> str:
        return f"{self.KEY_PREFIX}{event_id}"

    def _local_lock(self, event_id: str) -> threading.Lock:
        with self._registry_lock:
            return self._local_locks.setdefault(event_id, threading.Lock())

    @contextmanager
    def event_lock(self, event_id: str):
        """Hold the event for the duration of the block or raise ConcurrencyConflict."""
        if self.backend == "memory":
            lock = self._local_lock(event_id)
            if not lock.acquire(blocking=False):
                raise ConcurrencyConflict(event_id)
            try:
                yield
            finally:
                lock.release()
            return

        lock = self._get_redis().lock(self.key(event_id), timeout=self.timeout)
        if not lock.acquire(blocking=False):
            raise ConcurrencyConflict(event_id)
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError:
                # Expired mid-pass; another worker may already own the key
                logger.warning(f"Lock for event {event_id} expired before release")


# Singleton instance
lock_service = LockService()
