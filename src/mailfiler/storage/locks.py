"""Cross-process locks kept in the property store.

A lock is a key holding ``{"user": holder, "timestamp": epoch_ms}``. Anyone
may take over a record older than the lock's TTL, which is how a run that
crashed without releasing is recovered.
"""

import json
import logging
import time
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from pydantic import ValidationError

from ..models import ExecutionLock
from .properties import EXECUTION_LOCK_KEY, PropertyStore

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class StoreLock:
    """TTL lock over a single property-store key."""

    def __init__(
        self,
        store: PropertyStore,
        key: str,
        holder: str,
        ttl_ms: int,
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.key = key
        self.holder = holder
        self.ttl_ms = ttl_ms
        self.clock = clock
        self.sleep = sleep
        self._held_value: Optional[str] = None

    @property
    def held(self) -> bool:
        return self._held_value is not None

    def current(self) -> Optional[ExecutionLock]:
        """Read the stored record, or None when absent or unreadable."""
        raw = self.store.get(self.key)
        return self._parse(raw) if raw is not None else None

    def _parse(self, raw: str) -> Optional[ExecutionLock]:
        try:
            return ExecutionLock(**json.loads(raw), max_hold_ms=self.ttl_ms)
        except (TypeError, ValueError, ValidationError):
            return None

    def _try_acquire(self) -> bool:
        record = ExecutionLock(holder=self.holder, acquired_at_epoch_ms=self.clock(), max_hold_ms=self.ttl_ms)
        value = json.dumps(record.model_dump(by_alias=True))

        if self.store.set_if_absent(self.key, value):
            self._held_value = value
            return True

        raw = self.store.get(self.key)
        if raw is None:
            # Released between our two calls.
            if self.store.set_if_absent(self.key, value):
                self._held_value = value
                return True
            return False

        existing = self._parse(raw)
        if existing is not None and not existing.is_expired(self.clock()):
            return False

        if existing is None:
            logger.warning(f"Lock {self.key} holds an unreadable record; taking it over")
        else:
            age = self.clock() - existing.acquired_at_epoch_ms
            logger.warning(
                f"Lock {self.key} held by {existing.holder} is {age}ms old "
                f"(ttl {self.ttl_ms}ms); treating as abandoned"
            )
        if self.store.compare_and_set(self.key, raw, value):
            self._held_value = value
            return True
        return False

    def acquire(self, timeout_sec: float = 0.0, poll_interval_sec: float = 0.5) -> bool:
        """Try to take the lock, polling until ``timeout_sec`` has passed.

        Returns:
            bool: True if this instance now holds the lock
        """
        if self.held:
            return True

        deadline = time.monotonic() + max(0.0, timeout_sec)
        while True:
            if self._try_acquire():
                logger.debug(f"Lock {self.key} acquired by {self.holder}")
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            self.sleep(min(poll_interval_sec, remaining))

    def release(self) -> None:
        """Delete the record if it is still ours. Safe to call when not held."""
        if not self.held:
            return
        try:
            if not self.store.compare_and_delete(self.key, self._held_value):
                logger.warning(f"Lock {self.key} was taken over before release by {self.holder}")
        except Exception as e:
            logger.error(f"Failed to release lock {self.key}: {e}")
        finally:
            self._held_value = None

    @contextmanager
    def hold(self, timeout_sec: float = 0.0, poll_interval_sec: float = 0.5) -> Iterator[bool]:
        """Acquire for the block; yields whether the lock was obtained."""
        acquired = self.acquire(timeout_sec, poll_interval_sec)
        try:
            yield acquired
        finally:
            if acquired:
                self.release()


def execution_lock(
    store: PropertyStore,
    holder: str,
    ttl_ms: int,
    clock: Callable[[], int] = now_ms,
    sleep: Callable[[float], None] = time.sleep,
) -> StoreLock:
    """The process-wide lock that keeps overlapping runs apart."""
    return StoreLock(store, EXECUTION_LOCK_KEY, holder, ttl_ms, clock=clock, sleep=sleep)
