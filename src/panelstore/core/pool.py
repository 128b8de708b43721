"""Bounded, drainable lease pool in front of the external engine adapter.

Manifesto:
    The external engine is a shared network resource. Callers beyond the
    pool size wait in a bounded queue instead of failing outright, and
    nobody waits forever. A reload must never close the pool under an
    operation that is still using it.

ARCHITECTURE
────────────
::

    lease() ──► [queue ≤ queue_limit] ──► [in use ≤ size] ──► adapter
                     │ full                    │ wait > timeout
                     ▼                         ▼
                StorageError            StorageTimeoutError

    retire()  ─ no new leases; adapter disconnects when the last lease ends
    close()   ─ retire() for shutdown paths, same drain rule

Lifecycle::

    ACTIVE ──retire()──► DRAINING ──last release──► CLOSED

Example::

    pool = ExternalPool(adapter, size=5, queue_limit=20, acquire_timeout=10)
    with pool.lease(deadline=time.monotonic() + 2) as ext:
        rows = ext.query("SELECT 1")
"""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum

from panelstore.core.adapters.base import DatabaseAdapter
from panelstore.core.errors import PoolRetired, StorageError, StorageTimeoutError
from panelstore.core.logging import get_logger

logger = get_logger(__name__)


class PoolState(str, Enum):
    ACTIVE = "active"
    DRAINING = "draining"
    CLOSED = "closed"


class ExternalPool:
    """Thread-safe lease counter around a connected external adapter.

    Attributes:
        adapter: Connected adapter for the external engine
        size: Maximum concurrent leases
        queue_limit: Maximum callers waiting for a lease
        acquire_timeout: Seconds a caller may wait for a lease
    """

    def __init__(
        self,
        adapter: DatabaseAdapter,
        *,
        size: int = 5,
        queue_limit: int = 20,
        acquire_timeout: float = 10.0,
    ):
        self.adapter = adapter
        self.size = size
        self.queue_limit = queue_limit
        self.acquire_timeout = acquire_timeout
        self._cond = threading.Condition(threading.Lock())
        self._in_use = 0
        self._waiting = 0
        self._state = PoolState.ACTIVE

    @property
    def state(self) -> PoolState:
        return self._state

    @property
    def active(self) -> bool:
        return self._state is PoolState.ACTIVE

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def waiting(self) -> int:
        return self._waiting

    def _acquire(self, deadline: float | None) -> None:
        timeout = self.acquire_timeout
        if deadline is not None:
            timeout = min(timeout, deadline - time.monotonic())
        give_up = time.monotonic() + max(timeout, 0.0)

        with self._cond:
            if self._state is not PoolState.ACTIVE:
                raise PoolRetired("External pool is retired")
            if self._in_use < self.size:
                self._in_use += 1
                return
            if self._waiting >= self.queue_limit:
                raise StorageError(
                    f"External pool queue is full ({self.queue_limit} waiting)",
                    retryable=True,
                )

            self._waiting += 1
            try:
                while True:
                    if self._state is not PoolState.ACTIVE:
                        raise PoolRetired("External pool was retired while waiting")
                    if self._in_use < self.size:
                        self._in_use += 1
                        return
                    remaining = give_up - time.monotonic()
                    if remaining <= 0:
                        raise StorageTimeoutError(
                            f"Timed out waiting for an external connection ({timeout:.1f}s)"
                        )
                    self._cond.wait(remaining)
            finally:
                self._waiting -= 1

    def _release(self) -> None:
        close_now = False
        with self._cond:
            self._in_use -= 1
            self._cond.notify()
            if self._state is PoolState.DRAINING and self._in_use == 0:
                self._state = PoolState.CLOSED
                close_now = True
        if close_now:
            self._disconnect()

    @contextmanager
    def lease(self, deadline: float | None = None) -> Iterator[DatabaseAdapter]:
        """Borrow the external adapter for one operation."""
        self._acquire(deadline)
        try:
            yield self.adapter
        finally:
            self._release()

    def retire(self) -> None:
        """Stop handing out leases; disconnect once in-flight leases finish."""
        close_now = False
        with self._cond:
            if self._state is not PoolState.ACTIVE:
                return
            if self._in_use == 0:
                self._state = PoolState.CLOSED
                close_now = True
            else:
                self._state = PoolState.DRAINING
            self._cond.notify_all()
        logger.info("pool.retired", in_use=self._in_use, closed=close_now)
        if close_now:
            self._disconnect()

    close = retire

    def ping(self, deadline: float | None = None) -> bool:
        """Whether a trivial query succeeds through this pool."""
        try:
            with self.lease(deadline) as adapter:
                adapter.ping()
        except Exception as e:
            logger.warning("pool.ping_failed", error=str(e))
            return False
        return True

    def _disconnect(self) -> None:
        try:
            self.adapter.disconnect()
        except Exception as e:
            logger.warning("pool.disconnect_failed", error=str(e))
        else:
            logger.info("pool.closed")

    def __repr__(self) -> str:
        return (
            f"ExternalPool(state={self._state.value}, in_use={self._in_use}, "
            f"waiting={self._waiting}, size={self.size})"
        )


__all__ = ["ExternalPool", "PoolState"]
