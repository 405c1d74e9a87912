"""
In-process resource locks.

Serializes operations on the same wallet / room / plan inside one worker.
Cross-process safety comes from SELECT ... FOR UPDATE in the ledger store;
both layers acquire in the same global order:
    plan < room < wallet, then by id ascending.
The "pin" namespace guards PIN lockout state only and is never held while
waiting on another key.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional, Tuple

from splitspace.app.core.config import settings
from splitspace.app.core.exceptions import ConcurrencyConflictError

logger = logging.getLogger(__name__)

LockKey = Tuple[str, int]


def wallet_key(user_id: int) -> LockKey:
    return ("wallet", user_id)


def room_key(room_id: int) -> LockKey:
    return ("room", room_id)


def plan_key(plan_id: int) -> LockKey:
    return ("plan", plan_id)


def pin_key(user_id: int) -> LockKey:
    return ("pin", user_id)


class AccountLockRegistry:
    """
    Keyed asyncio locks, created on demand and dropped when unused.

    Usage:
        async with account_locks.hold(wallet_key(a), wallet_key(b)):
            ...
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self._locks: Dict[LockKey, asyncio.Lock] = {}
        self._refs: Dict[LockKey, int] = {}

    def _checkout(self, key: LockKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._refs[key] = self._refs.get(key, 0) + 1
        return lock

    def _checkin(self, key: LockKey) -> None:
        self._refs[key] -= 1
        if self._refs[key] == 0:
            del self._refs[key]
            del self._locks[key]

    def is_held(self, key: LockKey) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, *keys: LockKey) -> AsyncIterator[None]:
        ordered = sorted(set(keys))
        timeout = self.timeout if self.timeout is not None else settings.lock_timeout_seconds
        acquired = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                try:
                    await asyncio.wait_for(lock.acquire(), timeout=timeout)
                except asyncio.TimeoutError:
                    self._checkin(key)
                    logger.warning("Lock wait timed out on %s:%s", *key)
                    raise ConcurrencyConflictError()
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
                self._checkin(key)


account_locks = AccountLockRegistry()
