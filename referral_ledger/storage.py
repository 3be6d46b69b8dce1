"""
In-process document store.

Holds the four record collections as plain dicts and hands out re-entrant
per-record locks. Nested lock scopes must follow the collection hierarchy
payments/withdrawals -> referrals -> accounts.
"""

import itertools
import threading
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from loguru import logger

from .errors import StoreUnavailableError


ACCOUNTS = "accounts"
REFERRALS = "referrals"
PAYMENTS = "payments"
WITHDRAWALS = "withdrawals"

LOCK_RANK = {PAYMENTS: 0, WITHDRAWALS: 0, REFERRALS: 1, ACCOUNTS: 2}


class InMemoryStorage:
    def __init__(self, lock_timeout: float = 5.0):
        self.collections: dict[str, dict[str, dict]] = {
            ACCOUNTS: {},
            REFERRALS: {},
            PAYMENTS: {},
            WITHDRAWALS: {},
        }
        self.referral_code_index: dict[str, str] = {}
        self.lock_timeout = lock_timeout
        self._locks: dict[tuple[str, str], threading.RLock] = {}
        self._registry_lock = threading.Lock()
        self._last_stamps: dict[tuple[str, str], int] = {}
        self._sequence = itertools.count(1)

    def get(self, collection: str, key: str) -> Optional[dict]:
        document = self.collections[collection].get(key)
        return dict(document) if document is not None else None

    def put(self, collection: str, key: str, document: dict) -> None:
        with self._registry_lock:
            self.collections[collection][key] = dict(document)

    def contains(self, collection: str, key: str) -> bool:
        return key in self.collections[collection]

    def values(self, collection: str) -> list[dict]:
        """Snapshot of a collection in insertion order."""
        with self._registry_lock:
            return [dict(d) for d in self.collections[collection].values()]

    def count(self, collection: str) -> int:
        return len(self.collections[collection])

    def next_sequence(self) -> int:
        with self._registry_lock:
            return next(self._sequence)

    def claim_referral_code(self, code: str, owner_id: str) -> bool:
        with self._registry_lock:
            if code in self.referral_code_index:
                return False
            self.referral_code_index[code] = owner_id
            return True

    def allocate_id(self, collection: str, prefix: str, owner_id: str) -> str:
        """Returns ``<prefix>_<owner>_<epoch millis>``, strictly increasing per owner."""
        with self._registry_lock:
            stamp = int(time.time() * 1000)
            last = self._last_stamps.get((collection, owner_id))
            if last is not None and stamp <= last:
                stamp = last + 1
            self._last_stamps[(collection, owner_id)] = stamp
            return f"{prefix}_{owner_id}_{stamp}"

    @contextmanager
    def locked(self, *keys: tuple[str, str]) -> Iterator[None]:
        ordered = sorted(set(keys), key=lambda k: (LOCK_RANK[k[0]], k[1]))
        acquired = []
        try:
            for key in ordered:
                lock = self._lock_for(key)
                if not lock.acquire(timeout=self.lock_timeout):
                    logger.warning(f"Timed out waiting for lock on {key[0]}/{key[1]}")
                    raise StoreUnavailableError(
                        f"Timed out waiting for {key[0]} record {key[1]}",
                        collection=key[0], id=key[1], timeout=self.lock_timeout,
                    )
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    def _lock_for(self, key: tuple[str, str]) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock
