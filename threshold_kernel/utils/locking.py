"""
In-process keyed mutual exclusion.

``KeyedLocks`` hands out one ``threading.Lock`` per key.  The workflow
serializes transitions on the request key and store writes on the
(tenant, category, currency/asset) key; database-level guards sit beneath
these locks and remain authoritative across processes.

Invariants enforced:
    - ``hold()`` acquires keys in sorted order, so two callers holding
      overlapping key sets can never deadlock each other.
    - Locks are never removed from the registry; a key always maps to the
      same lock object for the lifetime of the instance.
"""

import threading
from contextlib import ExitStack, contextmanager
from typing import Hashable, Iterator


class KeyedLocks:
    """Registry of per-key locks."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.Lock] = {}

    def lock_for(self, key: Hashable) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, *keys: Hashable) -> Iterator[None]:
        """Hold the locks for all ``keys`` for the duration of the block."""
        ordered = sorted(set(keys), key=repr)
        with ExitStack() as stack:
            for key in ordered:
                stack.enter_context(self.lock_for(key))
            yield


def request_key(request_id) -> tuple[str, str]:
    return ("request", str(request_id))


def slot_key(tenant_id: str, category, currency_or_asset: str) -> tuple[str, str, str, str]:
    category_value = getattr(category, "value", category)
    return ("slot", tenant_id, category_value, currency_or_asset)
