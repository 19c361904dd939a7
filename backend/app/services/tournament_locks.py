"""
Per-tournament mutual exclusion.

Every state transition on a tournament's match graphs (one result, one
withdrawal cascade, one stage advancement, one bracket build) runs while
holding that tournament's lock. Different tournaments never contend.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator

_registry_lock = threading.Lock()
_locks: Dict[int, threading.RLock] = {}


def get_tournament_lock(tournament_id: int) -> threading.RLock:
    with _registry_lock:
        lock = _locks.get(tournament_id)
        if lock is None:
            lock = threading.RLock()
            _locks[tournament_id] = lock
        return lock


@contextmanager
def tournament_lock(tournament_id: int) -> Iterator[None]:
    lock = get_tournament_lock(tournament_id)
    with lock:
        yield


def forget_tournament(tournament_id: int) -> None:
    """Drop a registry entry (tests, deleted tournaments)."""
    with _registry_lock:
        _locks.pop(tournament_id, None)
