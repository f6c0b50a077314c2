"""
Per-tournament write serialization.

Generation and pool mutation are read-modify-write sequences over one
tournament's stage records. Two callers must never both observe "not yet
generated" and both write, so every mutating engine operation runs inside
tournament_lock(tournament_id). Locks are process-local.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator

logger = logging.getLogger(__name__)

_registry_lock = threading.Lock()
_locks: Dict[int, threading.Lock] = {}


def _lock_for(tournament_id: int) -> threading.Lock:
    with _registry_lock:
        lock = _locks.get(tournament_id)
        if lock is None:
            lock = threading.Lock()
            _locks[tournament_id] = lock
        return lock


@contextmanager
def tournament_lock(tournament_id: int) -> Iterator[None]:
    lock = _lock_for(tournament_id)
    if not lock.acquire(blocking=False):
        logger.debug("Waiting for tournament %s lock", tournament_id)
        lock.acquire()
    try:
        yield
    finally:
        lock.release()
