"""
Per-item locks around read-validate-write sequences against EasyVerein.

EasyVerein has no compare-and-swap, so two concurrent checkouts can both read
the same ``pieces`` value. Which lock guards the sequence is chosen with
RENTAL_LOCK_STRATEGY:

- none     NoopLock, the race window is accepted
- process  ProcessLock, serializes within one worker process
- advisory AdvisoryLock, PostgreSQL session advisory lock across workers
"""
import hashlib
import logging
import threading
from contextlib import contextmanager

from core.config import settings
from core.db import get_content_connection, return_content_connection

logger = logging.getLogger(__name__)


class NoopLock:
    @contextmanager
    def hold(self, item_id):
        yield


class ProcessLock:
    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}

    def _lock_for(self, item_id) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(str(item_id), threading.Lock())

    @contextmanager
    def hold(self, item_id):
        lock = self._lock_for(item_id)
        with lock:
            yield


def advisory_key(item_id) -> int:
    """Stable signed 64-bit key for pg_advisory_lock"""
    digest = hashlib.sha256(f"inventory-item:{item_id}".encode()).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


class AdvisoryLock:
    def __init__(self, get_conn=get_content_connection, return_conn=return_content_connection):
        self._get_conn = get_conn
        self._return_conn = return_conn

    @contextmanager
    def hold(self, item_id):
        key = advisory_key(item_id)
        conn = self._get_conn()
        try:
            conn.autocommit = True
            cursor = conn.cursor()
            cursor.execute("SELECT pg_advisory_lock(%s)", (key,))
            try:
                yield
            finally:
                cursor.execute("SELECT pg_advisory_unlock(%s)", (key,))
        finally:
            conn.autocommit = False
            self._return_conn(conn)


_process_lock = ProcessLock()


def get_item_lock(strategy: str = None):
    strategy = (strategy or settings.RENTAL_LOCK_STRATEGY or "none").lower()
    if strategy == "process":
        return _process_lock
    if strategy == "advisory":
        return AdvisoryLock()
    if strategy != "none":
        logger.warning(f"Unknown RENTAL_LOCK_STRATEGY '{strategy}', using no lock")
    return NoopLock()
