# common/deps.py
from contextlib import contextmanager
from typing import Callable

from fastapi import Header
from core.db import (
    get_content_connection,
    get_user_connection,
    return_content_connection,
    return_user_connection,
)
from core.security import get_current_user as _get_current_user


# ---------------------------
# Auth
# ---------------------------
async def get_current_user(authorization: str = Header(...)):
    """Auth dependency used by member routes."""
    return await _get_current_user(authorization=authorization)


# ---------------------------
# Database connections
# ---------------------------
@contextmanager
def _pooled_transaction(acquire: Callable, release: Callable):
    """Borrow a pooled connection for one transaction: commit on exit, rollback on error."""
    conn = acquire()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        release(conn)


def content_conn():
    """
    Content DB: rental requests, system_settings, inventory mirror.
    Usage:
        with content_conn() as conn:
            cursor = conn.cursor()
    """
    return _pooled_transaction(get_content_connection, return_content_connection)


def user_conn():
    """Member directory DB (read-only lookups)."""
    return _pooled_transaction(get_user_connection, return_user_connection)
