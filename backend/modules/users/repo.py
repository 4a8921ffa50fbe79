from __future__ import annotations
from typing import Any, Dict, Iterable, Optional
import logging

from common.deps import user_conn

logger = logging.getLogger(__name__)

USER_COLUMNS = ['id', 'first_name', 'last_name', 'email']


class UserDirectoryRepo:
    """Read-only lookups against the member directory (users table)"""

    def get_users(self, user_ids: Iterable[int]) -> Dict[int, Dict[str, Any]]:
        ids = sorted({int(uid) for uid in user_ids})
        if not ids:
            return {}
        with user_conn() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {', '.join(USER_COLUMNS)} FROM users WHERE id IN %s",
                (tuple(ids),)
            )
            rows = cursor.fetchall()
        users = {int(r[0]): dict(zip(USER_COLUMNS, r)) for r in rows}
        missing = set(ids) - set(users)
        if missing:
            logger.warning(f"Users not found in directory: {sorted(missing)}")
        return users

    def get_user(self, user_id: int) -> Optional[Dict[str, Any]]:
        return self.get_users([user_id]).get(int(user_id))

    @staticmethod
    def display_name(user: Optional[Dict[str, Any]]) -> str:
        if not user:
            return ''
        return f"{user.get('first_name') or ''} {user.get('last_name') or ''}".strip()
