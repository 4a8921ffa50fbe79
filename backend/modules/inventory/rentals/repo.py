from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional, Tuple
import logging

from common.deps import content_conn

logger = logging.getLogger(__name__)

REQUEST_COLUMNS = [
    'id', 'inventory_object_id', 'user_id', 'quantity', 'start_date', 'end_date',
    'purpose', 'status', 'flow', 'returned_condition', 'return_notes',
    'created_at', 'updated_at', 'returned_at',
]

# Extra columns a status transition may write
_TRANSITION_FIELDS = {'returned_condition', 'return_notes'}


def _row_to_dict(row) -> Dict[str, Any]:
    record = dict(zip(REQUEST_COLUMNS, row))
    for key in ('start_date', 'end_date'):
        if record.get(key) is not None:
            record[key] = str(record[key])[:10]
    return record


class RentalRepo:
    """inventory_requests: the locally owned rental request rows"""

    def init_tables(self):
        with content_conn() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS inventory_requests (
                    id                  SERIAL PRIMARY KEY,
                    inventory_object_id VARCHAR(64) NOT NULL,
                    user_id             INTEGER NOT NULL,
                    quantity            INTEGER NOT NULL CHECK (quantity > 0),
                    start_date          DATE NOT NULL,
                    end_date            DATE NOT NULL,
                    purpose             TEXT,
                    status              VARCHAR(20) NOT NULL DEFAULT 'pending',
                    flow                VARCHAR(20) NOT NULL DEFAULT 'approval',
                    returned_condition  VARCHAR(100),
                    return_notes        TEXT,
                    created_at          TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at          TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    returned_at         TIMESTAMP,
                    CHECK (end_date >= start_date)
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_inventory_requests_item_status
                ON inventory_requests (inventory_object_id, status)
            """)

    def get_request(self, request_id: int) -> Optional[Dict[str, Any]]:
        with content_conn() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {', '.join(REQUEST_COLUMNS)} FROM inventory_requests WHERE id = %s",
                (request_id,)
            )
            row = cursor.fetchone()
        return _row_to_dict(row) if row else None

    def sum_reserved(self, item_id: str, start_date: str, end_date: str) -> int:
        """Units held by local pending/approved requests overlapping the window"""
        with content_conn() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT COALESCE(SUM(quantity), 0)
                FROM inventory_requests
                WHERE inventory_object_id = %s
                  AND status IN ('pending', 'approved')
                  AND start_date <= %s
                  AND end_date >= %s
            """, (str(item_id), end_date, start_date))
            row = cursor.fetchone()
        return int(row[0] or 0) if row else 0

    def approved_quantities_on(self, day: str) -> Dict[str, int]:
        """item id -> units of approved requests running on ``day``"""
        with content_conn() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT inventory_object_id, COALESCE(SUM(quantity), 0)
                FROM inventory_requests
                WHERE status = 'approved'
                  AND start_date <= %s
                  AND end_date >= %s
                GROUP BY inventory_object_id
            """, (day, day))
            rows = cursor.fetchall()
        return {str(r[0]): int(r[1]) for r in rows}

    def insert_request(self, item_id: str, user_id: int, quantity: int, start_date: str,
                       end_date: str, purpose: str = '', status: str = 'pending',
                       flow: str = 'approval') -> int:
        with content_conn() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO inventory_requests
                    (inventory_object_id, user_id, quantity, start_date, end_date, purpose, status, flow)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING id
            """, (str(item_id), user_id, quantity, start_date, end_date, purpose or None, status, flow))
            new_id = cursor.fetchone()[0]
        logger.info(f"Inventory request #{new_id} created ({status}/{flow}) for item {item_id}, user {user_id}")
        return new_id

    def transition(self, request_id: int, from_statuses: Iterable[str], to_status: str, **fields) -> bool:
        """
        Conditional status update; returns False when the row was not in one of
        ``from_statuses`` (someone else moved it first).
        """
        unknown = set(fields) - _TRANSITION_FIELDS
        if unknown:
            raise ValueError(f"Unsupported transition fields: {sorted(unknown)}")

        assignments = ["status = %s", "updated_at = NOW()"]
        params: List[Any] = [to_status]
        for column, value in fields.items():
            assignments.append(f"{column} = %s")
            params.append(value)
        if to_status == 'returned':
            assignments.append("returned_at = NOW()")

        params.extend([request_id, tuple(from_statuses)])
        with content_conn() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"UPDATE inventory_requests SET {', '.join(assignments)} WHERE id = %s AND status IN %s",
                tuple(params)
            )
            updated = cursor.rowcount == 1
        return updated

    def holder_rows(self, item_id: str, include_id: Optional[int] = None,
                    exclude_id: Optional[int] = None) -> List[Tuple[int, int]]:
        """(user_id, quantity) of approval-flow rows currently holding the item"""
        with content_conn() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT user_id, quantity
                FROM inventory_requests
                WHERE inventory_object_id = %s
                  AND flow = 'approval'
                  AND (status IN ('approved', 'pending_return') OR id = %s)
                  AND id <> %s
                ORDER BY id
            """, (str(item_id), include_id or 0, exclude_id or 0))
            rows = cursor.fetchall()
        return [(int(r[0]), int(r[1])) for r in rows]

    def list_by_status(self, status: str) -> List[Dict[str, Any]]:
        with content_conn() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {', '.join(REQUEST_COLUMNS)} FROM inventory_requests "
                "WHERE status = %s ORDER BY updated_at DESC, id DESC",
                (status,)
            )
            rows = cursor.fetchall()
        return [_row_to_dict(r) for r in rows]

    def list_for_user(self, user_id: int) -> List[Dict[str, Any]]:
        with content_conn() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {', '.join(REQUEST_COLUMNS)} FROM inventory_requests "
                "WHERE user_id = %s ORDER BY created_at DESC, id DESC",
                (user_id,)
            )
            rows = cursor.fetchall()
        return [_row_to_dict(r) for r in rows]
