from __future__ import annotations
from typing import Iterable, Optional
import json
import logging

from common.deps import content_conn
from modules._integrations.easyverein.models import RemoteItem

logger = logging.getLogger(__name__)


class MirrorRepo:
    """Local inventory_items mirror of EasyVerein plus its inventory_history log"""

    def init_tables(self):
        with content_conn() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS inventory_items (
                    id                        SERIAL PRIMARY KEY,
                    easyverein_id             VARCHAR(64) UNIQUE,
                    name                      VARCHAR(255) NOT NULL,
                    description               TEXT,
                    serial_number             VARCHAR(100),
                    quantity                  INTEGER NOT NULL DEFAULT 0,
                    unit_price                NUMERIC(10, 2) DEFAULT 0,
                    image_path                TEXT,
                    location_name             VARCHAR(255),
                    is_archived_in_easyverein BOOLEAN NOT NULL DEFAULT FALSE,
                    last_synced_at            TIMESTAMP
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS inventory_history (
                    id             SERIAL PRIMARY KEY,
                    item_id        INTEGER NOT NULL,
                    user_id        INTEGER,
                    change_type    VARCHAR(30) NOT NULL,
                    old_stock      INTEGER,
                    new_stock      INTEGER,
                    change_amount  INTEGER,
                    reason         VARCHAR(255),
                    comment        TEXT,
                    created_at     TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

    @staticmethod
    def _log_history(cursor, item_id: int, user_id: int, change_type: str, old_stock: Optional[int],
                     new_stock: Optional[int], reason: str, comment: dict):
        change = None
        if new_stock is not None:
            change = new_stock - (old_stock or 0)
        cursor.execute("""
            INSERT INTO inventory_history
                (item_id, user_id, change_type, old_stock, new_stock, change_amount, reason, comment)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        """, (item_id, user_id, change_type, old_stock, new_stock, change, reason, json.dumps(comment)))

    def upsert_item(self, item: RemoteItem, user_id: int = 0) -> str:
        """Create or refresh one mirror row in its own transaction; returns 'created' or 'updated'."""
        easyverein_id = str(item.id)
        with content_conn() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT id, name, quantity FROM inventory_items WHERE easyverein_id = %s FOR UPDATE",
                (easyverein_id,)
            )
            existing = cursor.fetchone()

            if existing:
                row_id, old_name, old_quantity = existing
                cursor.execute("""
                    UPDATE inventory_items SET
                        name = %s,
                        description = %s,
                        serial_number = %s,
                        quantity = %s,
                        unit_price = %s,
                        image_path = COALESCE(%s, image_path),
                        location_name = %s,
                        is_archived_in_easyverein = FALSE,
                        last_synced_at = NOW()
                    WHERE id = %s
                """, (item.name, item.note, item.serial_number, item.pieces, item.unit_price or 0,
                      item.image, item.location_name, row_id))
                self._log_history(
                    cursor, row_id, user_id, 'sync_update', old_quantity, item.pieces,
                    'Synchronized from EasyVerein',
                    {'old_name': old_name, 'new_name': item.name, 'easyverein_id': easyverein_id},
                )
                return 'updated'

            cursor.execute("""
                INSERT INTO inventory_items (
                    easyverein_id, name, description, serial_number, quantity,
                    unit_price, image_path, location_name, is_archived_in_easyverein, last_synced_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, FALSE, NOW())
                RETURNING id
            """, (easyverein_id, item.name, item.note, item.serial_number, item.pieces,
                  item.unit_price or 0, item.image, item.location_name))
            new_id = cursor.fetchone()[0]
            self._log_history(
                cursor, new_id, user_id, 'sync_create', None, item.pieces,
                'Created from EasyVerein sync',
                {'easyverein_id': easyverein_id, 'name': item.name},
            )
            return 'created'

    def archive_missing(self, present_ids: Iterable[str], user_id: int = 0) -> int:
        """Soft-delete mirror rows whose EasyVerein id was not in this fetch (all of them if none was)."""
        present = tuple(str(i) for i in present_ids)
        with content_conn() as conn:
            cursor = conn.cursor()
            if present:
                cursor.execute("""
                    SELECT id, easyverein_id, name, quantity FROM inventory_items
                    WHERE easyverein_id IS NOT NULL
                      AND easyverein_id NOT IN %s
                      AND is_archived_in_easyverein = FALSE
                """, (present,))
            else:
                cursor.execute("""
                    SELECT id, easyverein_id, name, quantity FROM inventory_items
                    WHERE easyverein_id IS NOT NULL
                      AND is_archived_in_easyverein = FALSE
                """)
            rows = cursor.fetchall()

            for row_id, easyverein_id, name, quantity in rows:
                cursor.execute(
                    "UPDATE inventory_items SET is_archived_in_easyverein = TRUE, last_synced_at = NOW() WHERE id = %s",
                    (row_id,)
                )
                self._log_history(
                    cursor, row_id, user_id, 'sync_archive', quantity, quantity,
                    'Archived - no longer in EasyVerein',
                    {'easyverein_id': easyverein_id, 'name': name},
                )
        if rows:
            logger.info(f"Archived {len(rows)} mirror item(s) no longer present in EasyVerein")
        return len(rows)
