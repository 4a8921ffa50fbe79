from __future__ import annotations
from typing import Callable, List, Optional
import logging

from pydantic import BaseModel

from common.dto import ActionResult
from core.errors import AppError, PartialFailure
from core.mailer import send_sync_alert
from modules._integrations.easyverein.client import EasyVereinClient
from modules._integrations.easyverein.models import RemoteItem
from modules.inventory.sync.repo import MirrorRepo

logger = logging.getLogger(__name__)


class SyncStats(BaseModel):
    created: int = 0
    updated: int = 0
    archived: int = 0
    errors: List[str] = []

    def summary(self) -> str:
        return (f"{self.created} created, {self.updated} updated, "
                f"{self.archived} archived, {len(self.errors)} error(s)")


class InventorySyncService:
    """
    One-way EasyVerein -> inventory_items reconciliation.

    A failed fetch aborts before any row is touched and alerts the board.
    After that every item is written in its own transaction; per-item
    failures only land in ``SyncStats.errors``.
    """

    def __init__(self, repo: Optional[MirrorRepo] = None, client: Optional[EasyVereinClient] = None,
                 alert: Optional[Callable[[str], bool]] = None):
        self.repo = repo or MirrorRepo()
        self.client = client or EasyVereinClient()
        self.alert = alert or send_sync_alert

    def fetch_items(self) -> List[RemoteItem]:
        try:
            return self.client.list_items()
        except AppError as e:
            logger.error(f"❌ EasyVerein sync fetch failed: {e.message}")
            self.alert(e.message)
            raise

    def sync(self, user_id: int = 0) -> SyncStats:
        items = self.fetch_items()
        stats = SyncStats()
        present_ids = []

        for item in items:
            if item.id is None:
                stats.errors.append(f"Skipping item without ID: {item.name}")
                continue
            present_ids.append(str(item.id))
            try:
                outcome = self.repo.upsert_item(item, user_id)
            except Exception as e:
                logger.error(f"Sync of EasyVerein item {item.id} failed: {e}")
                stats.errors.append(f"Error processing item '{item.name}' (EV-ID: {item.id}): {e}")
                continue
            if outcome == 'created':
                stats.created += 1
            else:
                stats.updated += 1

        try:
            stats.archived = self.repo.archive_missing(present_ids, user_id)
        except Exception as e:
            logger.error(f"Archiving missing items failed: {e}")
            stats.errors.append(f"Error archiving items: {e}")

        logger.info(f"EasyVerein sync finished: {stats.summary()}")
        return stats

    def run(self, user_id: int = 0) -> ActionResult:
        """Sync for the HTTP trigger; errors come back as a failed result with the stats attached."""
        try:
            stats = self.sync(user_id)
            if stats.errors:
                raise PartialFailure(f"Synchronisation teilweise fehlgeschlagen: {stats.summary()}", stats.errors)
        except PartialFailure as e:
            logger.warning(f"⚠️  {e.message}")
            return ActionResult.fail(e.message, e.kind, data=stats.model_dump())
        except AppError as e:
            return ActionResult.fail('Synchronisation fehlgeschlagen: EasyVerein nicht erreichbar', e.kind)
        return ActionResult.ok(f"Synchronisation abgeschlossen: {stats.summary()}", data=stats.model_dump())
