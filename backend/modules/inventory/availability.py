import logging
from typing import Optional

from modules._integrations.easyverein.client import EasyVereinClient, ItemId
from modules.inventory.rentals.repo import RentalRepo

logger = logging.getLogger(__name__)


class AvailabilityCalculator:
    """
    Units of an item free for a date range:

        pieces - overlapping remote lendings - overlapping local pending/approved requests

    Local rows matter because a request only reaches EasyVerein once it is
    approved; without them two members could book the same unit meanwhile.
    """

    def __init__(self, client: Optional[EasyVereinClient] = None, repo=None):
        self.client = client or EasyVereinClient()
        self.repo = repo or RentalRepo()

    def breakdown(self, item_id: ItemId, start_date: str, end_date: str) -> dict:
        item = self.client.get_item(item_id)
        total = max(0, item.pieces)

        lent = 0
        for loan in self.client.get_active_lendings(item_id):
            if loan.overlaps(start_date, end_date):
                lent += max(1, loan.quantity)

        reserved = self.repo.sum_reserved(str(item_id), start_date[:10], end_date[:10])

        available = max(0, total - lent - reserved)
        logger.debug(
            f"Availability item {item_id} [{start_date}..{end_date}]: "
            f"pieces={total} lent={lent} reserved={reserved} -> {available}"
        )
        return {
            "item_id": str(item_id),
            "name": item.name,
            "total": total,
            "lent": lent,
            "reserved": reserved,
            "available": available,
        }

    def available_units(self, item_id: ItemId, start_date: str, end_date: str) -> int:
        return self.breakdown(item_id, start_date, end_date)["available"]
