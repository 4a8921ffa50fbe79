"""
Short-lived cache of the full EasyVerein item list.

Two layers: an in-process copy and a JSON file in the temp dir shared by all
workers of this installation. Both expire after ITEM_CACHE_TTL seconds and
both are dropped synchronously by ``invalidate()``, which every stock
mutation calls before it returns. A fetch that overlaps an invalidation is
returned to its caller but never stored in either layer.
"""
import hashlib
import json
import logging
import os
import tempfile
import threading
import time
import uuid
from pathlib import Path
from typing import Callable, List, Optional

from core.config import settings
from modules._integrations.easyverein.models import RemoteItem

logger = logging.getLogger(__name__)


def default_cache_path(cache_dir: Optional[str] = None) -> Path:
    install_dir = str(Path(__file__).resolve().parents[2])
    digest = hashlib.md5(install_dir.encode()).hexdigest()
    base = Path(cache_dir or settings.ITEM_CACHE_DIR or tempfile.gettempdir())
    return base / f"easyverein_inventory_{digest}_cache.json"


class ItemCache:
    def __init__(self, fetch: Callable[[], List[RemoteItem]], path: Optional[Path] = None,
                 ttl: Optional[int] = None, clock: Callable[[], float] = time.time):
        self.fetch = fetch
        self.path = Path(path) if path else default_cache_path()
        self.ttl = settings.ITEM_CACHE_TTL if ttl is None else ttl
        self.clock = clock
        self._items: Optional[List[RemoteItem]] = None
        self._fetched_at = 0.0
        self._lock = threading.Lock()
        # Bumped by invalidate(); a fetch started under an older generation is never stored
        self._generation = 0

    def get_items(self) -> List[RemoteItem]:
        with self._lock:
            if self._items is not None and self._fresh(self._fetched_at):
                return list(self._items)
            generation = self._generation

        payload = self._load_file() or {}
        cached = self._items_from(payload, generation)
        if cached is not None:
            return list(cached)
        marker = payload.get("invalidation")

        items = self.fetch()
        now = self.clock()
        with self._lock:
            # invalidate() ran here or in another worker while we were fetching
            if generation != self._generation or (self._load_file() or {}).get("invalidation") != marker:
                logger.debug("Item cache invalidated during fetch, not storing the result")
                return list(items)
            self._items = list(items)
            self._fetched_at = now
            self._write_payload({
                "fetched_at": now,
                "invalidation": marker,
                "items": [item.model_dump() for item in items],
            })
        return list(items)

    def get_item(self, item_id) -> Optional[RemoteItem]:
        for item in self.get_items():
            if item.id is not None and str(item.id) == str(item_id):
                return item
        return None

    def invalidate(self):
        with self._lock:
            self._generation += 1
            self._items = None
            self._fetched_at = 0.0
            # A fresh marker instead of unlinking; fetches in flight elsewhere compare it before writing
            self._write_payload({"invalidation": uuid.uuid4().hex})
        logger.debug("Item cache invalidated")

    def _fresh(self, fetched_at: float) -> bool:
        return (self.clock() - fetched_at) < self.ttl

    def _load_file(self) -> Optional[dict]:
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable item cache {self.path}: {e}")
            return None
        return payload if isinstance(payload, dict) else None

    def _items_from(self, payload: dict, generation: int) -> Optional[List[RemoteItem]]:
        if not isinstance(payload.get("items"), list):
            return None
        fetched_at = float(payload.get("fetched_at") or 0)
        if not self._fresh(fetched_at):
            return None

        items = [RemoteItem(**raw) for raw in payload["items"]]
        with self._lock:
            if generation == self._generation:
                self._items = items
                self._fetched_at = fetched_at
        return items

    def _write_payload(self, payload: dict):
        tmp = self.path.with_suffix(f".{os.getpid()}.tmp")
        try:
            tmp.write_text(json.dumps(payload), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as e:
            # The in-process layer still works without the file
            logger.warning(f"Could not write item cache {self.path}: {e}")


_cache: Optional[ItemCache] = None


def get_item_cache() -> ItemCache:
    global _cache
    if _cache is None:
        from modules._integrations.easyverein.client import EasyVereinClient
        _cache = ItemCache(EasyVereinClient().list_items)
    return _cache
