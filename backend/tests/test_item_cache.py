import json
import threading

import pytest

from modules._integrations.easyverein.models import RemoteItem
from modules.inventory.cache import ItemCache

from tests.conftest import FakeClock


class CountingFetch:
    def __init__(self, *batches):
        self.batches = list(batches)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.batches[min(self.calls, len(self.batches)) - 1]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache_path(tmp_path):
    return tmp_path / "items_cache.json"


def beamer(pieces=5):
    return RemoteItem(id=7, name="Beamer", pieces=pieces)


def test_second_read_within_ttl_is_served_from_cache(clock, cache_path):
    fetch = CountingFetch([beamer()])
    cache = ItemCache(fetch, path=cache_path, ttl=300, clock=clock)

    cache.get_items()
    clock.advance(299)
    items = cache.get_items()

    assert fetch.calls == 1
    assert items[0].name == "Beamer"


def test_expired_entry_is_refetched(clock, cache_path):
    fetch = CountingFetch([beamer(5)], [beamer(3)])
    cache = ItemCache(fetch, path=cache_path, ttl=300, clock=clock)

    cache.get_items()
    clock.advance(301)

    assert cache.get_items()[0].pieces == 3
    assert fetch.calls == 2


def test_file_layer_is_shared_between_instances(clock, cache_path):
    first = ItemCache(CountingFetch([beamer()]), path=cache_path, ttl=300, clock=clock)
    first.get_items()

    other_fetch = CountingFetch([beamer(1)])
    other_worker = ItemCache(other_fetch, path=cache_path, ttl=300, clock=clock)

    assert other_worker.get_items()[0].pieces == 5
    assert other_fetch.calls == 0


def test_invalidate_drops_both_layers(clock, cache_path):
    fetch = CountingFetch([beamer(5)], [beamer(2)])
    cache = ItemCache(fetch, path=cache_path, ttl=300, clock=clock)
    cache.get_items()
    assert cache_path.exists()

    cache.invalidate()

    assert "items" not in json.loads(cache_path.read_text(encoding="utf-8"))
    assert cache.get_items()[0].pieces == 2
    assert fetch.calls == 2


def test_invalidate_without_file_is_harmless(clock, cache_path):
    cache = ItemCache(CountingFetch([beamer()]), path=cache_path, ttl=300, clock=clock)
    cache.invalidate()


def test_stale_file_is_ignored(clock, cache_path):
    cache_path.write_text(json.dumps({
        "fetched_at": clock() - 1000,
        "items": [beamer(9).model_dump()],
    }), encoding="utf-8")
    fetch = CountingFetch([beamer(4)])
    cache = ItemCache(fetch, path=cache_path, ttl=300, clock=clock)

    assert cache.get_items()[0].pieces == 4
    assert fetch.calls == 1


def test_corrupt_file_is_ignored(clock, cache_path):
    cache_path.write_text("{not json", encoding="utf-8")
    fetch = CountingFetch([beamer(4)])
    cache = ItemCache(fetch, path=cache_path, ttl=300, clock=clock)

    assert cache.get_items()[0].pieces == 4


def test_get_item_by_id(clock, cache_path):
    cache = ItemCache(CountingFetch([beamer(), RemoteItem(id=8, name="Zelt")]), path=cache_path, ttl=300, clock=clock)
    assert cache.get_item("8").name == "Zelt"
    assert cache.get_item(99) is None


class BlockingFetch:
    """Returns whatever the remote holds when called, then waits for release."""

    def __init__(self, remote):
        self.remote = remote
        self.started = threading.Event()
        self.release = threading.Event()
        self.calls = 0

    def __call__(self):
        self.calls += 1
        snapshot = [beamer(self.remote["pieces"])]
        if self.calls == 1:
            self.started.set()
            assert self.release.wait(5)
        return snapshot


def test_fetch_overlapping_invalidate_is_not_stored(clock, cache_path):
    remote = {"pieces": 5}
    fetch = BlockingFetch(remote)
    cache = ItemCache(fetch, path=cache_path, ttl=300, clock=clock)
    results = []

    reader = threading.Thread(target=lambda: results.append(cache.get_items()))
    reader.start()
    assert fetch.started.wait(5)

    # Checkout lands while the list fetch is in flight
    remote["pieces"] = 3
    cache.invalidate()
    fetch.release.set()
    reader.join(5)

    assert results[0][0].pieces == 5
    assert cache.get_items()[0].pieces == 3
    other_worker = ItemCache(CountingFetch([beamer(3)]), path=cache_path, ttl=300, clock=clock)
    assert other_worker.get_items()[0].pieces == 3


def test_invalidation_by_other_worker_blocks_stale_write(clock, cache_path):
    remote = {"pieces": 5}
    fetch = BlockingFetch(remote)
    slow_worker = ItemCache(fetch, path=cache_path, ttl=300, clock=clock)
    mutating_worker = ItemCache(CountingFetch([beamer(3)]), path=cache_path, ttl=300, clock=clock)

    reader = threading.Thread(target=slow_worker.get_items)
    reader.start()
    assert fetch.started.wait(5)

    remote["pieces"] = 3
    mutating_worker.invalidate()
    fetch.release.set()
    reader.join(5)

    assert "items" not in json.loads(cache_path.read_text(encoding="utf-8"))
    assert slow_worker.get_items()[0].pieces == 3
