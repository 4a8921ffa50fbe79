import pytest

from modules.inventory.rentals.locking import (
    AdvisoryLock,
    NoopLock,
    ProcessLock,
    advisory_key,
    get_item_lock,
)
from modules.inventory.rentals.service import can_transition, sources_for

STATUSES = ["pending", "approved", "active", "pending_return", "returned", "rejected"]

ALLOWED = {
    ("pending", "approved"),
    ("pending", "rejected"),
    ("approved", "pending_return"),
    ("approved", "returned"),
    ("active", "pending_return"),
    ("active", "returned"),
    ("pending_return", "returned"),
}


@pytest.mark.parametrize("src", STATUSES)
@pytest.mark.parametrize("dst", STATUSES)
def test_transition_table(src, dst):
    assert can_transition(src, dst) == ((src, dst) in ALLOWED)


def test_terminal_statuses_have_no_exits():
    for terminal in ("returned", "rejected"):
        assert not any(can_transition(terminal, dst) for dst in STATUSES)


def test_sources_for_returned():
    assert set(sources_for("returned")) == {"approved", "active", "pending_return"}
    assert sources_for("pending") == []


# ---------------------------
# Item locks
# ---------------------------
def test_get_item_lock_strategies():
    assert isinstance(get_item_lock("none"), NoopLock)
    assert isinstance(get_item_lock("process"), ProcessLock)
    assert get_item_lock("process") is get_item_lock("PROCESS")
    assert isinstance(get_item_lock("advisory"), AdvisoryLock)
    assert isinstance(get_item_lock("bogus"), NoopLock)


def test_process_lock_is_per_item():
    lock = ProcessLock()
    with lock.hold("7"):
        assert lock._lock_for("7").locked()
        assert not lock._lock_for("8").locked()
    assert not lock._lock_for(7).locked()


def test_advisory_key_is_stable_signed_int64():
    key = advisory_key("7")
    assert key == advisory_key(7)
    assert key != advisory_key("8")
    assert -(2 ** 63) <= key < 2 ** 63


class FakeCursor:
    def __init__(self, log):
        self.log = log

    def execute(self, sql, params=None):
        self.log.append((sql, params))


class FakeConn:
    def __init__(self):
        self.log = []
        self.autocommit = False

    def cursor(self):
        return FakeCursor(self.log)


def test_advisory_lock_locks_and_unlocks():
    conn = FakeConn()
    returned = []
    lock = AdvisoryLock(get_conn=lambda: conn, return_conn=returned.append)

    with pytest.raises(RuntimeError):
        with lock.hold("7"):
            raise RuntimeError("remote call failed")

    key = advisory_key("7")
    assert conn.log == [
        ("SELECT pg_advisory_lock(%s)", (key,)),
        ("SELECT pg_advisory_unlock(%s)", (key,)),
    ]
    assert returned == [conn]
    assert conn.autocommit is False
