import pytest

from modules._integrations.easyverein.models import AssignedLoan, RemoteItem
from modules.inventory.availability import AvailabilityCalculator

from tests.conftest import FakeEasyVerein, FakeRentalRepo


@pytest.fixture
def client():
    return FakeEasyVerein(items=[RemoteItem(id=7, name="Beamer", pieces=5)])


@pytest.fixture
def repo():
    return FakeRentalRepo()


def test_all_units_free(client, repo):
    calc = AvailabilityCalculator(client, repo)
    assert calc.available_units("7", "2024-06-01", "2024-06-05") == 5


def test_overlapping_approved_request_reduces_availability(client, repo):
    repo.add(quantity=2, status="approved", start_date="2024-06-03", end_date="2024-06-10")
    calc = AvailabilityCalculator(client, repo)
    assert calc.available_units("7", "2024-06-01", "2024-06-05") == 3


def test_pending_requests_count_but_finished_ones_do_not(client, repo):
    repo.add(quantity=1, status="pending")
    repo.add(quantity=2, status="returned")
    repo.add(quantity=2, status="rejected")
    calc = AvailabilityCalculator(client, repo)
    assert calc.available_units("7", "2024-06-01", "2024-06-05") == 4


def test_non_overlapping_request_ignored(client, repo):
    repo.add(quantity=3, status="approved", start_date="2024-07-01", end_date="2024-07-05")
    calc = AvailabilityCalculator(client, repo)
    assert calc.available_units("7", "2024-06-01", "2024-06-05") == 5


def test_remote_lendings_overlap(client, repo):
    client.lendings["7"] = [
        AssignedLoan(id=1, quantity=2, start_date="2024-06-04", return_date="2024-06-08"),
        AssignedLoan(id=2, quantity=1, start_date="2024-05-01", return_date="2024-05-10"),
    ]
    info = AvailabilityCalculator(client, repo).breakdown("7", "2024-06-01", "2024-06-05")
    assert info["lent"] == 2
    assert info["available"] == 3


def test_remote_lending_without_dates_counts_as_overlapping(client, repo):
    client.lendings["7"] = [AssignedLoan(id=1, quantity=1)]
    calc = AvailabilityCalculator(client, repo)
    assert calc.available_units("7", "2030-01-01", "2030-01-02") == 4


def test_never_negative(client, repo):
    client.items["7"] = RemoteItem(id=7, name="Beamer", pieces=1)
    repo.add(quantity=3, status="approved")
    info = AvailabilityCalculator(client, repo).breakdown("7", "2024-06-01", "2024-06-05")
    assert info == {
        "item_id": "7",
        "name": "Beamer",
        "total": 1,
        "lent": 0,
        "reserved": 3,
        "available": 0,
    }
