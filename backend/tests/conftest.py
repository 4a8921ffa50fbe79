import json
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest
from requests.structures import CaseInsensitiveDict

from core.errors import NotFound
from modules._integrations.easyverein.models import CustomFieldValue, RemoteItem


BERLIN = ZoneInfo("Europe/Berlin")


# ---------------------------
# HTTP fakes
# ---------------------------
class FakeResponse:
    def __init__(self, status_code=200, body=None, headers=None, text=None):
        self.status_code = status_code
        if text is None:
            text = "" if body is None else json.dumps(body)
        self.text = text
        self.content = text.encode()
        self.headers = CaseInsensitiveDict(headers or {})

    def json(self):
        return json.loads(self.text)


class FakeSession:
    """Replays queued responses (or raises queued exceptions) in order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def queue(self, *responses):
        self.responses.extend(responses)

    def request(self, method, url, headers=None, json=None, timeout=None):
        self.calls.append({"method": method, "url": url, "headers": headers, "json": json, "timeout": timeout})
        if not self.responses:
            raise AssertionError(f"Unexpected request {method} {url}")
        nxt = self.responses.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


class FakeSettingsRepo:
    def __init__(self, token=None, fail_read=False, fail_write=False):
        self.token = token
        self.fail_read = fail_read
        self.fail_write = fail_write
        self.reads = 0
        self.saved = []

    def get_api_token(self):
        self.reads += 1
        if self.fail_read:
            raise RuntimeError("content DB unavailable")
        return self.token

    def save_api_token(self, token):
        if self.fail_write:
            raise RuntimeError("content DB unavailable")
        self.saved.append(token)
        self.token = token


# ---------------------------
# EasyVerein client fake
# ---------------------------
def annotation_fields():
    return [
        CustomFieldValue(id=101, name="Aktuelle Ausleiher", value=""),
        CustomFieldValue(id=102, name="Entra E-Mail", value=""),
        CustomFieldValue(id=103, name="Zustand der letzten Rückgabe", value=""),
        CustomFieldValue(id=104, name="Seriennummer", value="SN-1"),
    ]


class FakeEasyVerein:
    """In-memory stand-in for EasyVereinClient that records every call."""

    def __init__(self, items=None, lendings=None, custom_fields=None, contacts=None, lent_objects=None):
        self.items = {str(i.id): i for i in (items or [])}
        self.lendings = lendings or {}
        self.custom_fields = custom_fields or {}
        self.contacts = contacts or {}
        self.lent_objects = lent_objects or []
        self.fail_on = {}
        self.calls = []

    def _record(self, name, *args):
        self.calls.append((name,) + args)
        if name in self.fail_on:
            raise self.fail_on[name]

    def calls_named(self, name):
        return [c for c in self.calls if c[0] == name]

    def list_items(self):
        self._record("list_items")
        return [i.model_copy(deep=True) for i in self.items.values()]

    def get_item(self, item_id):
        self._record("get_item", str(item_id))
        if str(item_id) not in self.items:
            raise NotFound(f"Inventarobjekt {item_id} nicht gefunden")
        return self.items[str(item_id)].model_copy(deep=True)

    def patch_item(self, item_id, payload):
        self._record("patch_item", str(item_id), payload)
        item = self.items[str(item_id)]
        self.items[str(item_id)] = item.model_copy(update={
            "member": payload["member"], "note": payload["note"], "pieces": payload["pieces"],
        })
        return {"id": item.id}

    def get_active_lendings(self, item_id):
        self._record("get_active_lendings", str(item_id))
        return list(self.lendings.get(str(item_id), []))

    def get_lent_objects(self):
        self._record("get_lent_objects")
        return list(self.lent_objects)

    def find_contact_id(self, name):
        self._record("find_contact_id", name)
        if name not in self.contacts:
            raise NotFound(f"Nutzer nicht im easyVerein gefunden. Der Name ({name}) muss in easyVerein existieren.")
        return self.contacts[name]

    def create_lending(self, item_id, address_id, quantity, borrowing_date, return_date):
        self._record("create_lending", str(item_id), address_id, quantity, borrowing_date, return_date)
        return {"id": 900}

    def patch_lending_return(self, lending_id, return_date):
        self._record("patch_lending_return", lending_id, return_date)
        return {}

    def get_custom_fields(self, item_id):
        self._record("get_custom_fields", str(item_id))
        return [f.model_copy() for f in self.custom_fields.get(str(item_id), [])]

    def bulk_update_custom_fields(self, item_id, updates):
        self._record("bulk_update_custom_fields", str(item_id), updates)
        by_id = {u["id"]: u["value"] for u in updates}
        for field in self.custom_fields.get(str(item_id), []):
            if field.id in by_id:
                field.value = by_id[field.id]
        return {}


# ---------------------------
# Local store fakes
# ---------------------------
class FakeRentalRepo:
    def __init__(self):
        self.rows = {}
        self.next_id = 1
        self.fail_insert = False

    def add(self, **fields):
        row = {
            "id": fields.pop("id", None) or self.next_id,
            "inventory_object_id": "7",
            "user_id": 1,
            "quantity": 1,
            "start_date": "2024-06-01",
            "end_date": "2024-06-05",
            "purpose": "",
            "status": "pending",
            "flow": "approval",
            "returned_condition": None,
            "return_notes": None,
        }
        row.update(fields)
        self.rows[row["id"]] = row
        self.next_id = max(self.next_id, row["id"]) + 1
        return row

    def get_request(self, request_id):
        row = self.rows.get(request_id)
        return dict(row) if row else None

    def sum_reserved(self, item_id, start_date, end_date):
        return sum(
            r["quantity"] for r in self.rows.values()
            if r["inventory_object_id"] == str(item_id)
            and r["status"] in ("pending", "approved")
            and r["start_date"] <= end_date and r["end_date"] >= start_date
        )

    def approved_quantities_on(self, day):
        totals = {}
        for r in self.rows.values():
            if r["status"] == "approved" and r["start_date"] <= day <= r["end_date"]:
                totals[r["inventory_object_id"]] = totals.get(r["inventory_object_id"], 0) + r["quantity"]
        return totals

    def insert_request(self, item_id, user_id, quantity, start_date, end_date, purpose="",
                       status="pending", flow="approval"):
        if self.fail_insert:
            raise RuntimeError("content DB unavailable")
        row = self.add(inventory_object_id=str(item_id), user_id=user_id, quantity=quantity,
                       start_date=start_date, end_date=end_date, purpose=purpose,
                       status=status, flow=flow)
        return row["id"]

    def transition(self, request_id, from_statuses, to_status, **fields):
        row = self.rows.get(request_id)
        if row is None or row["status"] not in tuple(from_statuses):
            return False
        row["status"] = to_status
        row.update(fields)
        return True

    def holder_rows(self, item_id, include_id=None, exclude_id=None):
        rows = sorted(self.rows.values(), key=lambda r: r["id"])
        return [
            (r["user_id"], r["quantity"]) for r in rows
            if r["inventory_object_id"] == str(item_id)
            and r["flow"] == "approval"
            and (r["status"] in ("approved", "pending_return") or r["id"] == include_id)
            and r["id"] != exclude_id
        ]

    def list_by_status(self, status):
        return [dict(r) for r in self.rows.values() if r["status"] == status]

    def list_for_user(self, user_id):
        return [dict(r) for r in self.rows.values() if r["user_id"] == user_id]


class FakeUsers:
    def __init__(self, users=None):
        self.users = users or {}

    def get_users(self, user_ids):
        return {int(u): self.users[int(u)] for u in user_ids if int(u) in self.users}

    def get_user(self, user_id):
        return self.users.get(int(user_id))


class FakeCache:
    def __init__(self, items=None):
        self.items = items or []
        self.invalidations = 0

    def get_items(self):
        return list(self.items)

    def invalidate(self):
        self.invalidations += 1


class RecordingLock:
    def __init__(self):
        self.held = []

    def hold(self, item_id):
        from contextlib import nullcontext
        self.held.append(str(item_id))
        return nullcontext()


class FakeClock:
    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


# ---------------------------
# Fixtures
# ---------------------------
@pytest.fixture
def fixed_now():
    return datetime(2024, 6, 3, 14, 30, tzinfo=BERLIN)


@pytest.fixture
def users():
    return FakeUsers({
        1: {"id": 1, "first_name": "Anna", "last_name": "Schmidt", "email": "anna@example.org"},
        2: {"id": 2, "first_name": "", "last_name": "", "email": "ben@example.org"},
        3: {"id": 3, "first_name": "Carla", "last_name": "Weber", "email": "carla@example.org"},
    })


@pytest.fixture
def easyverein():
    item = RemoteItem(id=7, name="Beamer", pieces=5, note="Gekauft 2022", member={"username": "anna"})
    return FakeEasyVerein(
        items=[item],
        custom_fields={"7": annotation_fields()},
        contacts={"Anna Schmidt": 555, "Carla Weber": 556},
    )


@pytest.fixture
def rental_repo():
    return FakeRentalRepo()
