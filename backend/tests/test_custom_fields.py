from datetime import date

from modules._integrations.easyverein.models import CustomFieldValue
from modules.inventory.custom_fields import (
    FieldRole,
    aggregate_holders,
    build_borrower_annotations,
    build_condition_text,
    build_field_updates,
    lists_holder,
    resolve_field_ids,
)

from tests.conftest import annotation_fields

USERS = {
    1: {"id": 1, "first_name": "Anna", "last_name": "Schmidt", "email": "anna@example.org"},
    2: {"id": 2, "first_name": "", "last_name": "", "email": "ben@example.org"},
}


def test_resolve_field_ids_by_name():
    ids = resolve_field_ids(annotation_fields())
    assert ids == {
        FieldRole.BORROWERS: 101,
        FieldRole.BORROWER_EMAILS: 102,
        FieldRole.LAST_CONDITION: 103,
    }


def test_aggregate_keeps_first_seen_order():
    assert list(aggregate_holders([(2, 1), (1, 1), (2, 2)]).items()) == [(2, 3), (1, 1)]


def test_borrower_lines():
    names, emails = build_borrower_annotations([(1, 2), (2, 1), (1, 1)], USERS)
    assert names == "Anna Schmidt (3x)\nben@example.org (1x)"
    assert emails == "anna@example.org (3x)\nben@example.org (1x)"


def test_unknown_user_still_listed():
    names, emails = build_borrower_annotations([(99, 1)], USERS)
    assert names == "Unbekannt (1x)"
    assert emails == "Unbekannt (1x)"


def test_no_holders_clears_fields():
    assert build_borrower_annotations([], USERS) == ("", "")


def test_condition_text():
    checked = date(2024, 6, 3)
    assert build_condition_text("gut", "Max Mustermann", checked) == "gut - Geprüft am 03.06.2024 durch Max Mustermann."
    assert build_condition_text("beschädigt", "Max", checked, "Kratzer") == \
        "beschädigt - Geprüft am 03.06.2024 durch Max. Notiz: Kratzer"


def test_field_updates_skip_missing_fields():
    ids = {FieldRole.BORROWERS: 101}
    assert build_field_updates(ids, "A (1x)", "a@x (1x)") == [{"id": 101, "value": "A (1x)"}]


def test_lists_holder_matches_whole_identifier():
    fields = [
        CustomFieldValue(id=101, name="Aktuelle Ausleiher", value="Anna Schmidt (2x)"),
        CustomFieldValue(id=102, name="Entra E-Mail", value="annabelle@example.org (1x)\nben@example.org (1x)"),
        CustomFieldValue(id=104, name="Notiz", value="anna@example.org (1x)"),
    ]
    assert lists_holder(fields, "anna schmidt")
    assert lists_holder(fields, "BEN@example.org")
    assert not lists_holder(fields, "anna@example.org")
    assert not lists_holder(fields, "")
