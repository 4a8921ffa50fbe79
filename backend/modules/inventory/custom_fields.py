"""
Borrower annotations kept on EasyVerein items as custom fields.

The fields are located by name on every call. Their values are rebuilt from
scratch from the local holder rows, never appended to.
"""
from __future__ import annotations
from datetime import date
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from modules._integrations.easyverein.models import CustomFieldValue

UNKNOWN = "Unbekannt"


class FieldRole(str, Enum):
    BORROWERS = "Aktuelle Ausleiher"
    BORROWER_EMAILS = "Entra E-Mail"
    LAST_CONDITION = "Zustand der letzten Rückgabe"


def resolve_field_ids(fields: Iterable[CustomFieldValue]) -> Dict[FieldRole, int]:
    by_name = {role.value: role for role in FieldRole}
    resolved: Dict[FieldRole, int] = {}
    for field in fields:
        role = by_name.get(field.name)
        if role is not None and role not in resolved:
            resolved[role] = field.id
    return resolved


def aggregate_holders(rows: Iterable[Tuple[int, int]]) -> Dict[int, int]:
    """Sum quantities per user, keeping first-seen order."""
    totals: Dict[int, int] = {}
    for user_id, quantity in rows:
        totals[int(user_id)] = totals.get(int(user_id), 0) + int(quantity)
    return totals


def _display_name(user: Optional[dict]) -> str:
    if not user:
        return UNKNOWN
    name = f"{user.get('first_name') or ''} {user.get('last_name') or ''}".strip()
    return name or user.get('email') or UNKNOWN


def build_borrower_annotations(holder_rows: Iterable[Tuple[int, int]],
                               users: Dict[int, dict]) -> Tuple[str, str]:
    """
    Returns the ("Name (Nx)", "email (Nx)") strings, one line per holder.
    Both are empty when nobody holds the item any more.
    """
    name_lines: List[str] = []
    email_lines: List[str] = []
    for user_id, quantity in aggregate_holders(holder_rows).items():
        user = users.get(user_id)
        name_lines.append(f"{_display_name(user)} ({quantity}x)")
        email_lines.append(f"{(user or {}).get('email') or UNKNOWN} ({quantity}x)")
    return "\n".join(name_lines), "\n".join(email_lines)


def build_condition_text(condition: str, admin_name: str, checked_on: date, notes: str = "") -> str:
    text = f"{condition} - Geprüft am {checked_on.strftime('%d.%m.%Y')} durch {admin_name}."
    if notes:
        text += f" Notiz: {notes}"
    return text


def build_field_updates(field_ids: Dict[FieldRole, int], names: str, emails: str,
                        last_condition: str = "") -> List[dict]:
    values = {
        FieldRole.BORROWERS: names,
        FieldRole.BORROWER_EMAILS: emails,
        FieldRole.LAST_CONDITION: last_condition,
    }
    return [
        {"id": field_ids[role], "value": value}
        for role, value in values.items()
        if role in field_ids
    ]


def lists_holder(fields: Iterable[CustomFieldValue], identifier: str) -> bool:
    """True when a borrower line of the item starts with ``identifier (``."""
    needle = identifier.strip().lower()
    if not needle:
        return False
    for field in fields:
        if field.name.lower() not in (FieldRole.BORROWERS.value.lower(), FieldRole.BORROWER_EMAILS.value.lower()):
            continue
        for line in field.value.split("\n"):
            if line.strip().lower().startswith(f"{needle} ("):
                return True
    return False
