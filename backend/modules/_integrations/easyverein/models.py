from __future__ import annotations
import re
from typing import Any, Dict, List, Optional
from pydantic import BaseModel


def _first(raw: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """First key present with a non-null value; EasyVerein aliases many fields."""
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return default


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value) if value is not None and value != '' else None
    except (TypeError, ValueError):
        return None


def _date10(value: Any) -> Optional[str]:
    """ISO dates compare lexicographically once cut to YYYY-MM-DD."""
    if not value:
        return None
    return str(value)[:10]


class CustomFieldValue(BaseModel):
    """One value of a named, EasyVerein-defined custom field on an item"""
    id: int
    name: str = ''
    value: str = ''


class RemoteItem(BaseModel):
    """Canonical view of an EasyVerein inventory-object"""
    id: Optional[int] = None
    name: str = 'Unnamed Item'
    pieces: int = 0
    unit_price: Optional[float] = None
    note: str = ''
    member: Any = None               # current holder reference, dict or id
    serial_number: Optional[str] = None
    location_name: Optional[str] = None
    image: Optional[str] = None
    custom_fields: List[CustomFieldValue] = []

    def member_ref(self) -> str:
        """Holder label for log lines: username, name or id, else 'Unbekannt'."""
        if isinstance(self.member, dict):
            ref = _first(self.member, 'username', 'name', 'id')
        else:
            ref = self.member
        return str(ref) if ref not in (None, '') else 'Unbekannt'


class AssignedLoan(BaseModel):
    """An active EasyVerein lending held against an item"""
    id: Optional[int] = None
    item_id: Optional[int] = None
    borrower: Any = None
    quantity: int = 1
    start_date: Optional[str] = None
    return_date: Optional[str] = None

    def overlaps(self, start_date: str, end_date: str) -> bool:
        # Missing dates count as overlapping so we never over-promise stock
        if self.start_date is None or self.return_date is None:
            return True
        return self.start_date <= end_date[:10] and self.return_date >= start_date[:10]

    def borrower_id(self) -> Optional[int]:
        """Contact id of the borrower; borrowAddress may be an id, an object or a URL."""
        value = self.borrower
        if isinstance(value, dict):
            value = value.get('id')
        if isinstance(value, str):
            match = re.search(r'(\d+)/?$', value)
            value = match.group(1) if match else None
        if value is None or isinstance(value, bool):
            return None
        parsed = _to_int(value, -1)
        return parsed if parsed >= 0 else None


def normalize_custom_fields(raw_fields: Any) -> List[CustomFieldValue]:
    fields = []
    for field in raw_fields or []:
        if not isinstance(field, dict) or field.get('id') is None:
            continue
        definition = field.get('customField') or {}
        name = definition.get('name', '') if isinstance(definition, dict) else ''
        fields.append(CustomFieldValue(
            id=_to_int(field['id']),
            name=name or '',
            value='' if field.get('value') is None else str(field.get('value')),
        ))
    return fields


def normalize_item(raw: Dict[str, Any]) -> RemoteItem:
    """Map the loosely-typed inventory-object JSON onto a RemoteItem."""
    item_id = _first(raw, 'id', 'EasyVereinID')
    image = _first(raw, 'picture', 'image', 'avatar', 'image_path', 'image_url')
    location = _first(raw, 'locationName', 'location')
    if isinstance(location, dict):
        location = location.get('name')
    serial = _first(raw, 'serial_number', 'inventoryNumber')

    return RemoteItem(
        id=_to_int(item_id) if item_id is not None else None,
        name=str(raw.get('name') or 'Unnamed Item'),
        pieces=max(0, _to_int(_first(raw, 'pieces', 'inventoryQuantity', 'quantity', default=0))),
        unit_price=_to_float(_first(raw, 'acquisitionPrice', 'price', 'unit_price')),
        note=str(_first(raw, 'note', 'description', default='') or ''),
        member=raw.get('member'),
        serial_number=str(serial) if serial is not None else None,
        location_name=str(location) if location else None,
        image=str(image) if image else None,
        custom_fields=normalize_custom_fields(raw.get('customFields')),
    )


def normalize_lending(raw: Dict[str, Any]) -> AssignedLoan:
    parent = raw.get('parentInventoryObject')
    if isinstance(parent, dict):
        parent = parent.get('id')
    lending_id = raw.get('id')

    return AssignedLoan(
        id=_to_int(lending_id) if lending_id is not None else None,
        item_id=_to_int(parent) if parent is not None else None,
        borrower=raw.get('borrowAddress'),
        quantity=max(1, _to_int(_first(raw, 'quantity', 'pieces', 'amount', default=1), 1)),
        start_date=_date10(_first(raw, 'startDate', 'lendingStart', 'start_date', 'dateFrom', 'borrowingDate')),
        return_date=_date10(_first(raw, 'returnDate', 'lendingEnd', 'end_date', 'dateTo', 'dueDate')),
    )
