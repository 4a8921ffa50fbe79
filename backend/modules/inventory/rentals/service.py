from __future__ import annotations
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo
import logging

from common.dto import ActionResult
from core.config import settings
from core.errors import (
    AppError,
    InsufficientStock,
    InvalidState,
    NotConfigured,
    NotFound,
    RemoteError,
    ValidationError,
)
from modules._integrations.easyverein.client import EasyVereinClient
from modules._integrations.easyverein.models import AssignedLoan
from modules.inventory.availability import AvailabilityCalculator
from modules.inventory.cache import get_item_cache
from modules.inventory.custom_fields import (
    build_borrower_annotations,
    build_condition_text,
    build_field_updates,
    lists_holder,
    resolve_field_ids,
)
from modules.inventory.rentals.locking import get_item_lock
from modules.inventory.rentals.repo import RentalRepo
from modules.users.repo import UserDirectoryRepo

logger = logging.getLogger(__name__)

# Allowed status moves; anything else is InvalidState
TRANSITIONS = {
    'pending': {'approved', 'rejected'},
    'approved': {'pending_return', 'returned'},
    'active': {'pending_return', 'returned'},
    'pending_return': {'returned'},
}

MSG_NOT_PENDING = 'Anfrage nicht gefunden oder nicht im Status "ausstehend"'
MSG_NOT_LENT = 'Ausleihe nicht gefunden oder bereits in Bearbeitung'
MSG_REMOTE_FAILED = 'EasyVerein-Anfrage fehlgeschlagen. Bitte versuche es später erneut.'
MSG_NOT_CONFIGURED = 'EasyVerein ist nicht konfiguriert. Bitte wende dich an den Vorstand.'
MSG_INTERNAL = 'Interner Fehler. Bitte versuche es später erneut.'


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in TRANSITIONS.get(from_status, set())


def sources_for(to_status: str) -> List[str]:
    return [src for src, targets in TRANSITIONS.items() if to_status in targets]


def _parse_date(value: Any, label: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except (TypeError, ValueError):
        raise ValidationError(f"Ungültiges Datum ({label}): {value}")


def _parse_quantity(value: Any) -> int:
    try:
        quantity = int(value)
    except (TypeError, ValueError):
        raise ValidationError('Ungültige Menge')
    if quantity < 1:
        raise ValidationError('Ungültige Menge')
    return quantity


def _prepend_log(entry: str, note: str) -> str:
    return f"{entry}\n{note}" if note else entry


class RentalWorkflowService:
    """
    Rental requests reconciled with EasyVerein.

    Every transition performs its remote calls first and advances the local
    row last, with a conditional UPDATE, so a failure anywhere leaves the
    request in its previous status and the caller can simply retry.
    Public operations return an ActionResult instead of raising.
    """

    def __init__(self, repo: Optional[RentalRepo] = None, client: Optional[EasyVereinClient] = None,
                 users: Optional[UserDirectoryRepo] = None, cache=None,
                 availability: Optional[AvailabilityCalculator] = None, lock=None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.repo = repo or RentalRepo()
        self.client = client or EasyVereinClient()
        self.users = users or UserDirectoryRepo()
        self.cache = cache or get_item_cache()
        self.availability = availability or AvailabilityCalculator(self.client, self.repo)
        self.lock = lock or get_item_lock()
        self.clock = clock or (lambda: datetime.now(ZoneInfo(settings.APP_TIMEZONE)))

    # ---------------------------
    # Result boundary
    # ---------------------------
    def _guarded(self, action: str, fn: Callable[[], ActionResult]) -> ActionResult:
        try:
            return fn()
        except NotConfigured as e:
            logger.error(f"❌ {action}: {e.message}")
            return ActionResult.fail(MSG_NOT_CONFIGURED, e.kind)
        except RemoteError as e:
            # Raw body and 403 scope hint stay in the log
            logger.error(f"❌ {action} failed at EasyVerein: {e.message}")
            return ActionResult.fail(MSG_REMOTE_FAILED, e.kind)
        except AppError as e:
            logger.warning(f"⚠️  {action} rejected: {e.message}")
            return ActionResult.fail(e.message, e.kind)
        except Exception as e:
            logger.error(f"❌ {action} crashed: {e}", exc_info=True)
            return ActionResult.fail(MSG_INTERNAL, 'internal_error')

    def _load(self, request_id: int, allowed: List[str], message: str) -> Dict[str, Any]:
        row = self.repo.get_request(request_id)
        if row is None:
            raise NotFound(message)
        if row['status'] not in allowed:
            raise InvalidState(message)
        return row

    def _advance(self, request_id: int, to_status: str, message: str, **fields):
        if not self.repo.transition(request_id, sources_for(to_status), to_status, **fields):
            raise InvalidState(message)

    # ---------------------------
    # Remote stock mutations (read, validate, write)
    # ---------------------------
    def _stamp(self) -> str:
        return self.clock().strftime('%d.%m.%Y %H:%M')

    def _assign_remote(self, item_id: str, member: Any, quantity: int, purpose: str = ''):
        item = self.client.get_item(item_id)
        if item.pieces < quantity:
            raise InsufficientStock(item.pieces, quantity)

        entry = f"⏳ [{self._stamp()}] AUSGELIEHEN: {quantity}x an {member}"
        if purpose:
            entry += f". {purpose}"
        self.client.patch_item(item_id, {
            'member': member,
            'note': _prepend_log(entry, item.note),
            'pieces': item.pieces - quantity,
        })
        logger.info(f"EasyVerein item {item_id} assigned to member {member} (qty {quantity})")

    def _return_remote(self, item_id: str, quantity: int):
        item = self.client.get_item(item_id)
        entry = f"✅ [{self._stamp()}] ZURÜCKGEGEBEN: {quantity}x von {item.member_ref()}."
        self.client.patch_item(item_id, {
            'member': None,
            'note': _prepend_log(entry, item.note),
            'pieces': item.pieces + quantity,
        })
        logger.info(f"EasyVerein item {item_id} returned ({quantity} restored)")

    def _write_annotations(self, item_id: str, include_id: Optional[int] = None,
                           exclude_id: Optional[int] = None, last_condition: str = ''):
        """Rebuild borrower fields from the local holder rows and write them in one bulk update."""
        holders = self.repo.holder_rows(item_id, include_id=include_id, exclude_id=exclude_id)
        users = self.users.get_users(uid for uid, _ in holders)
        names, emails = build_borrower_annotations(holders, users)

        field_ids = resolve_field_ids(self.client.get_custom_fields(item_id))
        updates = build_field_updates(field_ids, names, emails, last_condition)
        if not updates:
            logger.warning(f"Item {item_id} has none of the borrower custom fields, skipping annotation update")
            return
        self.client.bulk_update_custom_fields(item_id, updates)

    def _requester_contact_id(self, row: Dict[str, Any]) -> Optional[int]:
        user = self.users.get_user(row['user_id'])
        name = (UserDirectoryRepo.display_name(user) or user.get('email')) if user else None
        if not name:
            return None
        try:
            return self.client.find_contact_id(name)
        except NotFound:
            return None

    def _match_lending(self, row: Dict[str, Any], loans: List[AssignedLoan]) -> Optional[AssignedLoan]:
        """
        The requester's lending on the item, or None. An exact date and
        quantity match wins unless its borrower is known to be someone else;
        otherwise only a lending whose borrower is the requester qualifies.
        """
        candidates = [loan for loan in loans if loan.id is not None]
        if not candidates:
            return None
        contact_id = self._requester_contact_id(row)

        def other_borrower(loan: AssignedLoan) -> bool:
            borrower = loan.borrower_id()
            return contact_id is not None and borrower is not None and borrower != contact_id

        for loan in candidates:
            if (loan.start_date == row['start_date'] and loan.return_date == row['end_date']
                    and loan.quantity == row['quantity'] and not other_borrower(loan)):
                return loan

        if contact_id is None:
            return None
        owned = [loan for loan in candidates if loan.borrower_id() == contact_id]
        open_ended = [loan for loan in owned if loan.return_date is None]
        return (open_ended or owned or [None])[0]

    # ---------------------------
    # Transitions
    # ---------------------------
    def submit_request(self, user_id: int, item_id: str, quantity: Any, start_date: Any,
                       end_date: Any, purpose: str = '') -> ActionResult:
        def run():
            qty = _parse_quantity(quantity)
            start = _parse_date(start_date, 'Start')
            end = _parse_date(end_date, 'Ende')
            if end < start:
                raise ValidationError('Das Enddatum darf nicht vor dem Startdatum liegen')

            with self.lock.hold(item_id):
                available = self.availability.available_units(item_id, start.isoformat(), end.isoformat())
                if available < qty:
                    raise InsufficientStock(available, qty)
                request_id = self.repo.insert_request(
                    str(item_id), user_id, qty, start.isoformat(), end.isoformat(), purpose or '',
                    status='pending', flow='approval',
                )
            return ActionResult.ok(
                'Anfrage erfolgreich eingereicht. Sie werden benachrichtigt, sobald Ihre Anfrage bearbeitet wurde.',
                request_id=request_id,
            )
        return self._guarded(f"Submit request for item {item_id}", run)

    def approve(self, request_id: int, admin_name: str = '') -> ActionResult:
        def run():
            row = self._load(request_id, ['pending'], MSG_NOT_PENDING)
            item_id = row['inventory_object_id']

            with self.lock.hold(item_id):
                # Re-read under the lock; a concurrent approve may have won
                row = self._load(request_id, ['pending'], MSG_NOT_PENDING)
                user = self.users.get_user(row['user_id'])
                if not user:
                    raise NotFound('Antragsteller nicht gefunden')
                borrower = UserDirectoryRepo.display_name(user) or user.get('email') or ''

                try:
                    contact_id = self.client.find_contact_id(borrower)
                    self.client.create_lending(item_id, contact_id, row['quantity'], row['start_date'], row['end_date'])
                    self._write_annotations(item_id, include_id=request_id)
                finally:
                    self.cache.invalidate()

                self._advance(request_id, 'approved', MSG_NOT_PENDING)

            logger.info(f"✅ Request {request_id} approved by {admin_name or 'board'} for {borrower}, item {item_id}")
            return ActionResult.ok('Anfrage genehmigt', request_id=request_id)
        return self._guarded(f"Approve request {request_id}", run)

    def reject(self, request_id: int, admin_name: str = '') -> ActionResult:
        def run():
            self._load(request_id, ['pending'], MSG_NOT_PENDING)
            self._advance(request_id, 'rejected', MSG_NOT_PENDING)
            logger.info(f"Request {request_id} rejected by {admin_name or 'board'}")
            return ActionResult.ok('Anfrage abgelehnt', request_id=request_id)
        return self._guarded(f"Reject request {request_id}", run)

    def request_return(self, request_id: int, user_id: Optional[int] = None) -> ActionResult:
        """Borrower announces the return; local only, a board member verifies later."""
        def run():
            row = self._load(request_id, sources_for('pending_return'), MSG_NOT_LENT)
            if user_id is not None and int(row['user_id']) != int(user_id):
                raise NotFound(MSG_NOT_LENT)
            self._advance(request_id, 'pending_return', MSG_NOT_LENT)
            return ActionResult.ok('Rückgabe angefragt - wartet auf Prüfung', request_id=request_id)
        return self._guarded(f"Request return {request_id}", run)

    def verify_return(self, request_id: int, admin_name: str, condition: str, notes: str = '') -> ActionResult:
        def run():
            condition_label = (condition or '').strip()
            if not condition_label:
                raise ValidationError('Bitte den Zustand des Artikels angeben')
            row = self._load(request_id, sources_for('returned'), MSG_NOT_LENT)
            if row['flow'] == 'direct':
                return self._check_in(row, condition_label, notes)

            item_id = row['inventory_object_id']
            today = self.clock().date()
            with self.lock.hold(item_id):
                try:
                    loan = self._match_lending(row, self.client.get_active_lendings(item_id))
                    if loan is not None:
                        self.client.patch_lending_return(loan.id, today.isoformat())
                    else:
                        logger.warning(f"No active EasyVerein lending found for item {item_id} (request {request_id})")

                    self._write_annotations(
                        item_id,
                        exclude_id=request_id,
                        last_condition=build_condition_text(condition_label, admin_name, today, notes or ''),
                    )
                finally:
                    self.cache.invalidate()

                self._advance(request_id, 'returned', MSG_NOT_LENT,
                              returned_condition=condition_label, return_notes=notes or None)

            logger.info(f"✅ Request {request_id} verified as returned by {admin_name} (condition: {condition_label})")
            return ActionResult.ok('Rückgabe erfolgreich verifiziert', request_id=request_id)
        return self._guarded(f"Verify return {request_id}", run)

    def checkout(self, item_id: str, user_id: int, quantity: Any, purpose: str = '', destination: str = '',
                 expected_return_date: Optional[str] = None, start_date: Optional[str] = None,
                 member_id: Optional[int] = None) -> ActionResult:
        """Direct checkout without approval: assign remotely, then record an active row."""
        def run():
            qty = _parse_quantity(quantity)
            start = _parse_date(start_date, 'Start') if start_date else self.clock().date()
            end = _parse_date(expected_return_date, 'Rückgabe') if expected_return_date else start
            if end < start:
                raise ValidationError('Das Rückgabedatum darf nicht vor dem Startdatum liegen')

            note_parts = []
            if purpose:
                note_parts.append(f"Zweck: {purpose}")
            if destination:
                note_parts.append(f"Ort: {destination}")
            if expected_return_date:
                note_parts.append(f"Rückgabe bis: {end.strftime('%d.%m.%Y')}")

            with self.lock.hold(item_id):
                try:
                    self._assign_remote(item_id, member_id or user_id, qty, ' | '.join(note_parts))
                finally:
                    self.cache.invalidate()

            request_id = None
            try:
                request_id = self.repo.insert_request(
                    str(item_id), user_id, qty, start.isoformat(), end.isoformat(), purpose or '',
                    status='active', flow='direct',
                )
            except Exception as e:
                # EasyVerein already records the checkout
                logger.error(f"Local record for checkout of item {item_id} by user {user_id} failed: {e}")

            return ActionResult.ok('Artikel erfolgreich ausgeliehen', request_id=request_id)
        return self._guarded(f"Checkout item {item_id}", run)

    def check_in(self, request_id: int, condition: Optional[str] = None, notes: Optional[str] = None) -> ActionResult:
        def run():
            row = self._load(request_id, sources_for('returned'), MSG_NOT_LENT)
            if row['flow'] != 'direct':
                raise InvalidState('Genehmigte Ausleihen werden über die Rückgabeprüfung abgeschlossen')
            return self._check_in(row, condition, notes)
        return self._guarded(f"Check in {request_id}", run)

    def _check_in(self, row: Dict[str, Any], condition: Optional[str], notes: Optional[str]) -> ActionResult:
        item_id = row['inventory_object_id']
        with self.lock.hold(item_id):
            try:
                self._return_remote(item_id, int(row['quantity']))
            finally:
                self.cache.invalidate()
            self._advance(row['id'], 'returned', MSG_NOT_LENT,
                          returned_condition=condition or None, return_notes=notes or None)
        return ActionResult.ok('Artikel erfolgreich zurückgegeben', request_id=row['id'])

    # ---------------------------
    # Reads
    # ---------------------------
    def check_availability(self, item_id: str, start_date: Any, end_date: Any) -> ActionResult:
        def run():
            start = _parse_date(start_date, 'Start')
            end = _parse_date(end_date, 'Ende')
            if end < start:
                raise ValidationError('Das Enddatum darf nicht vor dem Startdatum liegen')
            info = self.availability.breakdown(item_id, start.isoformat(), end.isoformat())
            return ActionResult.ok(f"Verfügbar: {info['available']}", data=info)
        return self._guarded(f"Availability for item {item_id}", run)

    def list_items(self, search: Optional[str] = None) -> List[Dict[str, Any]]:
        """Cached EasyVerein items with units not taken by loans running today"""
        items = self.cache.get_items()
        loaned = self.repo.approved_quantities_on(self.clock().date().isoformat())
        needle = (search or '').strip().lower()

        result = []
        for item in items:
            if needle and needle not in item.name.lower() and needle not in item.note.lower():
                continue
            entry = item.model_dump(exclude={'custom_fields'})
            entry['available_quantity'] = max(0, item.pieces - loaned.get(str(item.id), 0))
            result.append(entry)
        return sorted(result, key=lambda i: i['name'].lower())

    def _item_names(self) -> Dict[str, str]:
        try:
            return {str(item.id): item.name for item in self.cache.get_items()}
        except AppError as e:
            logger.warning(f"Item names unavailable: {e.message}")
            return {}

    def list_pending_returns(self) -> List[Dict[str, Any]]:
        rows = self.repo.list_by_status('pending_return')
        if not rows:
            return []

        users = self.users.get_users(r['user_id'] for r in rows)
        names = self._item_names()
        for row in rows:
            user = users.get(int(row['user_id']))
            row['user_name'] = (UserDirectoryRepo.display_name(user) or user.get('email')) if user else None
            row['user_email'] = user.get('email') if user else None
            row['item_name'] = names.get(str(row['inventory_object_id']))
        return rows

    def list_user_rentals(self, user_id: int) -> List[Dict[str, Any]]:
        rows = self.repo.list_for_user(user_id)
        names = self._item_names() if rows else {}
        for row in rows:
            row['item_name'] = names.get(str(row['inventory_object_id']))
        return rows

    def my_assigned_items(self, email: str = '', name: str = '') -> List[Dict[str, Any]]:
        """Items whose borrower annotation lists this user by e-mail or name"""
        identifiers = [i for i in (email, name) if i and i.strip()]
        if not identifiers:
            return []

        seen = set()
        mine = []
        for item in self.client.get_lent_objects():
            if item.id in seen:
                continue
            if any(lists_holder(item.custom_fields, ident) for ident in identifiers):
                seen.add(item.id)
                mine.append(item.model_dump())
        return mine
