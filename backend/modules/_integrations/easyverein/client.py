# modules/_integrations/easyverein/client.py
import logging
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote

import requests

from core.config import settings
from core.errors import HttpError, MalformedResponse, NetworkError, NotFound, RefreshFailed
from modules._integrations.easyverein.credentials import CredentialManager, get_credential_manager
from modules._integrations.easyverein.models import (
    AssignedLoan,
    CustomFieldValue,
    RemoteItem,
    normalize_custom_fields,
    normalize_item,
    normalize_lending,
)

logger = logging.getLogger(__name__)

ItemId = Union[int, str]

CUSTOM_FIELD_QUERY = "{id,value,customField{id,name}}"
LENT_OBJECT_QUERY = "{id,parentInventoryObject{*,customFields{id,value,customField{id,name}}}}"

# 403 on these endpoint families almost always means a missing token scope
_SCOPE_HINTS = [
    ("contact-details", "💡 HINWEIS: Dem API-Token fehlt das Recht, Mitglieder zu suchen. "
                        "Bitte setze das Modul [Adressen] im easyVerein Token auf [Lesen]."),
    ("lending", "💡 HINWEIS: Dem API-Token fehlt das Recht, Ausleihen anzulegen. "
                "Bitte setze [Inventar] und [Ausleihen] auf [Lesen & Schreiben]."),
    ("custom-fields", "💡 HINWEIS: Dem API-Token fehlt das Recht, Individualfelder zu bearbeiten. "
                      "Bitte setze [Individuelle Felder] auf [Lesen & Schreiben]."),
]


def scope_hint(url: str) -> Optional[str]:
    for marker, hint in _SCOPE_HINTS:
        if marker in url:
            return hint
    return None


def extract_results(data: Any) -> Any:
    """EasyVerein wraps lists as {results: [...]} or {data: [...]}; sometimes not at all."""
    if isinstance(data, dict):
        if data.get("results") is not None:
            return data["results"]
        if data.get("data") is not None:
            return data["data"]
    return data


class EasyVereinClient:
    """Authenticated JSON calls against the EasyVerein REST API"""

    def __init__(self, credentials: Optional[CredentialManager] = None,
                 session: Optional[requests.Session] = None,
                 base_url: Optional[str] = None, page_limit: Optional[int] = None):
        self.credentials = credentials or get_credential_manager()
        self.session = session or requests.Session()
        self.base_url = (base_url or settings.EASYVEREIN_API_BASE).rstrip("/")
        self.page_limit = page_limit or settings.EASYVEREIN_PAGE_LIMIT
        self.timeout = (settings.HTTP_CONNECT_TIMEOUT, settings.HTTP_READ_TIMEOUT)

    def _url(self, endpoint: str) -> str:
        if endpoint.startswith("http://") or endpoint.startswith("https://"):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    # ---------------------------
    # Transport
    # ---------------------------
    def request(self, method: str, endpoint: str, body: Any = None, skip_token_refresh: bool = False) -> Any:
        """
        Send one request and return the decoded JSON ({} for empty bodies).
        A ``tokenRefreshNeeded: true`` header triggers a token refresh before
        returning, unless ``skip_token_refresh`` is set (the refresh call itself).
        """
        method = method.upper()
        url = self._url(endpoint)
        token = self.credentials.resolve_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

        try:
            resp = self.session.request(
                method, url,
                headers=headers,
                json=body,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"EasyVerein [{method} {url}] network error: {e}")
            raise NetworkError(f"EasyVerein nicht erreichbar: {e}") from e

        if resp.status_code < 200 or resp.status_code >= 300:
            hint = scope_hint(url) if resp.status_code == 403 else None
            logger.error(
                f"EasyVerein API [{method} {url}] returned HTTP {resp.status_code} - Details: {resp.text}"
                + (f" {hint}" if hint else "")
            )
            raise HttpError(resp.status_code, resp.text, hint)

        if not skip_token_refresh and str(resp.headers.get("tokenRefreshNeeded", "")).lower() == "true":
            logger.info("🔄 EasyVerein signalled tokenRefreshNeeded, refreshing token")
            try:
                self.credentials.refresh_token(self.fetch_refreshed_token)
            except RefreshFailed as e:
                # The original call succeeded; operators see the failure in the log
                logger.error(f"EasyVerein token refresh after API call failed: {e.message}")

        if resp.status_code == 204 or not resp.content:
            return {}

        try:
            return resp.json()
        except ValueError as e:
            logger.error(f"EasyVerein [{method} {url}] returned invalid JSON: {resp.text[:500]}")
            raise MalformedResponse(f"Failed to parse JSON response: {e}") from e

    def fetch_refreshed_token(self) -> Dict[str, Any]:
        return self.request("GET", "refresh-token", skip_token_refresh=True)

    def paginate(self, endpoint: str, strict: bool = True) -> List[Any]:
        """Follow ``next`` links and concatenate every page in order."""
        results: List[Any] = []
        url: Optional[str] = endpoint
        visited = set()
        while url:
            if self._url(url) in visited:
                logger.warning(f"Pagination of {endpoint} returned an already fetched page, stopping")
                break
            visited.add(self._url(url))
            data = self.request("GET", url)
            items = extract_results(data)
            if not isinstance(items, list):
                if strict:
                    raise MalformedResponse(f"Unexpected API response format for {endpoint}")
                logger.warning(f"Unexpected API response format for {endpoint}, stopping pagination")
                break
            results.extend(items)
            url = data.get("next") if isinstance(data, dict) else None
        return results

    # ---------------------------
    # Inventory objects
    # ---------------------------
    def list_items(self) -> List[RemoteItem]:
        raw_items = self.paginate(f"inventory-object?limit={self.page_limit}")
        logger.info(f"Fetched {len(raw_items)} inventory objects from EasyVerein")
        return [normalize_item(raw) for raw in raw_items if isinstance(raw, dict)]

    def get_item(self, item_id: ItemId) -> RemoteItem:
        try:
            data = self.request("GET", f"inventory-object/{quote(str(item_id))}")
        except HttpError as e:
            if e.status == 404:
                raise NotFound(f"Inventarobjekt {item_id} nicht gefunden") from e
            raise
        if not isinstance(data, dict) or not data:
            raise NotFound(f"Inventarobjekt {item_id} nicht gefunden")
        return normalize_item(data)

    def patch_item(self, item_id: ItemId, payload: Dict[str, Any]) -> Any:
        return self.request("PATCH", f"inventory-object/{quote(str(item_id))}", payload)

    def get_custom_fields(self, item_id: ItemId) -> List[CustomFieldValue]:
        data = self.request("GET", f"inventory-object/{quote(str(item_id))}/custom-fields?query={CUSTOM_FIELD_QUERY}")
        fields = extract_results(data)
        if not isinstance(fields, list):
            raise MalformedResponse(f"Unexpected custom-fields response for item {item_id}")
        return normalize_custom_fields(fields)

    def bulk_update_custom_fields(self, item_id: ItemId, updates: List[Dict[str, Any]]) -> Any:
        return self.request("PATCH", f"inventory-object/{quote(str(item_id))}/custom-fields/bulk-update", updates)

    # ---------------------------
    # Lendings
    # ---------------------------
    def get_active_lendings(self, item_id: ItemId) -> List[AssignedLoan]:
        raw = self.paginate(
            f"lending?parentInventoryObject={quote(str(item_id))}&futureReturnDate=true&limit={self.page_limit}",
            strict=False,
        )
        return [normalize_lending(entry) for entry in raw if isinstance(entry, dict)]

    def get_lent_objects(self) -> List[RemoteItem]:
        """Parent inventory objects (with custom fields) of every active lending"""
        raw = self.paginate(
            f"lending?futureReturnDate=true&limit={self.page_limit}&query={LENT_OBJECT_QUERY}",
            strict=False,
        )
        return [
            normalize_item(entry["parentInventoryObject"])
            for entry in raw
            if isinstance(entry, dict) and isinstance(entry.get("parentInventoryObject"), dict)
        ]

    def create_lending(self, item_id: ItemId, address_id: int, quantity: int,
                       borrowing_date: str, return_date: str) -> Any:
        payload = {
            "parentInventoryObject": str(item_id),
            "borrowAddress": address_id,
            "quantity": quantity,
            "borrowingDate": str(borrowing_date)[:10],
            "returnDate": str(return_date)[:10],
        }
        result = self.request("POST", "lending", payload)
        logger.info(
            f"EasyVerein lending created for item {item_id}, borrower {address_id} "
            f"(qty {quantity}, {payload['borrowingDate']} to {payload['returnDate']})"
        )
        return result

    def patch_lending_return(self, lending_id: int, return_date: str) -> Any:
        return self.request("PATCH", f"lending/{lending_id}", {"returnDate": return_date})

    # ---------------------------
    # Contacts
    # ---------------------------
    def find_contact_id(self, name: str) -> int:
        data = self.request("GET", f"contact-details?search={quote(name)}")
        results = extract_results(data) if isinstance(data, dict) else data
        if isinstance(results, list) and results and isinstance(results[0], dict) and results[0].get("id") is not None:
            return int(results[0]["id"])
        raise NotFound(
            f"Nutzer nicht im easyVerein gefunden. Der Name ({name}) muss in easyVerein existieren."
        )
