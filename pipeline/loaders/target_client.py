"""
Target System (CRM) HTTP client.

Thin wrapper over the contacts endpoints. Every call takes the ClubContext so
the bearer token and location id always belong to the club being synced.
HTTP failures are classified into the TargetError family; nothing is retried.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

import httpx

from core.config import ClubContext, SyncConfig
from core.exceptions import (
    ContactNotFoundError,
    DuplicateContactError,
    TargetAuthenticationError,
    TargetRequestError,
    TargetTransportError,
    UnsupportedLookupError,
)
from schemas.contact import TargetContact, TargetContactDraft

logger = logging.getLogger(__name__)

UNSUPPORTED_STATUS_CODES = (404, 405)


class TargetClient:
    """Contacts API for one or more Target locations"""

    def __init__(self, config: SyncConfig, http_client: httpx.AsyncClient):
        self.config = config
        self.http = http_client

    def _headers(self, club: ClubContext) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {club.target_api_key}",
            "Version": self.config.target_api_version,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _url(self, path: str) -> str:
        return f"{self.config.target_base_url.rstrip('/')}/{path.lstrip('/')}"

    async def _request(
        self,
        method: str,
        club: ClubContext,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        url = self._url(path)
        context = {"club_number": club.club_number, "location_id": club.location_id, "url": url, "method": method}

        try:
            response = await self.http.request(
                method,
                url,
                headers=self._headers(club),
                params=params,
                json=json,
                timeout=self.config.request_timeout
            )
        except httpx.HTTPError as e:
            raise TargetTransportError(
                f"Target request failed: {type(e).__name__}",
                context=context,
                original_exception=e
            )

        if response.status_code >= 400:
            _raise_for_status(response, context)

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as e:
            raise TargetRequestError(
                "Failed to parse Target JSON response",
                status_code=response.status_code,
                context={**context, "response_body": response.text[:500]},
                original_exception=e
            )
        return data if isinstance(data, dict) else {"data": data}

    async def search_duplicate(self, club: ClubContext, email: str) -> Optional[TargetContact]:
        """
        Duplicate search by email.

        Raises:
            UnsupportedLookupError: the endpoint is not available
        """
        try:
            data = await self._request(
                "GET", club, "/contacts/search/duplicate",
                params={"locationId": club.location_id, "email": email}
            )
        except TargetRequestError as e:
            if e.status_code in UNSUPPORTED_STATUS_CODES:
                raise UnsupportedLookupError(
                    "Duplicate search is not supported",
                    context=e.context,
                    original_exception=e
                )
            raise

        contact = data.get("contact")
        return TargetContact.from_api(contact) if contact else None

    async def search_contacts(self, club: ClubContext, query: str) -> List[TargetContact]:
        """Free-text contact search within the club's location"""
        data = await self._request(
            "GET", club, "/contacts/",
            params={"locationId": club.location_id, "query": query}
        )
        return [TargetContact.from_api(c) for c in data.get("contacts") or [] if c]

    async def get_contact(self, club: ClubContext, contact_id: str) -> TargetContact:
        data = await self._request("GET", club, f"/contacts/{contact_id}")
        contact = data.get("contact")
        if not contact:
            raise ContactNotFoundError(
                f"Contact {contact_id} not found",
                status_code=404,
                context={"contact_id": contact_id, "location_id": club.location_id}
            )
        return TargetContact.from_api(contact)

    async def create_contact(self, club: ClubContext, payload: Dict[str, Any]) -> TargetContact:
        data = await self._request("POST", club, "/contacts/", json=payload)
        return TargetContact.from_api(data.get("contact") or data)

    async def update_contact(
        self,
        club: ClubContext,
        contact_id: str,
        payload: Dict[str, Any]
    ) -> Optional[TargetContact]:
        data = await self._request("PUT", club, f"/contacts/{contact_id}", json=payload)
        contact = data.get("contact")
        return TargetContact.from_api(contact) if contact else None

    async def add_tags(self, club: ClubContext, contact_id: str, tags: Iterable[str]) -> None:
        await self._request("POST", club, f"/contacts/{contact_id}/tags", json={"tags": sorted(tags)})


def _raise_for_status(response: httpx.Response, context: Dict[str, Any]) -> None:
    status = response.status_code
    body_text = response.text[:500]
    context = {**context, "status_code": status, "response_body": body_text}

    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    message = body.get("message") or body.get("error") or f"HTTP {status}"
    if isinstance(message, list):
        message = "; ".join(str(m) for m in message)

    if status in (401, 403):
        raise TargetAuthenticationError(
            f"Target authentication failed: {message}",
            status_code=status,
            context=context
        )

    if status == 429 or status >= 500:
        raise TargetTransportError(
            f"Target unavailable (HTTP {status}): {message}",
            context=context
        )

    meta = body.get("meta") or {}
    duplicate_id = meta.get("contactId") if isinstance(meta, dict) else None
    if status in (400, 409, 422) and (duplicate_id or "duplicat" in str(message).lower()):
        raise DuplicateContactError(
            str(message),
            contact_id=duplicate_id,
            status_code=status,
            context=context
        )

    if status == 404:
        raise ContactNotFoundError(str(message), status_code=status, context=context)

    raise TargetRequestError(str(message), status_code=status, context=context)


def custom_fields_payload(fields: Mapping[str, str]) -> List[Dict[str, str]]:
    return [{"key": key, "field_value": value} for key, value in fields.items()]


def build_create_payload(draft: TargetContactDraft, location_id: str) -> Dict[str, Any]:
    """New contact: tags are the draft's singleton set, fields are the draft's fields"""
    payload: Dict[str, Any] = {"locationId": location_id}
    payload.update(draft.contact_fields())
    payload["tags"] = sorted(draft.tags)
    payload["customFields"] = custom_fields_payload(draft.field_values)
    return payload


def build_update_payload(draft: TargetContactDraft, merged_tags: Iterable[str]) -> Dict[str, Any]:
    """
    Full update: non-empty flat fields, the merged tag set and the drafted
    custom fields by key. The Target replaces tags wholesale but writes custom
    fields one at a time, so fields missing from the draft are left as they are.
    """
    payload: Dict[str, Any] = dict(draft.contact_fields())
    payload["tags"] = sorted(merged_tags)
    payload["customFields"] = custom_fields_payload(draft.field_values)
    return payload
