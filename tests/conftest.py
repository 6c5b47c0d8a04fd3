"""
Pytest configuration and fixtures

Both remote systems are faked in memory and served through
``httpx.MockTransport``, so the real clients run end to end without a network.
"""

import json
from contextlib import asynccontextmanager
from itertools import count
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio

from core.config import ClubContext, SyncConfig
from pipeline.extractors.source_client import SourceClient
from pipeline.loaders.target_client import TargetClient
from pipeline.runner import SyncRunner

SOURCE_BASE_URL = "https://source.test/rest"
TARGET_BASE_URL = "https://target.test"


class FakeSource:
    """Source System: paged member and recurring-service listings per club"""

    def __init__(self):
        # (club_number, resource) -> list of pages
        self.pages: Dict[Tuple[str, str], List[List[Dict[str, Any]]]] = {}
        # (club_number, member_id) -> member payload
        self.members: Dict[Tuple[str, str], Dict[str, Any]] = {}
        # (club_number, resource, page) -> status code
        self.failures: Dict[Tuple[str, str, int], int] = {}
        self.endless = False
        self.requests: List[httpx.Request] = []

    def set_pages(self, club_number: str, resource: str, pages: List[List[Dict[str, Any]]]):
        self.pages[(club_number, resource)] = pages

    def add_member(self, club_number: str, payload: Dict[str, Any]):
        self.members[(club_number, str(payload["memberId"]))] = payload

    def list_requests(self, resource: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/" + resource)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        parts = request.url.path.split("/")
        # ["", "rest", club, resource...]
        club_number = parts[2]
        resource = "/".join(parts[3:])

        if resource.startswith("members/") and resource != "members/recurringservices":
            member = self.members.get((club_number, parts[-1]))
            return httpx.Response(200, json={"members": [member] if member else []})

        page = int(request.url.params.get("page", "1"))
        status = self.failures.get((club_number, resource, page))
        if status:
            return httpx.Response(status, json={"error": "unavailable"})

        pages = self.pages.get((club_number, resource), [[]])
        if self.endless:
            items = pages[0]
            next_page = str(page + 1)
        else:
            items = pages[page - 1] if page <= len(pages) else []
            next_page = str(page + 1) if page < len(pages) else ""

        key = "recurringServices" if resource == "members/recurringservices" else "members"
        return httpx.Response(200, json={
            "status": {"count": str(len(items)), "nextPage": next_page},
            key: items,
        })


def _emails(contact: Dict[str, Any]) -> List[str]:
    emails = [contact.get("email") or ""]
    emails.extend(contact.get("additionalEmails") or [])
    return [e for e in emails if e]


class FakeTarget:
    """Target System: contacts per location with duplicate and query search"""

    def __init__(self):
        self.contacts: Dict[str, Dict[str, Any]] = {}
        self.requests: List[httpx.Request] = []
        # (method, path) -> status code, answered before any routing
        self.failures: Dict[Tuple[str, str], int] = {}
        self.duplicate_supported = True
        # Contacts created through the API are invisible to searches
        self.search_lag = False
        # Include meta.contactId in duplicate rejections
        self.duplicate_meta = True
        # Number of upcoming duplicate searches that miss regardless of data
        self.missed_searches = 0
        self._hidden: set = set()
        self._ids = count(1)
        # Custom field key -> field id; contacts store and return fields by id
        self.field_ids: Dict[str, str] = {}

    def add_contact(
        self,
        email: Optional[str],
        location_id: str = "loc_1",
        tags=(),
        custom_fields: Optional[Dict[str, str]] = None,
        **fields
    ) -> str:
        contact_id = f"ct_{next(self._ids)}"
        self.contacts[contact_id] = {
            "id": contact_id,
            "locationId": location_id,
            "email": email,
            "tags": list(tags),
            "customFields": [],
            **fields,
        }
        self._write_fields(self.contacts[contact_id], [
            {"key": k, "field_value": v} for k, v in (custom_fields or {}).items()
        ])
        return contact_id

    def field_id(self, key: str) -> str:
        if key not in self.field_ids:
            self.field_ids[key] = f"fld_{len(self.field_ids) + 1}"
        return self.field_ids[key]

    def _write_fields(self, contact: Dict[str, Any], entries: List[Dict[str, Any]]):
        """Write fields one at a time, addressed by key or id; others stay"""
        stored = {f["id"]: f for f in contact["customFields"]}
        for entry in entries:
            field_id = entry.get("id") or self.field_id(entry["key"])
            value = entry.get("field_value", entry.get("value"))
            if field_id in stored:
                stored[field_id]["value"] = value
            else:
                stored[field_id] = {"id": field_id, "value": value}
                contact["customFields"].append(stored[field_id])

    def hide(self, contact_id: str):
        """Keep a stored contact out of every search"""
        self._hidden.add(contact_id)

    def custom_fields(self, contact_id: str) -> Dict[str, str]:
        """Stored fields by key"""
        keys = {field_id: key for key, field_id in self.field_ids.items()}
        return {keys.get(f["id"], f["id"]): f["value"] for f in self.contacts[contact_id]["customFields"]}

    def find(self, email: str, location_id: str = "loc_1") -> List[Dict[str, Any]]:
        return [
            c for c in self.contacts.values()
            if c["locationId"] == location_id and (c.get("email") or "").lower() == email.lower()
        ]

    def calls(self, method: str, path_part: str = "") -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and path_part in r.url.path]

    @property
    def writes(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.method in ("POST", "PUT")]

    def _visible(self, location_id: str) -> List[Dict[str, Any]]:
        return [
            c for c in self.contacts.values()
            if c["locationId"] == location_id and c["id"] not in self._hidden
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        method = request.method
        params = request.url.params

        status = self.failures.get((method, path))
        if status:
            return httpx.Response(status, json={"message": f"injected {status}"})

        if not request.headers.get("Authorization", "").startswith("Bearer "):
            return httpx.Response(401, json={"message": "Unauthorized"})

        if method == "GET" and path == "/contacts/search/duplicate":
            if not self.duplicate_supported:
                return httpx.Response(404, json={"message": "Cannot GET /contacts/search/duplicate"})
            if self.missed_searches > 0:
                self.missed_searches -= 1
                return httpx.Response(200, json={"contact": None})
            email = params.get("email", "").lower()
            for contact in self._visible(params.get("locationId")):
                if (contact.get("email") or "").lower() == email:
                    return httpx.Response(200, json={"contact": contact})
            return httpx.Response(200, json={"contact": None})

        if method == "GET" and path == "/contacts/":
            query = params.get("query", "").lower()
            found = [
                c for c in self._visible(params.get("locationId"))
                if query and any(query in e.lower() for e in _emails(c))
            ]
            return httpx.Response(200, json={"contacts": found, "total": len(found)})

        if method == "POST" and path == "/contacts/":
            body = json.loads(request.content)
            existing = self.find(body.get("email", ""), body["locationId"])
            if existing:
                payload: Dict[str, Any] = {"message": "This location does not allow duplicated contacts."}
                if self.duplicate_meta:
                    payload["meta"] = {"contactId": existing[0]["id"], "matchingField": "email"}
                return httpx.Response(400, json=payload)
            contact_id = self.add_contact(
                body["email"],
                location_id=body["locationId"],
                tags=body.get("tags", []),
                custom_fields={f["key"]: f["field_value"] for f in body.get("customFields", [])},
                **{k: v for k, v in body.items() if k not in ("email", "locationId", "tags", "customFields")}
            )
            if self.search_lag:
                self._hidden.add(contact_id)
            return httpx.Response(201, json={"contact": self.contacts[contact_id]})

        segments = path.strip("/").split("/")
        if segments[0] == "contacts" and len(segments) >= 2:
            contact = self.contacts.get(segments[1])
            if contact is None:
                return httpx.Response(404, json={"message": "Contact not found"})

            if method == "GET" and len(segments) == 2:
                return httpx.Response(200, json={"contact": contact})

            if method == "PUT" and len(segments) == 2:
                body = json.loads(request.content)
                for key, value in body.items():
                    if key == "customFields":
                        self._write_fields(contact, value)
                    else:
                        contact[key] = value
                return httpx.Response(200, json={"succeded": True, "contact": contact})

            if method == "POST" and segments[2:] == ["tags"]:
                body = json.loads(request.content)
                contact["tags"] = sorted(set(contact["tags"]) | set(body["tags"]))
                return httpx.Response(201, json={"tags": contact["tags"]})

        return httpx.Response(404, json={"message": f"No route for {method} {path}"})


@pytest.fixture
def sync_config():
    return SyncConfig(
        source_base_url=SOURCE_BASE_URL,
        source_app_id="test_app_id",
        source_app_key="test_app_key",
        target_base_url=TARGET_BASE_URL,
        page_size=2,
        max_pages=5,
        write_delay=0,
        request_timeout=5,
    )


@pytest.fixture
def club():
    return ClubContext(
        club_number="1234",
        name="Downtown",
        location_id="loc_1",
        target_api_key="pit_downtown",
    )


@pytest.fixture
def second_club():
    return ClubContext(
        club_number="5678",
        name="Uptown",
        location_id="loc_2",
        target_api_key="pit_uptown",
    )


@pytest.fixture
def fake_source():
    return FakeSource()


@pytest.fixture
def fake_target():
    return FakeTarget()


@pytest_asyncio.fixture
async def source_client(sync_config, fake_source):
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_source.handler)) as http:
        yield SourceClient(sync_config, http)


@pytest_asyncio.fixture
async def target_client(sync_config, fake_target):
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_target.handler)) as http:
        yield TargetClient(sync_config, http)


@pytest.fixture
def runner(sync_config, source_client, target_client):
    return SyncRunner(sync_config, source_client, target_client)


@pytest.fixture
def runner_factory(fake_source, fake_target):
    """Drop-in for ``open_runner`` backed by the fakes"""

    @asynccontextmanager
    async def factory(config: SyncConfig):
        async with httpx.AsyncClient(transport=httpx.MockTransport(fake_source.handler)) as source_http, \
                httpx.AsyncClient(transport=httpx.MockTransport(fake_target.handler)) as target_http:
            yield SyncRunner(config, SourceClient(config, source_http), TargetClient(config, target_http))

    return factory


@pytest.fixture
def make_member():
    """Nested member payload as the Source returns it"""

    def _make(
        member_id: str,
        email: Optional[str],
        first_name: str = "Pat",
        last_name: str = "Lee",
        membership_type: str = "Gold",
        is_active: Any = "true",
        sign_date: str = "2024-01-14",
        member_status: str = "active",
        status_date: Optional[str] = None,
        past_due_balance: str = "0.00",
    ) -> Dict[str, Any]:
        return {
            "memberId": member_id,
            "personal": {
                "firstName": first_name,
                "lastName": last_name,
                "email": email,
                "primaryPhone": "555-0100",
                "addressLine1": "1 Main St",
                "city": "Austin",
                "state": "TX",
                "postalCode": "78701",
                "isActive": is_active,
                "memberStatus": member_status,
                "memberStatusDate": status_date,
            },
            "agreement": {
                "membershipType": membership_type,
                "signDate": sign_date,
                "nextBillingDate": "2024-02-14",
                "pastDueBalance": past_due_balance,
                "salesPersonName": "Sam Seller",
            },
        }

    return _make


@pytest.fixture
def make_service():
    """Recurring-service payload; carries a member id but usually no email"""

    def _make(
        member_id: str,
        service_item: str = "PT 10 Pack",
        status: str = "Active",
        sale_date: Optional[str] = "2024-01-14",
        inactive_date: Optional[str] = None,
        trainer: str = "Terry Trainer",
    ) -> Dict[str, Any]:
        return {
            "recurringServiceId": f"rs_{member_id}",
            "memberId": member_id,
            "serviceItem": service_item,
            "recurringServiceStatus": status,
            "serviceEmployeeName": trainer,
            "recurringServiceDates": {
                "saleDate": sale_date,
                "inactiveDate": inactive_date,
            },
        }

    return _make
