"""
Source System client: paginated member and recurring-service fetches.

This module provides:
- Bounded pagination (page size and page cap from the run configuration)
- Server-side filter params per record kind plus client-side post-filtering
- Normalization of inconsistently typed payloads into SourceRecord
- Exclusion of configured membership/service types
- Member enrichment for service records that carry no email

There is no retry loop: a failed request raises SourceUnavailable and the
whole (club, kind) fetch is re-attempted on the next run.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from core.config import ClubContext, SyncConfig
from core.exceptions import SourceAuthenticationError, SourceUnavailable
from pipeline.extractors.filters import parse_relaxed_bool, split_excluded
from pipeline.record_kinds import RecordKindSpec, get_spec
from schemas.source import DateWindow, FetchResult, RecordKind, SourceRecord, dig

logger = logging.getLogger(__name__)


class SourceClient:
    """
    Fetch record sets from the Source System for one club at a time.

    Authentication is two static headers (``app_id``, ``app_key``) shared by
    every club; the club number is part of the URL path.
    """

    def __init__(self, config: SyncConfig, http_client: httpx.AsyncClient):
        self.config = config
        self.http = http_client

    def _headers(self) -> Dict[str, str]:
        return {
            "app_id": self.config.source_app_id,
            "app_key": self.config.source_app_key,
            "Accept": "application/json",
        }

    def _url(self, club: ClubContext, resource: str) -> str:
        return f"{self.config.source_base_url.rstrip('/')}/{club.club_number}/{resource}"

    async def _get(self, url: str, params: Dict[str, Any], context: Dict[str, Any]) -> Any:
        """
        Single GET with error classification.

        Raises:
            SourceAuthenticationError: HTTP 401/403
            SourceUnavailable: transport errors, other non-2xx, invalid JSON
        """
        try:
            response = await self.http.get(
                url,
                headers=self._headers(),
                params=params,
                timeout=self.config.request_timeout
            )
        except httpx.TimeoutException as e:
            raise SourceUnavailable(
                "Source request timed out",
                context={**context, "url": url, "timeout": self.config.request_timeout},
                original_exception=e
            )
        except httpx.HTTPError as e:
            raise SourceUnavailable(
                "Source request failed",
                context={**context, "url": url},
                original_exception=e
            )

        if response.status_code in (401, 403):
            raise SourceAuthenticationError(
                f"Source authentication failed for {url}",
                context={**context, "url": url, "status_code": response.status_code}
            )

        if response.status_code >= 400:
            raise SourceUnavailable(
                f"Source returned HTTP {response.status_code}",
                context={
                    **context,
                    "url": url,
                    "status_code": response.status_code,
                    "response_body": response.text[:500]
                }
            )

        try:
            return response.json()
        except ValueError as e:
            raise SourceUnavailable(
                "Failed to parse Source JSON response",
                context={**context, "url": url, "response_body": response.text[:500]},
                original_exception=e
            )

    async def fetch_pages(
        self,
        club: ClubContext,
        spec: RecordKindSpec,
        window: Optional[DateWindow]
    ) -> Tuple[List[Dict[str, Any]], int, bool]:
        """
        Follow ``status.nextPage`` until it is absent or the page cap is hit.

        Returns:
            (raw payloads, pages fetched, truncated)
        """
        url = self._url(club, spec.resource)
        base_params = spec.server_params(window)
        payloads: List[Dict[str, Any]] = []
        page = 1
        pages_fetched = 0
        truncated = False

        while True:
            params = {**base_params, "page": page, "size": self.config.page_size}
            context = {
                "club_number": club.club_number,
                "record_kind": spec.kind.value,
                "page": page,
            }

            logger.debug(f"Fetching page {page} of {spec.resource} for club {club.club_number}")

            try:
                data = await self._get(url, params, context)
            except SourceUnavailable as e:
                e.partial_records = list(payloads)
                e.context["records_fetched"] = len(payloads)
                raise

            pages_fetched += 1

            if isinstance(data, list):
                # Flat list responses carry no paging status
                payloads.extend(data)
                break

            items = (data or {}).get(spec.payload_key) or []
            payloads.extend(items)

            next_page = ((data or {}).get("status") or {}).get("nextPage")
            if not next_page or not items:
                break

            if pages_fetched >= self.config.max_pages:
                truncated = True
                logger.warning(
                    f"Page cap of {self.config.max_pages} reached for {spec.kind.value} "
                    f"at club {club.club_number}; result truncated at {len(payloads)} records",
                    extra={"error_context": {**context, "records_fetched": len(payloads)}}
                )
                break

            page = _next_page_number(next_page, page)

        return payloads, pages_fetched, truncated

    async def fetch_records(
        self,
        club: ClubContext,
        kind: RecordKind,
        window: Optional[DateWindow] = None
    ) -> FetchResult:
        """
        Fetch, normalize, filter and exclude one record set.

        Raises:
            SourceUnavailable: the record set could not be fetched
        """
        spec = get_spec(kind)
        payloads, pages_fetched, truncated = await self.fetch_pages(club, spec, window)

        records = [parse_source_record(spec.kind, p) for p in payloads if isinstance(p, dict)]
        matching = [r for r in records if spec.accepts(r, window)]
        kept, skipped = split_excluded(matching, self.config.excluded_types)

        if spec.kind.is_service:
            kept = await self._enrich_services(club, kept)

        logger.info(
            f"Fetched {len(payloads)} {spec.kind.value} records for club {club.club_number} "
            f"({pages_fetched} pages): {len(kept)} kept, "
            f"{len(records) - len(matching)} filtered, {len(skipped)} skipped"
        )

        return FetchResult(
            kind=spec.kind,
            club_number=club.club_number,
            records=kept,
            skipped=skipped,
            total_fetched=len(payloads),
            filtered_out=len(records) - len(matching),
            pages_fetched=pages_fetched,
            truncated=truncated,
        )

    async def fetch_member(
        self,
        club: ClubContext,
        member_id: str,
        kind: RecordKind = RecordKind.NEW_MEMBERS
    ) -> Optional[SourceRecord]:
        """Fetch a single member by id; None when the Source has no such member"""
        url = self._url(club, f"members/{member_id}")
        data = await self._get(url, {}, {"club_number": club.club_number, "member_id": member_id})

        if isinstance(data, dict) and isinstance(data.get("members"), list):
            members = data["members"]
            payload = members[0] if members else None
        else:
            payload = data if isinstance(data, dict) else None

        if not payload:
            return None
        return parse_source_record(kind, payload)

    async def _enrich_services(
        self,
        club: ClubContext,
        records: List[SourceRecord]
    ) -> List[SourceRecord]:
        """Fill contact details of service records from their member record"""
        cache: Dict[str, Optional[SourceRecord]] = {}
        enriched: List[SourceRecord] = []

        for record in records:
            if record.email or not record.identity:
                enriched.append(record)
                continue

            if record.identity not in cache:
                try:
                    cache[record.identity] = await self.fetch_member(club, record.identity, record.kind)
                except SourceAuthenticationError:
                    raise
                except SourceUnavailable as e:
                    logger.warning(
                        f"Member lookup failed for service record {record.identity}: {e.message}",
                        extra={"error_context": e.to_dict()}
                    )
                    cache[record.identity] = None

            member = cache[record.identity]
            if member is None:
                enriched.append(record)
                continue

            enriched.append(record.model_copy(update={
                "email": member.email,
                "first_name": record.first_name or member.first_name,
                "last_name": record.last_name or member.last_name,
                "phone": record.phone or member.phone,
                "address1": record.address1 or member.address1,
                "city": record.city or member.city,
                "state": record.state or member.state,
                "postal_code": record.postal_code or member.postal_code,
                "membership_type": member.membership_type,
            }))

        return enriched


def _next_page_number(next_page: Any, current: int) -> int:
    try:
        return int(next_page)
    except (TypeError, ValueError):
        return current + 1


def _pick(payload: Dict[str, Any], *paths: str) -> Any:
    """First non-empty value among the given dotted paths"""
    for path in paths:
        value = dig(payload, path)
        if value is not None and value != "":
            return value
    return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_source_record(kind: RecordKind, payload: Dict[str, Any]) -> SourceRecord:
    """
    Normalize a Source payload.

    Accepts the nested member shape (``personal`` / ``agreement``), the flat
    check-in shape, and recurring-service records.
    """
    kind = RecordKind(kind)

    if kind.is_service:
        active_flag = _pick(payload, "recurringServiceStatus", "serviceStatus", "isActive")
    else:
        active_flag = _pick(payload, "personal.isActive", "isActive")

    return SourceRecord(
        kind=kind,
        identity=_text(_pick(payload, "memberId", "member_id", "id")) or "",
        email=_text(_pick(payload, "personal.email", "email", "memberEmail")),
        first_name=_text(_pick(payload, "personal.firstName", "firstName", "memberFirstName")),
        last_name=_text(_pick(payload, "personal.lastName", "lastName", "memberLastName")),
        phone=_text(_pick(
            payload,
            "personal.mobilePhone", "personal.primaryPhone", "personal.homePhone",
            "mobilePhone", "primaryPhone", "homePhone", "phone"
        )),
        address1=_text(_pick(payload, "personal.addressLine1", "addressLine1", "address1")),
        city=_text(_pick(payload, "personal.city", "city")),
        state=_text(_pick(payload, "personal.state", "state")),
        postal_code=_text(_pick(payload, "personal.postalCode", "postalCode", "zip")),
        membership_type=_text(_pick(payload, "agreement.membershipType", "membershipType")),
        service_type=_text(_pick(payload, "serviceItem", "recurringServiceName", "serviceName", "serviceType")),
        is_active=parse_relaxed_bool(active_flag),
        member_status=_text(_pick(payload, "personal.memberStatus", "memberStatus")),
        join_status=_text(_pick(payload, "personal.joinStatus", "joinStatus")),
        sign_date=_text(_pick(payload, "agreement.signDate", "signDate")),
        cancel_date=_text(_pick(payload, "personal.memberStatusDate", "memberStatusDate", "cancelDate")),
        next_billing_date=_text(_pick(
            payload, "agreement.nextBillingDate", "nextBillingDate", "recurringServiceDates.nextBillingDate"
        )),
        past_due_balance=_text(_pick(payload, "agreement.pastDueBalance", "pastDueBalance")),
        service_sale_date=_text(_pick(payload, "recurringServiceDates.saleDate", "saleDate")),
        service_inactive_date=_text(_pick(payload, "recurringServiceDates.inactiveDate", "inactiveDate")),
        raw=payload,
    )
