"""
Idempotent contact upsert against the Target System.

Per record:

    Start -> Lookup -> Found    -> Update -------------------------> Done
                    -> NotFound -> Create -> created -------------> Done
                                          -> duplicate rejected
                                             -> resolve existing -> Update -> Done
                                             -> unresolved ---------------> Done (error)

Guarantees for one engine instance (one run):
- no Target call is made for a draft without an email
- tags are unioned, never replaced; drafted custom fields overwrite, others stay
- at most one ``created`` outcome per (location, email)
"""

import logging
from typing import Dict, Optional, Set, Tuple

from core.config import ClubContext
from core.exceptions import (
    ContactNotFoundError,
    DuplicateContactError,
    DuplicateUnresolved,
    NonRetryableError,
    SyncException,
    TargetError,
    UnmappableRecord,
    WriteFailed,
)
from pipeline.loaders.directory import TargetDirectory
from pipeline.loaders.target_client import (
    TargetClient,
    build_create_payload,
    build_update_payload,
)
from schemas.contact import TargetContactDraft
from schemas.results import OutcomeKind, SyncOutcome

logger = logging.getLogger(__name__)

IdentityKey = Tuple[str, str]


class UpsertEngine:
    """
    Create-if-absent, else merge-and-update, one draft at a time.

    The engine remembers which emails it has resolved or created during the
    run so a later record for the same email goes straight to the update path
    instead of trusting a search index that may not have caught up.
    """

    def __init__(self, directory: TargetDirectory, client: TargetClient):
        self.directory = directory
        self.client = client
        self._resolved: Dict[IdentityKey, str] = {}
        self._created: Set[IdentityKey] = set()

    @staticmethod
    def _key(club: ClubContext, email: str) -> IdentityKey:
        return club.location_id, email.strip().lower()

    async def upsert(self, draft: TargetContactDraft, club: ClubContext) -> SyncOutcome:
        if not draft.email or not draft.email.strip():
            return _error_outcome(
                draft,
                UnmappableRecord(
                    "Draft has no email",
                    context={"source_identity": draft.source_identity, "club_number": club.club_number}
                )
            )

        key = self._key(club, draft.email)

        try:
            contact_id = self._resolved.get(key)
            if contact_id is None:
                existing = await self.directory.find_by_identity(club, draft.email)
                if existing is not None:
                    contact_id = existing.id

            if contact_id is not None:
                try:
                    return await self._update(draft, club, contact_id)
                except ContactNotFoundError as e:
                    self._resolved.pop(key, None)
                    raise WriteFailed(
                        f"Contact {contact_id} disappeared before update",
                        context={"email": draft.email, "contact_id": contact_id},
                        original_exception=e
                    )

            if key in self._created:
                # Created earlier in this run but not visible to search yet
                return await self._recover_duplicate(draft, club, None)

            if not draft.create_if_missing:
                logger.info(f"  → No contact for {draft.email}; not created for this record kind")
                return _outcome(OutcomeKind.NOT_FOUND, draft)

            return await self._create(draft, club)

        except SyncException as e:
            logger.error(
                f"  ✗ Upsert failed for {draft.email}: {e.reason}",
                extra={"error_context": e.to_dict()}
            )
            return _error_outcome(draft, e)

    async def _update(
        self,
        draft: TargetContactDraft,
        club: ClubContext,
        contact_id: str
    ) -> SyncOutcome:
        """
        Re-read, merge, write.

        Raises:
            ContactNotFoundError: the contact no longer exists
            WriteFailed: the re-read or the write failed
        """
        key = self._key(club, draft.email)

        try:
            current = await self.directory.get_contact(club, contact_id)
        except ContactNotFoundError:
            raise
        except TargetError as e:
            raise WriteFailed(
                f"Could not re-read contact {contact_id}",
                context={"email": draft.email, "contact_id": contact_id},
                original_exception=e
            )

        self._resolved[key] = current.id or contact_id
        missing_tags = draft.tags - current.tags

        if draft.tag_only:
            if not missing_tags:
                logger.info(f"  → Contact {contact_id} already tagged {sorted(draft.tags)}")
                return _outcome(OutcomeKind.ALREADY_TAGGED, draft, contact_id=contact_id)

            try:
                await self.client.add_tags(club, contact_id, missing_tags)
            except TargetError as e:
                raise WriteFailed(
                    f"Tag write failed for contact {contact_id}",
                    context={"email": draft.email, "contact_id": contact_id, "tags": sorted(missing_tags)},
                    original_exception=e
                )
            logger.info(f"  → Tagged contact {contact_id} with {sorted(missing_tags)}")
            return _outcome(OutcomeKind.UPDATED, draft, contact_id=contact_id)

        # Read-back custom fields are keyed by field id; only drafted keys are written
        merged_tags = current.tags | draft.tags

        try:
            await self.client.update_contact(
                club,
                contact_id,
                build_update_payload(draft, merged_tags)
            )
        except TargetError as e:
            raise WriteFailed(
                f"Update failed for contact {contact_id}",
                context={"email": draft.email, "contact_id": contact_id},
                original_exception=e
            )

        logger.info(f"  → Updated existing contact ID: {contact_id}")
        return _outcome(OutcomeKind.UPDATED, draft, contact_id=contact_id)

    async def _create(self, draft: TargetContactDraft, club: ClubContext) -> SyncOutcome:
        key = self._key(club, draft.email)

        try:
            contact = await self.client.create_contact(club, build_create_payload(draft, club.location_id))
        except DuplicateContactError as e:
            logger.info(f"  → Create rejected as duplicate for {draft.email}; resolving existing contact")
            return await self._recover_duplicate(draft, club, e)
        except TargetError as e:
            raise WriteFailed(
                f"Create failed for {draft.email}",
                context={"email": draft.email, "location_id": club.location_id},
                original_exception=e
            )

        self._created.add(key)
        if contact.id:
            self._resolved[key] = contact.id

        logger.info(f"  → Created new contact {contact.id or '(id not returned)'} for {draft.email}")
        return _outcome(OutcomeKind.CREATED, draft, contact_id=contact.id or None)

    async def _recover_duplicate(
        self,
        draft: TargetContactDraft,
        club: ClubContext,
        error: Optional[DuplicateContactError]
    ) -> SyncOutcome:
        """
        Resolve the contact that blocked creation and update it instead.

        Prefers the id named by the rejection; otherwise repeats the lookup.

        Raises:
            DuplicateUnresolved: no existing contact could be resolved
            WriteFailed: the contact was resolved but the update failed
        """
        context = {"email": draft.email, "location_id": club.location_id}
        contact_id = error.contact_id if error else None

        if not contact_id:
            try:
                existing = await self.directory.find_by_identity(club, draft.email)
            except TargetError as e:
                raise DuplicateUnresolved(
                    f"Duplicate lookup failed for {draft.email}",
                    context=context,
                    original_exception=e
                )
            contact_id = existing.id if existing else None

        if not contact_id:
            raise DuplicateUnresolved(
                f"Duplicate reported for {draft.email} but no existing contact was found",
                context=context,
                original_exception=error
            )

        try:
            return await self._update(draft, club, contact_id)
        except ContactNotFoundError as e:
            raise DuplicateUnresolved(
                f"Duplicate contact {contact_id} could not be read",
                context={**context, "contact_id": contact_id},
                original_exception=e
            )


def _outcome(kind: OutcomeKind, draft: TargetContactDraft, contact_id: Optional[str] = None) -> SyncOutcome:
    return SyncOutcome(
        kind=kind,
        email=draft.email,
        name=draft.name,
        source_identity=draft.source_identity,
        contact_id=contact_id,
    )


def _error_outcome(draft: TargetContactDraft, error: SyncException) -> SyncOutcome:
    # A rejected credential fails again no matter which step hit it
    retryable = error.retryable and not isinstance(error.original_exception, NonRetryableError)

    return SyncOutcome(
        kind=OutcomeKind.ERROR,
        email=draft.email,
        name=draft.name,
        source_identity=draft.source_identity,
        reason=error.reason,
        retryable=retryable,
    )
