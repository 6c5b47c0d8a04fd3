"""
Target directory lookup: does a contact for this identity already exist?
"""

import logging
from typing import Dict, Optional

from core.config import ClubContext
from core.exceptions import (
    LookupFailed,
    TargetAuthenticationError,
    TargetError,
    UnsupportedLookupError,
)
from pipeline.loaders.target_client import TargetClient
from schemas.contact import TargetContact

logger = logging.getLogger(__name__)


class TargetDirectory:
    """
    Resolve an email to at most one existing contact.

    Strategies:
    - ``duplicate``: the Target's duplicate search by email. Found only when
      the returned contact's email equals the key case-insensitively.
    - ``query``: free-text search by the email string. One exact email match
      wins; otherwise a single candidate without an email is accepted. A
      candidate with a different email, or several candidates with no single
      exact match, count as not found. Ambiguity never guesses.

    When the duplicate endpoint turns out to be unsupported for a location,
    that location falls back to ``query`` for the rest of the run.
    """

    def __init__(self, client: TargetClient, lookup_mode: str = "duplicate"):
        self.client = client
        self.lookup_mode = lookup_mode
        self._duplicate_unsupported: Dict[str, bool] = {}

    async def find_by_identity(self, club: ClubContext, email: str) -> Optional[TargetContact]:
        """
        Returns:
            The matching contact, or None when no contact matches

        Raises:
            LookupFailed: the search itself failed (never reported as not found)
            TargetAuthenticationError: the club's API key was rejected
        """
        context = {"email": email, "location_id": club.location_id, "club_number": club.club_number}

        try:
            contact = await self._lookup(club, email)
        except TargetAuthenticationError:
            raise
        except TargetError as e:
            raise LookupFailed(
                f"Contact lookup failed for {email}",
                context=context,
                original_exception=e
            )

        if contact is not None and not contact.id:
            raise LookupFailed(f"Contact matched for {email} has no id", context=context)
        return contact

    async def _lookup(self, club: ClubContext, email: str) -> Optional[TargetContact]:
        if self.lookup_mode == "duplicate" and not self._duplicate_unsupported.get(club.location_id):
            try:
                return await self._duplicate_lookup(club, email)
            except UnsupportedLookupError:
                logger.warning(
                    f"Duplicate search unsupported for location {club.location_id}; "
                    f"falling back to query search"
                )
                self._duplicate_unsupported[club.location_id] = True

        return await self._query_lookup(club, email)

    async def _duplicate_lookup(self, club: ClubContext, email: str) -> Optional[TargetContact]:
        contact = await self.client.search_duplicate(club, email)
        if contact is None:
            return None
        if contact.matches_email(email):
            return contact

        logger.debug(
            f"Duplicate search for {email} returned contact {contact.id} "
            f"with a different email; treating as not found"
        )
        return None

    async def _query_lookup(self, club: ClubContext, email: str) -> Optional[TargetContact]:
        candidates = await self.client.search_contacts(club, email)
        exact = [c for c in candidates if c.matches_email(email)]

        if len(exact) == 1:
            return exact[0]

        if len(exact) > 1:
            logger.warning(
                f"{len(exact)} contacts share email {email} in location {club.location_id}; "
                f"treating as not found"
            )
            return None

        if len(candidates) == 1:
            candidate = candidates[0]
            # A different email is another person, not a fuzzy match
            if not candidate.email:
                return candidate
            logger.debug(
                f"Query for {email} matched contact {candidate.id} "
                f"with email {candidate.email}; treating as not found"
            )
            return None

        if candidates:
            logger.info(
                f"Ambiguous search for {email}: {len(candidates)} candidates, no exact match; "
                f"treating as not found"
            )
        return None

    async def get_contact(self, club: ClubContext, contact_id: str) -> TargetContact:
        """Current state of a contact, read right before it is updated"""
        return await self.client.get_contact(club, contact_id)
