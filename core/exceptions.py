"""
Custom exceptions for the membership sync pipeline with structured error context.

Each exception carries a context dictionary so failures can be logged and
reported per record without losing the club, record kind or HTTP details
that produced them.

Exception Hierarchy:
    SyncException (base)
    ├── SourceError
    │   └── SourceUnavailable
    │       └── SourceAuthenticationError
    ├── MappingError
    │   └── UnmappableRecord
    ├── TargetError
    │   ├── TargetRequestError
    │   │   ├── TargetAuthenticationError
    │   │   ├── DuplicateContactError
    │   │   └── ContactNotFoundError
    │   ├── TargetTransportError
    │   ├── UnsupportedLookupError
    │   └── LookupFailed
    ├── UpsertError
    │   ├── DuplicateUnresolved
    │   └── WriteFailed
    ├── ConfigurationError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any, List
from datetime import datetime, timezone


class SyncException(Exception):
    """
    Base exception for all sync-related errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (club, record kind, url, ...)
        original_exception: The original exception that was caught (if any)
    """

    retryable = False

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    @property
    def reason(self) -> str:
        """Short outcome reason: the error class name followed by the message."""
        return f"{self.__class__.__name__}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/reporting."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "retryable": self.retryable,
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(SyncException):
    """
    Mixin for errors that are safe to retry on the next scheduled run.

    Nothing inside the pipeline retries automatically; the flag only tells
    the caller that re-running the sync may succeed.
    """

    retryable = True


class NonRetryableError(SyncException):
    """
    Mixin for errors that will fail again unchanged:
    - Authentication failures (HTTP 401, 403)
    - Records without a usable identity
    """

    retryable = False


# ============================================================================
# Source System Errors
# ============================================================================

class SourceError(SyncException):
    """Base exception for Source System failures."""
    pass


class SourceUnavailable(RetryableError, SourceError):
    """
    Raised when a record set cannot be fetched from the Source System.

    Context should include:
        - club_number: Club being fetched
        - record_kind: Kind of record set
        - url / status_code / page (when known)

    ``partial_records`` holds the raw payloads collected from earlier pages;
    they are never passed downstream, only reported.
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        partial_records: Optional[List[Dict[str, Any]]] = None
    ):
        super().__init__(message, context, original_exception)
        self.partial_records = partial_records or []
        self.context["records_fetched"] = len(self.partial_records)


class SourceAuthenticationError(NonRetryableError, SourceUnavailable):
    """Source credentials were rejected (HTTP 401, 403)."""
    pass


# ============================================================================
# Mapping Errors
# ============================================================================

class MappingError(SyncException):
    """Base exception for Source -> Target record mapping failures."""
    pass


class UnmappableRecord(NonRetryableError, MappingError):
    """
    The record has no usable email, so it cannot be matched to a contact.

    Context should include:
        - source_identity: Member id of the record
        - name: Member name (if present)
    """
    pass


# ============================================================================
# Target System Errors
# ============================================================================

class TargetError(SyncException):
    """Base exception for Target System (CRM) failures."""
    pass


class TargetRequestError(TargetError):
    """
    The Target System rejected a request (4xx other than throttling).

    Context should include:
        - url: Endpoint that failed
        - status_code: HTTP status code
        - response_body: Response body (truncated)
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message, context, original_exception)
        self.status_code = status_code
        if status_code is not None:
            self.context["status_code"] = status_code


class TargetAuthenticationError(NonRetryableError, TargetRequestError):
    """Target API key rejected (HTTP 401, 403)."""
    pass


class DuplicateContactError(TargetRequestError):
    """
    Contact creation was refused because a contact with the same email or
    phone already exists. ``contact_id`` is set when the response names it.
    """

    def __init__(
        self,
        message: str,
        contact_id: Optional[str] = None,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, status_code=status_code, context=context)
        self.contact_id = contact_id
        if contact_id:
            self.context["existing_contact_id"] = contact_id


class ContactNotFoundError(TargetRequestError):
    """A contact id returned by a search no longer resolves (HTTP 404)."""
    pass


class TargetTransportError(RetryableError, TargetError):
    """Network errors, timeouts, throttling (HTTP 429) and server errors (5xx)."""
    pass


class UnsupportedLookupError(TargetError):
    """The duplicate-search endpoint is not available for this location."""
    pass


class LookupFailed(RetryableError, TargetError):
    """
    A directory lookup could not be completed.

    Distinct from "no contact matched": the caller must not treat this as
    not-found and create a contact.
    """
    pass


# ============================================================================
# Upsert Errors
# ============================================================================

class UpsertError(SyncException):
    """Base exception for upsert outcomes that end in error."""
    pass


class DuplicateUnresolved(RetryableError, UpsertError):
    """
    Creation hit a duplicate but the existing contact could not be resolved.

    Context should include:
        - email: Identity being upserted
        - location_id: Target location
    """
    pass


class WriteFailed(RetryableError, UpsertError):
    """A create/update/tag write failed after the lookup succeeded."""
    pass


# ============================================================================
# Configuration Errors
# ============================================================================

class ConfigurationError(NonRetryableError):
    """Missing or invalid club/credential configuration."""
    pass
