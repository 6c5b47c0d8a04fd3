"""
Core utilities and configuration for the membership sync service.

Modules:
    config: Settings, club contexts and the immutable run configuration
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration

Usage:
    from core.config import settings, SyncConfig, load_club_contexts
    from core.exceptions import SourceUnavailable, UnmappableRecord
    from core.logging import setup_logging

Example:
    setup_logging()
    config = SyncConfig.from_settings(settings)
    clubs = load_club_contexts(settings)
"""

__all__ = [
    "settings",
    "SyncConfig",
    "ClubContext",
    "load_club_contexts",
    "setup_logging",
    # Exceptions
    "SyncException",
    "SourceError",
    "SourceUnavailable",
    "SourceAuthenticationError",
    "MappingError",
    "UnmappableRecord",
    "TargetError",
    "TargetRequestError",
    "TargetAuthenticationError",
    "DuplicateContactError",
    "ContactNotFoundError",
    "TargetTransportError",
    "UnsupportedLookupError",
    "LookupFailed",
    "UpsertError",
    "DuplicateUnresolved",
    "WriteFailed",
    "ConfigurationError",
    "RetryableError",
    "NonRetryableError",
]
