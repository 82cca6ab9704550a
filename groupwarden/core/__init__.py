"""Typed core: domain models, directory port, error taxonomy."""

from groupwarden.core.errors import (
    CapabilityUnsupportedError,
    DirectoryError,
    DirectoryTimeoutError,
    DirectoryUnavailableError,
    IdentityResolutionError,
    NotAuthorizedError,
    RateLimitedError,
)
from groupwarden.core.models import (
    BotIdentity,
    GroupSnapshot,
    MutationIntent,
    MutationOutcome,
    Participant,
    ParticipantUpdateResult,
)

__all__ = [
    "BotIdentity",
    "CapabilityUnsupportedError",
    "DirectoryError",
    "DirectoryTimeoutError",
    "DirectoryUnavailableError",
    "GroupSnapshot",
    "IdentityResolutionError",
    "MutationIntent",
    "MutationOutcome",
    "NotAuthorizedError",
    "Participant",
    "ParticipantUpdateResult",
    "RateLimitedError",
]
