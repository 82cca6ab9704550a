"""Port interfaces toward the messaging-network directory."""

from __future__ import annotations

from typing import Protocol

from groupwarden.core.models import (
    BotIdentity,
    GroupId,
    GroupSnapshot,
    Identifier,
    NetworkPresence,
    ParticipantUpdateResult,
    PhoneNumber,
)


class GroupDirectoryPort(Protocol):
    """Read/write access to group metadata and participant mutations.

    Optional capabilities raise ``CapabilityUnsupportedError`` when absent.
    ``supports_existence_lookup`` advertises ``exists_on_network`` up front so
    callers never probe for it at runtime.
    """

    supports_existence_lookup: bool

    async def bot_identity(self) -> BotIdentity:
        """Identifiers of the connected automation account."""

    async def fetch_group_snapshot(self, group_id: GroupId) -> GroupSnapshot:
        """Read the current participant list. May raise ``DirectoryUnavailableError``."""

    async def list_participating_groups(self) -> list[GroupSnapshot]:
        """Snapshots of every group the account participates in."""

    async def mutate_participants(
        self,
        group_id: GroupId,
        identifiers: list[Identifier],
        operation: str,
    ) -> list[ParticipantUpdateResult]:
        """Apply ``add``/``promote``/``demote`` and return per-identifier statuses."""

    async def update_group_subject(self, group_id: GroupId, new_name: str) -> None:
        """Rename a group."""

    async def exists_on_network(self, phone: PhoneNumber) -> NetworkPresence | None:
        """Directory-native existence lookup (optional capability)."""

    async def probe_identifier(self, identifier: Identifier) -> bool:
        """Cheapest existence-confirming read for one identifier candidate."""

    async def list_pending_join_requests(self, group_id: GroupId) -> list[Identifier]:
        """Dedicated pending-request listing (optional capability)."""

    async def approve_join_requests(
        self,
        group_id: GroupId,
        identifiers: list[Identifier],
    ) -> list[ParticipantUpdateResult]:
        """Approve outstanding join requests."""
