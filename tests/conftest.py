from __future__ import annotations

from pathlib import Path

import pytest

from groupwarden.core.errors import CapabilityUnsupportedError, DirectoryError, DirectoryUnavailableError
from groupwarden.core.models import (
    BotIdentity,
    GroupSnapshot,
    NetworkPresence,
    Participant,
    ParticipantUpdateResult,
)
from groupwarden.identity.matcher import ParticipantMatcher
from groupwarden.identity.resolver import PhoneIdentifierResolver
from groupwarden.identity.store import IdentifierMappingStore
from groupwarden.membership.mutator import GroupMembershipMutator, MutationSettings

BOT = BotIdentity(jid="628000000001@s.whatsapp.net", lid="99999999999999@lid")
GROUP = "120363000000000001@g.us"

_ROLE_AFTER = {"promote": "admin", "demote": "member"}


class FakeDirectory:
    """In-memory directory with scripted statuses and a call log."""

    def __init__(self, *, bot: BotIdentity = BOT, supports_existence_lookup: bool = False) -> None:
        self.bot = bot
        self.supports_existence_lookup = supports_existence_lookup
        self.groups: dict[str, GroupSnapshot] = {}
        self.stale_reads: dict[str, list[GroupSnapshot]] = {}
        self.network: dict[str, NetworkPresence] = {}
        self.probe_hits: set[str] = set()
        self.statuses: dict[str, list[int]] = {}
        self.errors: dict[str, list[Exception]] = {}
        self.pending: dict[str, list[str]] = {}
        self.pending_listing_supported = True
        self.approve_statuses: dict[str, int] = {}
        self.unavailable = False
        self.apply_mutations = True
        self.calls: list[tuple[str, ...]] = []

    def add_group(self, *participants: Participant, group_id: str = GROUP, **fields) -> GroupSnapshot:
        snapshot = GroupSnapshot(group_id=group_id, participants=tuple(participants), **fields)
        self.groups[group_id] = snapshot
        return snapshot

    def mutation_calls(self, operation: str | None = None) -> list[tuple[str, ...]]:
        ops = {"add", "promote", "demote", "rename"} if operation is None else {operation}
        return [call for call in self.calls if call[0] in ops]

    def snapshot_reads(self) -> int:
        return sum(1 for call in self.calls if call[0] == "snapshot")

    def _raise_scripted(self, operation: str) -> None:
        queued = self.errors.get(operation)
        if queued:
            raise queued.pop(0)

    def _next_status(self, operation: str) -> int:
        queued = self.statuses.get(operation)
        return queued.pop(0) if queued else 200

    async def bot_identity(self) -> BotIdentity:
        self.calls.append(("whoami",))
        return self.bot

    async def fetch_group_snapshot(self, group_id: str) -> GroupSnapshot:
        self.calls.append(("snapshot", group_id))
        if self.unavailable:
            raise DirectoryUnavailableError("bridge disconnected")
        stale = self.stale_reads.get(group_id)
        if stale:
            return stale.pop(0)
        if group_id not in self.groups:
            raise DirectoryError(f"group {group_id} not found", status=404, retryable=False)
        return self.groups[group_id]

    async def list_participating_groups(self) -> list[GroupSnapshot]:
        self.calls.append(("groups",))
        return list(self.groups.values())

    async def mutate_participants(self, group_id, identifiers, operation) -> list[ParticipantUpdateResult]:
        identifier = identifiers[0]
        self.calls.append((operation, group_id, identifier))
        self._raise_scripted(operation)
        status = self._next_status(operation)
        if status == 200 and self.apply_mutations:
            self._apply(group_id, identifier, operation)
        return [ParticipantUpdateResult(identifier, status)]

    async def update_group_subject(self, group_id: str, new_name: str) -> None:
        self.calls.append(("rename", group_id, new_name))
        self._raise_scripted("rename")
        status = self._next_status("rename")
        if status != 200:
            raise DirectoryError(f"rename failed with {status}", status=status)

    async def exists_on_network(self, phone: str) -> NetworkPresence | None:
        self.calls.append(("exists", phone))
        if not self.supports_existence_lookup:
            raise CapabilityUnsupportedError("on_whatsapp")
        return self.network.get(phone, NetworkPresence(exists=False))

    async def probe_identifier(self, identifier: str) -> bool:
        self.calls.append(("probe", identifier))
        return identifier in self.probe_hits

    async def list_pending_join_requests(self, group_id: str) -> list[str]:
        self.calls.append(("pending", group_id))
        if not self.pending_listing_supported:
            raise CapabilityUnsupportedError("group_request_participants_list")
        return list(self.pending.get(group_id, []))

    async def approve_join_requests(self, group_id, identifiers) -> list[ParticipantUpdateResult]:
        identifier = identifiers[0]
        self.calls.append(("approve", group_id, identifier))
        self._raise_scripted("approve")
        return [ParticipantUpdateResult(identifier, self.approve_statuses.get(identifier, 200))]

    def _apply(self, group_id: str, identifier: str, operation: str) -> None:
        snapshot = self.groups.get(group_id)
        if snapshot is None:
            return
        participants = list(snapshot.participants)
        if operation == "add":
            participants.append(Participant(identifier))
        else:
            participants = [
                Participant(p.identifier, _ROLE_AFTER[operation]) if p.identifier == identifier else p
                for p in participants
            ]
        self.groups[group_id] = GroupSnapshot(
            group_id=group_id,
            participants=tuple(participants),
            subject=snapshot.subject,
            member_add_mode=snapshot.member_add_mode,
            pending_requests=snapshot.pending_requests,
        )


class SleepRecorder:
    """Stand-in for ``asyncio.sleep`` that only records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def store(tmp_path: Path) -> IdentifierMappingStore:
    return IdentifierMappingStore(tmp_path / "lid_mappings.json")


@pytest.fixture
def resolver(directory: FakeDirectory, store: IdentifierMappingStore) -> PhoneIdentifierResolver:
    return PhoneIdentifierResolver(directory, store, ParticipantMatcher(bot=BOT))


@pytest.fixture
def make_mutator(directory: FakeDirectory, resolver: PhoneIdentifierResolver, store, sleep):
    def _make(**settings) -> GroupMembershipMutator:
        settings.setdefault("verify_after_mutation", False)
        return GroupMembershipMutator(
            directory,
            resolver,
            store,
            settings=MutationSettings(**settings),
            sleep=sleep,
        )

    return _make
