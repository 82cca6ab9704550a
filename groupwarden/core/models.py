"""Domain models for group membership administration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, TypeAlias

PhoneNumber: TypeAlias = str
Identifier: TypeAlias = str
GroupId: TypeAlias = str
Role: TypeAlias = Literal["member", "admin", "superadmin"]
MutationOperation: TypeAlias = Literal["add", "promote", "demote", "rename"]
FailureKind: TypeAlias = Literal[
    "not_authorized",
    "not_found",
    "target_not_found",
    "target_not_admin",
    "protected_role",
    "invalid_request",
    "rate_limited",
    "transient",
    "unresolvable",
    "unavailable",
]
SuccessReason: TypeAlias = Literal["applied", "already_member", "already_in_state"]

ADMIN_ROLES: frozenset[str] = frozenset({"admin", "superadmin"})


@dataclass(frozen=True, slots=True)
class Participant:
    """One participant row from a group snapshot."""

    identifier: Identifier
    role: Role = "member"

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


@dataclass(frozen=True, slots=True, kw_only=True)
class GroupSnapshot:
    """Point-in-time read of a group. Advisory right after a mutation."""

    group_id: GroupId
    participants: tuple[Participant, ...]
    subject: str = ""
    member_add_mode: bool = False
    pending_requests: tuple[Identifier, ...] = ()

    def admins(self) -> tuple[Participant, ...]:
        return tuple(p for p in self.participants if p.is_admin)


@dataclass(frozen=True, slots=True)
class BotIdentity:
    """Identifiers under which the automation account appears in groups."""

    jid: Identifier
    lid: Identifier | None = None


@dataclass(frozen=True, slots=True)
class ParticipantUpdateResult:
    """Per-identifier status returned by a participant mutation."""

    identifier: Identifier
    status: int


@dataclass(frozen=True, slots=True)
class NetworkPresence:
    """Answer of the directory-native existence lookup."""

    exists: bool
    identifier: Identifier | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class MutationIntent:
    """One requested membership change, consumed once."""

    operation: MutationOperation
    group_id: GroupId
    phone: PhoneNumber | None = None
    new_name: str | None = None

    @property
    def target(self) -> str:
        if self.operation == "rename":
            return self.new_name or ""
        return self.phone or ""


@dataclass(frozen=True, slots=True, kw_only=True)
class MutationOutcome:
    """Tagged result of one mutation: ``ok`` or a typed failure ``kind``."""

    ok: bool
    kind: FailureKind | None = None
    message: str = ""
    reason: SuccessReason | None = None
    identifier: Identifier | None = None
    attempts: int = 0

    @classmethod
    def success(
        cls,
        reason: SuccessReason = "applied",
        *,
        identifier: Identifier | None = None,
        attempts: int = 0,
        message: str = "",
    ) -> "MutationOutcome":
        return cls(ok=True, reason=reason, identifier=identifier, attempts=attempts, message=message)

    @classmethod
    def failure(
        cls,
        kind: FailureKind,
        message: str,
        *,
        identifier: Identifier | None = None,
        attempts: int = 0,
    ) -> "MutationOutcome":
        return cls(ok=False, kind=kind, message=message, identifier=identifier, attempts=attempts)

    def as_dict(self) -> dict[str, object]:
        """Caller-facing tagged form: ``{ok: true}`` or ``{ok: false, kind, message}``."""
        if self.ok:
            return {"ok": True}
        return {"ok": False, "kind": self.kind, "message": self.message}


@dataclass(slots=True)
class BatchItemResult:
    """Per-item line of a batch report."""

    intent: MutationIntent
    outcome: MutationOutcome


@dataclass(slots=True)
class BatchReport:
    """Aggregated counters plus the per-item status log of one batch run."""

    succeeded: int = 0
    failed: int = 0
    rate_limited: int = 0
    cancelled: bool = False
    items: list[BatchItemResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.items)


@dataclass(slots=True)
class ReconcileReport:
    """Summary of one pending-join-request sweep."""

    groups_checked: int = 0
    groups_skipped: int = 0
    approved: list[tuple[GroupId, Identifier]] = field(default_factory=list)
    failed: list[tuple[GroupId, Identifier, str]] = field(default_factory=list)
