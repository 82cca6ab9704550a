"""Phone number -> participant identifier resolution under directory drift."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal, TypeAlias

from loguru import logger

from groupwarden.core.errors import CapabilityUnsupportedError, DirectoryError, IdentityResolutionError
from groupwarden.core.models import (
    BotIdentity,
    GroupId,
    GroupSnapshot,
    Identifier,
    Participant,
    PhoneNumber,
    Role,
)
from groupwarden.core.ports import GroupDirectoryPort
from groupwarden.core.timeouts import call_with_timeout
from groupwarden.identity.jid import (
    candidate_identifiers,
    is_valid_phone,
    normalize_phone,
    opaque_jid,
    parse_identifier,
    phone_derived_jid,
    same_user,
)
from groupwarden.identity.matcher import MatchConfidence, ParticipantMatcher
from groupwarden.identity.store import IdentifierMappingStore

ResolutionSource: TypeAlias = Literal["cache", "network", "probe", "default"]
MatchStrategy: TypeAlias = Literal["direct", "resolver", "store", "matcher"]

ALL_STRATEGIES: tuple[MatchStrategy, ...] = ("direct", "resolver", "store", "matcher")


@dataclass(frozen=True, slots=True)
class Resolution:
    identifier: Identifier
    source: ResolutionSource

    @property
    def verified(self) -> bool:
        return self.source != "default"


@dataclass(frozen=True, slots=True)
class ParticipantMatch:
    participant: Participant
    strategy: MatchStrategy


def is_bot_admin(snapshot: GroupSnapshot, bot: BotIdentity) -> bool:
    """Whether the automation account holds admin/superadmin in ``snapshot``."""
    bot_ids = [bot.jid] + ([bot.lid] if bot.lid else [])
    bot_users = {parse_identifier(i).user for i in bot_ids if parse_identifier(i).user}
    for participant in snapshot.admins():
        if any(same_user(participant.identifier, bot_id) for bot_id in bot_ids):
            return True
        if parse_identifier(participant.identifier).user in bot_users:
            return True
    return False


class PhoneIdentifierResolver:
    """Resolve phone numbers via store, directory lookup, probes, then default.

    Only the final default is unverified; it is never cached.
    """

    def __init__(
        self,
        directory: GroupDirectoryPort,
        store: IdentifierMappingStore,
        matcher: ParticipantMatcher,
        *,
        existence_lookup: bool = True,
        call_timeout_s: float = 20.0,
    ) -> None:
        self._directory = directory
        self._store = store
        self._matcher = matcher
        self._existence_lookup = bool(existence_lookup and directory.supports_existence_lookup)
        self._call_timeout_s = call_timeout_s

    @property
    def existence_lookup_enabled(self) -> bool:
        return self._existence_lookup

    async def resolve(self, phone: PhoneNumber, group_id: GroupId | None = None) -> Resolution:
        digits = normalize_phone(phone)
        if not is_valid_phone(digits):
            raise IdentityResolutionError(f"cannot resolve {phone!r}: not a 10-15 digit phone number")

        cached = self._store.get_identifier_for_phone(digits, group_id)
        if cached:
            logger.debug("Resolved {} from cache: {}", digits, cached)
            return Resolution(cached, "cache")

        found = await self._lookup_network(digits)
        if found:
            self._store.add_mapping(found, digits)
            return Resolution(found, "network")

        probed = await self._probe_candidates(digits)
        if probed:
            self._store.add_mapping(probed, digits)
            return Resolution(probed, "probe")

        default = phone_derived_jid(digits)
        logger.debug("No verified identifier for {}, using unverified default {}", digits, default)
        return Resolution(default, "default")

    async def find_participant(
        self,
        snapshot: GroupSnapshot,
        phone: PhoneNumber,
        *,
        roles: Iterable[Role] | None = None,
        strategies: Iterable[MatchStrategy] = ALL_STRATEGIES,
        resolution: Resolution | None = None,
    ) -> ParticipantMatch | None:
        """Locate ``phone`` in a snapshot, trying each strategy in order.

        A ``resolution`` the caller already holds is reused by the resolver
        strategy instead of resolving again.
        """
        digits = normalize_phone(phone)
        if not digits:
            return None
        allowed = frozenset(roles) if roles is not None else None
        pool = [p for p in snapshot.participants if allowed is None or p.role in allowed]
        if not pool:
            return None

        for strategy in strategies:
            participant = await self._find_with(strategy, pool, digits, snapshot.group_id, resolution)
            if participant is None:
                continue
            logger.debug(
                "Matched {} to {} in {} via {}",
                digits,
                participant.identifier,
                snapshot.group_id,
                strategy,
            )
            if self._store.get_phone_for_identifier(participant.identifier, snapshot.group_id) != digits:
                self._store.add_mapping(participant.identifier, digits, snapshot.group_id)
            return ParticipantMatch(participant, strategy)
        return None

    def resolve_phone_display(self, identifier: Identifier, scope: GroupId | None = None) -> str:
        """Best human-readable phone for an identifier; rendering only."""
        mapped = self._store.get_phone_for_identifier(identifier, scope)
        if mapped:
            return mapped
        parsed = parse_identifier(identifier)
        result = self._matcher.match(identifier)
        if result is not None and result.confidence is not MatchConfidence.TRUNCATED:
            return result.phone
        if parsed.kind == "lid":
            return f"{parsed.user}[LID]"
        return parsed.user or "unknown"

    async def _find_with(
        self,
        strategy: MatchStrategy,
        pool: list[Participant],
        digits: str,
        group_id: GroupId,
        resolution: Resolution | None = None,
    ) -> Participant | None:
        if strategy == "direct":
            constructed = (phone_derived_jid(digits), opaque_jid(digits))
            return next(
                (p for p in pool if any(same_user(p.identifier, c) for c in constructed)),
                None,
            )

        if strategy == "resolver":
            if resolution is None:
                try:
                    resolution = await self.resolve(digits, group_id)
                except IdentityResolutionError:
                    return None
            return next((p for p in pool if same_user(p.identifier, resolution.identifier)), None)

        if strategy == "store":
            return next(
                (p for p in pool if self._store.get_phone_for_identifier(p.identifier, group_id) == digits),
                None,
            )

        for participant in pool:
            result = self._matcher.match(participant.identifier)
            if result is not None and result.phone == digits:
                return participant
        return None

    async def _lookup_network(self, digits: str) -> Identifier | None:
        if not self._existence_lookup:
            return None
        try:
            presence = await call_with_timeout(
                self._directory.exists_on_network(digits),
                self._call_timeout_s,
                label="existence lookup",
            )
        except CapabilityUnsupportedError:
            logger.info("Directory has no existence lookup; disabling it for this session")
            self._existence_lookup = False
            return None
        except DirectoryError as e:
            logger.debug("Existence lookup failed for {}: {}", digits, e)
            return None
        if presence is None or not presence.exists or not presence.identifier:
            return None
        logger.debug("Existence lookup resolved {} -> {}", digits, presence.identifier)
        return presence.identifier

    async def _probe_candidates(self, digits: str) -> Identifier | None:
        plan = self._matcher.plan
        for candidate in candidate_identifiers(
            digits,
            country_code=plan.country_code,
            trunk_prefix=plan.trunk_prefix,
        ):
            try:
                confirmed = await call_with_timeout(
                    self._directory.probe_identifier(candidate),
                    self._call_timeout_s,
                    label="identifier probe",
                )
            except DirectoryError as e:
                logger.debug("Probe {} failed: {}", candidate, e)
                continue
            if confirmed:
                logger.debug("Probe confirmed {} for {}", candidate, digits)
                return candidate
        return None
