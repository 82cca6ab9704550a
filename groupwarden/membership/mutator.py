"""Idempotent, retried, verified group membership mutations.

Every operation follows the same shape: resolve, pre-check idempotency,
execute, verify, classify. Expected failures come back as a
``MutationOutcome``; nothing here raises for a directory refusal.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from loguru import logger

from groupwarden.core.errors import (
    DirectoryError,
    ErrorClass,
    IdentityResolutionError,
    NotAuthorizedError,
    StatusClassification,
    classify_status,
)
from groupwarden.core.models import (
    ADMIN_ROLES,
    BotIdentity,
    GroupId,
    GroupSnapshot,
    Identifier,
    MutationIntent,
    MutationOperation,
    MutationOutcome,
    ParticipantUpdateResult,
    PhoneNumber,
)
from groupwarden.core.ports import GroupDirectoryPort
from groupwarden.core.timeouts import SleepFn, call_with_timeout
from groupwarden.identity.jid import is_valid_phone, normalize_phone, phone_derived_jid, same_user
from groupwarden.identity.resolver import PhoneIdentifierResolver, is_bot_admin
from groupwarden.identity.store import IdentifierMappingStore
from groupwarden.membership.retry import (
    AttemptFailed,
    RetryError,
    RetryPolicy,
    fixed_backoff,
    linear_backoff,
    with_retry,
)
from groupwarden.utils.helpers import validate_group_name


@dataclass(frozen=True, slots=True)
class MutationSettings:
    call_timeout_s: float = 20.0
    propagation_wait_s: float = 5.0
    verify_delay_s: float = 2.0
    rate_limit_cooldown_s: float = 60.0
    add_max_attempts: int = 3
    promote_max_attempts: int = 3
    demote_max_attempts: int = 3
    rename_max_attempts: int = 3
    backoff_base_s: float = 5.0
    backoff_step_s: float = 5.0
    fixed_backoff_s: float = 5.0
    verify_after_mutation: bool = True


class _AlreadyApplied(Exception):
    """Desired end-state observed between retry attempts."""


class GroupMembershipMutator:
    """Add / promote / demote / rename against one directory connection.

    Calls for one session must be issued sequentially; the batch runner
    guarantees that for bulk work.
    """

    def __init__(
        self,
        directory: GroupDirectoryPort,
        resolver: PhoneIdentifierResolver,
        store: IdentifierMappingStore,
        *,
        bot: BotIdentity | None = None,
        settings: MutationSettings | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._directory = directory
        self._resolver = resolver
        self._store = store
        self._bot = bot
        self.settings = settings or MutationSettings()
        self._sleep = sleep
        self._verifications: set[asyncio.Task[None]] = set()

    async def execute(self, intent: MutationIntent) -> MutationOutcome:
        if intent.operation == "add":
            return await self.add(intent.group_id, intent.phone or "")
        if intent.operation == "promote":
            return await self.promote(intent.group_id, intent.phone or "")
        if intent.operation == "demote":
            return await self.demote(intent.group_id, intent.phone or "")
        if intent.operation == "rename":
            return await self.rename(intent.group_id, intent.new_name or "")
        return MutationOutcome.failure("invalid_request", f"unknown operation {intent.operation!r}")

    # ------------------------------------------------------------------
    # Add
    # ------------------------------------------------------------------

    async def add(self, group_id: GroupId, phone: PhoneNumber) -> MutationOutcome:
        digits = normalize_phone(phone)
        if not is_valid_phone(digits):
            return MutationOutcome.failure("unresolvable", f"{phone!r} is not a 10-15 digit phone number")

        try:
            snapshot = await self.read_group(group_id)
            bot = await self.bot_identity()
        except DirectoryError as e:
            return MutationOutcome.failure("unavailable", f"cannot read group {group_id}: {e}")

        if not is_bot_admin(snapshot, bot) and not snapshot.member_add_mode:
            return MutationOutcome.failure(
                "not_authorized",
                "bot is not an admin and the group does not allow members to add participants",
            )

        try:
            resolution = await self._resolver.resolve(digits, group_id)
        except IdentityResolutionError as e:
            return MutationOutcome.failure("unresolvable", str(e))

        existing = await self._resolver.find_participant(snapshot, digits, resolution=resolution)
        if existing is not None:
            logger.info("{} already in {} as {}", digits, group_id, existing.participant.identifier)
            return MutationOutcome.success("already_member", identifier=existing.participant.identifier)

        candidates = [resolution.identifier]
        default = phone_derived_jid(digits)
        if default != resolution.identifier:
            candidates.append(default)

        policy = RetryPolicy(
            max_attempts=self.settings.add_max_attempts,
            backoff=fixed_backoff(self.settings.fixed_backoff_s),
            rate_limit_cooldown_s=self.settings.rate_limit_cooldown_s,
        )
        total_attempts = 0
        last_error: RetryError | None = None
        for candidate in candidates:
            counter = _AttemptCounter()
            try:
                result = await with_retry(
                    counter.wrap(lambda attempt, c=candidate: self._update_one(group_id, c, "add")),
                    policy,
                    sleep=self._sleep,
                    label=f"add {candidate} to {group_id}",
                )
            except RetryError as e:
                total_attempts += e.attempts
                last_error = e
                if e.classification.error_class is ErrorClass.PERMANENT:
                    logger.debug("Candidate {} refused permanently, trying next", candidate)
                    continue
                break
            total_attempts += counter.attempts

            learned = result.identifier or candidate
            self._store.add_mapping(learned, digits)
            if result.status == 409:
                logger.info("{} already in {} as {} (409)", digits, group_id, learned)
                return MutationOutcome.success("already_member", identifier=learned, attempts=total_attempts)
            logger.info("Added {} to {} as {}", digits, group_id, learned)
            self._schedule_verification(group_id, digits, "add", learned)
            return MutationOutcome.success("applied", identifier=learned, attempts=total_attempts)

        return self._failure_from(last_error, total_attempts)

    # ------------------------------------------------------------------
    # Promote
    # ------------------------------------------------------------------

    async def promote(self, group_id: GroupId, phone: PhoneNumber) -> MutationOutcome:
        digits = normalize_phone(phone)
        if not is_valid_phone(digits):
            return MutationOutcome.failure("unresolvable", f"{phone!r} is not a 10-15 digit phone number")

        try:
            snapshot = await self._authorized_snapshot(group_id)
        except NotAuthorizedError as e:
            return MutationOutcome.failure("not_authorized", str(e))
        except DirectoryError as e:
            return MutationOutcome.failure("unavailable", f"cannot read group {group_id}: {e}")

        match = await self._resolver.find_participant(snapshot, digits)
        if match is None:
            logger.debug("{} not visible in {} yet, waiting {}s", digits, group_id, self.settings.propagation_wait_s)
            await self._sleep(self.settings.propagation_wait_s)
            try:
                snapshot = await self.read_group(group_id)
            except DirectoryError as e:
                return MutationOutcome.failure("unavailable", f"cannot read group {group_id}: {e}")
            match = await self._resolver.find_participant(snapshot, digits)
            if match is None:
                return MutationOutcome.failure("target_not_found", f"participant {digits} not found in group")

        target = match.participant
        if target.is_admin:
            return MutationOutcome.success("already_in_state", identifier=target.identifier)

        async def still_present(attempt: int) -> None:
            try:
                fresh = await self.read_group(group_id)
            except DirectoryError as e:
                logger.debug("Re-verification read failed before retry: {}", e)
                return
            current = next((p for p in fresh.participants if same_user(p.identifier, target.identifier)), None)
            if current is None:
                raise AttemptFailed(
                    StatusClassification(
                        ErrorClass.PERMANENT,
                        "target_not_found",
                        f"participant {digits} left the group",
                    )
                )
            if current.is_admin:
                raise _AlreadyApplied()

        policy = RetryPolicy(
            max_attempts=self.settings.promote_max_attempts,
            backoff=linear_backoff(self.settings.backoff_base_s, self.settings.backoff_step_s),
            rate_limit_cooldown_s=self.settings.rate_limit_cooldown_s,
        )
        return await self._run_role_change(group_id, digits, target.identifier, "promote", policy, still_present)

    # ------------------------------------------------------------------
    # Demote
    # ------------------------------------------------------------------

    async def demote(self, group_id: GroupId, phone: PhoneNumber) -> MutationOutcome:
        digits = normalize_phone(phone)
        if not is_valid_phone(digits):
            return MutationOutcome.failure("unresolvable", f"{phone!r} is not a 10-15 digit phone number")

        try:
            snapshot = await self._authorized_snapshot(group_id)
        except NotAuthorizedError as e:
            return MutationOutcome.failure("not_authorized", str(e))
        except DirectoryError as e:
            return MutationOutcome.failure("unavailable", f"cannot read group {group_id}: {e}")

        self._store.correlate_snapshot(snapshot, exclude=self._bot_ids())
        match = await self._resolver.find_participant(snapshot, digits, roles=ADMIN_ROLES)
        if match is None:
            return MutationOutcome.failure("target_not_admin", f"no admin with number {digits} in group")

        logger.debug("Demote target {} matched via {}", match.participant.identifier, match.strategy)
        policy = RetryPolicy(
            max_attempts=self.settings.demote_max_attempts,
            backoff=fixed_backoff(self.settings.fixed_backoff_s),
            rate_limit_cooldown_s=self.settings.rate_limit_cooldown_s,
        )
        return await self._run_role_change(group_id, digits, match.participant.identifier, "demote", policy)

    # ------------------------------------------------------------------
    # Rename
    # ------------------------------------------------------------------

    async def rename(self, group_id: GroupId, new_name: str) -> MutationOutcome:
        try:
            name = validate_group_name(new_name)
        except ValueError as e:
            return MutationOutcome.failure("invalid_request", str(e))

        try:
            await self._authorized_snapshot(group_id)
        except NotAuthorizedError as e:
            return MutationOutcome.failure("not_authorized", str(e))
        except DirectoryError as e:
            return MutationOutcome.failure("unavailable", f"cannot read group {group_id}: {e}")

        async def attempt(n: int) -> None:
            try:
                await call_with_timeout(
                    self._directory.update_group_subject(group_id, name),
                    self.settings.call_timeout_s,
                    label="rename",
                )
            except DirectoryError as e:
                self._raise_if_permanent("rename", e)
                raise

        policy = RetryPolicy(
            max_attempts=self.settings.rename_max_attempts,
            backoff=fixed_backoff(self.settings.fixed_backoff_s),
            rate_limit_cooldown_s=self.settings.rate_limit_cooldown_s,
        )
        counter = _AttemptCounter()
        try:
            await with_retry(counter.wrap(attempt), policy, sleep=self._sleep, label=f"rename {group_id}")
        except RetryError as e:
            return self._failure_from(e, e.attempts)
        logger.info("Renamed {} to {!r}", group_id, name)
        return MutationOutcome.success("applied", attempts=counter.attempts)

    # ------------------------------------------------------------------
    # Shared plumbing
    # ------------------------------------------------------------------

    async def drain(self) -> None:
        """Wait for background verifications to finish."""
        while self._verifications:
            await asyncio.gather(*list(self._verifications), return_exceptions=True)

    async def _run_role_change(
        self,
        group_id: GroupId,
        digits: str,
        identifier: Identifier,
        operation: MutationOperation,
        policy: RetryPolicy,
        before_retry=None,
    ) -> MutationOutcome:
        counter = _AttemptCounter()
        try:
            result = await with_retry(
                counter.wrap(lambda attempt: self._update_one(group_id, identifier, operation)),
                policy,
                sleep=self._sleep,
                before_retry=before_retry,
                label=f"{operation} {identifier} in {group_id}",
            )
        except _AlreadyApplied:
            return MutationOutcome.success("already_in_state", identifier=identifier, attempts=counter.attempts)
        except RetryError as e:
            outcome = self._failure_from(e, e.attempts)
            return MutationOutcome.failure(
                outcome.kind or "transient",
                outcome.message,
                identifier=identifier,
                attempts=e.attempts,
            )

        if result.status == 409:
            return MutationOutcome.success("already_in_state", identifier=identifier, attempts=counter.attempts)
        logger.info("{} {} ({}) in {} succeeded", operation.capitalize(), digits, identifier, group_id)
        self._schedule_verification(group_id, digits, operation, identifier)
        return MutationOutcome.success("applied", identifier=identifier, attempts=counter.attempts)

    async def _update_one(
        self,
        group_id: GroupId,
        identifier: Identifier,
        operation: MutationOperation,
    ) -> ParticipantUpdateResult:
        try:
            results = await call_with_timeout(
                self._directory.mutate_participants(group_id, [identifier], operation),
                self.settings.call_timeout_s,
                label=operation,
            )
        except DirectoryError as e:
            self._raise_if_permanent(operation, e)
            raise

        result = results[0] if results else ParticipantUpdateResult(identifier, 500)
        classification = classify_status(operation, result.status)
        if classification.error_class in (ErrorClass.SUCCESS, ErrorClass.ALREADY):
            return result
        raise AttemptFailed(classification)

    @staticmethod
    def _raise_if_permanent(operation: MutationOperation, err: DirectoryError) -> None:
        """Directory errors carrying a permanent status are not retried."""
        if err.status is None or err.status in (408, 429):
            return
        classification = classify_status(operation, err.status)
        if classification.error_class is ErrorClass.PERMANENT:
            raise AttemptFailed(classification) from err

    async def _authorized_snapshot(self, group_id: GroupId) -> GroupSnapshot:
        snapshot = await self.read_group(group_id)
        bot = await self.bot_identity()
        if not is_bot_admin(snapshot, bot):
            raise NotAuthorizedError(f"bot is not an admin in {group_id}")
        return snapshot

    async def read_group(self, group_id: GroupId) -> GroupSnapshot:
        """Fetch a group snapshot under the call timeout."""
        return await call_with_timeout(
            self._directory.fetch_group_snapshot(group_id),
            self.settings.call_timeout_s,
            label="group snapshot",
        )

    async def bot_identity(self) -> BotIdentity:
        if self._bot is None:
            self._bot = await call_with_timeout(
                self._directory.bot_identity(),
                self.settings.call_timeout_s,
                label="bot identity",
            )
        return self._bot

    def _bot_ids(self) -> tuple[Identifier, ...]:
        if self._bot is None:
            return ()
        return tuple(i for i in (self._bot.jid, self._bot.lid) if i)

    @staticmethod
    def _failure_from(err: RetryError | None, attempts: int) -> MutationOutcome:
        if err is None:
            return MutationOutcome.failure("transient", "no identifier candidate accepted", attempts=attempts)
        return MutationOutcome.failure(
            err.classification.kind or "transient",
            err.classification.message,
            attempts=attempts,
        )

    def _schedule_verification(
        self,
        group_id: GroupId,
        digits: str,
        operation: MutationOperation,
        identifier: Identifier,
    ) -> None:
        if not self.settings.verify_after_mutation:
            return
        task = asyncio.create_task(self._verify(group_id, digits, operation, identifier))
        self._verifications.add(task)
        task.add_done_callback(self._on_verification_done)

    async def _verify(
        self,
        group_id: GroupId,
        digits: str,
        operation: MutationOperation,
        identifier: Identifier,
    ) -> None:
        await self._sleep(self.settings.verify_delay_s)
        try:
            snapshot = await self.read_group(group_id)
        except DirectoryError as e:
            logger.debug("Could not verify {} of {} in {}: {}", operation, digits, group_id, e)
            return

        current = next((p for p in snapshot.participants if same_user(p.identifier, identifier)), None)
        if operation == "add":
            if current is None and await self._resolver.find_participant(snapshot, digits) is None:
                logger.warning("Verification: {} not yet visible in {} after add", digits, group_id)
                return
        elif operation == "promote":
            if current is None or not current.is_admin:
                logger.warning("Verification: {} not yet admin in {} after promote", digits, group_id)
                return
        elif operation == "demote":
            if current is not None and current.is_admin:
                logger.warning("Verification: {} still {} in {} after demote", digits, current.role, group_id)
                return
        logger.debug("Verified {} of {} in {}", operation, digits, group_id)

    def _on_verification_done(self, task: asyncio.Task[None]) -> None:
        self._verifications.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Mutation verification task failed: {}", exc)


class _AttemptCounter:
    """Remembers how many attempts a retried call used."""

    def __init__(self) -> None:
        self.attempts = 0

    def wrap(self, fn):
        async def _wrapped(attempt: int):
            self.attempts = attempt
            return await fn(attempt)

        return _wrapped
