"""Application bootstrap and runtime wiring."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger

from groupwarden.core.ports import GroupDirectoryPort
from groupwarden.core.timeouts import SleepFn
from groupwarden.identity.matcher import DialingPlan, ParticipantMatcher
from groupwarden.identity.resolver import PhoneIdentifierResolver
from groupwarden.identity.store import IdentifierMappingStore
from groupwarden.membership.batch import BatchRunner
from groupwarden.membership.mutator import GroupMembershipMutator, MutationSettings
from groupwarden.membership.reconciler import PendingRequestReconciler

if TYPE_CHECKING:
    from groupwarden.config.schema import Config


@dataclass(slots=True)
class GroupwardenRuntime:
    """Every collaborator of one directory session, wired once."""

    directory: GroupDirectoryPort
    store: IdentifierMappingStore
    matcher: ParticipantMatcher
    resolver: PhoneIdentifierResolver
    mutator: GroupMembershipMutator
    batch: BatchRunner
    reconciler: PendingRequestReconciler


def build_store(config: "Config") -> IdentifierMappingStore:
    """Open the mapping file and write configured seed identities into it."""
    store = IdentifierMappingStore(config.identity.mapping_path)
    if config.identity.seed_mappings:
        changed = store.seed(config.identity.seed_mappings)
        if changed:
            logger.info("Seeded {} known identifier mappings", changed)
    return store


def build_matcher(config: "Config") -> ParticipantMatcher:
    identity = config.identity
    return ParticipantMatcher(
        DialingPlan(
            country_code=identity.country_code,
            trunk_prefix=identity.trunk_prefix,
            local_prefix=identity.local_prefix,
            national_min_length=identity.national_min_length,
            canonical_length=identity.canonical_length,
        )
    )


def mutation_settings(config: "Config") -> MutationSettings:
    m = config.mutations
    return MutationSettings(
        call_timeout_s=m.call_timeout_s,
        propagation_wait_s=m.propagation_wait_s,
        verify_delay_s=m.verify_delay_s,
        rate_limit_cooldown_s=m.rate_limit_cooldown_s,
        add_max_attempts=m.add_max_attempts,
        promote_max_attempts=m.promote_max_attempts,
        demote_max_attempts=m.demote_max_attempts,
        rename_max_attempts=m.rename_max_attempts,
        backoff_base_s=m.backoff_base_s,
        backoff_step_s=m.backoff_step_s,
        fixed_backoff_s=m.fixed_backoff_s,
    )


def build_runtime(
    *,
    config: "Config",
    directory: GroupDirectoryPort,
    store: IdentifierMappingStore | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> GroupwardenRuntime:
    """Compose the core around an already-connected directory."""
    store = store if store is not None else build_store(config)
    matcher = build_matcher(config)
    resolver = PhoneIdentifierResolver(
        directory,
        store,
        matcher,
        existence_lookup=config.identity.existence_lookup,
        call_timeout_s=config.mutations.call_timeout_s,
    )
    mutator = GroupMembershipMutator(
        directory,
        resolver,
        store,
        settings=mutation_settings(config),
        sleep=sleep,
    )
    batch = BatchRunner(
        mutator,
        pacing_s=config.mutations.pacing_s,
        rate_limit_cooldown_s=config.mutations.rate_limit_cooldown_s,
        sleep=sleep,
    )
    reconciler = PendingRequestReconciler(
        directory,
        enabled=config.reconciler.enabled,
        interval_s=config.reconciler.interval_s,
        approve_pacing_s=config.reconciler.approve_pacing_s,
        initial_delay_s=config.reconciler.initial_delay_s,
        call_timeout_s=config.mutations.call_timeout_s,
        sleep=sleep,
    )
    return GroupwardenRuntime(
        directory=directory,
        store=store,
        matcher=matcher,
        resolver=resolver,
        mutator=mutator,
        batch=batch,
        reconciler=reconciler,
    )


@contextlib.asynccontextmanager
async def open_runtime(config: "Config") -> AsyncIterator[GroupwardenRuntime]:
    """Connect to the bridge and yield a runtime bound to that session."""
    from groupwarden.adapters.bridge_directory import BridgeGroupDirectory

    async with BridgeGroupDirectory(config.bridge) as directory:
        runtime = build_runtime(config=config, directory=directory)
        runtime.matcher.bot = await runtime.mutator.bot_identity()
        logger.info("Session bot identity: {}", runtime.matcher.bot.jid)
        try:
            yield runtime
        finally:
            await runtime.mutator.drain()
