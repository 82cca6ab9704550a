"""Sequential, paced execution of many mutation intents."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Sequence
from typing import TypeAlias

from loguru import logger

from groupwarden.core.models import (
    BatchItemResult,
    BatchReport,
    GroupId,
    MutationIntent,
    MutationOperation,
    MutationOutcome,
    PhoneNumber,
)
from groupwarden.core.timeouts import SleepFn
from groupwarden.membership.mutator import GroupMembershipMutator
from groupwarden.utils.helpers import extract_number_from_name

ProgressFn: TypeAlias = Callable[[int, int, BatchItemResult], None]


def plan_batch(
    operation: MutationOperation,
    group_ids: Sequence[GroupId],
    phones: Sequence[PhoneNumber] = (),
    *,
    new_name: str | None = None,
) -> list[MutationIntent]:
    """Expand groups x phones into intents, group-major.

    Rename produces exactly one intent per group.
    """
    if operation == "rename":
        return [MutationIntent(operation="rename", group_id=gid, new_name=new_name) for gid in group_ids]
    return [
        MutationIntent(operation=operation, group_id=gid, phone=phone)
        for gid in group_ids
        for phone in phones
    ]


def number_groups_by_name(
    groups: Iterable[tuple[GroupId, str]],
    base_name: str,
    *,
    start: int = 1,
    first: int | None = None,
    last: int | None = None,
) -> list[tuple[GroupId, str]]:
    """Assign ``"<base_name> <n>"`` to groups ordered by the number in their current name.

    ``first``/``last`` keep only groups whose current number lies in range.
    """
    numbered = [(extract_number_from_name(subject), gid) for gid, subject in groups]
    if first is not None:
        numbered = [item for item in numbered if item[0] >= first]
    if last is not None:
        numbered = [item for item in numbered if item[0] <= last]
    numbered.sort(key=lambda item: item[0])
    return [(gid, f"{base_name} {start + index}") for index, (_, gid) in enumerate(numbered)]


class BatchRunner:
    """Runs intents one at a time through a single mutator.

    One item's failure never aborts the batch. Cancellation is checked
    between items; an in-flight directory call always completes.
    """

    def __init__(
        self,
        mutator: GroupMembershipMutator,
        *,
        pacing_s: float = 3.0,
        rate_limit_cooldown_s: float = 60.0,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.mutator = mutator
        self.pacing_s = pacing_s
        self.rate_limit_cooldown_s = rate_limit_cooldown_s
        self._sleep = sleep

    async def run(
        self,
        intents: Sequence[MutationIntent],
        *,
        cancel: asyncio.Event | None = None,
        progress: ProgressFn | None = None,
    ) -> BatchReport:
        report = BatchReport()
        total = len(intents)
        for index, intent in enumerate(intents):
            if cancel is not None and cancel.is_set():
                logger.info("Batch cancelled after {}/{} items", index, total)
                report.cancelled = True
                break

            if index > 0:
                await self._sleep(self.pacing_s)

            outcome = await self._execute(intent)
            item = BatchItemResult(intent, outcome)
            report.items.append(item)
            if outcome.ok:
                report.succeeded += 1
            else:
                report.failed += 1
                if outcome.kind == "rate_limited":
                    report.rate_limited += 1

            logger.info(
                "[{}/{}] {} {} on {}: {}",
                index + 1,
                total,
                intent.operation,
                intent.target,
                intent.group_id,
                outcome.reason if outcome.ok else f"{outcome.kind}: {outcome.message}",
            )
            if progress is not None:
                progress(index + 1, total, item)

            if outcome.kind == "rate_limited" and index + 1 < total:
                logger.warning("Rate limited; cooling down {:.0f}s before the next item", self.rate_limit_cooldown_s)
                await self._sleep(self.rate_limit_cooldown_s)

        await self.mutator.drain()
        logger.info(
            "Batch finished: {} succeeded, {} failed ({} rate limited){}",
            report.succeeded,
            report.failed,
            report.rate_limited,
            ", cancelled" if report.cancelled else "",
        )
        return report

    async def _execute(self, intent: MutationIntent) -> MutationOutcome:
        try:
            return await self.mutator.execute(intent)
        except Exception as e:
            logger.exception("Unexpected error on {} {} in {}", intent.operation, intent.target, intent.group_id)
            return MutationOutcome.failure("transient", f"unexpected error: {e}")
