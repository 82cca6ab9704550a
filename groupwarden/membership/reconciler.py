"""Auto-approval of pending join requests in groups the bot administers."""

from __future__ import annotations

import asyncio
import contextlib

from loguru import logger

from groupwarden.core.errors import CapabilityUnsupportedError, DirectoryError
from groupwarden.core.models import GroupId, GroupSnapshot, Identifier, ReconcileReport
from groupwarden.core.ports import GroupDirectoryPort
from groupwarden.core.timeouts import SleepFn, call_with_timeout
from groupwarden.identity.resolver import is_bot_admin


class PendingRequestReconciler:
    """Periodically approves outstanding join requests.

    Groups where the bot is not an admin are skipped silently. One failed
    approval is logged and the sweep moves on.
    """

    def __init__(
        self,
        directory: GroupDirectoryPort,
        *,
        enabled: bool = False,
        interval_s: float = 300.0,
        approve_pacing_s: float = 1.0,
        initial_delay_s: float = 5.0,
        call_timeout_s: float = 20.0,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._directory = directory
        self.enabled = enabled
        self.interval_s = interval_s
        self.approve_pacing_s = approve_pacing_s
        self.initial_delay_s = initial_delay_s
        self._call_timeout_s = call_timeout_s
        self._sleep = sleep
        self._listing_supported = True

    async def sweep(self) -> ReconcileReport:
        report = ReconcileReport()
        if not self.enabled:
            logger.debug("Auto-accept disabled, skipping pending request sweep")
            return report

        bot = await self._call(self._directory.bot_identity(), "bot identity")
        groups = await self._call(self._directory.list_participating_groups(), "participating groups")
        for snapshot in groups:
            if not is_bot_admin(snapshot, bot):
                logger.debug("Not admin in {}, skipping", snapshot.group_id)
                report.groups_skipped += 1
                continue
            report.groups_checked += 1
            pending = await self._pending_requests(snapshot)
            if not pending:
                logger.debug("No pending requests in {}", snapshot.group_id)
                continue
            logger.info("Processing {} pending requests in {}", len(pending), snapshot.group_id)
            await self._approve_all(snapshot.group_id, pending, report)

        logger.info(
            "Pending request sweep: {} groups checked, {} skipped, {} approved, {} failed",
            report.groups_checked,
            report.groups_skipped,
            len(report.approved),
            len(report.failed),
        )
        return report

    async def run_forever(self, stop: asyncio.Event) -> None:
        """Sweep every ``interval_s`` until ``stop`` is set."""
        if await self._wait(stop, self.initial_delay_s):
            return
        while not stop.is_set():
            try:
                await self.sweep()
            except Exception as e:
                logger.error("Pending request sweep failed: {}", e)
            if await self._wait(stop, self.interval_s):
                return

    async def _pending_requests(self, snapshot: GroupSnapshot) -> list[Identifier]:
        group_id = snapshot.group_id
        if self._listing_supported:
            try:
                listed = await self._call(self._directory.list_pending_join_requests(group_id), "pending requests")
            except CapabilityUnsupportedError:
                logger.info("Directory has no pending-request listing; using group metadata only")
                self._listing_supported = False
            except DirectoryError as e:
                logger.debug("Pending request listing failed for {}: {}", group_id, e)
            else:
                if listed:
                    return list(listed)

        if snapshot.pending_requests:
            return list(snapshot.pending_requests)
        try:
            fresh = await self._call(self._directory.fetch_group_snapshot(group_id), "group snapshot")
        except DirectoryError as e:
            logger.debug("Metadata read failed for {}: {}", group_id, e)
            return []
        return list(fresh.pending_requests)

    async def _approve_all(self, group_id: GroupId, pending: list[Identifier], report: ReconcileReport) -> None:
        for index, identifier in enumerate(pending):
            if index > 0:
                await self._sleep(self.approve_pacing_s)
            try:
                results = await self._call(
                    self._directory.approve_join_requests(group_id, [identifier]),
                    "approve request",
                )
            except DirectoryError as e:
                logger.error("Failed to approve {} in {}: {}", identifier, group_id, e)
                report.failed.append((group_id, identifier, str(e)))
                continue

            status = results[0].status if results else 200
            if status == 200:
                logger.info("Auto-approved pending request from {} in {}", identifier, group_id)
                report.approved.append((group_id, identifier))
            else:
                logger.error("Failed to approve {} in {}: status {}", identifier, group_id, status)
                report.failed.append((group_id, identifier, f"status {status}"))

    async def _call(self, awaitable, label: str):
        return await call_with_timeout(awaitable, self._call_timeout_s, label=label)

    @staticmethod
    async def _wait(stop: asyncio.Event, timeout_s: float) -> bool:
        """Wait up to ``timeout_s``; True when ``stop`` fired."""
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(stop.wait(), timeout=timeout_s)
        return stop.is_set()

