from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from domain import JobSlotName
from models import JobSnapshot
from services.job_discovery import JobDirectory, Sleep


logger = logging.getLogger("runtime-push.polling")

UpdateCallback = Callable[[JobSnapshot], Union[None, Awaitable[None]]]


class JobSubscription:
    """Handle for one polling loop; ``cancel`` stops it exactly once."""

    def __init__(self, job_id: str, branch: str) -> None:
        self.job_id = job_id
        self.branch = branch
        self.ticks = 0
        self._task: Optional[asyncio.Task[Any]] = None
        self._closed = False

    @property
    def active(self) -> bool:
        return not self._closed and self._task is not None and not self._task.done()

    def _attach(self, task: asyncio.Task[Any]) -> None:
        self._task = task

    def _close(self) -> None:
        self._closed = True

    def cancel(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        logger.debug("Cancelled polling for job=%s branch=%s", self.job_id, self.branch)

    async def wait(self) -> None:
        """Wait until the loop ends (terminal status or cancellation)."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise


class JobPoller:
    """Refreshes a job on a fixed period until it reaches a terminal status."""

    def __init__(
        self,
        directory: JobDirectory,
        *,
        interval_seconds: float = 10.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.directory = directory
        self.interval_seconds = interval_seconds
        self._sleep = sleep

    def subscribe(self, job_id: str, branch: str, on_update: UpdateCallback) -> JobSubscription:
        subscription = JobSubscription(job_id, branch)
        task = asyncio.create_task(self._run(subscription, on_update))
        subscription._attach(task)
        logger.info("Polling job=%s branch=%s every %ss", job_id, branch, self.interval_seconds)
        return subscription

    async def _run(self, subscription: JobSubscription, on_update: UpdateCallback) -> None:
        try:
            while True:
                await self._sleep(self.interval_seconds)
                try:
                    snapshot = await self.directory.get_job(subscription.branch, subscription.job_id)
                except Exception as exc:  # pylint: disable=broad-except
                    logger.warning(
                        "Failed to update job status job=%s branch=%s: %s",
                        subscription.job_id,
                        subscription.branch,
                        exc,
                    )
                    continue
                subscription.ticks += 1

                try:
                    result = on_update(snapshot)
                    if inspect.isawaitable(result):
                        await result
                except Exception:  # pylint: disable=broad-except
                    logger.exception("Job update handler failed for job=%s", subscription.job_id)

                if snapshot.is_terminal:
                    logger.info(
                        "Job %s reached %s; polling stopped",
                        subscription.job_id,
                        snapshot.status.value,
                    )
                    return
        finally:
            subscription._close()


class PollingSlots:
    """At most one live subscription per logical job slot."""

    def __init__(self, poller: JobPoller) -> None:
        self.poller = poller
        self._subscriptions: Dict[JobSlotName, JobSubscription] = {}

    def start(
        self, slot: JobSlotName, job_id: str, branch: str, on_update: UpdateCallback
    ) -> JobSubscription:
        self.cancel(slot)
        subscription = self.poller.subscribe(job_id, branch, on_update)
        self._subscriptions[slot] = subscription
        return subscription

    def get(self, slot: JobSlotName) -> Optional[JobSubscription]:
        return self._subscriptions.get(slot)

    def cancel(self, slot: JobSlotName) -> None:
        previous = self._subscriptions.pop(slot, None)
        if previous is not None:
            previous.cancel()

    def cancel_all(self) -> None:
        for slot in list(self._subscriptions):
            self.cancel(slot)

    def active_count(self) -> int:
        return sum(1 for sub in self._subscriptions.values() if sub.active)
