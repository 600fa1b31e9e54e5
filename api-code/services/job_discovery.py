"""Bounded search for the CI job that belongs to a freshly pushed commit.

The CI system needs a moment to notice a push, so each attempt waits before
listing jobs: attempt ``n`` sleeps ``n * delay_step`` seconds first. Freshly
created test branches may not be connected to the CI app yet; those are
registered (and a release job kicked off, best effort) before the search.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Protocol

from domain import DiscoveryTimeout, JobTrigger, Scenario
from models import JobSnapshot, JobSummary


logger = logging.getLogger("runtime-push.discovery")

HEAD_SENTINEL = "HEAD"

Sleep = Callable[[float], Awaitable[None]]


class JobDirectory(Protocol):
    async def list_jobs(self, branch: str, commit_id: Optional[str] = None) -> List[JobSummary]: ...

    async def get_job(self, branch: str, job_id: str) -> JobSnapshot: ...

    async def start_job(
        self, branch: str, trigger: JobTrigger, base_job_id: Optional[str] = None
    ) -> JobSnapshot: ...

    async def branch_exists(self, branch: str) -> bool: ...

    async def create_branch_registration(self, branch: str, description: Optional[str] = None) -> None: ...

    async def delete_branch_registration(self, branch: str) -> bool: ...

    def console_url(self, branch: str) -> str: ...


def select_job(
    jobs: List[JobSummary], commit_id: str, *, accept_latest: bool
) -> Optional[JobSummary]:
    """Exact commit match, then the HEAD sentinel, then (optionally) the newest job."""
    for job in jobs:
        if job.commit_id == commit_id:
            return job
    for job in jobs:
        if job.commit_id == HEAD_SENTINEL:
            return job
    if accept_latest and jobs:
        return jobs[0]
    return None


class JobDiscoveryEngine:
    def __init__(
        self,
        directory: JobDirectory,
        *,
        attempts: int = 3,
        delay_step_seconds: float = 5.0,
        branch_settle_seconds: float = 5.0,
        branch_created_delay_seconds: float = 3.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.directory = directory
        self.attempts = max(1, attempts)
        self.delay_step_seconds = delay_step_seconds
        self.branch_settle_seconds = branch_settle_seconds
        self.branch_created_delay_seconds = branch_created_delay_seconds
        self._sleep = sleep

    async def discover(self, commit_id: str, branch: str, scenario: Scenario) -> JobSnapshot:
        is_test_branch = scenario == Scenario.TEST_BRANCH
        if is_test_branch:
            await self._ensure_branch_registered(branch)

        for attempt in range(1, self.attempts + 1):
            final = attempt == self.attempts
            await self._sleep(self.delay_step_seconds * attempt)
            try:
                jobs = await self.directory.list_jobs(branch)
                match = select_job(jobs, commit_id, accept_latest=is_test_branch)
                if match is not None:
                    snapshot = await self.directory.get_job(branch, match.job_id)
                    logger.info(
                        "Discovered job %s for commit=%s branch=%s on attempt %d",
                        snapshot.job_id,
                        commit_id,
                        branch,
                        attempt,
                    )
                    return snapshot
            except Exception as exc:  # pylint: disable=broad-except
                if final:
                    raise DiscoveryTimeout(str(exc)) from exc
                logger.warning(
                    "Job lookup attempt %d/%d failed for branch=%s: %s",
                    attempt,
                    self.attempts,
                    branch,
                    exc,
                )
                continue
            logger.info(
                "No job yet for commit=%s branch=%s (attempt %d/%d)",
                commit_id,
                branch,
                attempt,
                self.attempts,
            )

        raise DiscoveryTimeout("No Amplify job found for this commit")

    async def latest_job(self, branch: str) -> Optional[JobSnapshot]:
        """Fetch the newest job on ``branch``; None when the branch has no jobs."""
        jobs = await self.directory.list_jobs(branch)
        if not jobs:
            return None
        return await self.directory.get_job(branch, jobs[0].job_id)

    async def _ensure_branch_registered(self, branch: str) -> None:
        await self._sleep(self.branch_settle_seconds)
        try:
            if await self.directory.branch_exists(branch):
                return
            await self.directory.create_branch_registration(
                branch,
                f"Test branch created on {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
            )
            try:
                await self.directory.start_job(branch, JobTrigger.RELEASE)
            except Exception as exc:  # pylint: disable=broad-except
                logger.warning("Failed to manually start job on %s: %s", branch, exc)
            await self._sleep(self.branch_created_delay_seconds)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Error verifying/connecting branch %s: %s", branch, exc)
