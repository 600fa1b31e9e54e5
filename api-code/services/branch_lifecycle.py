"""Ephemeral test branches: creation, merge-back into the target, teardown.

Teardown is an ordered sequence (CI registration, remote branch, restore the
target checkout, local branch). It stops at the first failing step and
reports every step attempted so far; resources that are already gone count as
deleted so an operator can simply re-run it.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Callable, Optional, Protocol

from domain import AuthenticationFailure, CleanupStep, MergeFailure, MergeOutcome, TEARDOWN_SEQUENCE
from models import CleanupStepResult, MergeResult, TeardownResult
from services.credentials import GitCredentials
from services.git_publisher import CommitOutcome


logger = logging.getLogger("runtime-push.branches")

_UNSAFE_NAME_CHARS = re.compile(r"[^a-z0-9-]+")

Progress = Callable[[str], None]


class ChangePublisher(Protocol):
    async def changed_files(self) -> list[str]: ...

    async def stage_and_commit(self, message: str) -> CommitOutcome: ...

    async def push(self, branch: str, credentials: Optional[GitCredentials]) -> None: ...

    async def current_commit(self) -> str: ...

    async def create_branch(self, name: str) -> None: ...

    async def checkout(self, branch: str) -> None: ...

    async def merge(self, source_branch: str) -> None: ...

    async def remote_commit(self, branch: str) -> Optional[str]: ...

    async def delete_remote_branch(self, branch: str, credentials: Optional[GitCredentials]) -> bool: ...

    async def delete_local_branch(self, branch: str) -> bool: ...


class BranchRegistry(Protocol):
    async def delete_branch_registration(self, branch: str) -> bool: ...


def sanitize_identity(identity: Optional[str]) -> str:
    cleaned = _UNSAFE_NAME_CHARS.sub("-", (identity or "").strip().lower()).strip("-")
    return cleaned or "user"


class BranchLifecycleManager:
    def __init__(
        self,
        publisher: ChangePublisher,
        registry: BranchRegistry,
        *,
        prefix: str = "test",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.publisher = publisher
        self.registry = registry
        self.prefix = prefix.strip("-") or "test"
        self._clock = clock

    def generate_name(self, identity: Optional[str]) -> str:
        return f"{self.prefix}-{sanitize_identity(identity)}-{int(self._clock())}"

    async def create_ephemeral(self, identity: Optional[str]) -> str:
        name = self.generate_name(identity)
        await self.publisher.create_branch(name)
        await self.publisher.checkout(name)
        logger.info("Created test branch %s", name)
        return name

    async def merge_back(
        self,
        ephemeral_branch: str,
        target_branch: str,
        commit_message: str,
        credentials: Optional[GitCredentials],
        *,
        progress: Optional[Progress] = None,
    ) -> MergeResult:
        """Merge the test branch into ``target_branch`` and publish the result.

        The target is only reported as ``MergeOutcome.NO_CHANGES`` when its
        HEAD did not move and matches the last known remote head, so a merge
        whose push failed earlier is pushed again. Any other failure raises
        MergeFailure; AuthenticationFailure propagates untouched.
        """
        notify = progress or (lambda _message: None)
        try:
            notify(f"Checking out {target_branch}...")
            await self.publisher.checkout(target_branch)
            before = await self.publisher.current_commit()

            notify(f"Merging {ephemeral_branch} into {target_branch}...")
            await self.publisher.merge(ephemeral_branch)
            await self.publisher.stage_and_commit(commit_message)
            after = await self.publisher.current_commit()
            published = await self.publisher.remote_commit(target_branch)
            if after == before and published in (None, after):
                logger.info("Merging %s into %s produced no changes", ephemeral_branch, target_branch)
                return MergeResult(outcome=MergeOutcome.NO_CHANGES, reason="No changes to merge")

            notify(f"Pushing to {target_branch}...")
            await self.publisher.push(target_branch, credentials)
        except AuthenticationFailure:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Merge of %s into %s failed: %s", ephemeral_branch, target_branch, exc)
            raise MergeFailure(f"Failed to merge: {exc}") from exc

        logger.info("Merged %s into %s at %s", ephemeral_branch, target_branch, after)
        return MergeResult(outcome=MergeOutcome.PUBLISHED, commit_id=after)

    async def teardown(
        self,
        branch: str,
        restore_to: str,
        credentials: Optional[GitCredentials],
    ) -> TeardownResult:
        if branch == restore_to:
            raise ValueError("Refusing to delete the branch that would be restored.")

        result = TeardownResult(branch=branch)
        for step in TEARDOWN_SEQUENCE:
            try:
                removed = await self._run_step(step, branch, restore_to, credentials)
            except Exception as exc:  # pylint: disable=broad-except
                logger.warning("Cleanup step %s failed for %s: %s", step.value, branch, exc)
                result.steps.append(CleanupStepResult(step=step, succeeded=False, message=str(exc)))
                return result
            result.steps.append(
                CleanupStepResult(
                    step=step,
                    succeeded=True,
                    already_absent=not removed,
                    message="already absent" if not removed else "ok",
                )
            )
        logger.info("Removed test branch %s and restored %s", branch, restore_to)
        return result

    async def _run_step(
        self,
        step: CleanupStep,
        branch: str,
        restore_to: str,
        credentials: Optional[GitCredentials],
    ) -> bool:
        if step == CleanupStep.DELETE_REGISTRATION:
            return await self.registry.delete_branch_registration(branch)
        if step == CleanupStep.DELETE_REMOTE_BRANCH:
            return await self.publisher.delete_remote_branch(branch, credentials)
        if step == CleanupStep.RESTORE_TARGET_BRANCH:
            await self.publisher.checkout(restore_to)
            return True
        return await self.publisher.delete_local_branch(branch)
