"""Deployment session state machine.

Every event goes through one method that validates the current phase,
performs the adapter work and persists the session after each transition.
Adapter exceptions are converted into the ``domain.errors`` taxonomy and
recorded on the session; only ``InvalidTransition`` reaches callers.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol

from domain import (
    PUSHABLE_PHASES,
    SCENARIO_SELECTABLE_PHASES,
    STATUS_CHECK_PHASES,
    AuthenticationFailure,
    CleanupStatus,
    CleanupStepFailure,
    DeploymentError,
    DiscoveryTimeout,
    InvalidTransition,
    JobRetryFailure,
    JobSlotName,
    JobTrigger,
    MergeFailure,
    MergeOutcome,
    NoRepositoryState,
    PostVerificationChoice,
    PublishFailure,
    PublishState,
    Scenario,
    SessionPhase,
    is_authentication_error,
    is_valid_transition,
)
from domain.completion import can_finish, test_phase_settled
from models import (
    CleanupState,
    CleanupStepResult,
    DeploymentSession,
    JobRef,
    JobSlot,
    JobSnapshot,
    MergeResult,
    PublishResult,
    SessionFailure,
    utc_now,
)
from services.branch_lifecycle import BranchLifecycleManager, ChangePublisher
from services.commit_message import build_commit_message
from services.credentials import CredentialBroker
from services.git_publisher import CommitOutcome
from services.job_discovery import HEAD_SENTINEL, JobDirectory, JobDiscoveryEngine, Sleep
from services.job_polling import PollingSlots


logger = logging.getLogger("runtime-push.coordinator")

_AWAITING_PHASE = {
    JobSlotName.TEST: SessionPhase.AWAITING_JOB,
    JobSlotName.MERGE: SessionPhase.MERGE_PUBLISHING,
}
_POLLING_PHASE = {
    JobSlotName.TEST: SessionPhase.POLLING,
    JobSlotName.MERGE: SessionPhase.MERGE_POLLING,
}
_TEST_RETRY_PHASES = frozenset(
    {
        SessionPhase.AWAITING_JOB,
        SessionPhase.TERMINAL,
        SessionPhase.AWAITING_POST_VERIFICATION_CHOICE,
    }
)
_POST_VERIFICATION_PHASES = _TEST_RETRY_PHASES
_CLEANUP_PHASES = frozenset(
    {
        SessionPhase.MERGE_TERMINAL,
        SessionPhase.MANUAL_MERGE_ACCEPTED,
        SessionPhase.CLEANUP_FAILED,
    }
)


class SessionStore(Protocol):
    async def save(self, session: DeploymentSession) -> DeploymentSession: ...


class DeploymentCoordinator:
    def __init__(
        self,
        session: DeploymentSession,
        *,
        publisher: ChangePublisher,
        directory: JobDirectory,
        discovery: JobDiscoveryEngine,
        slots: PollingSlots,
        lifecycle: BranchLifecycleManager,
        credentials: CredentialBroker,
        repository: Optional[SessionStore] = None,
        retry_settle_seconds: float = 3.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.session = session
        self.publisher = publisher
        self.directory = directory
        self.discovery = discovery
        self.slots = slots
        self.lifecycle = lifecycle
        self.credentials = credentials
        self.repository = repository
        self.retry_settle_seconds = retry_settle_seconds
        self._sleep = sleep
        self._closed = False

    # ------------------------------------------------------------------ #
    # Read-only projection helpers
    # ------------------------------------------------------------------ #

    def can_finish(self) -> bool:
        return can_finish(self.session)

    @property
    def tracked_branch(self) -> Optional[str]:
        session = self.session
        if session.post_verification_choice == PostVerificationChoice.MERGE_TO_TARGET:
            return session.merge_job.branch or session.target_branch
        return session.test_job.branch or session.working_branch

    @property
    def tracked_job(self) -> Optional[JobRef]:
        session = self.session
        if session.post_verification_choice == PostVerificationChoice.MERGE_TO_TARGET:
            return session.merge_job.ref
        return session.test_job.ref

    def console_url(self) -> Optional[str]:
        branch = self.tracked_branch
        if not branch:
            return None
        return self.directory.console_url(branch)

    @property
    def cleanup_offered(self) -> bool:
        return self.session.cleanup.offered and self.session.cleanup.status in {
            CleanupStatus.NOT_STARTED,
            CleanupStatus.FAILED,
        }

    # ------------------------------------------------------------------ #
    # Scenario selection and reset
    # ------------------------------------------------------------------ #

    async def select_scenario(self, scenario: Scenario) -> DeploymentSession:
        if self.session.phase not in SCENARIO_SELECTABLE_PHASES:
            raise InvalidTransition(
                "Scenario can only be changed before publishing starts.",
                current=self.session.phase.value,
            )
        self.slots.cancel_all()
        self.session = self.session.reset()
        self.session.scenario = scenario
        self._transition(SessionPhase.MODE_SELECTED)
        logger.info("Session %s scenario=%s", self.session.session_id, scenario.value)
        return await self._save()

    async def reset(self) -> DeploymentSession:
        self.slots.cancel_all()
        self.session = self.session.reset()
        logger.info("Session %s reset", self.session.session_id)
        return await self._save()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Stop polling for good; work still in flight neither subscribes nor persists afterwards."""
        self._closed = True
        self.slots.cancel_all()

    # ------------------------------------------------------------------ #
    # Publish
    # ------------------------------------------------------------------ #

    def validate_push(self) -> None:
        if self.session.scenario is None:
            raise InvalidTransition("Select a deployment scenario first.")
        if self.session.phase not in PUSHABLE_PHASES:
            raise InvalidTransition(
                f"Cannot push while the session is {self.session.phase.value}.",
                current=self.session.phase.value,
            )

    async def push(self) -> DeploymentSession:
        self.validate_push()
        session = self.session
        # A commit made by an attempt whose push failed still has to be published.
        unpushed = session.publish.commit_id if session.publish.state == PublishState.FAILED else None
        self.slots.cancel(JobSlotName.TEST)
        self._transition(SessionPhase.PUBLISHING)
        session.failure = None
        session.publish = PublishResult(state=PublishState.PENDING)
        session.no_deployment_changes = False
        session.test_job = JobSlot()
        await self._save()

        outcome: Optional[CommitOutcome] = None
        try:
            branch = await self._prepare_working_branch()
            message = session.commit_message or build_commit_message()
            outcome = await self.publisher.stage_and_commit(message)
            if outcome.no_changes and unpushed:
                outcome = CommitOutcome(commit_id=unpushed, changed=True)
            if outcome.changed or session.scenario == Scenario.TEST_BRANCH:
                credentials = await self.credentials.resolve()
                await self.publisher.push(branch, credentials)
        except Exception as exc:  # pylint: disable=broad-except
            await self._publish_failed(exc, outcome.commit_id if outcome is not None else unpushed)
            return self.session

        session.publish = PublishResult(
            state=PublishState.PUBLISHED,
            commit_id=outcome.commit_id,
            changed=outcome.changed,
        )
        session.test_job = JobSlot(branch=branch)

        if outcome.no_changes:
            if session.scenario == Scenario.TEST_BRANCH:
                session.no_deployment_changes = True
                session.test_job.status_message = "No deployment changes; branch pushed without a build."
                self._transition(SessionPhase.TERMINAL)
                await self._save()
                return self.session
            self._transition(SessionPhase.NO_CHANGES_CHECK)
            await self._save()
            await self._refresh_latest_job(JobSlotName.TEST)
            if self.session.phase == SessionPhase.NO_CHANGES_CHECK:
                self._transition(SessionPhase.AWAITING_JOB)
                await self._save()
            return self.session

        self._transition(SessionPhase.AWAITING_JOB)
        await self._save()
        await self._discover_and_track(
            JobSlotName.TEST,
            outcome.commit_id or HEAD_SENTINEL,
            branch,
            session.scenario or Scenario.DIRECT_TO_TARGET,
        )
        return self.session

    async def _prepare_working_branch(self) -> str:
        session = self.session
        if session.scenario == Scenario.DIRECT_TO_TARGET:
            session.working_branch = session.target_branch
            return session.target_branch
        if session.working_branch_created and session.working_branch:
            # Publishing again after a failure reuses the branch already created.
            await self.publisher.checkout(session.working_branch)
            return session.working_branch
        branch = await self.lifecycle.create_ephemeral(session.identity)
        session.working_branch = branch
        session.working_branch_created = True
        await self._save()
        return branch

    async def _publish_failed(self, exc: Exception, commit_id: Optional[str] = None) -> None:
        error: DeploymentError
        if isinstance(exc, (AuthenticationFailure, NoRepositoryState, PublishFailure)):
            error = exc
        elif is_authentication_error(exc):
            error = AuthenticationFailure("Authentication failed. Please check your credentials.")
        else:
            error = PublishFailure(str(exc))

        if isinstance(error, AuthenticationFailure):
            self.credentials.invalidate()
        logger.warning(
            "Publish failed for session %s (%s): %s",
            self.session.session_id,
            error.kind.value,
            error.message,
        )
        self.session.publish = PublishResult(
            state=PublishState.FAILED,
            commit_id=commit_id,
            reason=error.message,
        )
        self._record_failure(error)
        self._transition(SessionPhase.PUBLISH_FAILED)
        await self._save()

    # ------------------------------------------------------------------ #
    # Job tracking
    # ------------------------------------------------------------------ #

    async def _discover_and_track(
        self, slot_name: JobSlotName, commit_id: str, branch: str, scenario: Scenario
    ) -> None:
        slot = self.session.slot(slot_name)
        slot.branch = branch
        slot.checking = True
        slot.check_error = None
        slot.status_message = "Looking for deployment job..."
        await self._save()

        try:
            snapshot = await self.discovery.discover(commit_id, branch, scenario)
        except Exception as exc:  # pylint: disable=broad-except
            error = exc if isinstance(exc, DiscoveryTimeout) else DiscoveryTimeout(str(exc))
            if not isinstance(exc, DiscoveryTimeout):
                logger.exception("Unexpected discovery failure on %s", branch)
            slot = self.session.slot(slot_name)
            slot.checking = False
            slot.check_error = error.message
            slot.status_message = None
            self._record_failure(error)
            if slot_name == JobSlotName.MERGE:
                self._transition(SessionPhase.MERGE_TERMINAL)
            await self._save()
            return

        slot = self.session.slot(slot_name)
        slot.checking = False
        await self._track(slot_name, snapshot)

    async def _track(self, slot_name: JobSlotName, snapshot: JobSnapshot) -> None:
        slot = self.session.slot(slot_name)
        slot.job = snapshot
        slot.check_error = None
        slot.status_message = f"Job {snapshot.job_id}: {snapshot.status.value}"
        self._transition(_POLLING_PHASE[slot_name])
        if snapshot.is_terminal:
            await self._job_finished(slot_name, snapshot)
            return
        await self._save()
        if self._closed:
            logger.info("Session %s closed; not polling job %s", self.session.session_id, snapshot.job_id)
            return
        self.slots.start(slot_name, snapshot.job_id, slot.branch or "", self._update_handler(slot_name))

    def _update_handler(self, slot_name: JobSlotName):
        async def on_update(snapshot: JobSnapshot) -> None:
            if self._closed:
                return
            slot = self.session.slot(slot_name)
            if slot.job is not None and slot.job.job_id != snapshot.job_id:
                return
            slot.job = snapshot
            slot.status_message = f"Job {snapshot.job_id}: {snapshot.status.value}"
            if snapshot.is_terminal:
                await self._job_finished(slot_name, snapshot)
            else:
                await self._save()

        return on_update

    async def _job_finished(self, slot_name: JobSlotName, snapshot: JobSnapshot) -> None:
        slot = self.session.slot(slot_name)
        # A retry has resolved; the job it replaced is no longer the retry offer.
        slot.last_terminal_job = None
        if self.session.phase == _POLLING_PHASE[slot_name]:
            if slot_name == JobSlotName.MERGE:
                self._transition(SessionPhase.MERGE_TERMINAL)
            elif self.session.scenario == Scenario.TEST_BRANCH:
                self._transition(SessionPhase.AWAITING_POST_VERIFICATION_CHOICE)
            else:
                self._transition(SessionPhase.TERMINAL)
        logger.info(
            "Session %s %s job %s finished with %s",
            self.session.session_id,
            slot_name.value,
            snapshot.job_id,
            snapshot.status.value,
        )
        await self._save()

    def _enter_awaiting(self, slot_name: JobSlotName) -> None:
        target = _AWAITING_PHASE[slot_name]
        if self.session.phase != target:
            self._transition(target)

    async def _refresh_latest_job(self, slot_name: JobSlotName) -> None:
        slot = self.session.slot(slot_name)
        branch = slot.branch
        slot.checking = True
        slot.check_error = None
        slot.status_message = "Checking deployment status..."
        await self._save()

        try:
            latest = await self.discovery.latest_job(branch or "")
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Failed to check job status on %s: %s", branch, exc)
            slot = self.session.slot(slot_name)
            slot.checking = False
            slot.check_error = f"Failed to check job status: {exc}"
            slot.status_message = None
            await self._save()
            return

        slot = self.session.slot(slot_name)
        slot.checking = False
        if latest is None:
            slot.status_message = "No deployment jobs found for this branch."
            await self._save()
            return
        if not latest.is_terminal:
            self._enter_awaiting(slot_name)
            await self._track(slot_name, latest)
            return
        if latest.status.is_retryable:
            slot.last_terminal_job = latest
        slot.status_message = f"Last job {latest.job_id}: {latest.status.value}"
        await self._save()

    def validate_status_check(self) -> JobSlotName:
        session = self.session
        if session.phase not in STATUS_CHECK_PHASES:
            raise InvalidTransition(
                f"Job status cannot be checked while the session is {session.phase.value}.",
                current=session.phase.value,
            )
        slot_name = JobSlotName.MERGE if session.phase == SessionPhase.MERGE_TERMINAL else JobSlotName.TEST
        slot = session.slot(slot_name)
        if slot.checking:
            raise InvalidTransition("A job lookup is already running.")
        if not slot.branch:
            raise InvalidTransition("No branch has been published yet.")
        return slot_name

    async def check_job_status(self) -> DeploymentSession:
        """Look at the newest job on the tracked branch and act on it."""
        slot_name = self.validate_status_check()
        self.session.failure = None
        await self._refresh_latest_job(slot_name)
        if self.session.phase == SessionPhase.NO_CHANGES_CHECK:
            self._transition(SessionPhase.AWAITING_JOB)
            await self._save()
        return self.session

    # ------------------------------------------------------------------ #
    # Retry
    # ------------------------------------------------------------------ #

    def validate_retry(self, job_id: str) -> JobSlotName:
        session = self.session
        for slot_name in (JobSlotName.MERGE, JobSlotName.TEST):
            slot = session.slot(slot_name)
            if slot.retry_candidate(job_id) is None:
                continue
            allowed = (
                session.phase == SessionPhase.MERGE_TERMINAL
                if slot_name == JobSlotName.MERGE
                else session.phase in _TEST_RETRY_PHASES
            )
            if not allowed:
                break
            if slot.checking:
                raise InvalidTransition("A job lookup is already running.")
            return slot_name
        raise InvalidTransition(
            f"Job {job_id} is not a finished job that can be retried.",
            current=session.phase.value,
        )

    async def retry_job(self, job_id: str) -> DeploymentSession:
        slot_name = self.validate_retry(job_id)
        slot = self.session.slot(slot_name)
        branch = slot.branch or ""
        self.session.failure = None

        try:
            started = await self.directory.start_job(branch, JobTrigger.RETRY, job_id)
        except Exception as exc:  # pylint: disable=broad-except
            error = JobRetryFailure(f"Failed to retry job: {exc}")
            logger.warning("Retry of job %s on %s failed: %s", job_id, branch, exc)
            slot.check_error = error.message
            self._record_failure(error)
            await self._save()
            return self.session

        logger.info("Retrying job %s on %s as %s", job_id, branch, started.job_id)
        self.slots.cancel(slot_name)
        slot.job = None
        slot.check_error = None
        slot.checking = True
        slot.status_message = "Starting deployment job..."
        self._enter_awaiting(slot_name)
        await self._save()

        await self._sleep(self.retry_settle_seconds)
        await self._discover_and_track(
            slot_name,
            started.commit_id or HEAD_SENTINEL,
            branch,
            Scenario.DIRECT_TO_TARGET,
        )
        return self.session

    # ------------------------------------------------------------------ #
    # Post verification and merge-back
    # ------------------------------------------------------------------ #

    def validate_post_verification(self) -> None:
        session = self.session
        if session.scenario != Scenario.TEST_BRANCH:
            raise InvalidTransition("Post verification only applies to test branch deployments.")
        if session.post_verification_choice is not None:
            raise InvalidTransition("A post verification choice was already made.")
        if session.phase not in _POST_VERIFICATION_PHASES or not test_phase_settled(session):
            raise InvalidTransition(
                "The test branch job has not finished yet.",
                current=session.phase.value,
            )

    async def choose_post_verification(self, choice: PostVerificationChoice) -> DeploymentSession:
        self.validate_post_verification()
        self.slots.cancel(JobSlotName.TEST)
        self.session.post_verification_choice = choice
        if choice == PostVerificationChoice.MANUAL_MERGE:
            self._transition(SessionPhase.MANUAL_MERGE_ACCEPTED)
            logger.info("Session %s: operator will merge manually", self.session.session_id)
            return await self._save()
        await self._merge_to_target()
        return self.session

    def validate_merge_retry(self) -> None:
        session = self.session
        if (
            session.phase != SessionPhase.MERGE_TERMINAL
            or session.merge_result is None
            or session.merge_result.outcome != MergeOutcome.FAILED
        ):
            raise InvalidTransition("There is no failed merge to retry.", current=session.phase.value)

    async def retry_merge(self) -> DeploymentSession:
        self.validate_merge_retry()
        await self._merge_to_target()
        return self.session

    async def _merge_to_target(self) -> None:
        session = self.session
        target = session.target_branch
        self._transition(SessionPhase.MERGE_PUBLISHING)
        session.failure = None
        session.merge_loading = True
        session.merge_result = None
        session.merge_job = JobSlot(branch=target)
        await self._save()

        def progress(message: str) -> None:
            self.session.merge_job.status_message = message

        try:
            credentials = await self.credentials.resolve()
            result = await self.lifecycle.merge_back(
                session.working_branch or "",
                target,
                session.commit_message or build_commit_message(),
                credentials,
                progress=progress,
            )
        except Exception as exc:  # pylint: disable=broad-except
            error: DeploymentError
            if isinstance(exc, AuthenticationFailure) or is_authentication_error(exc):
                self.credentials.invalidate()
                error = AuthenticationFailure("Authentication failed. Please check your credentials.")
            elif isinstance(exc, MergeFailure):
                error = exc
            else:
                logger.exception("Unexpected merge failure for session %s", session.session_id)
                error = MergeFailure(f"Failed to merge: {exc}")
            result = MergeResult(outcome=MergeOutcome.FAILED, reason=error.message)
            self._record_failure(error)

        self.session.merge_loading = False
        self.session.merge_result = result
        self.session.merge_job.status_message = None
        if result.outcome != MergeOutcome.PUBLISHED:
            self._transition(SessionPhase.MERGE_TERMINAL)
            await self._save()
            return

        await self._save()
        await self._discover_and_track(
            JobSlotName.MERGE,
            result.commit_id or HEAD_SENTINEL,
            target,
            Scenario.DIRECT_TO_TARGET,
        )

    # ------------------------------------------------------------------ #
    # Cleanup
    # ------------------------------------------------------------------ #

    async def request_cleanup(self) -> CleanupState:
        session = self.session
        if not session.uses_ephemeral_branch:
            raise InvalidTransition("Only test branch deployments leave a branch to clean up.")
        if session.cleanup.status in {CleanupStatus.IN_PROGRESS, CleanupStatus.DONE}:
            raise InvalidTransition(f"Cleanup is already {session.cleanup.status.value}.")
        if not self.can_finish():
            raise InvalidTransition("Cleanup is offered once the deployment can be finished.")
        session.cleanup.offered = True
        await self._save()
        return session.cleanup

    def validate_cleanup(self, delete: bool) -> None:
        cleanup = self.session.cleanup
        if not cleanup.offered:
            raise InvalidTransition("Cleanup has not been offered.")
        if cleanup.status in {CleanupStatus.IN_PROGRESS, CleanupStatus.DONE}:
            raise InvalidTransition(f"Cleanup is already {cleanup.status.value}.")
        if delete and self.session.phase not in _CLEANUP_PHASES:
            raise InvalidTransition(
                f"Cleanup cannot start while the session is {self.session.phase.value}.",
                current=self.session.phase.value,
            )

    async def confirm_cleanup(self, delete: bool) -> CleanupState:
        self.validate_cleanup(delete)
        session = self.session
        if not delete:
            session.cleanup.status = CleanupStatus.DECLINED
            session.cleanup.offered = False
            logger.info("Session %s keeps test branch %s", session.session_id, session.working_branch)
            await self._save()
            return session.cleanup

        branch = session.working_branch or ""
        self._transition(SessionPhase.CLEANUP_IN_PROGRESS)
        session.failure = None
        session.cleanup = CleanupState(status=CleanupStatus.IN_PROGRESS, offered=True)
        await self._save()

        try:
            credentials = await self.credentials.resolve()
        except AuthenticationFailure as exc:
            session.cleanup.status = CleanupStatus.FAILED
            session.cleanup.reason = exc.message
            self._record_failure(exc)
            self._transition(SessionPhase.CLEANUP_FAILED)
            await self._save()
            return session.cleanup

        result = await self.lifecycle.teardown(branch, session.target_branch, credentials)
        session.cleanup.steps = list(result.steps)
        failed: Optional[CleanupStepResult] = result.failed_step
        if failed is None:
            session.cleanup.status = CleanupStatus.DONE
            session.cleanup.current_step = None
            self._transition(SessionPhase.CLEANUP_DONE)
            logger.info("Session %s removed test branch %s", session.session_id, branch)
        else:
            error = CleanupStepFailure(failed.step.value, failed.message)
            if is_authentication_error(error):
                self.credentials.invalidate()
            session.cleanup.status = CleanupStatus.FAILED
            session.cleanup.current_step = failed.step
            session.cleanup.reason = failed.message
            self._record_failure(error)
            self._transition(SessionPhase.CLEANUP_FAILED)
        await self._save()
        return session.cleanup

    # ------------------------------------------------------------------ #
    # Restore
    # ------------------------------------------------------------------ #

    async def resume(self) -> DeploymentSession:
        """Bring a session restored from storage back to a consistent state.

        Work that was in flight when the process stopped is marked as failed
        so the operator can retry it; tracked jobs that were still running
        get a fresh polling subscription.
        """
        session = self.session
        phase = session.phase
        if phase == SessionPhase.PUBLISHING:
            session.publish = PublishResult(state=PublishState.FAILED, reason="Publishing was interrupted.")
            self._record_failure(PublishFailure("Publishing was interrupted."))
            self._transition(SessionPhase.PUBLISH_FAILED)
        elif phase == SessionPhase.MERGE_PUBLISHING:
            session.merge_loading = False
            if session.merge_result is None:
                session.merge_result = MergeResult(
                    outcome=MergeOutcome.FAILED, reason="Merge was interrupted."
                )
            self._transition(SessionPhase.MERGE_TERMINAL)
        elif phase == SessionPhase.CLEANUP_IN_PROGRESS:
            session.cleanup.status = CleanupStatus.FAILED
            session.cleanup.reason = "Cleanup was interrupted."
            self._transition(SessionPhase.CLEANUP_FAILED)
        elif phase == SessionPhase.NO_CHANGES_CHECK:
            self._transition(SessionPhase.AWAITING_JOB)

        for slot_name in (JobSlotName.TEST, JobSlotName.MERGE):
            slot = session.slot(slot_name)
            if slot.checking:
                slot.checking = False
                slot.check_error = "Job lookup was interrupted; check the job status again."
                slot.status_message = None
            if (
                slot.job_pending
                and slot.branch
                and session.phase == _POLLING_PHASE[slot_name]
            ):
                logger.info("Resuming polling of job %s on %s", slot.job.job_id, slot.branch)
                self.slots.start(slot_name, slot.job.job_id, slot.branch, self._update_handler(slot_name))

        return await self._save()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _transition(self, new_phase: SessionPhase) -> None:
        current = self.session.phase
        if not is_valid_transition(current, new_phase):
            raise InvalidTransition(
                f"invalid phase transition from {current.value} to {new_phase.value}",
                current=current.value,
            )
        self.session.phase = new_phase
        logger.debug("Session %s: %s -> %s", self.session.session_id, current.value, new_phase.value)

    def _record_failure(self, error: DeploymentError) -> None:
        self.session.failure = SessionFailure(
            kind=error.kind,
            phase=self.session.phase,
            message=error.message,
        )

    async def _save(self) -> DeploymentSession:
        self.session.updated_at = utc_now()
        if self.repository is not None and not self._closed:
            await self.repository.save(self.session)
        return self.session
