from __future__ import annotations

import asyncio
import unittest
from typing import Optional

from fakes import (
    BlockingSleep,
    CountingPrompt,
    FakeJobDirectory,
    FakePublisher,
    RecordingSleep,
    RecordingStore,
    make_session,
)

from domain import (
    CleanupStatus,
    CleanupStep,
    ErrorKind,
    InvalidTransition,
    JobSlotName,
    JobStatus,
    JobTrigger,
    MergeOutcome,
    PostVerificationChoice,
    PublishState,
    Scenario,
    SessionPhase,
)
from models import DeploymentSession, JobSnapshot
from services.branch_lifecycle import BranchLifecycleManager
from services.credentials import CredentialBroker, GitCredentials, SettingsCredentialStore
from services.deployment_coordinator import DeploymentCoordinator
from services.git_publisher import CommitOutcome
from services.job_discovery import JobDiscoveryEngine
from services.job_polling import JobPoller, PollingSlots
from settings import Settings


TEST_BRANCH = "test-alice-1700000000"
OPERATOR = GitCredentials(username="alice", secret="ghp_operator")


def build_coordinator(
    session: DeploymentSession,
    publisher: FakePublisher,
    directory: FakeJobDirectory,
    sleep: RecordingSleep,
    *,
    broker: Optional[CredentialBroker] = None,
    store: Optional[RecordingStore] = None,
) -> DeploymentCoordinator:
    return DeploymentCoordinator(
        session,
        publisher=publisher,
        directory=directory,
        discovery=JobDiscoveryEngine(directory, sleep=sleep),
        slots=PollingSlots(JobPoller(directory, sleep=sleep)),
        lifecycle=BranchLifecycleManager(publisher, directory, clock=lambda: 1700000000),
        credentials=broker or CredentialBroker(prompt=CountingPrompt(OPERATOR, OPERATOR, OPERATOR)),
        repository=store,
        sleep=sleep,
    )


class DirectToTargetTest(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:  # noqa: N802
        self.publisher = FakePublisher()
        self.directory = FakeJobDirectory()
        self.sleep = RecordingSleep()
        self.store = RecordingStore()
        self.coordinator = build_coordinator(
            make_session(), self.publisher, self.directory, self.sleep, store=self.store
        )
        await self.coordinator.select_scenario(Scenario.DIRECT_TO_TARGET)

    async def asyncTearDown(self) -> None:  # noqa: N802
        self.coordinator.close()

    async def test_push_discovers_and_polls_until_succeeded(self) -> None:
        self.publisher.commit_outcomes = [CommitOutcome(commit_id="abc123", changed=True)]
        self.directory.add_job("main", "j1", "abc123", JobStatus.RUNNING, JobStatus.SUCCEEDED)
        self.directory.list_script["main"] = [[]]

        session = await self.coordinator.push()

        self.assertEqual(session.phase, SessionPhase.POLLING)
        self.assertEqual(session.publish.state, PublishState.PUBLISHED)
        self.assertEqual(session.test_job.job.job_id, "j1")
        self.assertEqual(self.sleep.calls, [5, 10])
        self.assertFalse(self.coordinator.can_finish())

        await self.coordinator.slots.get(JobSlotName.TEST).wait()

        self.assertEqual(self.coordinator.session.phase, SessionPhase.TERMINAL)
        self.assertEqual(self.coordinator.session.test_job.job.status, JobStatus.SUCCEEDED)
        self.assertTrue(self.coordinator.can_finish())
        self.assertEqual(self.publisher.pushed, [("main", OPERATOR)])
        self.assertEqual(self.store.saved.phase, SessionPhase.TERMINAL)

    async def test_no_changes_checks_previous_job_without_discovery(self) -> None:
        self.directory.add_job("main", "j0", "old999", JobStatus.FAILED)

        session = await self.coordinator.push()

        self.assertIn(SessionPhase.NO_CHANGES_CHECK, self.store.phases)
        self.assertEqual(session.phase, SessionPhase.AWAITING_JOB)
        self.assertEqual(self.sleep.calls, [])
        self.assertEqual(self.publisher.calls_named("push"), [])
        self.assertEqual(session.test_job.last_terminal_job.job_id, "j0")
        self.assertIsNone(session.test_job.job)
        self.assertTrue(self.coordinator.can_finish())

    async def test_no_changes_with_running_job_starts_polling(self) -> None:
        self.directory.add_job("main", "j0", "old999", JobStatus.RUNNING, JobStatus.SUCCEEDED)

        session = await self.coordinator.push()

        self.assertEqual(session.phase, SessionPhase.POLLING)
        await self.coordinator.slots.get(JobSlotName.TEST).wait()
        self.assertEqual(self.coordinator.session.phase, SessionPhase.TERMINAL)

    async def test_retry_keeps_previous_job_until_retry_resolves(self) -> None:
        self.directory.add_job("main", "j0", "old999", JobStatus.FAILED)
        await self.coordinator.push()

        self.directory.started = [JobSnapshot(job_id="j2", commit_id="old999", status=JobStatus.PENDING)]
        self.directory.add_job("main", "j2", "old999", JobStatus.RUNNING, JobStatus.SUCCEEDED)

        session = await self.coordinator.retry_job("j0")

        self.assertEqual(
            self.directory.calls_named("start_job"), [("start_job", "main", JobTrigger.RETRY, "j0")]
        )
        self.assertEqual(self.sleep.calls[:2], [3, 5])
        self.assertEqual(session.phase, SessionPhase.POLLING)
        self.assertEqual(session.test_job.job.job_id, "j2")
        self.assertEqual(session.test_job.last_terminal_job.job_id, "j0")

        await self.coordinator.slots.get(JobSlotName.TEST).wait()

        slot = self.coordinator.session.test_job
        self.assertIsNone(slot.last_terminal_job)
        self.assertEqual(slot.job.status, JobStatus.SUCCEEDED)
        self.assertEqual(self.coordinator.session.phase, SessionPhase.TERMINAL)

    async def test_retry_of_unknown_or_running_job_is_rejected(self) -> None:
        self.publisher.commit_outcomes = [CommitOutcome(commit_id="abc123", changed=True)]
        self.directory.add_job("main", "j1", "abc123", JobStatus.RUNNING)
        await self.coordinator.push()

        with self.assertRaises(InvalidTransition):
            self.coordinator.validate_retry("j1")
        with self.assertRaises(InvalidTransition):
            await self.coordinator.retry_job("nope")

    async def test_failed_retry_start_is_recorded(self) -> None:
        self.directory.add_job("main", "j0", "old999", JobStatus.FAILED)
        await self.coordinator.push()
        self.directory.start_error = RuntimeError("LimitExceededException")

        session = await self.coordinator.retry_job("j0")

        self.assertEqual(session.failure.kind, ErrorKind.JOB_RETRY_FAILURE)
        self.assertIn("LimitExceededException", session.test_job.check_error)
        self.assertEqual(session.test_job.last_terminal_job.job_id, "j0")

    async def test_discovery_timeout_is_advisory(self) -> None:
        self.publisher.commit_outcomes = [CommitOutcome(commit_id="abc123", changed=True)]

        session = await self.coordinator.push()

        self.assertEqual(session.phase, SessionPhase.AWAITING_JOB)
        self.assertEqual(session.failure.kind, ErrorKind.DISCOVERY_TIMEOUT)
        self.assertTrue(session.test_job.check_error)
        self.assertTrue(self.coordinator.can_finish())

    async def test_push_is_rejected_once_publishing_started(self) -> None:
        self.publisher.commit_outcomes = [CommitOutcome(commit_id="abc123", changed=True)]
        self.directory.add_job("main", "j1", "abc123", JobStatus.RUNNING)
        await self.coordinator.push()

        with self.assertRaises(InvalidTransition):
            await self.coordinator.push()
        with self.assertRaises(InvalidTransition):
            await self.coordinator.select_scenario(Scenario.TEST_BRANCH)
        self.assertEqual(self.coordinator.slots.active_count(), 1)

    async def test_reset_cancels_live_polling(self) -> None:
        self.publisher.commit_outcomes = [CommitOutcome(commit_id="abc123", changed=True)]
        self.directory.add_job("main", "j1", "abc123", JobStatus.RUNNING)
        await self.coordinator.push()

        session = await self.coordinator.reset()

        self.assertEqual(session.phase, SessionPhase.IDLE)
        self.assertIsNone(session.scenario)
        self.assertEqual(session.target_branch, "main")
        self.assertEqual(self.coordinator.slots.active_count(), 0)


class AuthenticationRecoveryTest(unittest.IsolatedAsyncioTestCase):
    async def test_rejected_credentials_are_not_reused(self) -> None:
        settings = Settings.model_validate({"GIT_USERNAME": "stored", "GIT_TOKEN": "stale-token"})
        prompt = CountingPrompt(OPERATOR)
        broker = CredentialBroker(SettingsCredentialStore(settings), prompt)
        publisher = FakePublisher()
        directory = FakeJobDirectory()
        sleep = RecordingSleep()
        coordinator = build_coordinator(make_session(), publisher, directory, sleep, broker=broker)
        await coordinator.select_scenario(Scenario.DIRECT_TO_TARGET)

        publisher.commit_outcomes = [CommitOutcome(commit_id="abc123", changed=True)]
        publisher.push_errors = [
            RuntimeError("remote: Invalid username or password.\nfatal: Authentication failed for 'https://example.com/repo.git/'")
        ]
        session = await coordinator.push()

        self.assertEqual(session.phase, SessionPhase.PUBLISH_FAILED)
        self.assertEqual(session.failure.kind, ErrorKind.AUTHENTICATION_FAILURE)
        self.assertEqual(session.publish.state, PublishState.FAILED)
        self.assertIsNone(broker.cached)
        self.assertEqual(prompt.calls, 0)

        directory.add_job("main", "j1", "abc123", JobStatus.SUCCEEDED)
        session = await coordinator.push()

        self.assertEqual(prompt.calls, 1)
        self.assertEqual(publisher.pushed, [("main", OPERATOR)])
        self.assertEqual(session.publish.commit_id, "abc123")
        self.assertEqual(session.phase, SessionPhase.TERMINAL)
        coordinator.close()

    async def test_closing_during_discovery_stops_tracking_and_saving(self) -> None:
        sleep = BlockingSleep()
        store = RecordingStore()
        directory = FakeJobDirectory()
        coordinator = build_coordinator(make_session(), FakePublisher(), directory, sleep, store=store)
        await coordinator.select_scenario(Scenario.DIRECT_TO_TARGET)
        coordinator.publisher.commit_outcomes = [CommitOutcome(commit_id="abc123", changed=True)]
        directory.add_job("main", "j1", "abc123", JobStatus.RUNNING)

        push = asyncio.create_task(coordinator.push())
        while not sleep.calls:
            await asyncio.sleep(0)
        self.assertEqual(coordinator.session.phase, SessionPhase.AWAITING_JOB)
        saves = len(store.phases)

        coordinator.close()
        sleep.release()
        await push

        self.assertTrue(coordinator.closed)
        self.assertEqual(coordinator.slots.active_count(), 0)
        self.assertEqual(len(store.phases), saves)

    async def test_missing_repository_is_reported(self) -> None:
        from domain import NoRepositoryState

        publisher = FakePublisher()
        coordinator = build_coordinator(make_session(), publisher, FakeJobDirectory(), RecordingSleep())
        await coordinator.select_scenario(Scenario.DIRECT_TO_TARGET)

        async def no_repo(message: str) -> CommitOutcome:
            raise NoRepositoryState("No repository path found")

        publisher.stage_and_commit = no_repo  # type: ignore[assignment]
        session = await coordinator.push()

        self.assertEqual(session.failure.kind, ErrorKind.NO_REPOSITORY_STATE)
        self.assertEqual(session.phase, SessionPhase.PUBLISH_FAILED)


class TestBranchScenarioTest(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:  # noqa: N802
        self.publisher = FakePublisher(head="m0")
        self.directory = FakeJobDirectory()
        self.sleep = RecordingSleep()
        self.coordinator = build_coordinator(make_session(), self.publisher, self.directory, self.sleep)
        await self.coordinator.select_scenario(Scenario.TEST_BRANCH)

    async def asyncTearDown(self) -> None:  # noqa: N802
        self.coordinator.close()

    async def _push_and_verify(self) -> None:
        self.publisher.commit_outcomes = [CommitOutcome(commit_id="def456", changed=True)]
        self.directory.add_job(TEST_BRANCH, "t1", "def456", JobStatus.RUNNING, JobStatus.SUCCEEDED)
        await self.coordinator.push()
        await self.coordinator.slots.get(JobSlotName.TEST).wait()

    async def test_merge_to_target_and_cleanup(self) -> None:
        await self._push_and_verify()

        session = self.coordinator.session
        self.assertEqual(session.working_branch, TEST_BRANCH)
        self.assertEqual(session.phase, SessionPhase.AWAITING_POST_VERIFICATION_CHOICE)
        self.assertEqual(
            self.directory.calls_named("create_branch_registration"),
            [("create_branch_registration", TEST_BRANCH)],
        )
        self.assertFalse(self.coordinator.can_finish())

        self.publisher.heads = ["m0", "m1"]
        self.directory.add_job("main", "mj1", "m1", JobStatus.RUNNING, JobStatus.SUCCEEDED)
        session = await self.coordinator.choose_post_verification(PostVerificationChoice.MERGE_TO_TARGET)

        self.assertEqual(session.phase, SessionPhase.MERGE_POLLING)
        self.assertEqual(session.merge_result.outcome, MergeOutcome.PUBLISHED)
        self.assertEqual(session.merge_result.commit_id, "m1")
        self.assertIn(("merge", TEST_BRANCH), self.publisher.calls)
        self.assertFalse(self.coordinator.can_finish())

        await self.coordinator.slots.get(JobSlotName.MERGE).wait()

        self.assertEqual(self.coordinator.session.phase, SessionPhase.MERGE_TERMINAL)
        self.assertTrue(self.coordinator.can_finish())

        cleanup = await self.coordinator.request_cleanup()
        self.assertTrue(cleanup.offered)
        self.assertTrue(self.coordinator.cleanup_offered)

        cleanup = await self.coordinator.confirm_cleanup(True)

        self.assertEqual(cleanup.status, CleanupStatus.DONE)
        self.assertEqual(
            [(step.step, step.succeeded) for step in cleanup.steps],
            [
                (CleanupStep.DELETE_REGISTRATION, True),
                (CleanupStep.DELETE_REMOTE_BRANCH, True),
                (CleanupStep.RESTORE_TARGET_BRANCH, True),
                (CleanupStep.DELETE_LOCAL_BRANCH, True),
            ],
        )
        self.assertEqual(self.coordinator.session.phase, SessionPhase.CLEANUP_DONE)
        with self.assertRaises(InvalidTransition):
            await self.coordinator.confirm_cleanup(True)

    async def test_manual_merge_makes_session_finishable_at_once(self) -> None:
        await self._push_and_verify()
        self.assertFalse(self.coordinator.can_finish())

        session = await self.coordinator.choose_post_verification(PostVerificationChoice.MANUAL_MERGE)

        self.assertEqual(session.phase, SessionPhase.MANUAL_MERGE_ACCEPTED)
        self.assertTrue(self.coordinator.can_finish())
        self.assertEqual(self.publisher.calls_named("merge"), [])

    async def test_post_verification_requires_finished_test_job(self) -> None:
        self.publisher.commit_outcomes = [CommitOutcome(commit_id="def456", changed=True)]
        self.directory.add_job(TEST_BRANCH, "t1", "def456", JobStatus.RUNNING)
        await self.coordinator.push()

        with self.assertRaises(InvalidTransition):
            await self.coordinator.choose_post_verification(PostVerificationChoice.MANUAL_MERGE)
        self.assertIsNone(self.coordinator.session.post_verification_choice)

    async def test_no_changes_still_pushes_branch(self) -> None:
        session = await self.coordinator.push()

        self.assertEqual(session.phase, SessionPhase.TERMINAL)
        self.assertTrue(session.no_deployment_changes)
        self.assertEqual(self.publisher.pushed, [(TEST_BRANCH, OPERATOR)])
        self.assertEqual(self.directory.calls_named("list_jobs"), [])

        await self.coordinator.choose_post_verification(PostVerificationChoice.MANUAL_MERGE)
        self.assertTrue(self.coordinator.can_finish())

    async def test_republish_reuses_created_branch(self) -> None:
        self.publisher.commit_outcomes = [CommitOutcome(commit_id="def456", changed=True)]
        self.publisher.push_errors = [RuntimeError("remote: internal error")]
        session = await self.coordinator.push()
        self.assertEqual(session.failure.kind, ErrorKind.PUBLISH_FAILURE)

        self.directory.add_job(TEST_BRANCH, "t1", "def456", JobStatus.SUCCEEDED)
        session = await self.coordinator.push()

        self.assertEqual(len(self.publisher.calls_named("create_branch")), 1)
        self.assertEqual(session.working_branch, TEST_BRANCH)
        self.assertEqual(session.phase, SessionPhase.AWAITING_POST_VERIFICATION_CHOICE)

    async def test_failed_merge_can_be_retried(self) -> None:
        await self._push_and_verify()
        self.publisher.merge_error = RuntimeError("CONFLICT (content)")

        session = await self.coordinator.choose_post_verification(PostVerificationChoice.MERGE_TO_TARGET)

        self.assertEqual(session.phase, SessionPhase.MERGE_TERMINAL)
        self.assertEqual(session.merge_result.outcome, MergeOutcome.FAILED)
        self.assertEqual(session.failure.kind, ErrorKind.MERGE_FAILURE)
        self.assertTrue(self.coordinator.can_finish())

        self.publisher.merge_error = None
        self.publisher.heads = ["m0", "m0"]
        session = await self.coordinator.retry_merge()

        self.assertEqual(session.merge_result.outcome, MergeOutcome.NO_CHANGES)
        self.assertEqual(session.phase, SessionPhase.MERGE_TERMINAL)
        with self.assertRaises(InvalidTransition):
            await self.coordinator.retry_merge()

    async def test_cleanup_failure_is_retryable_and_not_blocking(self) -> None:
        await self._push_and_verify()
        await self.coordinator.choose_post_verification(PostVerificationChoice.MANUAL_MERGE)
        await self.coordinator.request_cleanup()
        self.publisher.remote_delete_error = RuntimeError("fatal: unable to access 'https://example.com/'")

        cleanup = await self.coordinator.confirm_cleanup(True)

        self.assertEqual(cleanup.status, CleanupStatus.FAILED)
        self.assertEqual(cleanup.current_step, CleanupStep.DELETE_REMOTE_BRANCH)
        self.assertEqual(self.coordinator.session.failure.kind, ErrorKind.CLEANUP_STEP_FAILURE)
        self.assertTrue(self.coordinator.can_finish())

        self.publisher.remote_delete_error = None
        cleanup = await self.coordinator.confirm_cleanup(True)

        self.assertEqual(cleanup.status, CleanupStatus.DONE)
        self.assertTrue(cleanup.steps[0].already_absent)

    async def test_cleanup_can_be_declined(self) -> None:
        await self._push_and_verify()
        await self.coordinator.choose_post_verification(PostVerificationChoice.MANUAL_MERGE)
        await self.coordinator.request_cleanup()

        cleanup = await self.coordinator.confirm_cleanup(False)

        self.assertEqual(cleanup.status, CleanupStatus.DECLINED)
        self.assertEqual(self.publisher.calls_named("delete_remote_branch"), [])
        self.assertTrue(self.coordinator.can_finish())

    async def test_cleanup_not_offered_for_direct_deployments(self) -> None:
        coordinator = build_coordinator(make_session(), FakePublisher(), FakeJobDirectory(), RecordingSleep())
        await coordinator.select_scenario(Scenario.DIRECT_TO_TARGET)

        with self.assertRaises(InvalidTransition):
            await coordinator.request_cleanup()
        with self.assertRaises(InvalidTransition):
            await coordinator.confirm_cleanup(True)


if __name__ == "__main__":
    unittest.main()
