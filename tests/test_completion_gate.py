from __future__ import annotations

import unittest

from fakes import make_session

from domain import (
    JobStatus,
    MergeOutcome,
    PostVerificationChoice,
    PublishState,
    Scenario,
    SessionPhase,
)
from domain.completion import can_finish
from models import JobSnapshot, MergeResult, PublishResult


def _job(status: JobStatus, job_id: str = "j1") -> JobSnapshot:
    return JobSnapshot(job_id=job_id, commit_id="abc123", status=status)


class DirectToTargetGateTest(unittest.TestCase):
    def setUp(self) -> None:
        self.session = make_session(scenario=Scenario.DIRECT_TO_TARGET, phase=SessionPhase.POLLING)

    def test_blocked_until_publish_settles(self) -> None:
        self.session.publish = PublishResult(state=PublishState.PENDING)
        self.assertFalse(can_finish(self.session))

        self.session.phase = SessionPhase.PUBLISHING
        self.session.publish = PublishResult(state=PublishState.PUBLISHED, commit_id="abc123")
        self.assertFalse(can_finish(self.session))

    def test_blocked_while_tracked_job_runs(self) -> None:
        self.session.publish = PublishResult(state=PublishState.PUBLISHED, commit_id="abc123")
        self.session.test_job.job = _job(JobStatus.RUNNING)
        self.assertFalse(can_finish(self.session))

        self.session.test_job.job = _job(JobStatus.SUCCEEDED)
        self.session.phase = SessionPhase.TERMINAL
        self.assertTrue(can_finish(self.session))

    def test_publish_without_tracked_job_is_finishable(self) -> None:
        self.session.phase = SessionPhase.AWAITING_JOB
        self.session.publish = PublishResult(state=PublishState.PUBLISHED, commit_id="abc123")
        self.session.test_job.check_error = "No Amplify job found for this commit"
        self.assertTrue(can_finish(self.session))

    def test_failed_publish_is_finishable(self) -> None:
        self.session.phase = SessionPhase.PUBLISH_FAILED
        self.session.publish = PublishResult(state=PublishState.FAILED, reason="rejected")
        self.assertTrue(can_finish(self.session))

    def test_no_scenario_is_never_finishable(self) -> None:
        session = make_session()
        session.publish = PublishResult(state=PublishState.PUBLISHED)
        self.assertFalse(can_finish(session))


class TestBranchGateTest(unittest.TestCase):
    def setUp(self) -> None:
        self.session = make_session(
            scenario=Scenario.TEST_BRANCH,
            phase=SessionPhase.AWAITING_POST_VERIFICATION_CHOICE,
            working_branch="test-alice-1700000000",
            publish=PublishResult(state=PublishState.PUBLISHED, commit_id="abc123"),
        )

    def test_requires_a_post_verification_choice(self) -> None:
        for status in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED, JobStatus.RUNNING):
            self.session.test_job.job = _job(status)
            self.assertFalse(can_finish(self.session), status)

        self.session.test_job.job = _job(JobStatus.SUCCEEDED)
        self.session.post_verification_choice = PostVerificationChoice.MANUAL_MERGE
        self.session.phase = SessionPhase.MANUAL_MERGE_ACCEPTED
        self.assertTrue(can_finish(self.session))

    def test_no_deployment_changes_settles_the_test_phase(self) -> None:
        self.session.phase = SessionPhase.MANUAL_MERGE_ACCEPTED
        self.session.no_deployment_changes = True
        self.session.post_verification_choice = PostVerificationChoice.MANUAL_MERGE
        self.assertTrue(can_finish(self.session))

    def test_test_job_lookup_in_progress_blocks(self) -> None:
        self.session.post_verification_choice = PostVerificationChoice.MANUAL_MERGE
        self.session.test_job.checking = True
        self.assertFalse(can_finish(self.session))

    def test_merge_to_target_waits_for_merge_job(self) -> None:
        self.session.test_job.job = _job(JobStatus.SUCCEEDED)
        self.session.post_verification_choice = PostVerificationChoice.MERGE_TO_TARGET
        self.session.phase = SessionPhase.MERGE_PUBLISHING
        self.session.merge_loading = True
        self.assertFalse(can_finish(self.session))

        self.session.merge_loading = False
        self.session.phase = SessionPhase.MERGE_POLLING
        self.session.merge_result = MergeResult(outcome=MergeOutcome.PUBLISHED, commit_id="m1")
        self.session.merge_job.job = _job(JobStatus.RUNNING, "j2")
        self.assertFalse(can_finish(self.session))

        self.session.merge_job.job = _job(JobStatus.SUCCEEDED, "j2")
        self.session.phase = SessionPhase.MERGE_TERMINAL
        self.assertTrue(can_finish(self.session))

    def test_merge_without_changes_or_with_error_is_finishable(self) -> None:
        self.session.test_job.job = _job(JobStatus.SUCCEEDED)
        self.session.post_verification_choice = PostVerificationChoice.MERGE_TO_TARGET
        self.session.phase = SessionPhase.MERGE_TERMINAL
        for outcome in (MergeOutcome.NO_CHANGES, MergeOutcome.FAILED):
            self.session.merge_result = MergeResult(outcome=outcome)
            self.assertTrue(can_finish(self.session), outcome)

    def test_cleanup_in_progress_blocks(self) -> None:
        self.session.test_job.job = _job(JobStatus.SUCCEEDED)
        self.session.post_verification_choice = PostVerificationChoice.MANUAL_MERGE
        self.session.phase = SessionPhase.CLEANUP_IN_PROGRESS
        self.assertFalse(can_finish(self.session))

        self.session.phase = SessionPhase.CLEANUP_FAILED
        self.assertTrue(can_finish(self.session))


if __name__ == "__main__":
    unittest.main()
