from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from domain.errors import ErrorKind
from domain.job_states import JobStatus
from domain.session_states import (
    CleanupStatus,
    CleanupStep,
    JobSlotName,
    MergeOutcome,
    PostVerificationChoice,
    PublishState,
    Scenario,
    SessionPhase,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MongoModel(BaseModel):
    """Base Pydantic model with sensible defaults for MongoDB documents."""

    model_config = {"populate_by_name": True}


class JobSummary(BaseModel):
    job_id: str
    commit_id: str = ""
    status: JobStatus = JobStatus.PENDING
    commit_message: str = ""


class JobSnapshot(BaseModel):
    """Immutable view of a CI job as returned by the job directory."""

    model_config = {"frozen": True}

    job_id: str
    commit_id: str = ""
    status: JobStatus = JobStatus.PENDING
    commit_message: str = ""
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class JobRef(BaseModel):
    model_config = {"frozen": True}

    job_id: str
    branch: str


class JobSlot(BaseModel):
    """Tracked job plus the last terminal job seen for one logical phase."""

    branch: Optional[str] = None
    job: Optional[JobSnapshot] = None
    last_terminal_job: Optional[JobSnapshot] = None
    check_error: Optional[str] = None
    checking: bool = False
    status_message: Optional[str] = None

    @property
    def ref(self) -> Optional[JobRef]:
        if self.job is None or not self.branch:
            return None
        return JobRef(job_id=self.job.job_id, branch=self.branch)

    @property
    def job_terminal(self) -> bool:
        return self.job is not None and self.job.is_terminal

    @property
    def job_pending(self) -> bool:
        return self.job is not None and not self.job.is_terminal

    def retry_candidate(self, job_id: str) -> Optional[JobSnapshot]:
        for candidate in (self.last_terminal_job, self.job):
            if candidate is not None and candidate.job_id == job_id and candidate.status.is_retryable:
                return candidate
        return None


class PublishResult(BaseModel):
    state: PublishState = PublishState.UNSET
    commit_id: Optional[str] = None
    changed: bool = False
    reason: Optional[str] = None


class MergeResult(BaseModel):
    outcome: MergeOutcome
    commit_id: Optional[str] = None
    reason: Optional[str] = None


class CleanupStepResult(BaseModel):
    step: CleanupStep
    succeeded: bool
    message: str = ""
    already_absent: bool = False


class TeardownResult(BaseModel):
    branch: str
    steps: List[CleanupStepResult] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return bool(self.steps) and all(step.succeeded for step in self.steps)

    @property
    def failed_step(self) -> Optional[CleanupStepResult]:
        for step in self.steps:
            if not step.succeeded:
                return step
        return None


class CleanupState(BaseModel):
    status: CleanupStatus = CleanupStatus.NOT_STARTED
    offered: bool = False
    current_step: Optional[CleanupStep] = None
    steps: List[CleanupStepResult] = Field(default_factory=list)
    reason: Optional[str] = None


class SessionFailure(BaseModel):
    kind: ErrorKind
    phase: SessionPhase
    message: str
    occurred_at: datetime = Field(default_factory=utc_now)


class DeploymentSession(MongoModel):
    session_id: str = Field(..., alias="_id", description="Primary identifier (UUID).")
    app_id: Optional[str] = Field(default=None, description="CI application the branch belongs to.")
    region: Optional[str] = Field(default=None, description="Region of the CI application.")
    repo_path: Optional[str] = Field(default=None, description="Working copy of the cloned repository.")
    target_branch: str = Field(..., description="Branch the operator ultimately wants deployed.")
    identity: str = Field(default="user", description="Operator identity used in test branch names.")
    commit_message: Optional[str] = Field(default=None, description="Message used for published commits.")

    scenario: Optional[Scenario] = None
    phase: SessionPhase = SessionPhase.IDLE
    working_branch: Optional[str] = None
    working_branch_created: bool = False
    publish: PublishResult = Field(default_factory=PublishResult)
    no_deployment_changes: bool = False
    test_job: JobSlot = Field(default_factory=JobSlot)

    post_verification_choice: Optional[PostVerificationChoice] = None
    merge_result: Optional[MergeResult] = None
    merge_loading: bool = False
    merge_job: JobSlot = Field(default_factory=JobSlot)

    cleanup: CleanupState = Field(default_factory=CleanupState)
    failure: Optional[SessionFailure] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def slot(self, name: JobSlotName) -> JobSlot:
        return self.merge_job if name == JobSlotName.MERGE else self.test_job

    @property
    def uses_ephemeral_branch(self) -> bool:
        return (
            self.scenario == Scenario.TEST_BRANCH
            and bool(self.working_branch)
            and self.working_branch != self.target_branch
        )

    def reset(self) -> "DeploymentSession":
        """Return a fresh session bound to the same upstream identity."""
        return DeploymentSession(
            _id=self.session_id,
            app_id=self.app_id,
            region=self.region,
            repo_path=self.repo_path,
            target_branch=self.target_branch,
            identity=self.identity,
            commit_message=self.commit_message,
            created_at=self.created_at,
        )

    def to_mongo(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def from_mongo(cls, document: dict[str, Any]) -> "DeploymentSession":
        if not document:
            raise ValueError("Mongo document is empty; cannot build DeploymentSession.")
        data = {**document}
        if "session_id" in data and "_id" not in data:
            data["_id"] = data.pop("session_id")
        return cls.model_validate(data)
