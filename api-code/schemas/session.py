from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from domain import PostVerificationChoice, Scenario, SessionPhase
from models import (
    CleanupState,
    JobRef,
    JobSlot,
    MergeResult,
    PublishResult,
    SessionFailure,
)


class SessionCreateRequest(BaseModel):
    target_branch: str = Field(..., min_length=1, description="Branch the change is ultimately deployed from.")
    repo_path: str = Field(..., min_length=1, description="Working copy holding the prepared changes.")
    app_id: Optional[str] = Field(default=None, description="Amplify app id. Defaults to AMPLIFY_APP_ID.")
    region: Optional[str] = Field(default=None, description="AWS region of the app. Defaults to AWS_REGION.")
    identity: Optional[str] = Field(
        default=None,
        description="Name used in test branch names. Defaults to the signed-in operator.",
    )
    commit_message: Optional[str] = Field(
        default=None,
        description="Commit message. Generated from the runtime details when omitted.",
    )
    target_runtime: Optional[str] = Field(default=None, description="Runtime the functions were updated to.")
    backend_type: Optional[str] = Field(default=None, description="Backend flavour that was rewritten.")


class SessionContextRequest(BaseModel):
    target_branch: str = Field(..., min_length=1)
    repo_path: str = Field(..., min_length=1)
    app_id: Optional[str] = None
    region: Optional[str] = None


class ScenarioRequest(BaseModel):
    scenario: Scenario = Field(..., description="direct_to_target or test_branch.")


class CredentialsRequest(BaseModel):
    username: str = Field(..., min_length=1, description="Git username.")
    secret: str = Field(..., min_length=1, repr=False, description="Personal access token or password.")


class PostVerificationRequest(BaseModel):
    choice: PostVerificationChoice


class CleanupConfirmRequest(BaseModel):
    delete: bool = Field(..., description="True deletes the test branch everywhere; False keeps it.")


class SessionResponse(BaseModel):
    session_id: str = Field(..., description="Deployment session identifier.")
    phase: SessionPhase = Field(..., description="Current state machine phase.")
    scenario: Optional[Scenario] = None
    target_branch: str
    working_branch: Optional[str] = None
    identity: str
    app_id: Optional[str] = None
    region: Optional[str] = None
    publish: PublishResult
    no_deployment_changes: bool = False
    test_job: JobSlot
    post_verification_choice: Optional[PostVerificationChoice] = None
    merge_result: Optional[MergeResult] = None
    merge_loading: bool = False
    merge_job: JobSlot
    cleanup: CleanupState
    failure: Optional[SessionFailure] = None
    can_finish: bool = Field(..., description="True when the Finish action may be enabled.")
    cleanup_offered: bool = Field(default=False, description="True while a cleanup confirmation is pending.")
    tracked_job: Optional[JobRef] = Field(default=None, description="Job the session is currently watching.")
    console_url: Optional[str] = Field(default=None, description="CI console page of the tracked branch.")
    credentials_cached: bool = Field(default=False, description="True when git credentials are resolved.")
    created_at: datetime
    updated_at: datetime


class SessionSummary(BaseModel):
    session_id: str
    phase: SessionPhase
    scenario: Optional[Scenario] = None
    target_branch: str
    working_branch: Optional[str] = None
    can_finish: bool
    updated_at: datetime


class FinishResponse(BaseModel):
    session_id: str
    finished: bool = True
    phase: SessionPhase
