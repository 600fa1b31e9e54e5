from .session import (
    CleanupState,
    CleanupStepResult,
    DeploymentSession,
    JobRef,
    JobSlot,
    JobSnapshot,
    JobSummary,
    MergeResult,
    PublishResult,
    SessionFailure,
    TeardownResult,
    utc_now,
)

__all__ = [
    "CleanupState",
    "CleanupStepResult",
    "DeploymentSession",
    "JobRef",
    "JobSlot",
    "JobSnapshot",
    "JobSummary",
    "MergeResult",
    "PublishResult",
    "SessionFailure",
    "TeardownResult",
    "utc_now",
]
