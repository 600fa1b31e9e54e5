from .errors import (
    AuthenticationFailure,
    CleanupStepFailure,
    DeploymentError,
    DiscoveryTimeout,
    ErrorKind,
    InvalidTransition,
    JobRetryFailure,
    MergeFailure,
    NoRepositoryState,
    PublishFailure,
    is_authentication_error,
)
from .job_states import TERMINAL_JOB_STATUSES, JobStatus, JobTrigger
from .session_states import (
    IN_FLIGHT_PHASES,
    PUSHABLE_PHASES,
    SCENARIO_SELECTABLE_PHASES,
    STATUS_CHECK_PHASES,
    TEARDOWN_SEQUENCE,
    CleanupStatus,
    CleanupStep,
    JobSlotName,
    MergeOutcome,
    PostVerificationChoice,
    PublishState,
    Scenario,
    SessionPhase,
    is_valid_transition,
)

__all__ = [
    "AuthenticationFailure",
    "CleanupStatus",
    "CleanupStep",
    "CleanupStepFailure",
    "DeploymentError",
    "DiscoveryTimeout",
    "ErrorKind",
    "IN_FLIGHT_PHASES",
    "InvalidTransition",
    "JobRetryFailure",
    "JobSlotName",
    "JobStatus",
    "JobTrigger",
    "MergeFailure",
    "MergeOutcome",
    "NoRepositoryState",
    "PUSHABLE_PHASES",
    "PostVerificationChoice",
    "PublishFailure",
    "PublishState",
    "SCENARIO_SELECTABLE_PHASES",
    "STATUS_CHECK_PHASES",
    "Scenario",
    "SessionPhase",
    "TEARDOWN_SEQUENCE",
    "TERMINAL_JOB_STATUSES",
    "is_authentication_error",
    "is_valid_transition",
]
