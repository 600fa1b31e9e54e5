from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    AUTHENTICATION_FAILURE = "authentication_failure"
    NO_REPOSITORY_STATE = "no_repository_state"
    PUBLISH_FAILURE = "publish_failure"
    DISCOVERY_TIMEOUT = "discovery_timeout"
    JOB_RETRY_FAILURE = "job_retry_failure"
    MERGE_FAILURE = "merge_failure"
    CLEANUP_STEP_FAILURE = "cleanup_step_failure"
    INVALID_TRANSITION = "invalid_transition"


class DeploymentError(RuntimeError):
    """Base class for failures surfaced by the deployment coordinator."""

    kind: ErrorKind = ErrorKind.PUBLISH_FAILURE

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class AuthenticationFailure(DeploymentError):
    kind = ErrorKind.AUTHENTICATION_FAILURE


class NoRepositoryState(DeploymentError):
    kind = ErrorKind.NO_REPOSITORY_STATE


class PublishFailure(DeploymentError):
    kind = ErrorKind.PUBLISH_FAILURE


class DiscoveryTimeout(DeploymentError):
    kind = ErrorKind.DISCOVERY_TIMEOUT


class JobRetryFailure(DeploymentError):
    kind = ErrorKind.JOB_RETRY_FAILURE


class MergeFailure(DeploymentError):
    kind = ErrorKind.MERGE_FAILURE


class CleanupStepFailure(DeploymentError):
    kind = ErrorKind.CLEANUP_STEP_FAILURE

    def __init__(self, step: str, message: str) -> None:
        self.step = step
        super().__init__(f"{step}: {message}")


class InvalidTransition(DeploymentError):
    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, message: str, *, current: Optional[str] = None) -> None:
        self.current = current
        super().__init__(message)


AUTH_ERROR_MARKERS: tuple[str, ...] = (
    "401",
    "403",
    "authentication failed",
    "invalid username or password",
    "could not read username",
    "could not read password",
    "terminal prompts disabled",
    "invalid git credentials",
)


def is_authentication_error(exc: BaseException) -> bool:
    if isinstance(exc, AuthenticationFailure):
        return True
    text = str(exc).lower()
    stderr = getattr(exc, "stderr", None)
    if isinstance(stderr, str):
        text = f"{text}\n{stderr.lower()}"
    return any(marker in text for marker in AUTH_ERROR_MARKERS)
