from __future__ import annotations

from enum import Enum


class JobStatus(str, Enum):
    """Job status values as reported by the Amplify console API."""

    PENDING = "PENDING"
    PROVISIONING = "PROVISIONING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEED"
    FAILED = "FAILED"
    CANCELLING = "CANCELLING"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_JOB_STATUSES

    @property
    def is_retryable(self) -> bool:
        # Succeeded jobs may be redeployed after out-of-band changes.
        return self in {JobStatus.FAILED, JobStatus.SUCCEEDED}

    @classmethod
    def from_wire(cls, value: object) -> "JobStatus":
        text = str(value or "").strip().upper()
        if text == "SUCCEEDED":
            text = cls.SUCCEEDED.value
        try:
            return cls(text)
        except ValueError:
            return cls.PENDING


TERMINAL_JOB_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED}
)


class JobTrigger(str, Enum):
    RELEASE = "RELEASE"
    RETRY = "RETRY"
    MANUAL = "MANUAL"
