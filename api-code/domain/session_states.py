from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet


class Scenario(str, Enum):
    DIRECT_TO_TARGET = "direct_to_target"
    TEST_BRANCH = "test_branch"


class SessionPhase(str, Enum):
    IDLE = "idle"
    MODE_SELECTED = "mode_selected"
    PUBLISHING = "publishing"
    PUBLISH_FAILED = "publish_failed"
    NO_CHANGES_CHECK = "no_changes_check"
    AWAITING_JOB = "awaiting_job"
    POLLING = "polling"
    TERMINAL = "terminal"
    AWAITING_POST_VERIFICATION_CHOICE = "awaiting_post_verification_choice"
    MERGE_PUBLISHING = "merge_publishing"
    MERGE_POLLING = "merge_polling"
    MERGE_TERMINAL = "merge_terminal"
    MANUAL_MERGE_ACCEPTED = "manual_merge_accepted"
    CLEANUP_IN_PROGRESS = "cleanup_in_progress"
    CLEANUP_FAILED = "cleanup_failed"
    CLEANUP_DONE = "cleanup_done"


class PublishState(str, Enum):
    UNSET = "unset"
    PENDING = "pending"
    PUBLISHED = "published"
    FAILED = "failed"


class PostVerificationChoice(str, Enum):
    MERGE_TO_TARGET = "merge_to_target"
    MANUAL_MERGE = "manual_merge"


class MergeOutcome(str, Enum):
    PUBLISHED = "published"
    NO_CHANGES = "no_changes"
    FAILED = "failed"


class CleanupStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    FAILED = "failed"
    DECLINED = "declined"


class CleanupStep(str, Enum):
    DELETE_REGISTRATION = "delete_registration"
    DELETE_REMOTE_BRANCH = "delete_remote_branch"
    RESTORE_TARGET_BRANCH = "restore_target_branch"
    DELETE_LOCAL_BRANCH = "delete_local_branch"


TEARDOWN_SEQUENCE: tuple[CleanupStep, ...] = (
    CleanupStep.DELETE_REGISTRATION,
    CleanupStep.DELETE_REMOTE_BRANCH,
    CleanupStep.RESTORE_TARGET_BRANCH,
    CleanupStep.DELETE_LOCAL_BRANCH,
)


class JobSlotName(str, Enum):
    """Logical polling slots; one live subscription per slot."""

    TEST = "test"
    MERGE = "merge"


_P = SessionPhase

ALLOWED_TRANSITIONS: Dict[SessionPhase, FrozenSet[SessionPhase]] = {
    _P.IDLE: frozenset({_P.MODE_SELECTED}),
    _P.MODE_SELECTED: frozenset({_P.MODE_SELECTED, _P.PUBLISHING}),
    _P.PUBLISHING: frozenset(
        {_P.PUBLISH_FAILED, _P.NO_CHANGES_CHECK, _P.AWAITING_JOB, _P.TERMINAL}
    ),
    _P.PUBLISH_FAILED: frozenset({_P.PUBLISHING}),
    _P.NO_CHANGES_CHECK: frozenset({_P.AWAITING_JOB}),
    _P.AWAITING_JOB: frozenset(
        {_P.POLLING, _P.MERGE_PUBLISHING, _P.MANUAL_MERGE_ACCEPTED}
    ),
    _P.POLLING: frozenset({_P.TERMINAL, _P.AWAITING_POST_VERIFICATION_CHOICE}),
    _P.TERMINAL: frozenset(
        {_P.AWAITING_JOB, _P.MERGE_PUBLISHING, _P.MANUAL_MERGE_ACCEPTED}
    ),
    _P.AWAITING_POST_VERIFICATION_CHOICE: frozenset(
        {_P.AWAITING_JOB, _P.MERGE_PUBLISHING, _P.MANUAL_MERGE_ACCEPTED}
    ),
    _P.MERGE_PUBLISHING: frozenset({_P.MERGE_POLLING, _P.MERGE_TERMINAL}),
    _P.MERGE_POLLING: frozenset({_P.MERGE_TERMINAL}),
    _P.MERGE_TERMINAL: frozenset({_P.MERGE_PUBLISHING, _P.CLEANUP_IN_PROGRESS}),
    _P.MANUAL_MERGE_ACCEPTED: frozenset({_P.CLEANUP_IN_PROGRESS}),
    _P.CLEANUP_IN_PROGRESS: frozenset({_P.CLEANUP_DONE, _P.CLEANUP_FAILED}),
    _P.CLEANUP_FAILED: frozenset({_P.CLEANUP_IN_PROGRESS}),
    _P.CLEANUP_DONE: frozenset(),
}

# Phases in which an adapter operation is still running; finishing is blocked.
IN_FLIGHT_PHASES: FrozenSet[SessionPhase] = frozenset(
    {_P.PUBLISHING, _P.MERGE_PUBLISHING, _P.CLEANUP_IN_PROGRESS}
)

SCENARIO_SELECTABLE_PHASES: FrozenSet[SessionPhase] = frozenset({_P.IDLE, _P.MODE_SELECTED})

PUSHABLE_PHASES: FrozenSet[SessionPhase] = frozenset({_P.MODE_SELECTED, _P.PUBLISH_FAILED})

STATUS_CHECK_PHASES: FrozenSet[SessionPhase] = frozenset(
    {
        _P.NO_CHANGES_CHECK,
        _P.AWAITING_JOB,
        _P.TERMINAL,
        _P.AWAITING_POST_VERIFICATION_CHOICE,
        _P.MERGE_TERMINAL,
    }
)


def is_valid_transition(current: SessionPhase, new: SessionPhase) -> bool:
    if new == SessionPhase.IDLE:
        # Reset is always permitted.
        return True
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())
