"""Completion gate: decides when the operator may finish a deployment session.

The gate is a pure function of the session document so it can be evaluated
for restored sessions and in API projections without touching any adapter.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .session_states import (
    IN_FLIGHT_PHASES,
    MergeOutcome,
    PostVerificationChoice,
    PublishState,
    Scenario,
)

if TYPE_CHECKING:  # pragma: no cover
    from models.session import DeploymentSession


def test_phase_settled(session: "DeploymentSession") -> bool:
    """True once the test branch job no longer needs watching."""
    slot = session.test_job
    if slot.checking:
        return False
    if session.no_deployment_changes:
        return True
    if slot.job is not None:
        return slot.job.is_terminal
    # Discovery gave up: advisory only, the operator decides what to do next.
    return bool(slot.check_error)


def can_finish(session: "DeploymentSession") -> bool:
    if session.scenario is None or session.phase in IN_FLIGHT_PHASES:
        return False

    if session.scenario == Scenario.DIRECT_TO_TARGET:
        if session.publish.state not in {PublishState.PUBLISHED, PublishState.FAILED}:
            return False
        return not session.test_job.job_pending

    if not test_phase_settled(session):
        return False
    choice = session.post_verification_choice
    if choice is None:
        return False
    if choice == PostVerificationChoice.MANUAL_MERGE:
        return True

    if session.merge_loading or session.merge_result is None:
        return False
    if session.merge_result.outcome in {MergeOutcome.NO_CHANGES, MergeOutcome.FAILED}:
        return True
    return not session.merge_job.job_pending
