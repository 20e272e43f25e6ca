"""
governance_engines.steps -- Playbook step state machine.

Responsibility:
    Apply one status change to a step snapshot and stamp the fields that go
    with it. Dependency gating and instance-level effects are the caller's.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Only moves listed in ``STEP_TRANSITIONS`` are made.
    - Completing a step that requires approval parks it in PENDING_APPROVAL;
      PENDING_APPROVAL is never requested directly for a step without an
      approval requirement.
    - PENDING_APPROVAL is left only through ``decide_step_approval``:
      approve -> COMPLETED, reject -> back to IN_PROGRESS.
    - ``started_at`` records the first start and is kept across re-entries.

Failure modes:
    - InvalidStateError for any move outside the state machine.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from governance_kernel.domain.playbook import (
    STEP_TRANSITIONS,
    PlaybookStepInstance,
    StepApproval,
    StepApprovalStatus,
    StepStatus,
)
from governance_kernel.domain.principal import Principal
from governance_kernel.exceptions import InvalidStateError


def resolve_target(step: PlaybookStepInstance, requested: StepStatus) -> StepStatus:
    """The status a request for ``requested`` actually leads to."""
    if requested == StepStatus.COMPLETED and step.requires_approval:
        return StepStatus.PENDING_APPROVAL
    return requested


def _invalid(step: PlaybookStepInstance, attempted: str) -> InvalidStateError:
    return InvalidStateError("PlaybookStep", step.step_id, step.status.value, attempted)


def transition_step(
    step: PlaybookStepInstance,
    requested: StepStatus,
    actor_id: str,
    now: datetime,
    *,
    completion_comment: str | None = None,
    actual_minutes: int | None = None,
    blocked_reason: str | None = None,
) -> PlaybookStepInstance:
    """Move ``step`` towards ``requested`` and return the new snapshot."""
    target = resolve_target(step, requested)
    if target not in STEP_TRANSITIONS[step.status]:
        raise _invalid(step, f"move to {requested.value}")
    if target == StepStatus.PENDING_APPROVAL and not step.requires_approval:
        raise _invalid(step, "request approval for")

    cleared = {"blocked_reason": None, "blocked_since": None}

    if target == StepStatus.IN_PROGRESS:
        return replace(step, status=target, started_at=step.started_at or now, **cleared)

    if target == StepStatus.NOT_STARTED:
        return replace(step, status=target, **cleared)

    if target == StepStatus.BLOCKED:
        return replace(
            step,
            status=target,
            blocked_reason=blocked_reason,
            blocked_since=now,
        )

    if target == StepStatus.PENDING_APPROVAL:
        return replace(
            step,
            status=target,
            completed_by=actor_id,
            completion_comment=completion_comment,
            actual_minutes=actual_minutes,
            approval=StepApproval(status=StepApprovalStatus.PENDING),
        )

    if target == StepStatus.COMPLETED:
        return replace(
            step,
            status=target,
            completed_at=now,
            completed_by=actor_id,
            completion_comment=completion_comment,
            actual_minutes=actual_minutes,
        )

    # SKIPPED
    return replace(
        step,
        status=target,
        completed_by=actor_id,
        completion_comment=completion_comment,
        **cleared,
    )


def decide_step_approval(
    step: PlaybookStepInstance,
    approved: bool,
    approver: Principal,
    now: datetime,
    comment: str | None = None,
) -> PlaybookStepInstance:
    """Resolve a PENDING_APPROVAL step."""
    if step.status != StepStatus.PENDING_APPROVAL:
        raise _invalid(step, "approve" if approved else "reject")

    decision = StepApproval(
        status=StepApprovalStatus.APPROVED if approved else StepApprovalStatus.REJECTED,
        approver_id=approver.principal_id,
        approver_name=approver.display_name,
        decided_at=now,
        comment=comment,
    )
    if approved:
        return replace(step, status=StepStatus.COMPLETED, completed_at=now, approval=decision)
    return replace(step, status=StepStatus.IN_PROGRESS, approval=decision)
