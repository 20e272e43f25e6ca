"""
governance_engines.escalation -- When reminders and escalations are due.

Responsibility:
    Timing predicates for the sweepers: request escalation before a
    deadline, playbook reminders before a due date, and playbook escalation
    after it.

Architecture position:
    Engines -- pure calculation layer, zero I/O. ``now`` comes from the caller.

Invariants enforced:
    - Request escalation fires at ``deadline - escalation_hours`` or later,
      and only for a PENDING request that has not been escalated.
    - Each playbook reminder offset fires at most once.
    - Playbook escalation fires at most once, ``escalation_days`` after due.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from governance_kernel.domain.approval import (
    ApprovalPolicy,
    ApprovalStatus,
    ExtendedApprovalRequest,
)
from governance_kernel.domain.playbook import PlaybookInstance, PlaybookStatus


def escalation_threshold(deadline: datetime, escalation_hours: int) -> datetime:
    return deadline - timedelta(hours=escalation_hours)


def is_due_for_escalation(
    request: ExtendedApprovalRequest,
    policy: ApprovalPolicy,
    now: datetime,
) -> bool:
    if request.status != ApprovalStatus.PENDING or request.escalated_at is not None:
        return False
    return now >= escalation_threshold(request.deadline, policy.escalation_hours)


def is_past_deadline(request: ExtendedApprovalRequest, now: datetime) -> bool:
    return request.status == ApprovalStatus.PENDING and now > request.deadline


def due_reminders(instance: PlaybookInstance, now: datetime) -> tuple[int, ...]:
    """Reminder offsets (days before due) that are due now and not yet sent.

    Reminders stop once the due date has passed; escalation takes over.
    """
    if instance.status != PlaybookStatus.ACTIVE or now >= instance.due_date:
        return ()
    due = [
        days for days in sorted(set(instance.reminder_days), reverse=True)
        if days not in instance.reminders_sent
        and now >= instance.due_date - timedelta(days=days)
    ]
    return tuple(due)


def is_due_for_playbook_escalation(instance: PlaybookInstance, now: datetime) -> bool:
    if instance.status != PlaybookStatus.ACTIVE or instance.escalated_at is not None:
        return False
    if instance.escalation_days is None:
        return False
    return now >= instance.due_date + timedelta(days=instance.escalation_days)


def is_overdue(instance: PlaybookInstance, now: datetime) -> bool:
    return instance.status == PlaybookStatus.ACTIVE and instance.due_date < now
