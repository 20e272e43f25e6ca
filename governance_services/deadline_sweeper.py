"""
PlaybookDeadlineSweeper -- reminders and escalation for running playbooks.

For each ACTIVE instance: every template reminder offset ``d`` that has come
due (``now >= due_date - d days``, before the due date) is sent once to the
owner and the assignees of open steps; once ``now >= due_date +
escalation_days`` the instance is escalated once to its escalation role.
Sent offsets and ``escalated_at`` are persisted on the instance, which makes
the sweep idempotent and safe to overlap.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from uuid import UUID

from governance_engines.escalation import due_reminders, is_due_for_playbook_escalation
from governance_kernel.domain.clock import Clock
from governance_kernel.domain.notification import (
    NotificationKind,
    NotificationPriority,
    NotificationRequest,
)
from governance_kernel.domain.playbook import (
    OPEN_STEP_STATUSES,
    PlaybookInstance,
    PlaybookStatus,
)
from governance_kernel.domain.repository import PlaybookInstanceRepository, ScopeFilter
from governance_kernel.exceptions import InstanceNotFoundError
from governance_kernel.logging_config import LogContext, get_logger
from governance_services.base import BaseService
from governance_services.notification import NotificationDispatcher
from governance_services.playbook_service import instance_action_url

logger = get_logger("services.deadlines")


@dataclass(frozen=True)
class DeadlineSweepResult:
    scanned: int
    reminders: tuple[tuple[UUID, int], ...] = ()
    escalated: tuple[UUID, ...] = ()


def _reminder_recipients(instance: PlaybookInstance) -> tuple[str, ...]:
    recipients = [instance.owner_id]
    for step in instance.steps:
        if step.status in OPEN_STEP_STATUSES and step.assignee_id:
            if step.assignee_id not in recipients:
                recipients.append(step.assignee_id)
    return tuple(recipients)


class PlaybookDeadlineSweeper(BaseService[PlaybookInstance]):
    def __init__(
        self,
        store: PlaybookInstanceRepository,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(store, clock)
        self._dispatcher = dispatcher or NotificationDispatcher()

    def _not_found(self, entity_id: UUID) -> Exception:
        return InstanceNotFoundError(str(entity_id))

    def send_reminders_and_escalate(self, tenant_id: str) -> DeadlineSweepResult:
        active = self._store.query_by_scope(
            ScopeFilter.for_instances(tenant_id, statuses=frozenset({PlaybookStatus.ACTIVE}))
        )
        reminders: list[tuple[UUID, int]] = []
        escalated: list[UUID] = []

        with LogContext.bind(tenant_id=tenant_id):
            for instance in active:
                sent = self._send_reminders(tenant_id, instance)
                reminders.extend((instance.instance_id, days) for days in sent)
                if self._escalate(tenant_id, instance):
                    escalated.append(instance.instance_id)

            result = DeadlineSweepResult(
                scanned=len(active),
                reminders=tuple(reminders),
                escalated=tuple(escalated),
            )
            logger.info(
                "deadline_sweep_completed",
                extra={
                    "scanned": result.scanned,
                    "reminder_count": len(result.reminders),
                    "escalated_count": len(result.escalated),
                },
            )
        return result

    def _send_reminders(self, tenant_id: str, instance: PlaybookInstance) -> tuple[int, ...]:
        if not due_reminders(instance, self._clock.now()):
            return ()

        fresh: tuple[int, ...] = ()

        def change(current: PlaybookInstance, now: datetime) -> PlaybookInstance | None:
            nonlocal fresh
            fresh = due_reminders(current, now)
            if not fresh:
                return None
            return replace(current, reminders_sent=current.reminders_sent + fresh, updated_at=now)

        before, after = self._mutate(tenant_id, instance.instance_id, change)
        if after is before:
            return ()

        for days in fresh:
            logger.info(
                "playbook_reminder_sent",
                extra={"instance_id": str(after.instance_id), "days_before_due": days},
            )
        self._dispatcher.dispatch(
            NotificationRequest(
                kind=NotificationKind.PLAYBOOK_REMINDER,
                tenant_id=after.tenant_id,
                company_id=after.company_id,
                recipients=_reminder_recipients(after),
                title=f"Reminder: {after.name}",
                message=(
                    f"{after.name} is due {after.due_date:%Y-%m-%d} "
                    f"and is {after.progress}% complete."
                ),
                action_url=instance_action_url(after.instance_id),
                action_label="Open playbook",
                entity_id=str(after.instance_id),
            )
        )
        return fresh

    def _escalate(self, tenant_id: str, instance: PlaybookInstance) -> bool:
        if not is_due_for_playbook_escalation(instance, self._clock.now()):
            return False

        def change(current: PlaybookInstance, now: datetime) -> PlaybookInstance | None:
            if not is_due_for_playbook_escalation(current, now):
                return None
            return replace(current, escalated_at=now, updated_at=now)

        before, after = self._mutate(tenant_id, instance.instance_id, change)
        if after is before:
            return False

        logger.info(
            "playbook_instance_escalated",
            extra={
                "instance_id": str(after.instance_id),
                "escalation_role": after.escalation_role,
                "due_date": after.due_date,
            },
        )
        recipients = (after.escalation_role,) if after.escalation_role else (after.owner_id,)
        self._dispatcher.dispatch(
            NotificationRequest(
                kind=NotificationKind.PLAYBOOK_ESCALATED,
                tenant_id=after.tenant_id,
                company_id=after.company_id,
                recipients=recipients,
                title=f"Overdue: {after.name}",
                message=(
                    f"{after.name} owned by {after.owner_name} was due "
                    f"{after.due_date:%Y-%m-%d} and is {after.progress}% complete."
                ),
                priority=NotificationPriority.HIGH,
                action_url=instance_action_url(after.instance_id),
                action_label="Open playbook",
                entity_id=str(after.instance_id),
            )
        )
        return True
