"""
governance_services.playbook_service -- playbook instances and their steps.

Responsibility:
    Instantiates templates into running playbooks, moves steps through the
    step state machine, resolves step approvals, maintains checklists and
    attachments, and controls the instance lifecycle (pause, resume,
    cancel). Step rules live in ``governance_engines.steps``, dependency
    rules in ``governance_engines.dependencies`` and progress in
    ``governance_engines.progress``.

Architecture position:
    Services -- imperative shell over the playbook instance store.

Invariants enforced:
    - Template shape is frozen into each instance at creation.
    - Dependency gating is enforced when a step moves to IN_PROGRESS, not
      only when steps are listed.
    - Steps only move while the instance is DRAFT or ACTIVE.
    - ``progress`` and instance completion are recomputed on every step
      change.
    - Automation triggers fire after the save, once per matching event.

Failure modes:
    - TemplateNotFoundError, InstanceNotFoundError, StepNotFoundError.
    - InvalidStateError for a transition outside the state machines.
    - DependencyNotSatisfiedError with the blocking template step ids.
    - NotAuthorizedError when an approver lacks the step's capability.
    - PayloadTypeMismatchError for a context that does not fit the
      template category.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from uuid import UUID, uuid4

from governance_config.registry import TemplateRegistry
from governance_engines.dependencies import ready_steps, unsatisfied_dependencies
from governance_engines.escalation import is_overdue
from governance_engines.progress import settle_instance
from governance_engines.recurrence import next_occurrence
from governance_engines.steps import decide_step_approval, transition_step
from governance_kernel.domain.clock import Clock
from governance_kernel.domain.notification import (
    NotificationKind,
    NotificationPriority,
    NotificationRequest,
)
from governance_kernel.domain.playbook import (
    OPEN_PLAYBOOK_STATUSES,
    OPEN_STEP_STATUSES,
    PLAYBOOK_TRANSITIONS,
    Attachment,
    ChecklistEntry,
    ContextKind,
    FiscalYearContext,
    GeneralContext,
    NavPeriodContext,
    PlaybookCategory,
    PlaybookContext,
    PlaybookInstance,
    PlaybookStatus,
    PlaybookStepInstance,
    PlaybookStepTemplate,
    PlaybookTemplate,
    ReportingPeriodContext,
    StepStatus,
    TriggerAction,
    TriggerWhen,
    context_kind_for,
)
from governance_kernel.domain.principal import Principal
from governance_kernel.domain.repository import PlaybookInstanceRepository, ScopeFilter
from governance_kernel.exceptions import (
    ChecklistItemNotFoundError,
    DependencyNotSatisfiedError,
    InstanceNotFoundError,
    InvalidStateError,
    NotAuthorizedError,
    PayloadTypeMismatchError,
    StepNotFoundError,
)
from governance_kernel.logging_config import LogContext, get_logger
from governance_services.base import BaseService
from governance_services.notification import NotificationDispatcher, resolve_channels

logger = get_logger("services.playbook")

_ENTITY = "PlaybookInstance"

_TRIGGER_EVENTS = {
    StepStatus.COMPLETED: TriggerWhen.ON_COMPLETE,
    StepStatus.SKIPPED: TriggerWhen.ON_SKIP,
}


def instance_action_url(instance_id: UUID) -> str:
    return f"/playbooks/{instance_id}"


@dataclass(frozen=True)
class UpcomingDeadline:
    instance_id: UUID
    playbook_name: str
    step: PlaybookStepInstance

    @property
    def due_date(self) -> datetime:
        return self.step.due_date


def default_context(category: PlaybookCategory, start: datetime) -> PlaybookContext:
    """Context derived from the start date when the caller gives none."""
    kind = context_kind_for(category)
    if kind == ContextKind.NAV_PERIOD:
        return NavPeriodContext(period=f"{start:%Y-%m}", valuation_date=start.date())
    if kind == ContextKind.REPORTING_PERIOD:
        return ReportingPeriodContext(year=start.year, quarter=(start.month - 1) // 3 + 1)
    if kind == ContextKind.FISCAL_YEAR:
        return FiscalYearContext(fiscal_year=start.year)
    return GeneralContext()


def _instantiate_step(
    instance_id: UUID,
    template: PlaybookTemplate,
    step: PlaybookStepTemplate,
    start: datetime,
) -> PlaybookStepInstance:
    approver_role = step.approver_role
    if step.requires_approval and not approver_role:
        approver_role = template.approver_role
    return PlaybookStepInstance(
        step_id=f"step-{instance_id}-{step.step_id}",
        template_step_id=step.step_id,
        order=step.order,
        name=step.name,
        status=StepStatus.NOT_STARTED,
        due_date=start + timedelta(days=step.due_days_offset),
        depends_on=step.depends_on,
        blocked_by_approval=step.blocked_by_approval,
        requires_approval=step.requires_approval,
        approver_role=approver_role,
        automation_trigger=step.automation_trigger,
        assignee_id=step.default_assignee,
        assignee_name=step.default_assignee,
        checklist=tuple(ChecklistEntry(item=item) for item in step.checklist_items),
    )


def _find_step(instance: PlaybookInstance, step_id: str) -> PlaybookStepInstance:
    """Look a step up by instance step id or by template step id."""
    step = instance.step(step_id) or instance.step_by_template_id(step_id)
    if step is None:
        raise StepNotFoundError(str(instance.instance_id), step_id)
    return step


def _replace_step(
    instance: PlaybookInstance, updated: PlaybookStepInstance
) -> tuple[PlaybookStepInstance, ...]:
    return tuple(updated if s.step_id == updated.step_id else s for s in instance.steps)


def _require_open(instance: PlaybookInstance, attempted: str) -> None:
    if instance.status not in OPEN_PLAYBOOK_STATUSES:
        raise InvalidStateError(
            _ENTITY, str(instance.instance_id), instance.status.value, attempted
        )


class PlaybookService(BaseService[PlaybookInstance]):
    """Playbook instance lifecycle and step workflow."""

    def __init__(
        self,
        store: PlaybookInstanceRepository,
        templates: TemplateRegistry,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(store, clock)
        self._templates = templates
        self._dispatcher = dispatcher or NotificationDispatcher()

    def _not_found(self, entity_id: UUID) -> Exception:
        return InstanceNotFoundError(str(entity_id))

    # ------------------------------------------------------------------
    # Instantiation
    # ------------------------------------------------------------------

    def create_instance(
        self,
        tenant_id: str,
        company_id: str,
        template_id: str,
        owner: Principal,
        created_by: str | None = None,
        start_date: datetime | None = None,
        due_date: datetime | None = None,
        fund_id: str | None = None,
        context: PlaybookContext | None = None,
        tags: tuple[str, ...] = (),
        notes: str | None = None,
    ) -> PlaybookInstance:
        """
        Instantiate ``template_id`` as a DRAFT playbook.

        Step due dates are ``start + due_days_offset`` days; the instance
        due date is ``start + default_due_days`` unless given.

        Raises:
            TemplateNotFoundError: unknown template.
            InvalidStateError: the template is inactive.
            PayloadTypeMismatchError: ``context`` does not fit the category.
        """
        template = self._templates.get_template(template_id)
        if not template.is_active:
            raise InvalidStateError("PlaybookTemplate", template_id, "inactive", "instantiate")

        now = self._clock.now()
        start = start_date or now
        due = due_date or start + timedelta(days=template.default_due_days)

        expected_kind = context_kind_for(template.category)
        if context is None:
            context = default_context(template.category, start)
        elif expected_kind != ContextKind.GENERAL and context.kind != expected_kind:
            raise PayloadTypeMismatchError(
                expected_kind.value,
                context.kind.value,
                f"context for {template.category.value} playbook",
            )

        instance_id = uuid4()
        instance = PlaybookInstance(
            instance_id=instance_id,
            tenant_id=tenant_id,
            company_id=company_id,
            template_id=template.template_id,
            template_name=template.name,
            template_version=template.version,
            category=template.category,
            status=PlaybookStatus.DRAFT,
            progress=0,
            start_date=start,
            due_date=due,
            owner_id=owner.principal_id,
            owner_name=owner.display_name,
            steps=tuple(_instantiate_step(instance_id, template, s, start) for s in template.steps),
            context=context,
            created_by=created_by or owner.principal_id,
            created_at=now,
            updated_at=now,
            fund_id=fund_id,
            last_activity_at=now,
            reminder_days=template.reminder_days,
            escalation_days=template.escalation_days,
            escalation_role=template.approver_role,
            tags=tuple(tags),
            notes=notes,
        )

        with LogContext.bind(tenant_id=tenant_id, instance_id=str(instance_id)):
            saved = self._store.save(instance)
            logger.info(
                "playbook_instance_created",
                extra={
                    "template_id": template.template_id,
                    "template_version": template.version,
                    "step_count": len(saved.steps),
                    "due_date": saved.due_date,
                },
            )
        return saved

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def update_step_status(
        self,
        tenant_id: str,
        instance_id: UUID,
        step_id: str,
        new_status: StepStatus,
        actor: Principal,
        completion_comment: str | None = None,
        actual_minutes: int | None = None,
        blocked_reason: str | None = None,
    ) -> PlaybookInstance:
        """
        Move one step. COMPLETED on an approval-gated step lands in
        PENDING_APPROVAL.

        Raises:
            InstanceNotFoundError, StepNotFoundError, InvalidStateError,
            DependencyNotSatisfiedError.
        """

        def change(current: PlaybookInstance, now: datetime) -> PlaybookInstance:
            _require_open(current, f"update step {step_id} of")
            step = _find_step(current, step_id)
            updated = transition_step(
                step,
                new_status,
                actor.principal_id,
                now,
                completion_comment=completion_comment,
                actual_minutes=actual_minutes,
                blocked_reason=blocked_reason,
            )
            if updated.status == StepStatus.IN_PROGRESS:
                blocking = unsatisfied_dependencies(step, current.steps)
                if blocking:
                    raise DependencyNotSatisfiedError(step.template_step_id, blocking)
            return settle_instance(
                current,
                _replace_step(current, updated),
                now,
                step_started=updated.status == StepStatus.IN_PROGRESS,
            )

        with LogContext.bind(
            tenant_id=tenant_id,
            actor_id=actor.principal_id,
            instance_id=str(instance_id),
        ):
            before, saved = self._mutate(tenant_id, instance_id, change)
            step = _find_step(saved, step_id)
            logger.info(
                "playbook_step_updated",
                extra={
                    "step_id": step.template_step_id,
                    "from_status": _find_step(before, step_id).status.value,
                    "to_status": step.status.value,
                    "progress": saved.progress,
                    "instance_status": saved.status.value,
                },
            )
            self._log_completion(before, saved)

        if step.status == StepStatus.PENDING_APPROVAL:
            self._request_step_approval(saved, step)
        event = _TRIGGER_EVENTS.get(step.status)
        if event is not None:
            self._fire_trigger(saved, step, event)
        return saved

    def approve_step(
        self,
        tenant_id: str,
        instance_id: UUID,
        step_id: str,
        approved: bool,
        approver: Principal,
        comment: str | None = None,
    ) -> PlaybookInstance:
        """
        Resolve a PENDING_APPROVAL step: approval completes it, rejection
        returns it to IN_PROGRESS.

        Raises:
            InstanceNotFoundError, StepNotFoundError, InvalidStateError,
            NotAuthorizedError.
        """

        def change(current: PlaybookInstance, now: datetime) -> PlaybookInstance:
            _require_open(current, f"approve step {step_id} of")
            step = _find_step(current, step_id)
            required = step.approval_capability
            if required is not None and not approver.has_capability(required):
                raise NotAuthorizedError(approver.principal_id, str(required), step.step_id)
            updated = decide_step_approval(step, approved, approver, now, comment)
            return settle_instance(current, _replace_step(current, updated), now)

        with LogContext.bind(
            tenant_id=tenant_id,
            actor_id=approver.principal_id,
            instance_id=str(instance_id),
        ):
            before, saved = self._mutate(tenant_id, instance_id, change)
            step = _find_step(saved, step_id)
            logger.info(
                "playbook_step_approval_decided",
                extra={
                    "step_id": step.template_step_id,
                    "approved": approved,
                    "to_status": step.status.value,
                    "progress": saved.progress,
                },
            )
            self._log_completion(before, saved)

        if approved:
            self._fire_trigger(saved, step, TriggerWhen.ON_APPROVAL)
        return saved

    def update_checklist_item(
        self,
        tenant_id: str,
        instance_id: UUID,
        step_id: str,
        index: int,
        completed: bool,
    ) -> PlaybookInstance:
        def change(current: PlaybookInstance, now: datetime) -> PlaybookInstance:
            _require_open(current, "update checklist of")
            step = _find_step(current, step_id)
            if not 0 <= index < len(step.checklist):
                raise ChecklistItemNotFoundError(
                    str(current.instance_id), step.template_step_id, index
                )
            checklist = list(step.checklist)
            checklist[index] = replace(checklist[index], completed=completed)
            updated = replace(step, checklist=tuple(checklist))
            return replace(
                current,
                steps=_replace_step(current, updated),
                updated_at=now,
                last_activity_at=now,
            )

        with LogContext.bind(tenant_id=tenant_id, instance_id=str(instance_id)):
            _, saved = self._mutate(tenant_id, instance_id, change)
            logger.info(
                "playbook_checklist_updated",
                extra={"step_id": step_id, "index": index, "completed": completed},
            )
        return saved

    def add_attachment(
        self,
        tenant_id: str,
        instance_id: UUID,
        step_id: str,
        name: str,
        url: str,
        uploaded_by: Principal,
    ) -> PlaybookInstance:
        def change(current: PlaybookInstance, now: datetime) -> PlaybookInstance:
            _require_open(current, "attach to")
            step = _find_step(current, step_id)
            attachment = Attachment(
                name=name, url=url, uploaded_by=uploaded_by.principal_id, uploaded_at=now
            )
            updated = replace(step, attachments=step.attachments + (attachment,))
            return replace(
                current,
                steps=_replace_step(current, updated),
                updated_at=now,
                last_activity_at=now,
            )

        with LogContext.bind(
            tenant_id=tenant_id,
            actor_id=uploaded_by.principal_id,
            instance_id=str(instance_id),
        ):
            _, saved = self._mutate(tenant_id, instance_id, change)
            logger.info("playbook_attachment_added", extra={"step_id": step_id, "attachment_name": name})
        return saved

    # ------------------------------------------------------------------
    # Instance lifecycle
    # ------------------------------------------------------------------

    def pause_instance(self, tenant_id: str, instance_id: UUID) -> PlaybookInstance:
        return self._move_instance(
            tenant_id, instance_id, PlaybookStatus.PAUSED, "pause",
            allowed_from=frozenset({PlaybookStatus.ACTIVE}),
        )

    def resume_instance(self, tenant_id: str, instance_id: UUID) -> PlaybookInstance:
        return self._move_instance(
            tenant_id, instance_id, PlaybookStatus.ACTIVE, "resume",
            allowed_from=frozenset({PlaybookStatus.PAUSED}),
        )

    def cancel_instance(
        self,
        tenant_id: str,
        instance_id: UUID,
        reason: str | None = None,
    ) -> PlaybookInstance:
        return self._move_instance(
            tenant_id, instance_id, PlaybookStatus.CANCELLED, "cancel", reason=reason,
        )

    def _move_instance(
        self,
        tenant_id: str,
        instance_id: UUID,
        target: PlaybookStatus,
        attempted: str,
        allowed_from: frozenset[PlaybookStatus] | None = None,
        reason: str | None = None,
    ) -> PlaybookInstance:
        def change(current: PlaybookInstance, now: datetime) -> PlaybookInstance:
            allowed = target in PLAYBOOK_TRANSITIONS[current.status]
            if allowed_from is not None:
                allowed = allowed and current.status in allowed_from
            if not allowed:
                raise InvalidStateError(
                    _ENTITY, str(current.instance_id), current.status.value, attempted
                )
            return replace(
                current,
                status=target,
                cancelled_at=now if target == PlaybookStatus.CANCELLED else current.cancelled_at,
                notes=_append_note(current.notes, reason),
                updated_at=now,
                last_activity_at=now,
            )

        with LogContext.bind(tenant_id=tenant_id, instance_id=str(instance_id)):
            before, saved = self._mutate(tenant_id, instance_id, change)
            logger.info(
                "playbook_instance_status_changed",
                extra={
                    "from_status": before.status.value,
                    "to_status": saved.status.value,
                    "reason": reason,
                },
            )
        return saved

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_instance(self, tenant_id: str, instance_id: UUID) -> PlaybookInstance:
        return self._load(tenant_id, instance_id)

    def list_instances(
        self,
        tenant_id: str,
        company_id: str | None = None,
        owner_id: str | None = None,
        status: PlaybookStatus | None = None,
        category: PlaybookCategory | None = None,
    ) -> list[PlaybookInstance]:
        instances = self._store.query_by_scope(
            ScopeFilter.for_instances(
                tenant_id,
                company_id=company_id,
                owner_id=owner_id,
                statuses=frozenset({status}) if status else None,
                category=category,
            )
        )
        return sorted(instances, key=lambda i: i.due_date)

    def ready_steps(self, tenant_id: str, instance_id: UUID) -> tuple[PlaybookStepInstance, ...]:
        """Steps that could be started now."""
        return ready_steps(self._load(tenant_id, instance_id).steps)

    def overdue_instances(self, tenant_id: str) -> list[PlaybookInstance]:
        now = self._clock.now()
        active = self._store.query_by_scope(
            ScopeFilter.for_instances(
                tenant_id,
                statuses=frozenset({PlaybookStatus.ACTIVE}),
                due_before=now,
            )
        )
        return sorted((i for i in active if is_overdue(i, now)), key=lambda i: i.due_date)

    def upcoming_deadlines(
        self,
        tenant_id: str,
        days_ahead: int = 7,
    ) -> list[UpcomingDeadline]:
        """Open steps of ACTIVE instances due between now and ``days_ahead`` days."""
        now = self._clock.now()
        horizon = now + timedelta(days=days_ahead)
        active = self._store.query_by_scope(
            ScopeFilter.for_instances(tenant_id, statuses=frozenset({PlaybookStatus.ACTIVE}))
        )
        upcoming = [
            UpcomingDeadline(instance.instance_id, instance.name, step)
            for instance in active
            for step in instance.steps
            if step.status in OPEN_STEP_STATUSES and now <= step.due_date <= horizon
        ]
        return sorted(upcoming, key=lambda u: u.due_date)

    def next_occurrence(self, template_id: str, after: date) -> date | None:
        """Next scheduled start of ``template_id`` strictly after ``after``."""
        template = self._templates.get_template(template_id)
        return next_occurrence(template.recurrence, after, template.recurrence_day)

    # ------------------------------------------------------------------
    # Side effects
    # ------------------------------------------------------------------

    def _log_completion(self, before: PlaybookInstance, after: PlaybookInstance) -> None:
        if before.status != PlaybookStatus.COMPLETED and after.status == PlaybookStatus.COMPLETED:
            logger.info(
                "playbook_instance_completed",
                extra={"completed_at": after.completed_at},
            )

    def _request_step_approval(
        self, instance: PlaybookInstance, step: PlaybookStepInstance
    ) -> None:
        recipients = (step.approver_role,) if step.approver_role else (instance.owner_id,)
        self._dispatcher.dispatch(
            NotificationRequest(
                kind=NotificationKind.PLAYBOOK_STEP_APPROVAL,
                tenant_id=instance.tenant_id,
                company_id=instance.company_id,
                recipients=recipients,
                title=f"Approval needed: {step.name}",
                message=f"Step '{step.name}' of {instance.name} awaits approval.",
                priority=NotificationPriority.HIGH,
                action_url=instance_action_url(instance.instance_id),
                action_label="Review step",
                entity_id=str(instance.instance_id),
            )
        )

    def _fire_trigger(
        self,
        instance: PlaybookInstance,
        step: PlaybookStepInstance,
        event: TriggerWhen,
    ) -> None:
        trigger = step.automation_trigger
        if trigger is None or trigger.when != event:
            return
        logger.info(
            "playbook_automation_triggered",
            extra={
                "step_id": step.template_step_id,
                "when": event.value,
                "action": trigger.action.value,
            },
        )
        if trigger.action != TriggerAction.NOTIFY:
            self._dispatcher.run_automation(trigger, instance, step)
            return
        self._dispatcher.dispatch(
            NotificationRequest(
                kind=NotificationKind.PLAYBOOK_AUTOMATION,
                tenant_id=instance.tenant_id,
                company_id=instance.company_id,
                recipients=trigger.recipients,
                title=f"{instance.name}: {step.name}",
                message=trigger.message or f"Step '{step.name}' of {instance.name} is done.",
                channels=resolve_channels(trigger.channels),
                action_url=instance_action_url(instance.instance_id),
                action_label="Open playbook",
                entity_id=str(instance.instance_id),
            )
        )


def _append_note(notes: str | None, reason: str | None) -> str | None:
    if not reason:
        return notes
    return f"{notes}\n{reason}" if notes else reason
