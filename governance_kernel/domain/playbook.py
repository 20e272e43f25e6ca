"""
Playbook domain types (``governance_kernel.domain.playbook``).

Responsibility
--------------
Pure value objects for recurring compliance procedures: templates and
their step graphs, running instances, per-step state, and the typed
context an instance is started with.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects. ZERO I/O.

Invariants enforced
-------------------
* Step state machine -- ``STEP_TRANSITIONS`` lists the moves
  ``update_step_status`` may make. PENDING_APPROVAL is left only through
  step approval; COMPLETED and SKIPPED are terminal.
* Frozen template shape -- each ``PlaybookStepInstance`` carries its own
  copy of ``depends_on`` and the approval flags, so a running instance is
  unaffected by later template versions.
* Progress is derived -- ``progress`` is only ever written by the progress
  engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import ClassVar, Union
from uuid import UUID

from governance_kernel.domain.principal import Capability, CapabilityAction


# =========================================================================
# Taxonomy
# =========================================================================


class PlaybookCategory(str, Enum):
    NAV_CALCULATION = "NAV_CALCULATION"
    QUARTERLY_REPORTING = "QUARTERLY_REPORTING"
    ANNUAL_CLOSING = "ANNUAL_CLOSING"
    COMPLIANCE = "COMPLIANCE"
    CLIENT_ONBOARDING = "CLIENT_ONBOARDING"
    AUDIT_PREPARATION = "AUDIT_PREPARATION"
    TAX_DECLARATION = "TAX_DECLARATION"
    FUND_LAUNCH = "FUND_LAUNCH"
    CUSTOM = "CUSTOM"


class RecurrencePattern(str, Enum):
    ONCE = "ONCE"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    SEMI_ANNUAL = "SEMI_ANNUAL"
    ANNUAL = "ANNUAL"


class AssigneeType(str, Enum):
    USER = "user"
    ROLE = "role"
    TEAM = "team"


class TriggerWhen(str, Enum):
    ON_COMPLETE = "on_complete"
    ON_SKIP = "on_skip"
    ON_APPROVAL = "on_approval"


class TriggerAction(str, Enum):
    NOTIFY = "notify"
    CREATE_TASK = "create_task"
    API_CALL = "api_call"
    WEBHOOK = "webhook"


# =========================================================================
# Lifecycles
# =========================================================================


class PlaybookStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


PLAYBOOK_TRANSITIONS: dict[PlaybookStatus, frozenset[PlaybookStatus]] = {
    PlaybookStatus.DRAFT: frozenset({
        PlaybookStatus.ACTIVE,
        PlaybookStatus.COMPLETED,
        PlaybookStatus.CANCELLED,
    }),
    PlaybookStatus.ACTIVE: frozenset({
        PlaybookStatus.PAUSED,
        PlaybookStatus.COMPLETED,
        PlaybookStatus.CANCELLED,
    }),
    PlaybookStatus.PAUSED: frozenset({
        PlaybookStatus.ACTIVE,
        PlaybookStatus.CANCELLED,
    }),
    PlaybookStatus.COMPLETED: frozenset(),
    PlaybookStatus.CANCELLED: frozenset(),
}

# Instance states in which steps may still move.
OPEN_PLAYBOOK_STATUSES: frozenset[PlaybookStatus] = frozenset({
    PlaybookStatus.DRAFT,
    PlaybookStatus.ACTIVE,
})


class StepStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    BLOCKED = "BLOCKED"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"


STEP_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.NOT_STARTED: frozenset({
        StepStatus.IN_PROGRESS,
        StepStatus.BLOCKED,
        StepStatus.SKIPPED,
    }),
    StepStatus.IN_PROGRESS: frozenset({
        StepStatus.PENDING_APPROVAL,
        StepStatus.COMPLETED,
        StepStatus.BLOCKED,
        StepStatus.SKIPPED,
    }),
    StepStatus.BLOCKED: frozenset({
        StepStatus.NOT_STARTED,
        StepStatus.IN_PROGRESS,
    }),
    # Left only through step approval.
    StepStatus.PENDING_APPROVAL: frozenset(),
    StepStatus.COMPLETED: frozenset(),
    StepStatus.SKIPPED: frozenset(),
}

DONE_STEP_STATUSES: frozenset[StepStatus] = frozenset({
    StepStatus.COMPLETED,
    StepStatus.SKIPPED,
})

OPEN_STEP_STATUSES: frozenset[StepStatus] = frozenset({
    StepStatus.NOT_STARTED,
    StepStatus.IN_PROGRESS,
})


class StepApprovalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


# =========================================================================
# Context (typed instance parameters)
# =========================================================================


class ContextKind(str, Enum):
    NAV_PERIOD = "nav_period"
    REPORTING_PERIOD = "reporting_period"
    FISCAL_YEAR = "fiscal_year"
    GENERAL = "general"


@dataclass(frozen=True)
class NavPeriodContext:
    kind: ClassVar[ContextKind] = ContextKind.NAV_PERIOD

    period: str
    valuation_date: date | None = None


@dataclass(frozen=True)
class ReportingPeriodContext:
    kind: ClassVar[ContextKind] = ContextKind.REPORTING_PERIOD

    year: int
    quarter: int

    def __post_init__(self) -> None:
        if not 1 <= self.quarter <= 4:
            raise ValueError(f"quarter must be 1-4, got {self.quarter}")


@dataclass(frozen=True)
class FiscalYearContext:
    kind: ClassVar[ContextKind] = ContextKind.FISCAL_YEAR

    fiscal_year: int


@dataclass(frozen=True)
class GeneralContext:
    kind: ClassVar[ContextKind] = ContextKind.GENERAL

    reference: str | None = None
    notes: str | None = None


PlaybookContext = Union[
    NavPeriodContext,
    ReportingPeriodContext,
    FiscalYearContext,
    GeneralContext,
]

CONTEXT_TYPES: dict[ContextKind, type] = {
    ContextKind.NAV_PERIOD: NavPeriodContext,
    ContextKind.REPORTING_PERIOD: ReportingPeriodContext,
    ContextKind.FISCAL_YEAR: FiscalYearContext,
    ContextKind.GENERAL: GeneralContext,
}

CATEGORY_CONTEXT_KINDS: dict[PlaybookCategory, ContextKind] = {
    PlaybookCategory.NAV_CALCULATION: ContextKind.NAV_PERIOD,
    PlaybookCategory.QUARTERLY_REPORTING: ContextKind.REPORTING_PERIOD,
    PlaybookCategory.ANNUAL_CLOSING: ContextKind.FISCAL_YEAR,
    PlaybookCategory.TAX_DECLARATION: ContextKind.FISCAL_YEAR,
}


def context_kind_for(category: PlaybookCategory) -> ContextKind:
    return CATEGORY_CONTEXT_KINDS.get(category, ContextKind.GENERAL)


# =========================================================================
# Templates
# =========================================================================


@dataclass(frozen=True)
class AutomationTrigger:
    when: TriggerWhen
    action: TriggerAction
    recipients: tuple[str, ...] = ()
    channels: tuple[str, ...] = ()
    message: str | None = None


@dataclass(frozen=True)
class PlaybookStepTemplate:
    step_id: str
    order: int
    name: str
    description: str = ""
    instructions: str | None = None
    assignee_type: AssigneeType = AssigneeType.ROLE
    default_assignee: str | None = None
    estimated_minutes: int | None = None
    due_days_offset: int = 0
    depends_on: tuple[str, ...] = ()
    blocked_by_approval: bool = False
    requires_approval: bool = False
    approver_role: str | None = None
    requires_dual_approval: bool = False
    automation_trigger: AutomationTrigger | None = None
    attachment_required: bool = False
    document_template_id: str | None = None
    checklist_items: tuple[str, ...] = ()
    standard_comments: tuple[str, ...] = ()


@dataclass(frozen=True)
class PlaybookTemplate:
    """A published, versioned procedure. Immutable once loaded."""

    template_id: str
    name: str
    category: PlaybookCategory
    steps: tuple[PlaybookStepTemplate, ...]
    description: str = ""
    version: int = 1
    default_due_days: int = 30
    reminder_days: tuple[int, ...] = ()
    escalation_days: int | None = None
    required_roles: tuple[str, ...] = ()
    approver_role: str | None = None
    recurrence: RecurrencePattern = RecurrencePattern.ONCE
    recurrence_day: int | None = None
    is_active: bool = True

    def step(self, step_id: str) -> PlaybookStepTemplate | None:
        for s in self.steps:
            if s.step_id == step_id:
                return s
        return None


# =========================================================================
# Instances
# =========================================================================


@dataclass(frozen=True)
class StepApproval:
    status: StepApprovalStatus
    approver_id: str | None = None
    approver_name: str | None = None
    decided_at: datetime | None = None
    comment: str | None = None


@dataclass(frozen=True)
class ChecklistEntry:
    item: str
    completed: bool = False


@dataclass(frozen=True)
class Attachment:
    name: str
    url: str
    uploaded_by: str
    uploaded_at: datetime


@dataclass(frozen=True)
class PlaybookStepInstance:
    step_id: str
    template_step_id: str
    order: int
    name: str
    status: StepStatus
    due_date: datetime
    depends_on: tuple[str, ...] = ()
    blocked_by_approval: bool = False
    requires_approval: bool = False
    approver_role: str | None = None
    automation_trigger: AutomationTrigger | None = None
    assignee_id: str | None = None
    assignee_name: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    completed_by: str | None = None
    approval: StepApproval | None = None
    attachments: tuple[Attachment, ...] = ()
    completion_comment: str | None = None
    checklist: tuple[ChecklistEntry, ...] = ()
    actual_minutes: int | None = None
    blocked_reason: str | None = None
    blocked_since: datetime | None = None

    @property
    def is_done(self) -> bool:
        return self.status in DONE_STEP_STATUSES

    @property
    def approval_capability(self) -> Capability | None:
        """Capability an approver needs; None when any principal may approve."""
        if not self.requires_approval or not self.approver_role:
            return None
        return Capability.of(CapabilityAction.APPROVE_STEP, self.approver_role)


@dataclass(frozen=True)
class PlaybookInstance:
    """Snapshot of one running procedure. ``version`` is repository-owned."""

    instance_id: UUID
    tenant_id: str
    company_id: str
    template_id: str
    template_name: str
    template_version: int
    category: PlaybookCategory
    status: PlaybookStatus
    progress: int
    start_date: datetime
    due_date: datetime
    owner_id: str
    owner_name: str
    steps: tuple[PlaybookStepInstance, ...]
    context: PlaybookContext
    created_by: str
    created_at: datetime
    updated_at: datetime
    fund_id: str | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    last_activity_at: datetime | None = None
    reminder_days: tuple[int, ...] = ()
    escalation_days: int | None = None
    escalation_role: str | None = None
    reminders_sent: tuple[int, ...] = ()
    escalated_at: datetime | None = None
    tags: tuple[str, ...] = ()
    notes: str | None = None
    version: int = 0

    @property
    def name(self) -> str:
        return self.template_name

    def step(self, step_id: str) -> PlaybookStepInstance | None:
        for s in self.steps:
            if s.step_id == step_id:
                return s
        return None

    def step_by_template_id(self, template_step_id: str) -> PlaybookStepInstance | None:
        for s in self.steps:
            if s.template_step_id == template_step_id:
                return s
        return None
