"""
Pure domain layer.

Value objects and protocols with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Time (except through the injected Clock)
- I/O

All domain objects are immutable frozen dataclasses.
"""

from governance_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    TERMINAL_APPROVAL_STATUSES,
    ApprovalDomain,
    ApprovalPolicy,
    ApprovalStatus,
    ApprovalType,
    ApprovalVote,
    AutoApproveConditions,
    ChangePreview,
    ExecutionResult,
    ExtendedApprovalRequest,
    RiskLevel,
    VoteDecision,
)
from governance_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from governance_kernel.domain.notification import (
    DeliveryChannel,
    NotificationKind,
    NotificationPriority,
    NotificationRequest,
    NotificationSink,
)
from governance_kernel.domain.payloads import (
    AccessChangePayload,
    AccountingPayload,
    ConfigChangePayload,
    ExportPayload,
    FundOperationPayload,
    MasterdataPayload,
    OperationPayload,
    PayloadKind,
    PublicationPayload,
)
from governance_kernel.domain.playbook import (
    STEP_TRANSITIONS,
    AutomationTrigger,
    FiscalYearContext,
    GeneralContext,
    NavPeriodContext,
    PlaybookCategory,
    PlaybookInstance,
    PlaybookStatus,
    PlaybookStepInstance,
    PlaybookStepTemplate,
    PlaybookTemplate,
    RecurrencePattern,
    ReportingPeriodContext,
    StepApprovalStatus,
    StepStatus,
)
from governance_kernel.domain.principal import Capability, CapabilityAction, Principal
from governance_kernel.domain.repository import Repository, ScopeFilter

__all__ = [
    "APPROVAL_TRANSITIONS",
    "STEP_TRANSITIONS",
    "TERMINAL_APPROVAL_STATUSES",
    "AccessChangePayload",
    "AccountingPayload",
    "ApprovalDomain",
    "ApprovalPolicy",
    "ApprovalStatus",
    "ApprovalType",
    "ApprovalVote",
    "AutoApproveConditions",
    "AutomationTrigger",
    "Capability",
    "CapabilityAction",
    "ChangePreview",
    "Clock",
    "ConfigChangePayload",
    "DeliveryChannel",
    "DeterministicClock",
    "ExecutionResult",
    "ExportPayload",
    "ExtendedApprovalRequest",
    "FiscalYearContext",
    "FundOperationPayload",
    "GeneralContext",
    "MasterdataPayload",
    "NavPeriodContext",
    "NotificationKind",
    "NotificationPriority",
    "NotificationRequest",
    "NotificationSink",
    "OperationPayload",
    "PayloadKind",
    "PlaybookCategory",
    "PlaybookInstance",
    "PlaybookStatus",
    "PlaybookStepInstance",
    "PlaybookStepTemplate",
    "PlaybookTemplate",
    "Principal",
    "PublicationPayload",
    "RecurrencePattern",
    "ReportingPeriodContext",
    "Repository",
    "RiskLevel",
    "ScopeFilter",
    "StepApprovalStatus",
    "StepStatus",
    "SystemClock",
    "VoteDecision",
]
