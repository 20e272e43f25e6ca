"""
Approval domain types (``governance_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for four-eyes approval requests: the request lifecycle
state machine, policies loaded from the catalogue, votes, change previews
and the request snapshot itself.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects. ZERO I/O. No imports from
``db/``, ``models/``, ``repositories/`` or outer layers.

Invariants enforced
-------------------
* Lifecycle state machine -- ``APPROVAL_TRANSITIONS`` defines the only valid
  status transitions. Terminal states have no outgoing edges.
* Policy snapshot -- ``ExtendedApprovalRequest`` captures
  ``required_approvers``, ``policy_version`` and ``policy_hash`` at creation
  so later policy changes never alter an in-flight request.
* Policy shape -- ``minimum_approvers >= 1``, and ``>= 2`` when dual
  approval is required (checked in ``ApprovalPolicy.__post_init__``).
* Vote uniqueness -- ``ExtendedApprovalRequest.has_voted`` is the single
  definition used by the engine and the services.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from governance_kernel.domain.payloads import OperationPayload, PayloadKind
from governance_kernel.domain.principal import Capability, CapabilityAction


# =========================================================================
# Operation taxonomy
# =========================================================================


class ApprovalDomain(str, Enum):
    """Business area an operation belongs to."""

    ACCOUNTING = "accounting"
    EXPORT = "export"
    REPORT_PUBLISH = "report_publish"
    MASTERDATA = "masterdata"
    USER_MANAGEMENT = "user_management"
    SYSTEM_CONFIG = "system_config"
    FUND_OPERATION = "fund_operation"


class ApprovalType(str, Enum):
    """Sensitive operations that can be put under approval."""

    # Export
    EXPORT_SIE = "EXPORT_SIE"
    EXPORT_FORTNOX_BATCH = "EXPORT_FORTNOX_BATCH"
    EXPORT_ANNUAL_REPORT = "EXPORT_ANNUAL_REPORT"
    EXPORT_TAX_DECLARATION = "EXPORT_TAX_DECLARATION"
    # Publication
    PUBLISH_NAV = "PUBLISH_NAV"
    PUBLISH_INVESTOR_REPORT = "PUBLISH_INVESTOR_REPORT"
    PUBLISH_FI_REPORT = "PUBLISH_FI_REPORT"
    PUBLISH_BOARD_REPORT = "PUBLISH_BOARD_REPORT"
    # Accounting
    CHANGE_CHART_OF_ACCOUNTS = "CHANGE_CHART_OF_ACCOUNTS"
    CHANGE_COST_CENTER = "CHANGE_COST_CENTER"
    # Masterdata
    ADD_SUPPLIER = "ADD_SUPPLIER"
    CHANGE_SUPPLIER = "CHANGE_SUPPLIER"
    DELETE_SUPPLIER = "DELETE_SUPPLIER"
    ADD_CUSTOMER = "ADD_CUSTOMER"
    CHANGE_CUSTOMER = "CHANGE_CUSTOMER"
    DELETE_CUSTOMER = "DELETE_CUSTOMER"
    # User management
    ADD_USER = "ADD_USER"
    CHANGE_USER_ROLE = "CHANGE_USER_ROLE"
    REMOVE_USER = "REMOVE_USER"
    GRANT_ACCESS = "GRANT_ACCESS"
    REVOKE_ACCESS = "REVOKE_ACCESS"
    # System configuration
    CHANGE_INTEGRATION = "CHANGE_INTEGRATION"
    CHANGE_POLICY = "CHANGE_POLICY"
    CHANGE_APPROVAL_RULES = "CHANGE_APPROVAL_RULES"
    # Fund operations
    PROCESS_SUBSCRIPTION = "PROCESS_SUBSCRIPTION"
    PROCESS_REDEMPTION = "PROCESS_REDEMPTION"
    CHANGE_NAV = "CHANGE_NAV"


DOMAIN_PAYLOAD_KINDS: dict[ApprovalDomain, PayloadKind] = {
    ApprovalDomain.ACCOUNTING: PayloadKind.ACCOUNTING,
    ApprovalDomain.EXPORT: PayloadKind.EXPORT,
    ApprovalDomain.REPORT_PUBLISH: PayloadKind.PUBLICATION,
    ApprovalDomain.MASTERDATA: PayloadKind.MASTERDATA,
    ApprovalDomain.USER_MANAGEMENT: PayloadKind.ACCESS_CHANGE,
    ApprovalDomain.SYSTEM_CONFIG: PayloadKind.CONFIG_CHANGE,
    ApprovalDomain.FUND_OPERATION: PayloadKind.FUND_OPERATION,
}


class RiskLevel(str, Enum):
    """Coarse impact tier, ordered LOW < MEDIUM < HIGH < CRITICAL."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]


_RISK_RANK = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


# =========================================================================
# Request lifecycle
# =========================================================================


class ApprovalStatus(str, Enum):
    """Approval request lifecycle states."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING: frozenset({
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
        ApprovalStatus.CANCELLED,
        ApprovalStatus.EXPIRED,
    }),
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
    ApprovalStatus.CANCELLED: frozenset(),
    ApprovalStatus.EXPIRED: frozenset(),
}

TERMINAL_APPROVAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
    ApprovalStatus.CANCELLED,
    ApprovalStatus.EXPIRED,
})


def can_transition(current: ApprovalStatus, target: ApprovalStatus) -> bool:
    return target in APPROVAL_TRANSITIONS[current]


class VoteDecision(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


# =========================================================================
# Policy types
# =========================================================================


@dataclass(frozen=True)
class AutoApproveConditions:
    """Caps under which a trusted requestor may skip the voting phase.

    A cap of ``None`` is not checked.
    """

    max_items: int | None = None
    max_amount: Decimal | None = None
    trusted_roles: frozenset[str] = frozenset()


@dataclass(frozen=True)
class ApprovalPolicy:
    """Approval rules for one operation type, loaded from the catalogue."""

    approval_type: ApprovalType
    domain: ApprovalDomain
    name: str
    description: str = ""
    version: int = 1
    requires_approval: bool = True
    requires_dual_approval: bool = False
    minimum_approvers: int = 1
    approver_roles: frozenset[str] = frozenset()
    exclude_requestor: bool = True
    auto_approve_conditions: AutoApproveConditions | None = None
    default_deadline_hours: int = 48
    escalation_hours: int = 24
    escalate_to: tuple[str, ...] = ()
    notify_on_request: tuple[str, ...] = ()
    notify_on_approval: tuple[str, ...] = ()
    notify_on_rejection: tuple[str, ...] = ()
    policy_hash: str | None = None

    def __post_init__(self) -> None:
        if self.minimum_approvers < 1:
            raise ValueError(
                f"Policy {self.approval_type.value}: minimum_approvers must be >= 1"
            )
        if self.requires_dual_approval and self.minimum_approvers < 2:
            raise ValueError(
                f"Policy {self.approval_type.value}: dual approval requires "
                "minimum_approvers >= 2"
            )
        if self.default_deadline_hours < 0 or self.escalation_hours < 0:
            raise ValueError(
                f"Policy {self.approval_type.value}: hours must be non-negative"
            )

    @property
    def approver_capability(self) -> Capability:
        return Capability.of(CapabilityAction.APPROVE_REQUEST, self.approval_type.value)

    @property
    def auto_approve_capability(self) -> Capability:
        return Capability.of(CapabilityAction.AUTO_APPROVE, self.approval_type.value)

    @property
    def payload_kind(self) -> PayloadKind:
        return DOMAIN_PAYLOAD_KINDS[self.domain]


# =========================================================================
# Request types
# =========================================================================


@dataclass(frozen=True)
class ChangePreview:
    """Before/after view of the change and how many records it touches."""

    before: dict[str, Any] = field(default_factory=dict)
    after: dict[str, Any] = field(default_factory=dict)
    affected_records: int = 0

    def __post_init__(self) -> None:
        if self.affected_records < 0:
            raise ValueError("affected_records must be non-negative")


@dataclass(frozen=True)
class ApprovalVote:
    """One voter's decision. At most one per voter per request."""

    voter_id: str
    voter_name: str
    voter_role: str
    decision: VoteDecision
    timestamp: datetime
    comment: str | None = None
    ip_address: str | None = None


@dataclass(frozen=True)
class ExecutionResult:
    success: bool
    message: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class ExtendedApprovalRequest:
    """Snapshot of one approval request.

    Mutations produce a new snapshot via ``dataclasses.replace``; the
    ``version`` field is owned by the repository (0 means never saved).
    """

    request_id: UUID
    tenant_id: str
    company_id: str
    domain: ApprovalDomain
    approval_type: ApprovalType
    status: ApprovalStatus
    title: str
    description: str
    payload: OperationPayload
    risk_level: RiskLevel
    reversible: bool
    requested_by: str
    requested_by_name: str
    requested_by_role: str
    requested_at: datetime
    deadline: datetime
    required_approvers: int
    policy_version: int
    policy_hash: str | None = None
    change_preview: ChangePreview | None = None
    impact_description: str | None = None
    request_comment: str | None = None
    auto_approved: bool = False
    approvals: tuple[ApprovalVote, ...] = ()
    rejections: tuple[ApprovalVote, ...] = ()
    escalated_at: datetime | None = None
    escalated_to: tuple[str, ...] = ()
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    closed_at: datetime | None = None
    closed_reason: str | None = None
    executed_at: datetime | None = None
    execution_result: ExecutionResult | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_APPROVAL_STATUSES

    @property
    def affected_records(self) -> int:
        return self.change_preview.affected_records if self.change_preview else 0

    @property
    def amount(self) -> Decimal | None:
        return self.payload.amount

    @property
    def votes(self) -> tuple[ApprovalVote, ...]:
        return self.approvals + self.rejections

    def has_voted(self, voter_id: str) -> bool:
        return any(v.voter_id == voter_id for v in self.votes)
