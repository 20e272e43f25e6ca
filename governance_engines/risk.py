"""
governance_engines.risk -- Risk tier and reversibility of an operation.

Responsibility:
    Derive the risk tier of an approval request from its operation type and
    change magnitude, and report whether the operation can be undone.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import governance_kernel/domain/ types.

Invariants enforced:
    - Deterministic: the same (type, payload, preview) always yields the same
      tier.
    - The tier is the highest one any rule assigns; type-based tiers are
      never lowered by a small magnitude.
    - All thresholds are strict (a value equal to a threshold stays below it).
"""

from __future__ import annotations

from decimal import Decimal

from governance_kernel.domain.approval import ApprovalType, ChangePreview, RiskLevel
from governance_kernel.domain.payloads import OperationPayload

CRITICAL_TYPES: frozenset[ApprovalType] = frozenset({
    ApprovalType.CHANGE_NAV,
    ApprovalType.PUBLISH_FI_REPORT,
    ApprovalType.PROCESS_REDEMPTION,
    ApprovalType.CHANGE_CHART_OF_ACCOUNTS,
})

HIGH_TYPES: frozenset[ApprovalType] = frozenset({
    ApprovalType.DELETE_SUPPLIER,
    ApprovalType.DELETE_CUSTOMER,
    ApprovalType.REMOVE_USER,
    ApprovalType.CHANGE_APPROVAL_RULES,
    ApprovalType.EXPORT_ANNUAL_REPORT,
})

IRREVERSIBLE_TYPES: frozenset[ApprovalType] = frozenset({
    ApprovalType.PUBLISH_NAV,
    ApprovalType.PUBLISH_FI_REPORT,
    ApprovalType.EXPORT_ANNUAL_REPORT,
    ApprovalType.EXPORT_TAX_DECLARATION,
    ApprovalType.PROCESS_SUBSCRIPTION,
    ApprovalType.PROCESS_REDEMPTION,
})

HIGH_RECORDS_THRESHOLD = 100
MEDIUM_RECORDS_THRESHOLD = 10
HIGH_AMOUNT_THRESHOLD = Decimal("1000000")
MEDIUM_AMOUNT_THRESHOLD = Decimal("100000")


def _magnitude_tier(affected_records: int, amount: Decimal | None) -> RiskLevel:
    if affected_records > HIGH_RECORDS_THRESHOLD:
        return RiskLevel.HIGH
    if amount is not None and amount > HIGH_AMOUNT_THRESHOLD:
        return RiskLevel.HIGH
    if affected_records > MEDIUM_RECORDS_THRESHOLD:
        return RiskLevel.MEDIUM
    if amount is not None and amount > MEDIUM_AMOUNT_THRESHOLD:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def classify_risk(
    approval_type: ApprovalType,
    payload: OperationPayload | None = None,
    change_preview: ChangePreview | None = None,
) -> RiskLevel:
    """Risk tier for an operation.

    Args:
        approval_type: The operation being requested.
        payload: Typed operation payload; its ``amount`` is the monetary
            magnitude (absolute value is used, so reversals count too).
        change_preview: Supplies the affected-record count.
    """
    if approval_type in CRITICAL_TYPES:
        return RiskLevel.CRITICAL
    if approval_type in HIGH_TYPES:
        return RiskLevel.HIGH

    affected = change_preview.affected_records if change_preview else 0
    amount = payload.amount if payload is not None else None
    if amount is not None:
        amount = abs(amount)
    return _magnitude_tier(affected, amount)


def is_reversible(approval_type: ApprovalType) -> bool:
    return approval_type not in IRREVERSIBLE_TYPES
