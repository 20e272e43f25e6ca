"""
governance_engines.approval -- Pure four-eyes voting rules.

Responsibility:
    Decide auto-approval eligibility, the quorum a request needs, whether a
    voter may vote, and what state a request is in after a vote.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import governance_kernel/domain/ types and kernel exceptions.

Invariants enforced:
    - Quorum: dual approval needs at least max(2, minimum_approvers) votes.
    - Veto: any rejection finalizes as REJECTED, whatever the approval count.
    - No double voting: a voter appears at most once across both vote lists.
    - Self-approval: with ``exclude_requestor`` the requestor never votes,
      even when they hold the approver capability.
    - Check order for a vote: state, capability, self-approval, duplicate.
    - Purity: the caller supplies ``now``; no clock access, no I/O.

Failure modes:
    - ``validate_vote`` raises InvalidStateError, NotAuthorizedError,
      SelfApprovalForbiddenError or DuplicateVoteError.
    - ``apply_vote`` raises InvalidStateError on a finalized request.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime

from governance_kernel.domain.approval import (
    ApprovalPolicy,
    ApprovalStatus,
    ApprovalVote,
    ChangePreview,
    ExtendedApprovalRequest,
    VoteDecision,
)
from governance_kernel.domain.payloads import OperationPayload
from governance_kernel.domain.principal import Principal
from governance_kernel.exceptions import (
    DuplicateVoteError,
    InvalidStateError,
    NotAuthorizedError,
    SelfApprovalForbiddenError,
)


@dataclass(frozen=True)
class AutoApprovalEvaluation:
    eligible: bool
    reason: str


def required_approvers(policy: ApprovalPolicy) -> int:
    if policy.requires_dual_approval:
        return max(2, policy.minimum_approvers)
    return policy.minimum_approvers


def evaluate_auto_approval(
    policy: ApprovalPolicy,
    requestor: Principal,
    payload: OperationPayload,
    change_preview: ChangePreview | None = None,
) -> AutoApprovalEvaluation:
    """Whether a trusted requestor may skip voting for this change.

    Eligible only when the policy declares conditions, the requestor holds
    the policy's auto-approve capability, and no declared cap is exceeded.
    """
    conditions = policy.auto_approve_conditions
    if conditions is None:
        return AutoApprovalEvaluation(False, "Policy declares no auto-approve conditions")

    if not requestor.has_capability(policy.auto_approve_capability):
        return AutoApprovalEvaluation(False, "Requestor is not a trusted role")

    affected = change_preview.affected_records if change_preview else 0
    if conditions.max_items is not None and affected > conditions.max_items:
        return AutoApprovalEvaluation(
            False,
            f"{affected} affected records exceed cap of {conditions.max_items}",
        )

    amount = payload.amount
    if conditions.max_amount is not None and amount is not None:
        # Magnitude cap; sign is ignored as in classify_risk
        if abs(amount) > conditions.max_amount:
            return AutoApprovalEvaluation(
                False,
                f"Amount {amount} exceeds cap of {conditions.max_amount}",
            )

    return AutoApprovalEvaluation(True, "Trusted requestor within auto-approve caps")


def creates_approved(policy: ApprovalPolicy, evaluation: AutoApprovalEvaluation) -> bool:
    """A request skips voting only when eligible AND approval is not required."""
    return evaluation.eligible and not policy.requires_approval


def is_authorized_voter(policy: ApprovalPolicy, voter: Principal) -> bool:
    return voter.has_capability(policy.approver_capability)


def validate_vote(
    policy: ApprovalPolicy,
    request: ExtendedApprovalRequest,
    voter: Principal,
) -> None:
    """Raise the first reason ``voter`` may not vote on ``request``."""
    if request.status != ApprovalStatus.PENDING:
        raise InvalidStateError(
            "ApprovalRequest", str(request.request_id), request.status.value, "vote on"
        )
    if not is_authorized_voter(policy, voter):
        raise NotAuthorizedError(
            voter.principal_id, str(policy.approver_capability), str(request.request_id)
        )
    if policy.exclude_requestor and voter.principal_id == request.requested_by:
        raise SelfApprovalForbiddenError(str(request.request_id), voter.principal_id)
    if request.has_voted(voter.principal_id):
        raise DuplicateVoteError(str(request.request_id), voter.principal_id)


def evaluate_vote_outcome(
    approval_count: int,
    rejection_count: int,
    required: int,
) -> ApprovalStatus:
    """Status implied by the current tally. Rejection is checked first."""
    if rejection_count > 0:
        return ApprovalStatus.REJECTED
    if approval_count >= required:
        return ApprovalStatus.APPROVED
    return ApprovalStatus.PENDING


def apply_vote(
    request: ExtendedApprovalRequest,
    vote: ApprovalVote,
    now: datetime,
) -> ExtendedApprovalRequest:
    """Append ``vote`` and finalize the request if the tally decides it."""
    if request.status != ApprovalStatus.PENDING:
        raise InvalidStateError(
            "ApprovalRequest", str(request.request_id), request.status.value, "vote on"
        )

    if vote.decision == VoteDecision.APPROVE:
        approvals = request.approvals + (vote,)
        rejections = request.rejections
    else:
        approvals = request.approvals
        rejections = request.rejections + (vote,)

    status = evaluate_vote_outcome(len(approvals), len(rejections), request.required_approvers)
    return replace(
        request,
        approvals=approvals,
        rejections=rejections,
        status=status,
        approved_at=now if status == ApprovalStatus.APPROVED else request.approved_at,
        rejected_at=now if status == ApprovalStatus.REJECTED else request.rejected_at,
        updated_at=now,
    )
