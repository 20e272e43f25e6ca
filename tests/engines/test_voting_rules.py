"""
Tests for the pure four-eyes rules in governance_engines.approval.

Covers quorum, veto, vote validation order, self-approval exclusion and
auto-approval eligibility. No store and no clock: every function receives
its inputs and returns a value.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from governance_engines.approval import (
    apply_vote,
    creates_approved,
    evaluate_auto_approval,
    evaluate_vote_outcome,
    is_authorized_voter,
    required_approvers,
    validate_vote,
)
from governance_kernel.domain.approval import (
    ApprovalDomain,
    ApprovalPolicy,
    ApprovalStatus,
    ApprovalType,
    ApprovalVote,
    AutoApproveConditions,
    ChangePreview,
    ExtendedApprovalRequest,
    RiskLevel,
    VoteDecision,
)
from governance_kernel.domain.payloads import ExportPayload
from governance_kernel.domain.principal import Capability, CapabilityAction, Principal
from governance_kernel.exceptions import (
    DuplicateVoteError,
    InvalidStateError,
    NotAuthorizedError,
    SelfApprovalForbiddenError,
)

NOW = datetime(2024, 6, 3, 9, 0, tzinfo=timezone.utc)


def _policy(**overrides) -> ApprovalPolicy:
    fields = dict(
        approval_type=ApprovalType.EXPORT_FORTNOX_BATCH,
        domain=ApprovalDomain.EXPORT,
        name="Fortnox batch sync",
        requires_dual_approval=True,
        minimum_approvers=2,
        approver_roles=frozenset({"accountant", "manager"}),
    )
    fields.update(overrides)
    return ApprovalPolicy(**fields)


def _request(policy: ApprovalPolicy, requested_by: str = "requestor", **overrides):
    fields = dict(
        request_id=uuid4(),
        tenant_id="t1",
        company_id="c1",
        domain=policy.domain,
        approval_type=policy.approval_type,
        status=ApprovalStatus.PENDING,
        title="Sync June invoices",
        description="",
        payload=ExportPayload(export_format="fortnox"),
        risk_level=RiskLevel.LOW,
        reversible=True,
        requested_by=requested_by,
        requested_by_name=requested_by.title(),
        requested_by_role="accountant",
        requested_at=NOW,
        deadline=NOW + timedelta(hours=4),
        required_approvers=required_approvers(policy),
        policy_version=policy.version,
    )
    fields.update(overrides)
    return ExtendedApprovalRequest(**fields)


def _voter(user_id: str, policy: ApprovalPolicy, role: str = "manager") -> Principal:
    return Principal(
        user_id,
        user_id.title(),
        roles=(role,),
        capabilities=frozenset({policy.approver_capability}),
    )


def _ballot(voter_id: str, decision: VoteDecision, at: datetime = NOW) -> ApprovalVote:
    return ApprovalVote(
        voter_id=voter_id,
        voter_name=voter_id.title(),
        voter_role="manager",
        decision=decision,
        timestamp=at,
    )


class TestRequiredApprovers:
    def test_single(self):
        assert required_approvers(_policy(requires_dual_approval=False, minimum_approvers=1)) == 1

    def test_dual_is_at_least_two(self):
        assert required_approvers(_policy()) == 2

    def test_dual_with_higher_minimum(self):
        assert required_approvers(_policy(minimum_approvers=3)) == 3

    def test_minimum_without_dual(self):
        assert required_approvers(_policy(requires_dual_approval=False, minimum_approvers=3)) == 3


class TestVoteOutcome:
    @pytest.mark.parametrize(
        "approvals,rejections,required,expected",
        [
            (0, 0, 2, ApprovalStatus.PENDING),
            (1, 0, 2, ApprovalStatus.PENDING),
            (2, 0, 2, ApprovalStatus.APPROVED),
            (3, 0, 2, ApprovalStatus.APPROVED),
            (0, 1, 2, ApprovalStatus.REJECTED),
            (1, 1, 2, ApprovalStatus.REJECTED),
            (5, 1, 2, ApprovalStatus.REJECTED),
        ],
    )
    def test_table(self, approvals, rejections, required, expected):
        assert evaluate_vote_outcome(approvals, rejections, required) == expected


class TestApplyVote:
    def test_first_approval_keeps_pending(self):
        policy = _policy()
        request = apply_vote(_request(policy), _ballot("a1", VoteDecision.APPROVE), NOW)
        assert request.status == ApprovalStatus.PENDING
        assert len(request.approvals) == 1
        assert request.approved_at is None
        assert request.updated_at == NOW

    def test_second_approval_finalizes(self):
        policy = _policy()
        later = NOW + timedelta(minutes=5)
        request = apply_vote(_request(policy), _ballot("a1", VoteDecision.APPROVE), NOW)
        request = apply_vote(request, _ballot("a2", VoteDecision.APPROVE, later), later)
        assert request.status == ApprovalStatus.APPROVED
        assert request.approved_at == later

    def test_rejection_after_approval_vetoes(self):
        policy = _policy()
        request = apply_vote(_request(policy), _ballot("a1", VoteDecision.APPROVE), NOW)
        request = apply_vote(request, _ballot("a2", VoteDecision.REJECT), NOW)
        assert request.status == ApprovalStatus.REJECTED
        assert request.rejected_at == NOW
        assert len(request.approvals) == 1
        assert len(request.rejections) == 1

    def test_finalized_request_refuses_votes(self):
        policy = _policy()
        request = _request(policy, status=ApprovalStatus.APPROVED)
        with pytest.raises(InvalidStateError):
            apply_vote(request, _ballot("a1", VoteDecision.APPROVE), NOW)

    def test_input_snapshot_unchanged(self):
        policy = _policy()
        original = _request(policy)
        apply_vote(original, _ballot("a1", VoteDecision.APPROVE), NOW)
        assert original.approvals == ()


class TestValidateVote:
    def test_authorized_voter_passes(self):
        policy = _policy()
        validate_vote(policy, _request(policy), _voter("a1", policy))

    def test_not_pending(self):
        policy = _policy()
        request = _request(policy, status=ApprovalStatus.CANCELLED)
        with pytest.raises(InvalidStateError) as exc:
            validate_vote(policy, request, _voter("a1", policy))
        assert exc.value.current_state == "CANCELLED"

    def test_missing_capability(self):
        policy = _policy()
        outsider = Principal("x", "X", roles=("viewer",))
        with pytest.raises(NotAuthorizedError) as exc:
            validate_vote(policy, _request(policy), outsider)
        assert exc.value.required_capability == "approve_request:EXPORT_FORTNOX_BATCH"

    def test_self_approval_forbidden_even_with_capability(self):
        policy = _policy()
        request = _request(policy, requested_by="a1")
        with pytest.raises(SelfApprovalForbiddenError):
            validate_vote(policy, request, _voter("a1", policy))

    def test_self_approval_allowed_when_not_excluded(self):
        policy = _policy(exclude_requestor=False)
        validate_vote(policy, _request(policy, requested_by="a1"), _voter("a1", policy))

    def test_duplicate_vote(self):
        policy = _policy()
        request = apply_vote(_request(policy), _ballot("a1", VoteDecision.APPROVE), NOW)
        with pytest.raises(DuplicateVoteError) as exc:
            validate_vote(policy, request, _voter("a1", policy))
        assert exc.value.voter_id == "a1"

    def test_state_checked_before_capability(self):
        policy = _policy()
        request = _request(policy, status=ApprovalStatus.EXPIRED)
        outsider = Principal("x", "X")
        with pytest.raises(InvalidStateError):
            validate_vote(policy, request, outsider)

    def test_wildcard_holder_may_vote(self):
        policy = _policy()
        admin = Principal("root", "Root", roles=("admin",), capabilities=frozenset({Capability.superuser()}))
        assert is_authorized_voter(policy, admin)
        validate_vote(policy, _request(policy), admin)


class TestAutoApproval:
    def _trusted(self, policy: ApprovalPolicy) -> Principal:
        return Principal(
            "boss",
            "Boss",
            roles=("manager",),
            capabilities=frozenset({policy.auto_approve_capability}),
        )

    def _auto_policy(self, **conditions) -> ApprovalPolicy:
        return _policy(
            requires_approval=False,
            auto_approve_conditions=AutoApproveConditions(
                trusted_roles=frozenset({"manager"}), **conditions
            ),
        )

    def test_no_conditions(self):
        policy = _policy()
        result = evaluate_auto_approval(policy, self._trusted(policy), ExportPayload("fortnox"))
        assert not result.eligible
        assert "no auto-approve" in result.reason

    def test_untrusted_requestor(self):
        policy = self._auto_policy(max_items=10)
        plain = Principal("p", "P", roles=("accountant",))
        result = evaluate_auto_approval(policy, plain, ExportPayload("fortnox"))
        assert not result.eligible

    def test_within_item_cap(self):
        policy = self._auto_policy(max_items=10)
        result = evaluate_auto_approval(
            policy, self._trusted(policy), ExportPayload("fortnox"), ChangePreview(affected_records=10)
        )
        assert result.eligible

    def test_item_cap_exceeded(self):
        policy = self._auto_policy(max_items=10)
        result = evaluate_auto_approval(
            policy, self._trusted(policy), ExportPayload("fortnox"), ChangePreview(affected_records=11)
        )
        assert not result.eligible
        assert "11" in result.reason

    def test_amount_cap_exceeded(self):
        policy = self._auto_policy(max_amount=Decimal("5000"))
        payload = ExportPayload("fortnox", amount=Decimal("5000.01"))
        assert not evaluate_auto_approval(policy, self._trusted(policy), payload).eligible

    @pytest.mark.parametrize(
        "amount,eligible",
        [
            (Decimal("-5000.00"), True),
            (Decimal("-5000.01"), False),
            (Decimal("-2500000"), False),
        ],
    )
    def test_amount_cap_applies_to_credits(self, amount, eligible):
        policy = self._auto_policy(max_amount=Decimal("5000"))
        payload = ExportPayload("fortnox", amount=amount)
        assert evaluate_auto_approval(policy, self._trusted(policy), payload).eligible is eligible

    def test_amount_cap_not_checked_without_amount(self):
        policy = self._auto_policy(max_amount=Decimal("5000"))
        assert evaluate_auto_approval(policy, self._trusted(policy), ExportPayload("fortnox")).eligible

    def test_creates_approved_requires_policy_opt_out(self):
        policy = self._auto_policy(max_items=10)
        evaluation = evaluate_auto_approval(policy, self._trusted(policy), ExportPayload("fortnox"))
        assert creates_approved(policy, evaluation)

        gated = replace(policy, requires_approval=True)
        assert not creates_approved(gated, evaluation)
