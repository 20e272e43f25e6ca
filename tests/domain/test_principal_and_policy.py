"""
Tests for the kernel value objects: capabilities, principals, policy shape,
payload and context tagging, and the deterministic clock.
"""

from datetime import datetime, timedelta, timezone

import pytest

from governance_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    TERMINAL_APPROVAL_STATUSES,
    ApprovalDomain,
    ApprovalPolicy,
    ApprovalStatus,
    ApprovalType,
    ChangePreview,
    RiskLevel,
    can_transition,
)
from governance_kernel.domain.clock import DeterministicClock
from governance_kernel.domain.payloads import (
    FundOperationPayload,
    PAYLOAD_TYPES,
    PayloadKind,
)
from governance_kernel.domain.playbook import (
    STEP_TRANSITIONS,
    ContextKind,
    PlaybookCategory,
    ReportingPeriodContext,
    StepStatus,
    context_kind_for,
)
from governance_kernel.domain.principal import (
    Capability,
    CapabilityAction,
    Principal,
)


class TestCapability:
    def test_exact_match(self):
        held = Capability.of(CapabilityAction.APPROVE_REQUEST, "PUBLISH_NAV")
        assert held.grants(Capability.of("approve_request", "PUBLISH_NAV"))

    def test_target_mismatch(self):
        held = Capability.of(CapabilityAction.APPROVE_REQUEST, "PUBLISH_NAV")
        assert not held.grants(Capability.of("approve_request", "CHANGE_NAV"))

    def test_target_wildcard(self):
        held = Capability.parse("cancel_request:*")
        assert held.grants(Capability.of(CapabilityAction.CANCEL_REQUEST, "ADD_USER"))
        assert not held.grants(Capability.of(CapabilityAction.APPROVE_REQUEST, "ADD_USER"))

    def test_superuser_grants_everything(self):
        su = Capability.superuser()
        assert su.grants(Capability.of(CapabilityAction.APPROVE_STEP, "board"))
        assert su.grants(Capability.of(CapabilityAction.AUTO_APPROVE, "EXPORT_SIE"))

    def test_parse_strips_whitespace(self):
        assert Capability.parse(" approve_step : manager ") == Capability("approve_step", "manager")

    @pytest.mark.parametrize("text", ["approve_request", ":x", "approve_request:", ""])
    def test_parse_rejects_malformed(self, text):
        with pytest.raises(ValueError, match="action:target"):
            Capability.parse(text)

    def test_str_round_trips_through_parse(self):
        cap = Capability.of(CapabilityAction.AUTO_APPROVE, "ADD_SUPPLIER")
        assert Capability.parse(str(cap)) == cap


class TestPrincipal:
    def test_requires_id(self):
        with pytest.raises(ValueError):
            Principal(principal_id="", display_name="Nobody")

    def test_acting_role_is_first_role(self):
        p = Principal("u1", "User", roles=("manager", "accountant"))
        assert p.acting_role == "manager"
        assert Principal("u2", "User").acting_role == ""

    def test_has_capability_checks_every_grant(self):
        p = Principal(
            "u1",
            "User",
            capabilities=frozenset({
                Capability.of(CapabilityAction.APPROVE_STEP, "manager"),
                Capability.of(CapabilityAction.APPROVE_REQUEST, "EXPORT_SIE"),
            }),
        )
        assert p.has_capability(Capability.of(CapabilityAction.APPROVE_REQUEST, "EXPORT_SIE"))
        assert not p.has_capability(Capability.of(CapabilityAction.APPROVE_REQUEST, "ADD_USER"))

    def test_admin_authority_comes_from_the_superuser_grant(self):
        vote = Capability.of(CapabilityAction.APPROVE_REQUEST, "PUBLISH_NAV")
        assert not Principal("a", "A", roles=("admin",)).has_capability(vote)
        assert Principal("b", "B", capabilities=frozenset({Capability.superuser()})).has_capability(vote)

    def test_catalogue_admin_role_holds_superuser(self, principal):
        admin = principal("root", "admin")
        assert Capability.superuser() in admin.capabilities
        assert admin.has_capability(Capability.of(CapabilityAction.CANCEL_REQUEST, "ADD_USER"))

    def test_role_names_alone_grant_nothing(self):
        p = Principal("u1", "User", roles=("manager",))
        assert not p.has_capability(Capability.of(CapabilityAction.APPROVE_STEP, "manager"))


class TestApprovalPolicyShape:
    def _policy(self, **overrides):
        fields = dict(
            approval_type=ApprovalType.ADD_USER,
            domain=ApprovalDomain.USER_MANAGEMENT,
            name="Add user",
        )
        fields.update(overrides)
        return ApprovalPolicy(**fields)

    def test_defaults_are_valid(self):
        policy = self._policy()
        assert policy.minimum_approvers == 1
        assert policy.exclude_requestor is True

    def test_zero_approvers_rejected(self):
        with pytest.raises(ValueError, match="minimum_approvers"):
            self._policy(minimum_approvers=0)

    def test_dual_approval_needs_two(self):
        with pytest.raises(ValueError, match="dual approval"):
            self._policy(requires_dual_approval=True, minimum_approvers=1)

    def test_negative_hours_rejected(self):
        with pytest.raises(ValueError, match="non-negative"):
            self._policy(escalation_hours=-1)

    def test_capabilities_name_the_type(self):
        policy = self._policy()
        assert str(policy.approver_capability) == "approve_request:ADD_USER"
        assert str(policy.auto_approve_capability) == "auto_approve:ADD_USER"

    def test_payload_kind_follows_domain(self):
        assert self._policy().payload_kind == PayloadKind.ACCESS_CHANGE


class TestLifecycleTables:
    def test_only_pending_has_exits(self):
        for status in ApprovalStatus:
            if status == ApprovalStatus.PENDING:
                assert APPROVAL_TRANSITIONS[status] == TERMINAL_APPROVAL_STATUSES
            else:
                assert APPROVAL_TRANSITIONS[status] == frozenset()

    def test_can_transition(self):
        assert can_transition(ApprovalStatus.PENDING, ApprovalStatus.EXPIRED)
        assert not can_transition(ApprovalStatus.APPROVED, ApprovalStatus.REJECTED)

    def test_pending_approval_has_no_direct_exit(self):
        assert STEP_TRANSITIONS[StepStatus.PENDING_APPROVAL] == frozenset()

    def test_risk_rank_order(self):
        ranks = [level.rank for level in (RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL)]
        assert ranks == sorted(ranks)


class TestPayloadsAndContexts:
    def test_every_kind_has_a_type(self):
        assert set(PAYLOAD_TYPES) == set(PayloadKind)
        for kind, cls in PAYLOAD_TYPES.items():
            assert cls.kind == kind

    def test_fund_payload_default_currency(self):
        assert FundOperationPayload(fund_id="f1").currency == "SEK"

    def test_change_preview_rejects_negative_count(self):
        with pytest.raises(ValueError):
            ChangePreview(affected_records=-1)

    def test_quarter_bounds(self):
        with pytest.raises(ValueError):
            ReportingPeriodContext(year=2024, quarter=5)

    @pytest.mark.parametrize(
        "category,kind",
        [
            (PlaybookCategory.NAV_CALCULATION, ContextKind.NAV_PERIOD),
            (PlaybookCategory.QUARTERLY_REPORTING, ContextKind.REPORTING_PERIOD),
            (PlaybookCategory.ANNUAL_CLOSING, ContextKind.FISCAL_YEAR),
            (PlaybookCategory.TAX_DECLARATION, ContextKind.FISCAL_YEAR),
            (PlaybookCategory.COMPLIANCE, ContextKind.GENERAL),
            (PlaybookCategory.CUSTOM, ContextKind.GENERAL),
        ],
    )
    def test_context_kind_for_category(self, category, kind):
        assert context_kind_for(category) == kind


class TestDeterministicClock:
    def test_fixed_until_advanced(self):
        clock = DeterministicClock(datetime(2024, 3, 1, tzinfo=timezone.utc))
        assert clock.now() == clock.now()

    def test_advance(self):
        start = datetime(2024, 3, 1, tzinfo=timezone.utc)
        clock = DeterministicClock(start)
        clock.advance()
        assert clock.now() == start + timedelta(seconds=1)
        clock.advance(hours=2, days=1)
        assert clock.now() == start + timedelta(days=1, hours=2, seconds=1)

    def test_set_time_resets_offset(self):
        clock = DeterministicClock(datetime(2024, 3, 1, tzinfo=timezone.utc))
        clock.advance(days=3)
        target = datetime(2025, 1, 1, tzinfo=timezone.utc)
        clock.set_time(target)
        assert clock.now() == target

    def test_naive_datetime_rejected(self):
        with pytest.raises(ValueError, match="timezone-aware"):
            DeterministicClock(datetime(2024, 3, 1))
