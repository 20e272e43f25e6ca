"""
Tests for the timing predicates the sweepers rely on.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from governance_engines.escalation import (
    due_reminders,
    escalation_threshold,
    is_due_for_escalation,
    is_due_for_playbook_escalation,
    is_overdue,
    is_past_deadline,
)
from governance_kernel.domain.approval import (
    ApprovalDomain,
    ApprovalPolicy,
    ApprovalStatus,
    ApprovalType,
    ExtendedApprovalRequest,
    RiskLevel,
)
from governance_kernel.domain.payloads import PublicationPayload
from governance_kernel.domain.playbook import (
    GeneralContext,
    PlaybookCategory,
    PlaybookInstance,
    PlaybookStatus,
)

T0 = datetime(2024, 4, 2, 8, 0, tzinfo=timezone.utc)

POLICY = ApprovalPolicy(
    approval_type=ApprovalType.PUBLISH_NAV,
    domain=ApprovalDomain.REPORT_PUBLISH,
    name="NAV publication",
    requires_dual_approval=True,
    minimum_approvers=2,
    default_deadline_hours=4,
    escalation_hours=2,
    escalate_to=("executive",),
)


def _request(**overrides) -> ExtendedApprovalRequest:
    fields = dict(
        request_id=uuid4(),
        tenant_id="t1",
        company_id="c1",
        domain=POLICY.domain,
        approval_type=POLICY.approval_type,
        status=ApprovalStatus.PENDING,
        title="Publish March NAV",
        description="",
        payload=PublicationPayload(report_id="nav-2024-03"),
        risk_level=RiskLevel.LOW,
        reversible=False,
        requested_by="u1",
        requested_by_name="U1",
        requested_by_role="fund_accountant",
        requested_at=T0,
        deadline=T0 + timedelta(hours=4),
        required_approvers=2,
        policy_version=1,
    )
    fields.update(overrides)
    return ExtendedApprovalRequest(**fields)


def _instance(**overrides) -> PlaybookInstance:
    fields = dict(
        instance_id=uuid4(),
        tenant_id="t1",
        company_id="c1",
        template_id="tpl",
        template_name="Monthly NAV calculation",
        template_version=1,
        category=PlaybookCategory.CUSTOM,
        status=PlaybookStatus.ACTIVE,
        progress=0,
        start_date=T0,
        due_date=T0 + timedelta(days=10),
        owner_id="owner",
        owner_name="Owner",
        steps=(),
        context=GeneralContext(),
        created_by="owner",
        created_at=T0,
        updated_at=T0,
        reminder_days=(3, 1),
        escalation_days=2,
    )
    fields.update(overrides)
    return PlaybookInstance(**fields)


class TestRequestEscalation:
    def test_threshold(self):
        assert escalation_threshold(T0 + timedelta(hours=4), 2) == T0 + timedelta(hours=2)

    def test_before_threshold(self):
        assert not is_due_for_escalation(_request(), POLICY, T0 + timedelta(hours=1, minutes=59))

    def test_at_threshold(self):
        assert is_due_for_escalation(_request(), POLICY, T0 + timedelta(hours=2))

    def test_already_escalated(self):
        request = _request(escalated_at=T0 + timedelta(hours=2))
        assert not is_due_for_escalation(request, POLICY, T0 + timedelta(hours=3))

    def test_finalized_not_escalated(self):
        request = _request(status=ApprovalStatus.APPROVED)
        assert not is_due_for_escalation(request, POLICY, T0 + timedelta(hours=3))

    def test_escalation_window_longer_than_deadline_fires_at_once(self):
        policy = replace(POLICY, escalation_hours=48)
        assert is_due_for_escalation(_request(), policy, T0)


class TestDeadline:
    def test_past_deadline_is_strict(self):
        request = _request()
        assert not is_past_deadline(request, request.deadline)
        assert is_past_deadline(request, request.deadline + timedelta(seconds=1))

    def test_only_pending(self):
        request = _request(status=ApprovalStatus.REJECTED)
        assert not is_past_deadline(request, request.deadline + timedelta(days=1))


class TestReminders:
    def test_none_due_early(self):
        instance = _instance()
        assert due_reminders(instance, instance.due_date - timedelta(days=4)) == ()

    def test_first_offset(self):
        instance = _instance()
        assert due_reminders(instance, instance.due_date - timedelta(days=3)) == (3,)

    def test_catch_up_returns_all_due_offsets(self):
        instance = _instance()
        assert due_reminders(instance, instance.due_date - timedelta(hours=12)) == (3, 1)

    def test_sent_offsets_are_skipped(self):
        instance = _instance(reminders_sent=(3,))
        assert due_reminders(instance, instance.due_date - timedelta(hours=12)) == (1,)

    def test_stops_at_due_date(self):
        instance = _instance()
        assert due_reminders(instance, instance.due_date) == ()

    def test_only_active(self):
        instance = _instance(status=PlaybookStatus.PAUSED)
        assert due_reminders(instance, instance.due_date - timedelta(days=1)) == ()


class TestPlaybookEscalation:
    def test_fires_after_escalation_days(self):
        instance = _instance()
        assert not is_due_for_playbook_escalation(instance, instance.due_date + timedelta(days=1))
        assert is_due_for_playbook_escalation(instance, instance.due_date + timedelta(days=2))

    def test_once(self):
        instance = _instance(escalated_at=T0)
        assert not is_due_for_playbook_escalation(instance, instance.due_date + timedelta(days=5))

    def test_disabled_without_escalation_days(self):
        instance = _instance(escalation_days=None)
        assert not is_due_for_playbook_escalation(instance, instance.due_date + timedelta(days=30))

    def test_overdue(self):
        instance = _instance()
        assert not is_overdue(instance, instance.due_date)
        assert is_overdue(instance, instance.due_date + timedelta(seconds=1))
        assert not is_overdue(replace(instance, status=PlaybookStatus.COMPLETED), instance.due_date + timedelta(days=1))
