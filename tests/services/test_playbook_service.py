"""
PlaybookService tests, driven through the shipped monthly NAV template.

nav-1 -> nav-2 -> nav-3 -> nav-4 (also needs nav-2) -> nav-5 (manager
approval) -> nav-6 (executive approval, notifies investors) -> nav-7.
"""

from datetime import date, timedelta
from uuid import uuid4

import pytest

from governance_kernel.domain.notification import DeliveryChannel, NotificationKind
from governance_kernel.domain.playbook import (
    GeneralContext,
    NavPeriodContext,
    PlaybookCategory,
    PlaybookStatus,
    ReportingPeriodContext,
    StepApprovalStatus,
    StepStatus,
)
from governance_kernel.exceptions import (
    ChecklistItemNotFoundError,
    DependencyNotSatisfiedError,
    InstanceNotFoundError,
    InvalidStateError,
    NotAuthorizedError,
    PayloadTypeMismatchError,
    StepNotFoundError,
    TemplateNotFoundError,
)
from tests.conftest import COMPANY, START, TENANT

NAV = "template-nav-monthly"


@pytest.fixture
def owner(principal):
    return principal("frida", "fund_accountant", name="Frida")


@pytest.fixture
def manager(principal):
    return principal("maria", "manager", name="Maria")


@pytest.fixture
def executive(principal):
    return principal("erik", "executive", name="Erik")


@pytest.fixture
def nav_instance(playbook_service, owner):
    return playbook_service.create_instance(TENANT, COMPANY, NAV, owner, fund_id="fund-a")


def _finish(service, instance, step_id, actor):
    service.update_step_status(TENANT, instance.instance_id, step_id, StepStatus.IN_PROGRESS, actor)
    return service.update_step_status(TENANT, instance.instance_id, step_id, StepStatus.COMPLETED, actor)


def _status(instance, template_step_id):
    return instance.step_by_template_id(template_step_id).status


class TestCreateInstance:
    def test_instantiates_template(self, nav_instance, catalogue):
        template = catalogue.templates.get_template(NAV)
        assert nav_instance.status == PlaybookStatus.DRAFT
        assert nav_instance.progress == 0
        assert nav_instance.template_version == template.version
        assert nav_instance.category == PlaybookCategory.NAV_CALCULATION
        assert nav_instance.due_date == START + timedelta(days=5)
        assert nav_instance.reminder_days == (3, 1)
        assert nav_instance.escalation_days == 2
        assert nav_instance.fund_id == "fund-a"
        assert [s.template_step_id for s in nav_instance.steps] == [f"nav-{i}" for i in range(1, 8)]
        assert all(s.status == StepStatus.NOT_STARTED for s in nav_instance.steps)

    def test_step_due_dates_follow_offsets(self, nav_instance):
        offsets = [
            (s.due_date - nav_instance.start_date).days for s in nav_instance.steps
        ]
        assert offsets == [-3, -2, -2, -1, 0, 0, 1]

    def test_step_shape_is_frozen_in(self, nav_instance):
        nav_4 = nav_instance.step_by_template_id("nav-4")
        assert nav_4.depends_on == ("nav-2", "nav-3")
        assert nav_4.step_id == f"step-{nav_instance.instance_id}-nav-4"
        assert nav_instance.step_by_template_id("nav-5").approver_role == "manager"
        assert nav_instance.step_by_template_id("nav-7").blocked_by_approval
        assert len(nav_instance.step_by_template_id("nav-1").checklist) == 3

    def test_default_context(self, nav_instance):
        assert nav_instance.context == NavPeriodContext(period="2024-01", valuation_date=date(2024, 1, 1))

    def test_explicit_dates(self, playbook_service, owner):
        start = START + timedelta(days=10)
        due = START + timedelta(days=20)
        instance = playbook_service.create_instance(
            TENANT, COMPANY, NAV, owner, start_date=start, due_date=due
        )
        assert instance.due_date == due
        assert instance.step_by_template_id("nav-1").due_date == start - timedelta(days=3)

    def test_context_must_fit_category(self, playbook_service, owner):
        with pytest.raises(PayloadTypeMismatchError):
            playbook_service.create_instance(
                TENANT, COMPANY, NAV, owner, context=ReportingPeriodContext(year=2024, quarter=1)
            )

    def test_general_category_accepts_any_context(self, playbook_service, owner):
        context = NavPeriodContext(period="2024-01")
        instance = playbook_service.create_instance(
            TENANT, COMPANY, "template-compliance-review", owner, context=context
        )
        assert instance.context == context

    def test_compliance_default_context_is_general(self, playbook_service, owner):
        instance = playbook_service.create_instance(TENANT, COMPANY, "template-compliance-review", owner)
        assert instance.context == GeneralContext()

    def test_unknown_template(self, playbook_service, owner):
        with pytest.raises(TemplateNotFoundError):
            playbook_service.create_instance(TENANT, COMPANY, "template-missing", owner)

    def test_created_logged(self, nav_instance, captured_logs, playbook_service, owner):
        instance = playbook_service.create_instance(TENANT, COMPANY, NAV, owner)
        created = [r for r in captured_logs() if r["message"] == "playbook_instance_created"]
        assert created[-1]["instance_id"] == str(instance.instance_id)
        assert created[-1]["step_count"] == 7


class TestStepWorkflow:
    def test_first_start_activates(self, playbook_service, nav_instance, owner, clock):
        clock.advance(hours=1)
        updated = playbook_service.update_step_status(
            TENANT, nav_instance.instance_id, "nav-1", StepStatus.IN_PROGRESS, owner
        )
        assert updated.status == PlaybookStatus.ACTIVE
        assert updated.step_by_template_id("nav-1").started_at == clock.now()
        assert updated.last_activity_at == clock.now()

    def test_full_instance_step_id_also_accepted(self, playbook_service, nav_instance, owner):
        full_id = nav_instance.step_by_template_id("nav-1").step_id
        updated = playbook_service.update_step_status(
            TENANT, nav_instance.instance_id, full_id, StepStatus.IN_PROGRESS, owner
        )
        assert _status(updated, "nav-1") == StepStatus.IN_PROGRESS

    def test_dependency_gating(self, playbook_service, nav_instance, owner):
        with pytest.raises(DependencyNotSatisfiedError) as exc_info:
            playbook_service.update_step_status(
                TENANT, nav_instance.instance_id, "nav-4", StepStatus.IN_PROGRESS, owner
            )
        assert exc_info.value.step_id == "nav-4"
        assert exc_info.value.unsatisfied == ("nav-2", "nav-3")
        stored = playbook_service.get_instance(TENANT, nav_instance.instance_id)
        assert stored.status == PlaybookStatus.DRAFT
        assert _status(stored, "nav-4") == StepStatus.NOT_STARTED

    def test_partial_dependencies(self, playbook_service, nav_instance, owner):
        _finish(playbook_service, nav_instance, "nav-1", owner)
        _finish(playbook_service, nav_instance, "nav-2", owner)
        with pytest.raises(DependencyNotSatisfiedError) as exc_info:
            playbook_service.update_step_status(
                TENANT, nav_instance.instance_id, "nav-4", StepStatus.IN_PROGRESS, owner
            )
        assert exc_info.value.unsatisfied == ("nav-3",)

    def test_skipped_dependency_counts_as_done(self, playbook_service, nav_instance, owner):
        playbook_service.update_step_status(
            TENANT, nav_instance.instance_id, "nav-1", StepStatus.SKIPPED, owner,
            completion_comment="positions unchanged",
        )
        updated = playbook_service.update_step_status(
            TENANT, nav_instance.instance_id, "nav-2", StepStatus.IN_PROGRESS, owner
        )
        assert _status(updated, "nav-2") == StepStatus.IN_PROGRESS

    def test_ready_steps(self, playbook_service, nav_instance, owner):
        assert [s.template_step_id for s in playbook_service.ready_steps(TENANT, nav_instance.instance_id)] == ["nav-1"]
        _finish(playbook_service, nav_instance, "nav-1", owner)
        assert [s.template_step_id for s in playbook_service.ready_steps(TENANT, nav_instance.instance_id)] == ["nav-2"]

    def test_progress_recomputed(self, playbook_service, nav_instance, owner):
        updated = _finish(playbook_service, nav_instance, "nav-1", owner)
        assert updated.progress == 14
        updated = _finish(playbook_service, nav_instance, "nav-2", owner)
        assert updated.progress == 29

    def test_completion_details_recorded(self, playbook_service, nav_instance, owner, clock):
        playbook_service.update_step_status(TENANT, nav_instance.instance_id, "nav-1", StepStatus.IN_PROGRESS, owner)
        clock.advance(hours=2)
        updated = playbook_service.update_step_status(
            TENANT, nav_instance.instance_id, "nav-1", StepStatus.COMPLETED, owner,
            completion_comment="all positions in", actual_minutes=40,
        )
        step = updated.step_by_template_id("nav-1")
        assert step.completed_at == clock.now()
        assert step.completed_by == "frida"
        assert step.completion_comment == "all positions in"
        assert step.actual_minutes == 40

    def test_illegal_transition(self, playbook_service, nav_instance, owner):
        with pytest.raises(InvalidStateError):
            playbook_service.update_step_status(
                TENANT, nav_instance.instance_id, "nav-1", StepStatus.COMPLETED, owner
            )

    def test_block_and_unblock(self, playbook_service, nav_instance, owner):
        playbook_service.update_step_status(TENANT, nav_instance.instance_id, "nav-1", StepStatus.IN_PROGRESS, owner)
        blocked = playbook_service.update_step_status(
            TENANT, nav_instance.instance_id, "nav-1", StepStatus.BLOCKED, owner,
            blocked_reason="custodian file missing",
        )
        assert blocked.step_by_template_id("nav-1").blocked_reason == "custodian file missing"
        resumed = playbook_service.update_step_status(
            TENANT, nav_instance.instance_id, "nav-1", StepStatus.IN_PROGRESS, owner
        )
        assert resumed.step_by_template_id("nav-1").blocked_reason is None

    def test_unknown_step(self, playbook_service, nav_instance, owner):
        with pytest.raises(StepNotFoundError):
            playbook_service.update_step_status(
                TENANT, nav_instance.instance_id, "nav-99", StepStatus.IN_PROGRESS, owner
            )

    def test_unknown_instance(self, playbook_service, owner):
        with pytest.raises(InstanceNotFoundError):
            playbook_service.update_step_status(TENANT, uuid4(), "nav-1", StepStatus.IN_PROGRESS, owner)

    def test_step_update_logged(self, playbook_service, nav_instance, owner, captured_logs):
        playbook_service.update_step_status(TENANT, nav_instance.instance_id, "nav-1", StepStatus.IN_PROGRESS, owner)
        updates = [r for r in captured_logs() if r["message"] == "playbook_step_updated"]
        assert updates[-1]["from_status"] == "NOT_STARTED"
        assert updates[-1]["to_status"] == "IN_PROGRESS"
        assert updates[-1]["instance_status"] == "ACTIVE"
        assert updates[-1]["actor_id"] == "frida"


class TestStepApprovals:
    @pytest.fixture
    def at_verification(self, playbook_service, nav_instance, owner):
        for step_id in ("nav-1", "nav-2", "nav-3", "nav-4"):
            _finish(playbook_service, nav_instance, step_id, owner)
        return _finish(playbook_service, nav_instance, "nav-5", owner)

    def test_completion_waits_for_approval(self, at_verification, sink):
        step = at_verification.step_by_template_id("nav-5")
        assert step.status == StepStatus.PENDING_APPROVAL
        assert step.approval.status == StepApprovalStatus.PENDING
        assert at_verification.progress == 57
        notices = sink.of_kind(NotificationKind.PLAYBOOK_STEP_APPROVAL)
        assert len(notices) == 1
        assert notices[0].recipients == ("manager",)

    def test_pending_approval_blocks_dependents(self, playbook_service, at_verification, executive):
        with pytest.raises(DependencyNotSatisfiedError):
            playbook_service.update_step_status(
                TENANT, at_verification.instance_id, "nav-6", StepStatus.IN_PROGRESS, executive
            )

    def test_approver_needs_capability(self, playbook_service, at_verification, owner, principal):
        with pytest.raises(NotAuthorizedError) as exc_info:
            playbook_service.approve_step(TENANT, at_verification.instance_id, "nav-5", True, owner)
        assert exc_info.value.required_capability == "approve_step:manager"
        # Executive approves nav-6, not nav-5
        with pytest.raises(NotAuthorizedError):
            playbook_service.approve_step(
                TENANT, at_verification.instance_id, "nav-5", True, principal("erik", "executive")
            )

    def test_admin_may_approve(self, playbook_service, at_verification, principal):
        updated = playbook_service.approve_step(
            TENANT, at_verification.instance_id, "nav-5", True, principal("root", "admin")
        )
        assert _status(updated, "nav-5") == StepStatus.COMPLETED

    def test_rejection_loop(self, playbook_service, at_verification, owner, manager):
        rejected = playbook_service.approve_step(
            TENANT, at_verification.instance_id, "nav-5", False, manager, comment="fee accrual off"
        )
        step = rejected.step_by_template_id("nav-5")
        assert step.status == StepStatus.IN_PROGRESS
        assert step.approval.status == StepApprovalStatus.REJECTED
        assert step.approval.comment == "fee accrual off"
        assert rejected.progress == 57

        resubmitted = playbook_service.update_step_status(
            TENANT, at_verification.instance_id, "nav-5", StepStatus.COMPLETED, owner
        )
        assert _status(resubmitted, "nav-5") == StepStatus.PENDING_APPROVAL

        approved = playbook_service.approve_step(TENANT, at_verification.instance_id, "nav-5", True, manager)
        assert _status(approved, "nav-5") == StepStatus.COMPLETED
        assert approved.progress == 71

    def test_decision_requires_pending_step(self, playbook_service, nav_instance, manager):
        with pytest.raises(InvalidStateError):
            playbook_service.approve_step(TENANT, nav_instance.instance_id, "nav-5", True, manager)

    def test_run_to_completion(
        self, playbook_service, at_verification, owner, manager, executive, sink, captured_logs, clock
    ):
        instance_id = at_verification.instance_id
        playbook_service.approve_step(TENANT, instance_id, "nav-5", True, manager)

        _finish(playbook_service, at_verification, "nav-6", executive)
        # nav-7 waits for the sign-off approval, not only for completion
        with pytest.raises(DependencyNotSatisfiedError):
            playbook_service.update_step_status(TENANT, instance_id, "nav-7", StepStatus.IN_PROGRESS, owner)

        sink.clear()
        playbook_service.approve_step(TENANT, instance_id, "nav-6", True, executive, comment="sign off")
        automation = sink.of_kind(NotificationKind.PLAYBOOK_AUTOMATION)
        assert len(automation) == 1
        assert automation[0].recipients == ("investors",)
        assert automation[0].channels == (DeliveryChannel.EMAIL, DeliveryChannel.SLACK)
        assert automation[0].action_url == f"/playbooks/{instance_id}"

        clock.advance(hours=1)
        done = _finish(playbook_service, at_verification, "nav-7", owner)
        assert done.status == PlaybookStatus.COMPLETED
        assert done.progress == 100
        assert done.completed_at == clock.now()
        assert any(r["message"] == "playbook_instance_completed" for r in captured_logs())

        with pytest.raises(InvalidStateError):
            playbook_service.update_step_status(TENANT, instance_id, "nav-7", StepStatus.IN_PROGRESS, owner)


class TestChecklistAndAttachments:
    def test_check_item(self, playbook_service, nav_instance):
        updated = playbook_service.update_checklist_item(TENANT, nav_instance.instance_id, "nav-1", 1, True)
        checklist = updated.step_by_template_id("nav-1").checklist
        assert [c.completed for c in checklist] == [False, True, False]
        assert checklist[1].item == "Positions fetched from prime broker"

    def test_uncheck_item(self, playbook_service, nav_instance):
        playbook_service.update_checklist_item(TENANT, nav_instance.instance_id, "nav-1", 0, True)
        updated = playbook_service.update_checklist_item(TENANT, nav_instance.instance_id, "nav-1", 0, False)
        assert not updated.step_by_template_id("nav-1").checklist[0].completed

    @pytest.mark.parametrize("index", [-1, 3])
    def test_index_out_of_range(self, playbook_service, nav_instance, index, instance_store):
        with pytest.raises(ChecklistItemNotFoundError) as exc_info:
            playbook_service.update_checklist_item(TENANT, nav_instance.instance_id, "nav-1", index, True)
        assert exc_info.value.code == "CHECKLIST_ITEM_NOT_FOUND"
        assert exc_info.value.index == index
        assert exc_info.value.step_id == "nav-1"
        stored = instance_store.find_by_id(TENANT, nav_instance.instance_id)
        assert stored.version == nav_instance.version

    def test_attachment(self, playbook_service, nav_instance, owner, clock):
        updated = playbook_service.add_attachment(
            TENANT, nav_instance.instance_id, "nav-1", "positions.xlsx", "https://files.example/p.xlsx", owner
        )
        attachment = updated.step_by_template_id("nav-1").attachments[0]
        assert attachment.name == "positions.xlsx"
        assert attachment.url == "https://files.example/p.xlsx"
        assert attachment.uploaded_by == "frida"
        assert attachment.uploaded_at == clock.now()


class TestInstanceLifecycle:
    @pytest.fixture
    def active(self, playbook_service, nav_instance, owner):
        return playbook_service.update_step_status(
            TENANT, nav_instance.instance_id, "nav-1", StepStatus.IN_PROGRESS, owner
        )

    def test_pause_and_resume(self, playbook_service, active, owner):
        paused = playbook_service.pause_instance(TENANT, active.instance_id)
        assert paused.status == PlaybookStatus.PAUSED

        with pytest.raises(InvalidStateError):
            playbook_service.update_step_status(
                TENANT, active.instance_id, "nav-1", StepStatus.COMPLETED, owner
            )

        resumed = playbook_service.resume_instance(TENANT, active.instance_id)
        assert resumed.status == PlaybookStatus.ACTIVE

    def test_draft_can_not_pause(self, playbook_service, nav_instance):
        with pytest.raises(InvalidStateError):
            playbook_service.pause_instance(TENANT, nav_instance.instance_id)

    def test_resume_requires_paused(self, playbook_service, active):
        with pytest.raises(InvalidStateError):
            playbook_service.resume_instance(TENANT, active.instance_id)

    def test_cancel(self, playbook_service, active, clock):
        cancelled = playbook_service.cancel_instance(TENANT, active.instance_id, reason="fund closed")
        assert cancelled.status == PlaybookStatus.CANCELLED
        assert cancelled.cancelled_at == clock.now()
        assert cancelled.notes == "fund closed"
        with pytest.raises(InvalidStateError):
            playbook_service.cancel_instance(TENANT, active.instance_id)

    def test_cancel_paused(self, playbook_service, active):
        playbook_service.pause_instance(TENANT, active.instance_id)
        assert playbook_service.cancel_instance(TENANT, active.instance_id).status == PlaybookStatus.CANCELLED

    def test_cancelled_rejects_checklist(self, playbook_service, active):
        playbook_service.cancel_instance(TENANT, active.instance_id)
        with pytest.raises(InvalidStateError):
            playbook_service.update_checklist_item(TENANT, active.instance_id, "nav-1", 0, True)


class TestQueries:
    def test_list_instances(self, playbook_service, owner, principal):
        early = playbook_service.create_instance(
            TENANT, COMPANY, NAV, owner, due_date=START + timedelta(days=2)
        )
        late = playbook_service.create_instance(TENANT, COMPANY, "template-compliance-review", owner)
        other = playbook_service.create_instance(TENANT, "company-2", NAV, principal("olle", "fund_accountant"))

        assert [i.instance_id for i in playbook_service.list_instances(TENANT)] == [
            early.instance_id, other.instance_id, late.instance_id,
        ]
        assert len(playbook_service.list_instances(TENANT, company_id=COMPANY)) == 2
        assert [i.instance_id for i in playbook_service.list_instances(TENANT, owner_id="olle")] == [other.instance_id]
        assert len(playbook_service.list_instances(TENANT, category=PlaybookCategory.COMPLIANCE)) == 1
        assert playbook_service.list_instances(TENANT, status=PlaybookStatus.ACTIVE) == []
        assert playbook_service.list_instances("tenant-2") == []

    def test_upcoming_deadlines(self, playbook_service, owner):
        instance = playbook_service.create_instance(
            TENANT, COMPANY, NAV, owner, start_date=START + timedelta(days=10)
        )
        # Draft instances are not listed
        assert playbook_service.upcoming_deadlines(TENANT, days_ahead=30) == []

        playbook_service.update_step_status(TENANT, instance.instance_id, "nav-1", StepStatus.IN_PROGRESS, owner)
        week = playbook_service.upcoming_deadlines(TENANT, days_ahead=7)
        assert [u.step.template_step_id for u in week] == ["nav-1"]
        assert week[0].playbook_name == "Monthly NAV calculation"
        assert week[0].due_date == START + timedelta(days=7)

        longer = playbook_service.upcoming_deadlines(TENANT, days_ahead=9)
        assert [u.step.template_step_id for u in longer] == ["nav-1", "nav-2", "nav-3", "nav-4"]

    def test_done_steps_not_upcoming(self, playbook_service, owner):
        instance = playbook_service.create_instance(
            TENANT, COMPANY, NAV, owner, start_date=START + timedelta(days=10)
        )
        _finish(playbook_service, instance, "nav-1", owner)
        playbook_service.update_step_status(TENANT, instance.instance_id, "nav-2", StepStatus.IN_PROGRESS, owner)
        week = playbook_service.upcoming_deadlines(TENANT, days_ahead=7)
        assert week == []

    def test_overdue(self, playbook_service, nav_instance, owner, clock):
        playbook_service.update_step_status(TENANT, nav_instance.instance_id, "nav-1", StepStatus.IN_PROGRESS, owner)
        clock.advance(days=5)
        assert playbook_service.overdue_instances(TENANT) == []
        clock.advance(1)
        assert [i.instance_id for i in playbook_service.overdue_instances(TENANT)] == [nav_instance.instance_id]

    def test_paused_instance_not_overdue(self, playbook_service, nav_instance, owner, clock):
        playbook_service.update_step_status(TENANT, nav_instance.instance_id, "nav-1", StepStatus.IN_PROGRESS, owner)
        playbook_service.pause_instance(TENANT, nav_instance.instance_id)
        clock.advance(days=10)
        assert playbook_service.overdue_instances(TENANT) == []

    def test_next_occurrence(self, playbook_service):
        assert playbook_service.next_occurrence(NAV, date(2024, 1, 5)) == date(2024, 2, 5)
        assert playbook_service.next_occurrence(NAV, date(2024, 1, 2)) == date(2024, 1, 5)
        assert playbook_service.next_occurrence("template-quarterly-fi-report", date(2024, 1, 10)) == date(2024, 2, 14)

    def test_next_occurrence_unknown_template(self, playbook_service):
        with pytest.raises(TemplateNotFoundError):
            playbook_service.next_occurrence("template-missing", date(2024, 1, 1))
