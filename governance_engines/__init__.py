"""
Pure calculation engines for the governance workflow.

No I/O, no clock, no database. Every function takes the data it needs and
returns a value (or a new frozen snapshot).
"""

from governance_engines.approval import (
    AutoApprovalEvaluation,
    apply_vote,
    creates_approved,
    evaluate_auto_approval,
    evaluate_vote_outcome,
    is_authorized_voter,
    required_approvers,
    validate_vote,
)
from governance_engines.dependencies import (
    can_start,
    ready_steps,
    topological_order,
    unsatisfied_dependencies,
    validate_step_graph,
)
from governance_engines.escalation import (
    due_reminders,
    escalation_threshold,
    is_due_for_escalation,
    is_due_for_playbook_escalation,
    is_overdue,
    is_past_deadline,
)
from governance_engines.progress import compute_progress, settle_instance
from governance_engines.recurrence import next_occurrence
from governance_engines.risk import classify_risk, is_reversible
from governance_engines.steps import decide_step_approval, resolve_target, transition_step

__all__ = [
    "AutoApprovalEvaluation",
    "apply_vote",
    "can_start",
    "classify_risk",
    "compute_progress",
    "creates_approved",
    "decide_step_approval",
    "due_reminders",
    "escalation_threshold",
    "evaluate_auto_approval",
    "evaluate_vote_outcome",
    "is_authorized_voter",
    "is_due_for_escalation",
    "is_due_for_playbook_escalation",
    "is_overdue",
    "is_past_deadline",
    "is_reversible",
    "next_occurrence",
    "ready_steps",
    "required_approvers",
    "resolve_target",
    "settle_instance",
    "topological_order",
    "transition_step",
    "unsatisfied_dependencies",
    "validate_step_graph",
    "validate_vote",
]
