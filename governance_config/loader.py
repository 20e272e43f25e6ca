"""
Catalogue Loader (``governance_config.loader``).

Responsibility
--------------
Loads the YAML catalogue files and parses them into the frozen domain
types of ``governance_kernel.domain``: approval policies, playbook
templates and role capability grants.

Architecture position
---------------------
**Config layer** -- infrastructure tooling. Consumed by
``governance_config.load_catalogue``; services never read YAML themselves.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* Policy shape (minimum approvers, dual approval) is checked by
  ``ApprovalPolicy.__post_init__`` as each policy is built.
* Template step graphs are validated at load: unique step ids, known
  dependencies, no cycles.
* ``compute_checksum`` produces a deterministic SHA-256 fingerprint of the
  raw catalogue documents.

Failure modes
-------------
* Missing YAML file -> ``FileNotFoundError`` propagates.
* Malformed YAML -> ``yaml.YAMLError`` propagates.
* Missing required keys -> ``KeyError`` propagates.
* Unknown enum values or bad shapes -> ``ValueError``.
* Bad step graph -> ``UnknownDependencyError`` / ``DependencyCycleError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from governance_engines.dependencies import validate_step_graph
from governance_kernel.domain.approval import (
    ApprovalDomain,
    ApprovalPolicy,
    ApprovalType,
    AutoApproveConditions,
)
from governance_kernel.domain.playbook import (
    AssigneeType,
    AutomationTrigger,
    PlaybookCategory,
    PlaybookStepTemplate,
    PlaybookTemplate,
    RecurrencePattern,
    TriggerAction,
    TriggerWhen,
)
from governance_kernel.domain.principal import Capability


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _strings(value: Any, field_name: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise ValueError(f"{field_name} must be a list, got {value!r}")
    return tuple(str(v) for v in value)


def _enum(enum_cls: type, value: Any, field_name: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValueError(
            f"Unknown {field_name} {value!r}; expected one of: {allowed}"
        ) from None


def parse_auto_approve(data: dict[str, Any] | None) -> AutoApproveConditions | None:
    if not data:
        return None
    max_amount = data.get("max_amount")
    return AutoApproveConditions(
        max_items=data.get("max_items"),
        max_amount=Decimal(str(max_amount)) if max_amount is not None else None,
        trusted_roles=frozenset(_strings(data.get("trusted_roles"), "trusted_roles")),
    )


def parse_policy(data: dict[str, Any]) -> ApprovalPolicy:
    """
    Parse an ``ApprovalPolicy`` from a dict.

    Preconditions:
        - ``data`` contains at minimum ``approval_type``, ``domain`` and
          ``name``.
    Raises:
        KeyError: if required keys are missing.
        ValueError: on unknown enum values or invalid policy shape.
    """
    return ApprovalPolicy(
        approval_type=_enum(ApprovalType, data["approval_type"], "approval_type"),
        domain=_enum(ApprovalDomain, data["domain"], "domain"),
        name=data["name"],
        description=data.get("description", ""),
        version=int(data.get("version", 1)),
        requires_approval=bool(data.get("requires_approval", True)),
        requires_dual_approval=bool(data.get("requires_dual_approval", False)),
        minimum_approvers=int(data.get("minimum_approvers", 1)),
        approver_roles=frozenset(_strings(data.get("approver_roles"), "approver_roles")),
        exclude_requestor=bool(data.get("exclude_requestor", True)),
        auto_approve_conditions=parse_auto_approve(data.get("auto_approve_conditions")),
        default_deadline_hours=int(data.get("default_deadline_hours", 48)),
        escalation_hours=int(data.get("escalation_hours", 24)),
        escalate_to=_strings(data.get("escalate_to"), "escalate_to"),
        notify_on_request=_strings(data.get("notify_on_request"), "notify_on_request"),
        notify_on_approval=_strings(data.get("notify_on_approval"), "notify_on_approval"),
        notify_on_rejection=_strings(data.get("notify_on_rejection"), "notify_on_rejection"),
    )


def parse_trigger(data: dict[str, Any] | None) -> AutomationTrigger | None:
    if not data:
        return None
    return AutomationTrigger(
        when=_enum(TriggerWhen, data["when"], "trigger when"),
        action=_enum(TriggerAction, data["action"], "trigger action"),
        recipients=_strings(data.get("recipients"), "recipients"),
        channels=_strings(data.get("channels"), "channels"),
        message=data.get("message"),
    )


def parse_step(data: dict[str, Any]) -> PlaybookStepTemplate:
    """Parse one ``PlaybookStepTemplate``. Requires ``step_id``, ``order``, ``name``."""
    return PlaybookStepTemplate(
        step_id=str(data["step_id"]),
        order=int(data["order"]),
        name=data["name"],
        description=data.get("description", ""),
        instructions=data.get("instructions"),
        assignee_type=_enum(AssigneeType, data.get("assignee_type", "role"), "assignee_type"),
        default_assignee=data.get("default_assignee"),
        estimated_minutes=data.get("estimated_minutes"),
        due_days_offset=int(data.get("due_days_offset", 0)),
        depends_on=_strings(data.get("depends_on"), "depends_on"),
        blocked_by_approval=bool(data.get("blocked_by_approval", False)),
        requires_approval=bool(data.get("requires_approval", False)),
        approver_role=data.get("approver_role"),
        requires_dual_approval=bool(data.get("requires_dual_approval", False)),
        automation_trigger=parse_trigger(data.get("automation_trigger")),
        attachment_required=bool(data.get("attachment_required", False)),
        document_template_id=data.get("document_template_id"),
        checklist_items=_strings(data.get("checklist_items"), "checklist_items"),
        standard_comments=_strings(data.get("standard_comments"), "standard_comments"),
    )


def parse_template(data: dict[str, Any]) -> PlaybookTemplate:
    """
    Parse a ``PlaybookTemplate`` and validate its step graph.

    Raises:
        KeyError: if required keys are missing.
        ValueError: on an empty step list, duplicate step ids or bad enums.
        UnknownDependencyError: if a step depends on an undeclared step.
        DependencyCycleError: if the dependency graph has a cycle.
    """
    template_id = str(data["template_id"])
    steps = tuple(
        sorted((parse_step(s) for s in data.get("steps") or ()), key=lambda s: s.order)
    )
    if not steps:
        raise ValueError(f"Template {template_id} declares no steps")

    seen: set[str] = set()
    for step in steps:
        if step.step_id in seen:
            raise ValueError(f"Template {template_id} repeats step id {step.step_id!r}")
        seen.add(step.step_id)

    validate_step_graph(template_id, steps)

    reminder_days = tuple(int(d) for d in data.get("reminder_days") or ())
    if any(d < 0 for d in reminder_days):
        raise ValueError(f"Template {template_id}: reminder_days must be non-negative")

    escalation_days = data.get("escalation_days")
    recurrence_day = data.get("recurrence_day")
    return PlaybookTemplate(
        template_id=template_id,
        name=data["name"],
        category=_enum(PlaybookCategory, data["category"], "category"),
        steps=steps,
        description=data.get("description", ""),
        version=int(data.get("version", 1)),
        default_due_days=int(data.get("default_due_days", 30)),
        reminder_days=reminder_days,
        escalation_days=int(escalation_days) if escalation_days is not None else None,
        required_roles=_strings(data.get("required_roles"), "required_roles"),
        approver_role=data.get("approver_role"),
        recurrence=_enum(RecurrencePattern, data.get("recurrence", "ONCE"), "recurrence"),
        recurrence_day=int(recurrence_day) if recurrence_day is not None else None,
        is_active=bool(data.get("is_active", True)),
    )


def parse_role_grants(data: dict[str, Any]) -> dict[str, frozenset[Capability]]:
    """Parse ``{role: [action:target, ...]}`` into capability sets."""
    grants: dict[str, frozenset[Capability]] = {}
    for role, capabilities in (data or {}).items():
        grants[str(role)] = frozenset(
            Capability.parse(c) for c in _strings(capabilities, f"grants for {role}")
        )
    return grants


def compute_checksum(documents: dict[str, Any]) -> str:
    """Deterministic SHA-256 over the raw catalogue documents."""
    canonical = json.dumps(documents, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
