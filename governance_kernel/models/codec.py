"""
Snapshot codec -- domain dataclasses to and from JSON-compatible dicts.

Both repositories store whole entity snapshots; this module is the single
definition of their serialized shape. Tagged unions (operation payloads,
playbook contexts) are written with their ``kind`` tag and rebuilt from it.
"""

from __future__ import annotations

import types
from dataclasses import fields
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Union, get_args, get_origin, get_type_hints
from uuid import UUID

from governance_kernel.domain.approval import (
    ApprovalDomain,
    ApprovalStatus,
    ApprovalType,
    ApprovalVote,
    ChangePreview,
    ExecutionResult,
    ExtendedApprovalRequest,
    RiskLevel,
    VoteDecision,
)
from governance_kernel.domain.payloads import PAYLOAD_TYPES, OperationPayload, PayloadKind
from governance_kernel.domain.playbook import (
    CONTEXT_TYPES,
    Attachment,
    AutomationTrigger,
    ChecklistEntry,
    ContextKind,
    PlaybookCategory,
    PlaybookContext,
    PlaybookInstance,
    PlaybookStatus,
    PlaybookStepInstance,
    StepApproval,
    StepApprovalStatus,
    StepStatus,
    TriggerAction,
    TriggerWhen,
)

SNAPSHOT_SCHEMA_VERSION = 1


# ---------------------------------------------------------------------------
# Scalars
# ---------------------------------------------------------------------------


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (tuple, list)):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    return value


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value is not None else None


def _coerce(value: Any, hint: Any) -> Any:
    """Rebuild a field value from its JSON form using the field's annotation."""
    if value is None:
        return None
    origin = get_origin(hint)
    if origin in (Union, types.UnionType):
        inner = [a for a in get_args(hint) if a is not type(None)]
        return _coerce(value, inner[0]) if len(inner) == 1 else value
    if origin is tuple:
        return tuple(value)
    if origin is dict:
        return dict(value)
    if hint is Decimal:
        return Decimal(str(value))
    if hint is datetime:
        return datetime.fromisoformat(value)
    if hint is date:
        return date.fromisoformat(value)
    return value


def _encode_tagged(obj: Any) -> dict[str, Any]:
    data: dict[str, Any] = {"kind": obj.kind.value}
    for f in fields(obj):
        data[f.name] = _plain(getattr(obj, f.name))
    return data


def _decode_tagged(cls: type, data: dict[str, Any]) -> Any:
    hints = get_type_hints(cls)
    kwargs = {
        f.name: _coerce(data[f.name], hints[f.name])
        for f in fields(cls)
        if f.name in data
    }
    return cls(**kwargs)


# ---------------------------------------------------------------------------
# Tagged unions
# ---------------------------------------------------------------------------


def encode_payload(payload: OperationPayload) -> dict[str, Any]:
    return _encode_tagged(payload)


def decode_payload(data: dict[str, Any]) -> OperationPayload:
    kind = PayloadKind(data["kind"])
    return _decode_tagged(PAYLOAD_TYPES[kind], data)


def encode_context(context: PlaybookContext) -> dict[str, Any]:
    return _encode_tagged(context)


def decode_context(data: dict[str, Any]) -> PlaybookContext:
    kind = ContextKind(data["kind"])
    return _decode_tagged(CONTEXT_TYPES[kind], data)


# ---------------------------------------------------------------------------
# Approval requests
# ---------------------------------------------------------------------------


def _encode_vote(vote: ApprovalVote) -> dict[str, Any]:
    return {
        "voter_id": vote.voter_id,
        "voter_name": vote.voter_name,
        "voter_role": vote.voter_role,
        "decision": vote.decision.value,
        "timestamp": vote.timestamp.isoformat(),
        "comment": vote.comment,
        "ip_address": vote.ip_address,
    }


def _decode_vote(data: dict[str, Any]) -> ApprovalVote:
    return ApprovalVote(
        voter_id=data["voter_id"],
        voter_name=data["voter_name"],
        voter_role=data["voter_role"],
        decision=VoteDecision(data["decision"]),
        timestamp=datetime.fromisoformat(data["timestamp"]),
        comment=data.get("comment"),
        ip_address=data.get("ip_address"),
    )


def encode_request(request: ExtendedApprovalRequest) -> dict[str, Any]:
    preview = request.change_preview
    result = request.execution_result
    return {
        "schema_version": SNAPSHOT_SCHEMA_VERSION,
        "request_id": str(request.request_id),
        "tenant_id": request.tenant_id,
        "company_id": request.company_id,
        "domain": request.domain.value,
        "approval_type": request.approval_type.value,
        "status": request.status.value,
        "title": request.title,
        "description": request.description,
        "payload": encode_payload(request.payload),
        "risk_level": request.risk_level.value,
        "reversible": request.reversible,
        "requested_by": request.requested_by,
        "requested_by_name": request.requested_by_name,
        "requested_by_role": request.requested_by_role,
        "requested_at": request.requested_at.isoformat(),
        "deadline": request.deadline.isoformat(),
        "required_approvers": request.required_approvers,
        "policy_version": request.policy_version,
        "policy_hash": request.policy_hash,
        "change_preview": (
            {
                "before": _plain(preview.before),
                "after": _plain(preview.after),
                "affected_records": preview.affected_records,
            }
            if preview is not None
            else None
        ),
        "impact_description": request.impact_description,
        "request_comment": request.request_comment,
        "auto_approved": request.auto_approved,
        "approvals": [_encode_vote(v) for v in request.approvals],
        "rejections": [_encode_vote(v) for v in request.rejections],
        "escalated_at": _plain(request.escalated_at),
        "escalated_to": list(request.escalated_to),
        "approved_at": _plain(request.approved_at),
        "rejected_at": _plain(request.rejected_at),
        "closed_at": _plain(request.closed_at),
        "closed_reason": request.closed_reason,
        "executed_at": _plain(request.executed_at),
        "execution_result": (
            {"success": result.success, "message": result.message, "error": result.error}
            if result is not None
            else None
        ),
        "created_at": _plain(request.created_at),
        "updated_at": _plain(request.updated_at),
    }


def decode_request(data: dict[str, Any], version: int) -> ExtendedApprovalRequest:
    preview = data.get("change_preview")
    result = data.get("execution_result")
    return ExtendedApprovalRequest(
        request_id=UUID(data["request_id"]),
        tenant_id=data["tenant_id"],
        company_id=data["company_id"],
        domain=ApprovalDomain(data["domain"]),
        approval_type=ApprovalType(data["approval_type"]),
        status=ApprovalStatus(data["status"]),
        title=data["title"],
        description=data["description"],
        payload=decode_payload(data["payload"]),
        risk_level=RiskLevel(data["risk_level"]),
        reversible=data["reversible"],
        requested_by=data["requested_by"],
        requested_by_name=data["requested_by_name"],
        requested_by_role=data["requested_by_role"],
        requested_at=datetime.fromisoformat(data["requested_at"]),
        deadline=datetime.fromisoformat(data["deadline"]),
        required_approvers=data["required_approvers"],
        policy_version=data["policy_version"],
        policy_hash=data.get("policy_hash"),
        change_preview=(
            ChangePreview(
                before=preview["before"],
                after=preview["after"],
                affected_records=preview["affected_records"],
            )
            if preview is not None
            else None
        ),
        impact_description=data.get("impact_description"),
        request_comment=data.get("request_comment"),
        auto_approved=data.get("auto_approved", False),
        approvals=tuple(_decode_vote(v) for v in data.get("approvals", ())),
        rejections=tuple(_decode_vote(v) for v in data.get("rejections", ())),
        escalated_at=_dt(data.get("escalated_at")),
        escalated_to=tuple(data.get("escalated_to", ())),
        approved_at=_dt(data.get("approved_at")),
        rejected_at=_dt(data.get("rejected_at")),
        closed_at=_dt(data.get("closed_at")),
        closed_reason=data.get("closed_reason"),
        executed_at=_dt(data.get("executed_at")),
        execution_result=(
            ExecutionResult(
                success=result["success"],
                message=result.get("message"),
                error=result.get("error"),
            )
            if result is not None
            else None
        ),
        created_at=_dt(data.get("created_at")),
        updated_at=_dt(data.get("updated_at")),
        version=version,
    )


# ---------------------------------------------------------------------------
# Playbook instances
# ---------------------------------------------------------------------------


def _encode_trigger(trigger: AutomationTrigger | None) -> dict[str, Any] | None:
    if trigger is None:
        return None
    return {
        "when": trigger.when.value,
        "action": trigger.action.value,
        "recipients": list(trigger.recipients),
        "channels": list(trigger.channels),
        "message": trigger.message,
    }


def _decode_trigger(data: dict[str, Any] | None) -> AutomationTrigger | None:
    if data is None:
        return None
    return AutomationTrigger(
        when=TriggerWhen(data["when"]),
        action=TriggerAction(data["action"]),
        recipients=tuple(data.get("recipients", ())),
        channels=tuple(data.get("channels", ())),
        message=data.get("message"),
    )


def _encode_step(step: PlaybookStepInstance) -> dict[str, Any]:
    approval = step.approval
    return {
        "step_id": step.step_id,
        "template_step_id": step.template_step_id,
        "order": step.order,
        "name": step.name,
        "status": step.status.value,
        "due_date": step.due_date.isoformat(),
        "depends_on": list(step.depends_on),
        "blocked_by_approval": step.blocked_by_approval,
        "requires_approval": step.requires_approval,
        "approver_role": step.approver_role,
        "automation_trigger": _encode_trigger(step.automation_trigger),
        "assignee_id": step.assignee_id,
        "assignee_name": step.assignee_name,
        "started_at": _plain(step.started_at),
        "completed_at": _plain(step.completed_at),
        "completed_by": step.completed_by,
        "approval": (
            {
                "status": approval.status.value,
                "approver_id": approval.approver_id,
                "approver_name": approval.approver_name,
                "decided_at": _plain(approval.decided_at),
                "comment": approval.comment,
            }
            if approval is not None
            else None
        ),
        "attachments": [
            {
                "name": a.name,
                "url": a.url,
                "uploaded_by": a.uploaded_by,
                "uploaded_at": a.uploaded_at.isoformat(),
            }
            for a in step.attachments
        ],
        "completion_comment": step.completion_comment,
        "checklist": [{"item": c.item, "completed": c.completed} for c in step.checklist],
        "actual_minutes": step.actual_minutes,
        "blocked_reason": step.blocked_reason,
        "blocked_since": _plain(step.blocked_since),
    }


def _decode_step(data: dict[str, Any]) -> PlaybookStepInstance:
    approval = data.get("approval")
    return PlaybookStepInstance(
        step_id=data["step_id"],
        template_step_id=data["template_step_id"],
        order=data["order"],
        name=data["name"],
        status=StepStatus(data["status"]),
        due_date=datetime.fromisoformat(data["due_date"]),
        depends_on=tuple(data.get("depends_on", ())),
        blocked_by_approval=data.get("blocked_by_approval", False),
        requires_approval=data.get("requires_approval", False),
        approver_role=data.get("approver_role"),
        automation_trigger=_decode_trigger(data.get("automation_trigger")),
        assignee_id=data.get("assignee_id"),
        assignee_name=data.get("assignee_name"),
        started_at=_dt(data.get("started_at")),
        completed_at=_dt(data.get("completed_at")),
        completed_by=data.get("completed_by"),
        approval=(
            StepApproval(
                status=StepApprovalStatus(approval["status"]),
                approver_id=approval.get("approver_id"),
                approver_name=approval.get("approver_name"),
                decided_at=_dt(approval.get("decided_at")),
                comment=approval.get("comment"),
            )
            if approval is not None
            else None
        ),
        attachments=tuple(
            Attachment(
                name=a["name"],
                url=a["url"],
                uploaded_by=a["uploaded_by"],
                uploaded_at=datetime.fromisoformat(a["uploaded_at"]),
            )
            for a in data.get("attachments", ())
        ),
        completion_comment=data.get("completion_comment"),
        checklist=tuple(
            ChecklistEntry(item=c["item"], completed=c["completed"])
            for c in data.get("checklist", ())
        ),
        actual_minutes=data.get("actual_minutes"),
        blocked_reason=data.get("blocked_reason"),
        blocked_since=_dt(data.get("blocked_since")),
    )


def encode_instance(instance: PlaybookInstance) -> dict[str, Any]:
    return {
        "schema_version": SNAPSHOT_SCHEMA_VERSION,
        "instance_id": str(instance.instance_id),
        "tenant_id": instance.tenant_id,
        "company_id": instance.company_id,
        "template_id": instance.template_id,
        "template_name": instance.template_name,
        "template_version": instance.template_version,
        "category": instance.category.value,
        "status": instance.status.value,
        "progress": instance.progress,
        "start_date": instance.start_date.isoformat(),
        "due_date": instance.due_date.isoformat(),
        "owner_id": instance.owner_id,
        "owner_name": instance.owner_name,
        "steps": [_encode_step(s) for s in instance.steps],
        "context": encode_context(instance.context),
        "created_by": instance.created_by,
        "created_at": instance.created_at.isoformat(),
        "updated_at": instance.updated_at.isoformat(),
        "fund_id": instance.fund_id,
        "completed_at": _plain(instance.completed_at),
        "cancelled_at": _plain(instance.cancelled_at),
        "last_activity_at": _plain(instance.last_activity_at),
        "reminder_days": list(instance.reminder_days),
        "escalation_days": instance.escalation_days,
        "escalation_role": instance.escalation_role,
        "reminders_sent": list(instance.reminders_sent),
        "escalated_at": _plain(instance.escalated_at),
        "tags": list(instance.tags),
        "notes": instance.notes,
    }


def decode_instance(data: dict[str, Any], version: int) -> PlaybookInstance:
    return PlaybookInstance(
        instance_id=UUID(data["instance_id"]),
        tenant_id=data["tenant_id"],
        company_id=data["company_id"],
        template_id=data["template_id"],
        template_name=data["template_name"],
        template_version=data["template_version"],
        category=PlaybookCategory(data["category"]),
        status=PlaybookStatus(data["status"]),
        progress=data["progress"],
        start_date=datetime.fromisoformat(data["start_date"]),
        due_date=datetime.fromisoformat(data["due_date"]),
        owner_id=data["owner_id"],
        owner_name=data["owner_name"],
        steps=tuple(_decode_step(s) for s in data["steps"]),
        context=decode_context(data["context"]),
        created_by=data["created_by"],
        created_at=datetime.fromisoformat(data["created_at"]),
        updated_at=datetime.fromisoformat(data["updated_at"]),
        fund_id=data.get("fund_id"),
        completed_at=_dt(data.get("completed_at")),
        cancelled_at=_dt(data.get("cancelled_at")),
        last_activity_at=_dt(data.get("last_activity_at")),
        reminder_days=tuple(data.get("reminder_days", ())),
        escalation_days=data.get("escalation_days"),
        escalation_role=data.get("escalation_role"),
        reminders_sent=tuple(data.get("reminders_sent", ())),
        escalated_at=_dt(data.get("escalated_at")),
        tags=tuple(data.get("tags", ())),
        notes=data.get("notes"),
        version=version,
    )
