"""
governance_services.approval_service -- four-eyes approval request lifecycle.

Responsibility:
    Creates approval requests for sensitive operations, records votes,
    cancels, expires and records execution results. Rule evaluation
    (auto-approval, vote validation, quorum and veto) is delegated to the
    pure ``governance_engines.approval`` engine.

Architecture position:
    Services -- imperative shell. Depends on the repository protocol, the
    policy registry, the notification dispatcher and the injected clock.

Invariants enforced:
    - Lifecycle: only PENDING requests accept votes or cancellation; the
      engine raises ``InvalidStateError`` for anything else.
    - Policy snapshot: ``required_approvers``, ``policy_version`` and
      ``policy_hash`` are frozen on the request at creation.
    - Vote uniqueness and self-approval exclusion are re-validated on every
      optimistic retry against the freshly read snapshot.
    - Notifications are dispatched only after the save succeeded.

Failure modes:
    - PolicyNotFoundError for an operation type without a policy.
    - PayloadTypeMismatchError when the payload does not match the
      policy's domain.
    - RequestNotFoundError, InvalidStateError, NotAuthorizedError,
      SelfApprovalForbiddenError, DuplicateVoteError on voting.
    - OptimisticLockError when retries are exhausted.

Audit relevance:
    Every transition emits a structured log event
    (``approval_request_created``, ``approval_vote_recorded``,
    ``approval_request_finalized``, ``approval_request_cancelled``,
    ``approval_request_expired``, ``approval_execution_recorded``).
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
from typing import Sequence
from uuid import UUID, uuid4

from governance_config.registry import PolicyRegistry
from governance_engines.approval import (
    apply_vote,
    creates_approved,
    evaluate_auto_approval,
    is_authorized_voter,
    required_approvers,
    validate_vote,
)
from governance_engines.escalation import is_past_deadline
from governance_engines.risk import classify_risk, is_reversible
from governance_kernel.domain.approval import (
    ApprovalDomain,
    ApprovalPolicy,
    ApprovalStatus,
    ApprovalType,
    ApprovalVote,
    ChangePreview,
    ExecutionResult,
    ExtendedApprovalRequest,
    RiskLevel,
    VoteDecision,
)
from governance_kernel.domain.clock import Clock
from governance_kernel.domain.notification import (
    NotificationKind,
    NotificationPriority,
    NotificationRequest,
)
from governance_kernel.domain.payloads import OperationPayload
from governance_kernel.domain.principal import Capability, CapabilityAction, Principal
from governance_kernel.domain.repository import ApprovalRequestRepository, ScopeFilter
from governance_kernel.exceptions import (
    InvalidStateError,
    NotAuthorizedError,
    PayloadTypeMismatchError,
    RequestNotFoundError,
)
from governance_kernel.logging_config import LogContext, get_logger
from governance_services.base import BaseService
from governance_services.notification import NotificationDispatcher

logger = get_logger("services.approval")

_ENTITY = "ApprovalRequest"

_RISK_PRIORITY = {
    RiskLevel.LOW: NotificationPriority.NORMAL,
    RiskLevel.MEDIUM: NotificationPriority.NORMAL,
    RiskLevel.HIGH: NotificationPriority.HIGH,
    RiskLevel.CRITICAL: NotificationPriority.URGENT,
}


def request_action_url(request_id: UUID) -> str:
    return f"/approvals/{request_id}"


class ApprovalRequestService(BaseService[ExtendedApprovalRequest]):
    """Approval request creation, voting and closing."""

    def __init__(
        self,
        store: ApprovalRequestRepository,
        policies: PolicyRegistry,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(store, clock)
        self._policies = policies
        self._dispatcher = dispatcher or NotificationDispatcher()

    def _not_found(self, entity_id: UUID) -> Exception:
        return RequestNotFoundError(str(entity_id))

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_request(
        self,
        tenant_id: str,
        company_id: str,
        approval_type: ApprovalType,
        title: str,
        description: str,
        payload: OperationPayload,
        requestor: Principal,
        change_preview: ChangePreview | None = None,
        request_comment: str | None = None,
        impact_description: str | None = None,
    ) -> ExtendedApprovalRequest:
        """Create a request; auto-approved requests are created APPROVED.

        Raises:
            PolicyNotFoundError: no policy for ``approval_type``.
            PayloadTypeMismatchError: payload kind does not fit the domain.
        """
        policy = self._policies.get_policy(approval_type)
        _check_payload(policy, payload)

        now = self._clock.now()
        evaluation = evaluate_auto_approval(policy, requestor, payload, change_preview)
        auto_approved = creates_approved(policy, evaluation)

        request = ExtendedApprovalRequest(
            request_id=uuid4(),
            tenant_id=tenant_id,
            company_id=company_id,
            domain=policy.domain,
            approval_type=approval_type,
            status=ApprovalStatus.APPROVED if auto_approved else ApprovalStatus.PENDING,
            title=title,
            description=description,
            payload=payload,
            risk_level=classify_risk(approval_type, payload, change_preview),
            reversible=is_reversible(approval_type),
            requested_by=requestor.principal_id,
            requested_by_name=requestor.display_name,
            requested_by_role=requestor.acting_role,
            requested_at=now,
            deadline=now + timedelta(hours=policy.default_deadline_hours),
            required_approvers=required_approvers(policy),
            policy_version=policy.version,
            policy_hash=policy.policy_hash,
            change_preview=change_preview,
            impact_description=impact_description,
            request_comment=request_comment,
            auto_approved=auto_approved,
            approved_at=now if auto_approved else None,
            created_at=now,
            updated_at=now,
        )

        with LogContext.bind(
            tenant_id=tenant_id,
            actor_id=requestor.principal_id,
            request_id=str(request.request_id),
        ):
            saved = self._store.save(request)
            logger.info(
                "approval_request_created",
                extra={
                    "approval_type": approval_type.value,
                    "status": saved.status.value,
                    "risk_level": saved.risk_level.value,
                    "required_approvers": saved.required_approvers,
                    "auto_approved": auto_approved,
                    "auto_approve_reason": evaluation.reason,
                    "policy_hash": policy.policy_hash,
                },
            )

        self._notify(
            saved,
            NotificationKind.APPROVAL_REQUESTED,
            policy.notify_on_request,
            f"Approval requested: {saved.title}",
            f"{saved.requested_by_name} requests approval of {policy.name}.",
        )
        if auto_approved:
            self._notify(
                saved,
                NotificationKind.APPROVAL_GRANTED,
                policy.notify_on_approval,
                f"Auto-approved: {saved.title}",
                f"{policy.name} was auto-approved for {saved.requested_by_name}.",
            )
        return saved

    # ------------------------------------------------------------------
    # Voting
    # ------------------------------------------------------------------

    def vote(
        self,
        tenant_id: str,
        request_id: UUID,
        voter: Principal,
        decision: VoteDecision,
        comment: str | None = None,
        ip_address: str | None = None,
    ) -> ExtendedApprovalRequest:
        """Record one vote. Any rejection finalizes the request as REJECTED.

        Raises:
            RequestNotFoundError, InvalidStateError, NotAuthorizedError,
            SelfApprovalForbiddenError, DuplicateVoteError,
            OptimisticLockError.
        """

        def change(
            current: ExtendedApprovalRequest, now: datetime
        ) -> ExtendedApprovalRequest:
            policy = self._policy_for(current)
            validate_vote(policy, current, voter)
            ballot = ApprovalVote(
                voter_id=voter.principal_id,
                voter_name=voter.display_name,
                voter_role=voter.acting_role,
                decision=decision,
                timestamp=now,
                comment=comment,
                ip_address=ip_address,
            )
            return apply_vote(current, ballot, now)

        with LogContext.bind(
            tenant_id=tenant_id,
            actor_id=voter.principal_id,
            request_id=str(request_id),
        ):
            _, saved = self._mutate(tenant_id, request_id, change)
            logger.info(
                "approval_vote_recorded",
                extra={
                    "decision": decision.value,
                    "approvals": len(saved.approvals),
                    "rejections": len(saved.rejections),
                    "required_approvers": saved.required_approvers,
                    "status": saved.status.value,
                },
            )
            if saved.status != ApprovalStatus.PENDING:
                logger.info(
                    "approval_request_finalized",
                    extra={"status": saved.status.value},
                )

        if saved.status == ApprovalStatus.APPROVED:
            policy = self._policies.get_policy(saved.approval_type)
            self._notify(
                saved,
                NotificationKind.APPROVAL_GRANTED,
                policy.notify_on_approval,
                f"Approved: {saved.title}",
                f"{policy.name} was approved by {len(saved.approvals)} approver(s).",
            )
        elif saved.status == ApprovalStatus.REJECTED:
            policy = self._policies.get_policy(saved.approval_type)
            self._notify(
                saved,
                NotificationKind.APPROVAL_REJECTED,
                policy.notify_on_rejection,
                f"Rejected: {saved.title}",
                f"{policy.name} was rejected by {voter.display_name}.",
            )
        return saved

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_request(self, tenant_id: str, request_id: UUID) -> ExtendedApprovalRequest:
        return self._load(tenant_id, request_id)

    def list_pending(
        self,
        tenant_id: str,
        company_id: str | None = None,
        domain: ApprovalDomain | None = None,
        approval_type: ApprovalType | None = None,
        approver: Principal | None = None,
    ) -> list[ExtendedApprovalRequest]:
        """PENDING requests in scope, soonest deadline first.

        With ``approver`` given, only requests that principal could vote on
        right now are returned.
        """
        pending = self._store.query_by_scope(
            ScopeFilter.for_requests(
                tenant_id,
                company_id=company_id,
                statuses=frozenset({ApprovalStatus.PENDING}),
                domain=domain,
                approval_type=approval_type,
            )
        )
        if approver is not None:
            pending = [r for r in pending if self._can_vote(r, approver)]
        return sorted(pending, key=lambda r: r.deadline)

    def _can_vote(self, request: ExtendedApprovalRequest, voter: Principal) -> bool:
        policy = self._policies.find_policy(request.approval_type)
        if policy is None or not is_authorized_voter(policy, voter):
            return False
        if policy.exclude_requestor and request.requested_by == voter.principal_id:
            return False
        return not request.has_voted(voter.principal_id)

    # ------------------------------------------------------------------
    # Closing
    # ------------------------------------------------------------------

    def cancel_request(
        self,
        tenant_id: str,
        request_id: UUID,
        actor: Principal,
        reason: str | None = None,
    ) -> ExtendedApprovalRequest:
        """PENDING -> CANCELLED, by the requestor or a principal allowed to cancel."""

        def change(
            current: ExtendedApprovalRequest, now: datetime
        ) -> ExtendedApprovalRequest:
            if current.status != ApprovalStatus.PENDING:
                raise InvalidStateError(
                    _ENTITY, str(current.request_id), current.status.value, "cancel"
                )
            required = Capability.of(
                CapabilityAction.CANCEL_REQUEST, current.approval_type.value
            )
            if actor.principal_id != current.requested_by and not actor.has_capability(required):
                raise NotAuthorizedError(
                    actor.principal_id, str(required), str(current.request_id)
                )
            return replace(
                current,
                status=ApprovalStatus.CANCELLED,
                closed_at=now,
                closed_reason=reason or "cancelled",
                updated_at=now,
            )

        with LogContext.bind(
            tenant_id=tenant_id,
            actor_id=actor.principal_id,
            request_id=str(request_id),
        ):
            _, saved = self._mutate(tenant_id, request_id, change)
            logger.info("approval_request_cancelled", extra={"reason": saved.closed_reason})

        policy = self._policies.find_policy(saved.approval_type)
        recipients = policy.notify_on_request if policy else ()
        self._notify(
            saved,
            NotificationKind.APPROVAL_CANCELLED,
            recipients,
            f"Cancelled: {saved.title}",
            f"The request was cancelled by {actor.display_name}.",
        )
        return saved

    def expire_overdue(self, tenant_id: str) -> list[ExtendedApprovalRequest]:
        """Move PENDING requests past their deadline to EXPIRED. Idempotent."""
        now = self._clock.now()
        candidates = self._store.query_by_scope(
            ScopeFilter.for_requests(
                tenant_id,
                statuses=frozenset({ApprovalStatus.PENDING}),
                due_before=now,
            )
        )

        def change(
            current: ExtendedApprovalRequest, at: datetime
        ) -> ExtendedApprovalRequest | None:
            if not is_past_deadline(current, at):
                return None
            return replace(
                current,
                status=ApprovalStatus.EXPIRED,
                closed_at=at,
                closed_reason="deadline_passed",
                updated_at=at,
            )

        expired: list[ExtendedApprovalRequest] = []
        with LogContext.bind(tenant_id=tenant_id):
            for candidate in candidates:
                before, after = self._mutate(tenant_id, candidate.request_id, change)
                if after is before:
                    continue
                expired.append(after)
                logger.info(
                    "approval_request_expired",
                    extra={
                        "request_id": str(after.request_id),
                        "deadline": after.deadline,
                    },
                )
                self._notify(
                    after,
                    NotificationKind.APPROVAL_EXPIRED,
                    (after.requested_by,),
                    f"Expired: {after.title}",
                    "The request passed its deadline without a decision.",
                )
        return expired

    def record_execution(
        self,
        tenant_id: str,
        request_id: UUID,
        success: bool,
        message: str | None = None,
        error: str | None = None,
    ) -> ExtendedApprovalRequest:
        """Stamp the execution outcome of an APPROVED request, exactly once."""

        def change(
            current: ExtendedApprovalRequest, now: datetime
        ) -> ExtendedApprovalRequest:
            if current.status != ApprovalStatus.APPROVED or current.executed_at is not None:
                raise InvalidStateError(
                    _ENTITY,
                    str(current.request_id),
                    current.status.value,
                    "record execution for",
                )
            return replace(
                current,
                executed_at=now,
                execution_result=ExecutionResult(success=success, message=message, error=error),
                updated_at=now,
            )

        with LogContext.bind(tenant_id=tenant_id, request_id=str(request_id)):
            _, saved = self._mutate(tenant_id, request_id, change)
            logger.info(
                "approval_execution_recorded",
                extra={"success": success, "error": error},
            )
        return saved

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _policy_for(self, request: ExtendedApprovalRequest) -> ApprovalPolicy:
        return self._policies.get_policy(request.approval_type)

    def _notify(
        self,
        request: ExtendedApprovalRequest,
        kind: NotificationKind,
        recipients: Sequence[str],
        title: str,
        message: str,
    ) -> None:
        self._dispatcher.dispatch(
            NotificationRequest(
                kind=kind,
                tenant_id=request.tenant_id,
                company_id=request.company_id,
                recipients=tuple(recipients),
                title=title,
                message=message,
                priority=_RISK_PRIORITY[request.risk_level],
                action_url=request_action_url(request.request_id),
                action_label="Open request",
                entity_id=str(request.request_id),
            )
        )


def _check_payload(policy: ApprovalPolicy, payload: OperationPayload) -> None:
    received = getattr(payload, "kind", None)
    if received != policy.payload_kind:
        raise PayloadTypeMismatchError(
            policy.payload_kind.value,
            getattr(received, "value", type(payload).__name__),
            f"approval type {policy.approval_type.value}",
        )
