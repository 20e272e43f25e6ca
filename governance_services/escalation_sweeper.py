"""
EscalationSweeper -- periodic escalation of approval requests near deadline.

Responsibility:
    For every PENDING, not-yet-escalated request whose escalation threshold
    (``deadline - policy.escalation_hours``) has passed, stamp
    ``escalated_at`` / ``escalated_to`` and notify ``policy.escalate_to``.

Invariants enforced:
    - Fires at most once per request: the predicate is re-checked against
      the re-read snapshot inside the optimistic loop, so overlapping
      sweeps never escalate twice.
    - No other side effect: status, votes and deadline are untouched.

Failure modes:
    - Requests whose policy is no longer registered are skipped and logged
      (``escalation_policy_missing``).
    - ``OptimisticLockError`` after exhausted retries propagates.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from uuid import UUID

from governance_config.registry import PolicyRegistry
from governance_engines.escalation import is_due_for_escalation
from governance_kernel.domain.approval import ApprovalStatus, ExtendedApprovalRequest
from governance_kernel.domain.clock import Clock
from governance_kernel.domain.notification import (
    NotificationKind,
    NotificationPriority,
    NotificationRequest,
)
from governance_kernel.domain.repository import ApprovalRequestRepository, ScopeFilter
from governance_kernel.exceptions import RequestNotFoundError
from governance_kernel.logging_config import LogContext, get_logger
from governance_services.approval_service import request_action_url
from governance_services.base import BaseService
from governance_services.notification import NotificationDispatcher

logger = get_logger("services.escalation")


@dataclass(frozen=True)
class EscalationSweepResult:
    scanned: int
    escalated: tuple[UUID, ...] = ()
    skipped: tuple[UUID, ...] = ()


class EscalationSweeper(BaseService[ExtendedApprovalRequest]):
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

    def check_and_escalate(self, tenant_id: str) -> EscalationSweepResult:
        pending = self._store.query_by_scope(
            ScopeFilter.for_requests(tenant_id, statuses=frozenset({ApprovalStatus.PENDING}))
        )
        now = self._clock.now()
        escalated: list[UUID] = []
        skipped: list[UUID] = []

        with LogContext.bind(tenant_id=tenant_id):
            for request in pending:
                policy = self._policies.find_policy(request.approval_type)
                if policy is None:
                    skipped.append(request.request_id)
                    logger.warning(
                        "escalation_policy_missing",
                        extra={
                            "request_id": str(request.request_id),
                            "approval_type": request.approval_type.value,
                        },
                    )
                    continue
                if not is_due_for_escalation(request, policy, now):
                    continue

                def change(
                    current: ExtendedApprovalRequest, at: datetime
                ) -> ExtendedApprovalRequest | None:
                    if not is_due_for_escalation(current, policy, at):
                        return None
                    return replace(
                        current,
                        escalated_at=at,
                        escalated_to=policy.escalate_to,
                        updated_at=at,
                    )

                before, after = self._mutate(tenant_id, request.request_id, change)
                if after is before:
                    continue

                escalated.append(after.request_id)
                logger.info(
                    "approval_request_escalated",
                    extra={
                        "request_id": str(after.request_id),
                        "escalated_to": list(after.escalated_to),
                        "deadline": after.deadline,
                    },
                )
                self._dispatcher.dispatch(
                    NotificationRequest(
                        kind=NotificationKind.APPROVAL_ESCALATED,
                        tenant_id=after.tenant_id,
                        company_id=after.company_id,
                        recipients=tuple(policy.escalate_to),
                        title=f"Escalated: {after.title}",
                        message=(
                            f"{policy.name} is still awaiting approval; "
                            f"deadline {after.deadline.isoformat()}."
                        ),
                        priority=NotificationPriority.HIGH,
                        action_url=request_action_url(after.request_id),
                        action_label="Open request",
                        entity_id=str(after.request_id),
                    )
                )

            result = EscalationSweepResult(
                scanned=len(pending),
                escalated=tuple(escalated),
                skipped=tuple(skipped),
            )
            logger.info(
                "escalation_sweep_completed",
                extra={
                    "scanned": result.scanned,
                    "escalated_count": len(result.escalated),
                    "skipped_count": len(result.skipped),
                },
            )
        return result
