"""
Repository protocols -- storage-agnostic persistence of entity snapshots.

Contract:
    ``save`` is a conditional write keyed on the snapshot's ``version``:
    version 0 inserts (and fails if the id exists), any other version
    updates only if the stored version is equal. On success the saved
    snapshot is returned with ``version`` incremented. On mismatch
    ``OptimisticLockError`` is raised and nothing is written.

    ``find_by_id`` never crosses tenants: an id from another tenant is
    reported as missing.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, TypeVar
from uuid import UUID

from governance_kernel.domain.approval import (
    ApprovalDomain,
    ApprovalStatus,
    ApprovalType,
    ExtendedApprovalRequest,
)
from governance_kernel.domain.playbook import (
    PlaybookCategory,
    PlaybookInstance,
    PlaybookStatus,
)

EntityT = TypeVar("EntityT")


@dataclass(frozen=True)
class ScopeFilter:
    """Scope query. ``None`` fields are not filtered on."""

    tenant_id: str
    company_id: str | None = None
    owner_id: str | None = None
    statuses: frozenset[str] | None = None
    domain: ApprovalDomain | None = None
    approval_type: ApprovalType | None = None
    category: PlaybookCategory | None = None
    due_before: datetime | None = None

    @classmethod
    def for_requests(
        cls,
        tenant_id: str,
        *,
        company_id: str | None = None,
        statuses: frozenset[ApprovalStatus] | None = None,
        domain: ApprovalDomain | None = None,
        approval_type: ApprovalType | None = None,
        due_before: datetime | None = None,
    ) -> "ScopeFilter":
        return cls(
            tenant_id=tenant_id,
            company_id=company_id,
            statuses=frozenset(s.value for s in statuses) if statuses else None,
            domain=domain,
            approval_type=approval_type,
            due_before=due_before,
        )

    @classmethod
    def for_instances(
        cls,
        tenant_id: str,
        *,
        company_id: str | None = None,
        owner_id: str | None = None,
        statuses: frozenset[PlaybookStatus] | None = None,
        category: PlaybookCategory | None = None,
        due_before: datetime | None = None,
    ) -> "ScopeFilter":
        return cls(
            tenant_id=tenant_id,
            company_id=company_id,
            owner_id=owner_id,
            statuses=frozenset(s.value for s in statuses) if statuses else None,
            category=category,
            due_before=due_before,
        )


class Repository(Protocol[EntityT]):
    def save(self, entity: EntityT) -> EntityT:
        ...

    def find_by_id(self, tenant_id: str, entity_id: UUID) -> EntityT | None:
        ...

    def query_by_scope(self, scope: ScopeFilter) -> list[EntityT]:
        ...


ApprovalRequestRepository = Repository[ExtendedApprovalRequest]
PlaybookInstanceRepository = Repository[PlaybookInstance]
