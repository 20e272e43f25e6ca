"""
SQLAlchemy repositories.

Each ``save`` runs in its own transaction: an INSERT for version 0, or an
``UPDATE ... WHERE id = :id AND version = :expected``. A zero rowcount (or a
primary-key collision on insert) means another writer got there first and is
reported as ``OptimisticLockError``. Driver-level connectivity failures are
reported as ``StoreUnavailableError``; nothing is written in either case.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from governance_kernel.db.engine import session_scope
from governance_kernel.domain.approval import ExtendedApprovalRequest
from governance_kernel.domain.playbook import PlaybookInstance
from governance_kernel.domain.repository import ScopeFilter
from governance_kernel.exceptions import OptimisticLockError, StoreUnavailableError
from governance_kernel.logging_config import get_logger
from governance_kernel.models.approval import ApprovalRequestModel
from governance_kernel.models.playbook import PlaybookInstanceModel

logger = get_logger("repositories.sql")

EntityT = TypeVar("EntityT")


class _SqlStore(Generic[EntityT]):
    entity_type: str = "entity"
    model: Any = None

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def _key(self, entity: EntityT) -> UUID:
        raise NotImplementedError

    def _scope_clauses(self, scope: ScopeFilter) -> list[Any]:
        raise NotImplementedError

    def save(self, entity: EntityT) -> EntityT:
        key = self._key(entity)
        expected = entity.version  # type: ignore[attr-defined]
        new_version = expected + 1
        try:
            with session_scope(self._session_factory) as session:
                if expected == 0:
                    session.add(self.model.from_dto(entity, version=new_version))
                    session.flush()
                else:
                    result = session.execute(
                        update(self.model)
                        .where(self.model.id == key, self.model.version == expected)
                        .values(version=new_version, **self.model.columns_for(entity))
                    )
                    if result.rowcount != 1:
                        raise OptimisticLockError(self.entity_type, str(key))
        except IntegrityError as exc:
            raise OptimisticLockError(self.entity_type, str(key)) from exc
        except OperationalError as exc:
            raise StoreUnavailableError("save", str(exc.orig)) from exc

        logger.debug(
            "snapshot_saved",
            extra={"entity_type": self.entity_type, "entity_id": str(key), "version": new_version},
        )
        return replace(entity, version=new_version)  # type: ignore[type-var]

    def find_by_id(self, tenant_id: str, entity_id: UUID) -> EntityT | None:
        try:
            with session_scope(self._session_factory) as session:
                row = session.execute(
                    select(self.model).where(
                        self.model.id == entity_id,
                        self.model.tenant_id == tenant_id,
                    )
                ).scalar_one_or_none()
                return row.to_dto() if row is not None else None
        except OperationalError as exc:
            raise StoreUnavailableError("find_by_id", str(exc.orig)) from exc

    def query_by_scope(self, scope: ScopeFilter) -> list[EntityT]:
        stmt = select(self.model).where(self.model.tenant_id == scope.tenant_id)
        if scope.company_id is not None:
            stmt = stmt.where(self.model.company_id == scope.company_id)
        if scope.statuses is not None:
            stmt = stmt.where(self.model.status.in_(sorted(scope.statuses)))
        for clause in self._scope_clauses(scope):
            stmt = stmt.where(clause)
        try:
            with session_scope(self._session_factory) as session:
                return [row.to_dto() for row in session.execute(stmt).scalars()]
        except OperationalError as exc:
            raise StoreUnavailableError("query_by_scope", str(exc.orig)) from exc


class SqlApprovalRequestStore(_SqlStore[ExtendedApprovalRequest]):
    entity_type = "ApprovalRequest"
    model = ApprovalRequestModel

    def _key(self, entity: ExtendedApprovalRequest) -> UUID:
        return entity.request_id

    def _scope_clauses(self, scope: ScopeFilter) -> list[Any]:
        clauses: list[Any] = []
        if scope.domain is not None:
            clauses.append(ApprovalRequestModel.domain == scope.domain.value)
        if scope.approval_type is not None:
            clauses.append(ApprovalRequestModel.approval_type == scope.approval_type.value)
        if scope.owner_id is not None:
            clauses.append(ApprovalRequestModel.requested_by == scope.owner_id)
        if scope.due_before is not None:
            clauses.append(ApprovalRequestModel.deadline < scope.due_before)
        return clauses


class SqlPlaybookInstanceStore(_SqlStore[PlaybookInstance]):
    entity_type = "PlaybookInstance"
    model = PlaybookInstanceModel

    def _key(self, entity: PlaybookInstance) -> UUID:
        return entity.instance_id

    def _scope_clauses(self, scope: ScopeFilter) -> list[Any]:
        clauses: list[Any] = []
        if scope.owner_id is not None:
            clauses.append(PlaybookInstanceModel.owner_id == scope.owner_id)
        if scope.category is not None:
            clauses.append(PlaybookInstanceModel.category == scope.category.value)
        if scope.due_before is not None:
            clauses.append(PlaybookInstanceModel.due_date < scope.due_before)
        return clauses
