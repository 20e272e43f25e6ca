"""
In-memory repositories.

Instance-scoped stores for tests, local runs and single-process embedding.
Each store holds encoded snapshots (so callers never share mutable state
with the store) and serializes writes with its own lock; the conditional
version check is the same as the SQL stores'.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Generic, TypeVar
from uuid import UUID

from governance_kernel.domain.approval import ExtendedApprovalRequest
from governance_kernel.domain.playbook import PlaybookInstance
from governance_kernel.domain.repository import ScopeFilter
from governance_kernel.exceptions import OptimisticLockError
from governance_kernel.logging_config import get_logger
from governance_kernel.models.codec import (
    decode_instance,
    decode_request,
    encode_instance,
    encode_request,
)

logger = get_logger("repositories.memory")

EntityT = TypeVar("EntityT")


class _InMemoryStore(ABC, Generic[EntityT]):
    entity_type: str = "entity"

    def __init__(self) -> None:
        self._rows: dict[UUID, tuple[int, dict[str, Any]]] = {}
        self._lock = threading.Lock()

    @abstractmethod
    def _key(self, entity: EntityT) -> UUID: ...

    @abstractmethod
    def _tenant(self, entity: EntityT) -> str: ...

    @abstractmethod
    def _encode(self, entity: EntityT) -> dict[str, Any]: ...

    @abstractmethod
    def _decode(self, data: dict[str, Any], version: int) -> EntityT: ...

    @abstractmethod
    def _matches(self, entity: EntityT, scope: ScopeFilter) -> bool: ...

    def save(self, entity: EntityT) -> EntityT:
        key = self._key(entity)
        expected = entity.version  # type: ignore[attr-defined]
        encoded = self._encode(entity)
        with self._lock:
            stored = self._rows.get(key)
            stored_version = stored[0] if stored is not None else 0
            if stored_version != expected:
                logger.info(
                    "optimistic_lock_conflict",
                    extra={
                        "entity_type": self.entity_type,
                        "entity_id": str(key),
                        "expected_version": expected,
                        "stored_version": stored_version,
                    },
                )
                raise OptimisticLockError(self.entity_type, str(key))
            new_version = expected + 1
            self._rows[key] = (new_version, encoded)
        return replace(entity, version=new_version)  # type: ignore[type-var]

    def find_by_id(self, tenant_id: str, entity_id: UUID) -> EntityT | None:
        with self._lock:
            stored = self._rows.get(entity_id)
        if stored is None:
            return None
        entity = self._decode(stored[1], stored[0])
        if self._tenant(entity) != tenant_id:
            return None
        return entity

    def query_by_scope(self, scope: ScopeFilter) -> list[EntityT]:
        with self._lock:
            rows = list(self._rows.values())
        entities = (self._decode(data, version) for version, data in rows)
        return [e for e in entities if self._matches(e, scope)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)


class InMemoryApprovalRequestStore(_InMemoryStore[ExtendedApprovalRequest]):
    entity_type = "ApprovalRequest"

    def _key(self, entity: ExtendedApprovalRequest) -> UUID:
        return entity.request_id

    def _tenant(self, entity: ExtendedApprovalRequest) -> str:
        return entity.tenant_id

    def _encode(self, entity: ExtendedApprovalRequest) -> dict[str, Any]:
        return encode_request(entity)

    def _decode(self, data: dict[str, Any], version: int) -> ExtendedApprovalRequest:
        return decode_request(data, version)

    def _matches(self, entity: ExtendedApprovalRequest, scope: ScopeFilter) -> bool:
        if entity.tenant_id != scope.tenant_id:
            return False
        if scope.company_id is not None and entity.company_id != scope.company_id:
            return False
        if scope.statuses is not None and entity.status.value not in scope.statuses:
            return False
        if scope.domain is not None and entity.domain != scope.domain:
            return False
        if scope.approval_type is not None and entity.approval_type != scope.approval_type:
            return False
        if scope.owner_id is not None and entity.requested_by != scope.owner_id:
            return False
        if scope.due_before is not None and entity.deadline >= scope.due_before:
            return False
        return True


class InMemoryPlaybookInstanceStore(_InMemoryStore[PlaybookInstance]):
    entity_type = "PlaybookInstance"

    def _key(self, entity: PlaybookInstance) -> UUID:
        return entity.instance_id

    def _tenant(self, entity: PlaybookInstance) -> str:
        return entity.tenant_id

    def _encode(self, entity: PlaybookInstance) -> dict[str, Any]:
        return encode_instance(entity)

    def _decode(self, data: dict[str, Any], version: int) -> PlaybookInstance:
        return decode_instance(data, version)

    def _matches(self, entity: PlaybookInstance, scope: ScopeFilter) -> bool:
        if entity.tenant_id != scope.tenant_id:
            return False
        if scope.company_id is not None and entity.company_id != scope.company_id:
            return False
        if scope.owner_id is not None and entity.owner_id != scope.owner_id:
            return False
        if scope.statuses is not None and entity.status.value not in scope.statuses:
            return False
        if scope.category is not None and entity.category != scope.category:
            return False
        if scope.due_before is not None and entity.due_date >= scope.due_before:
            return False
        return True
