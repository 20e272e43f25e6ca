"""
BaseService -- abstract base for the governance services.

Responsibility:
    Provides the common constructor (store + clock) and the bounded
    optimistic read-modify-write loop every mutating operation goes
    through.

Architecture position:
    Services -- imperative shell. Services hold no entity state between
    calls; the store is the only source of truth.

Invariants enforced:
    - Linearizable mutation per entity: each change is applied to a freshly
      loaded snapshot and saved conditionally on its version. On conflict
      the snapshot is re-read and the change (including its validation) is
      re-run against it.
    - Bounded retry: at most ``MAX_CONFLICT_RETRIES`` attempts, after which
      ``OptimisticLockError`` reaches the caller.
    - Validation errors raised by a change are never retried.

Failure modes:
    - ``OptimisticLockError`` after exhausting retries.
    - Whatever the change callable raises (``InvalidStateError``,
      ``NotAuthorizedError``, ...), propagated unchanged.
    - ``StoreUnavailableError`` from the SQL adapter.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Generic, TypeVar
from uuid import UUID

from governance_kernel.domain.clock import Clock, SystemClock
from governance_kernel.domain.repository import Repository
from governance_kernel.exceptions import OptimisticLockError
from governance_kernel.logging_config import get_logger

EntityT = TypeVar("EntityT")

MAX_CONFLICT_RETRIES = 3

logger = get_logger("services.base")

# Returns the new snapshot, or None when there is nothing to change.
Change = Callable[[EntityT, datetime], "EntityT | None"]


class BaseService(ABC, Generic[EntityT]):
    """
    Abstract base for services that mutate one entity type.

    Contract:
        Subclasses implement ``_not_found`` to raise their typed
        not-found error; everything else is shared.
    """

    def __init__(self, store: Repository[EntityT], clock: Clock | None = None):
        self._store = store
        self._clock = clock or SystemClock()

    @abstractmethod
    def _not_found(self, entity_id: UUID) -> Exception:
        ...

    def _load(self, tenant_id: str, entity_id: UUID) -> EntityT:
        entity = self._store.find_by_id(tenant_id, entity_id)
        if entity is None:
            raise self._not_found(entity_id)
        return entity

    def _mutate(
        self,
        tenant_id: str,
        entity_id: UUID,
        change: Change,
    ) -> tuple[EntityT, EntityT]:
        """
        Apply ``change`` to the current snapshot and save it conditionally.

        Returns ``(before, after)`` where ``before`` is the snapshot the
        winning attempt started from. When ``change`` returns None nothing
        is written and ``after is before``.
        """
        for attempt in range(1, MAX_CONFLICT_RETRIES + 1):
            current = self._load(tenant_id, entity_id)
            updated = change(current, self._clock.now())
            if updated is None:
                return current, current
            try:
                return current, self._store.save(updated)
            except OptimisticLockError:
                if attempt == MAX_CONFLICT_RETRIES:
                    logger.warning(
                        "optimistic_retry_exhausted",
                        extra={"entity_id": str(entity_id), "attempts": attempt},
                    )
                    raise
                logger.info(
                    "optimistic_retry",
                    extra={"entity_id": str(entity_id), "attempt": attempt},
                )
        raise AssertionError("unreachable")
