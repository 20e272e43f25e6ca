"""
Module: governance_kernel.models.playbook
Responsibility: ORM row for playbook instance snapshots.

Architecture position: Kernel > Models. May import from db/base.py, domain/
    and models/codec.py.

Invariants enforced:
    - Status column limited to the instance lifecycle states.
    - ``version`` is the optimistic concurrency token.
    - Progress is stored as a bounded integer for reporting queries.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, CheckConstraint, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from governance_kernel.db.base import Base
from governance_kernel.domain.playbook import PlaybookInstance, PlaybookStatus
from governance_kernel.models.codec import decode_instance, encode_instance

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in PlaybookStatus)


class PlaybookInstanceModel(Base):
    """Persistent playbook instance: indexed scope columns plus the snapshot."""

    __tablename__ = "governance_playbook_instances"

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_STATUS_VALUES})",
            name="ck_governance_playbook_instances_status",
        ),
        CheckConstraint(
            "progress >= 0 AND progress <= 100",
            name="ck_governance_playbook_instances_progress",
        ),
        Index("ix_governance_playbook_instances_scope", "tenant_id", "company_id", "status"),
        Index("ix_governance_playbook_instances_owner", "tenant_id", "owner_id"),
        Index("ix_governance_playbook_instances_due", "tenant_id", "status", "due_date"),
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    company_id: Mapped[str] = mapped_column(String(100), nullable=False)
    fund_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    template_id: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    owner_id: Mapped[str] = mapped_column(String(100), nullable=False)
    progress: Mapped[int] = mapped_column(nullable=False)
    due_date: Mapped[datetime] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(nullable=False)
    snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    @staticmethod
    def columns_for(instance: PlaybookInstance) -> dict[str, Any]:
        return {
            "tenant_id": instance.tenant_id,
            "company_id": instance.company_id,
            "fund_id": instance.fund_id,
            "template_id": instance.template_id,
            "category": instance.category.value,
            "status": instance.status.value,
            "owner_id": instance.owner_id,
            "progress": instance.progress,
            "due_date": instance.due_date,
            "snapshot": encode_instance(instance),
        }

    @classmethod
    def from_dto(cls, instance: PlaybookInstance, version: int) -> "PlaybookInstanceModel":
        return cls(id=instance.instance_id, version=version, **cls.columns_for(instance))

    def to_dto(self) -> PlaybookInstance:
        return decode_instance(self.snapshot, version=self.version)

    def __repr__(self) -> str:
        return f"<PlaybookInstanceModel {self.id} {self.template_id} {self.status} v{self.version}>"
