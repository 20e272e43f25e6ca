"""
Module: governance_kernel.models.approval
Responsibility: ORM row for approval request snapshots.

Architecture position: Kernel > Models. May import from db/base.py, domain/
    and models/codec.py.

Invariants enforced:
    - Status column limited to the request lifecycle states.
    - ``version`` is the optimistic concurrency token; the repository only
      updates a row whose stored version equals the caller's snapshot.
    - Scope columns mirror the snapshot so scope queries run on indexes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, CheckConstraint, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from governance_kernel.db.base import Base
from governance_kernel.domain.approval import ApprovalStatus, ExtendedApprovalRequest
from governance_kernel.models.codec import decode_request, encode_request

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in ApprovalStatus)


class ApprovalRequestModel(Base):
    """Persistent approval request: indexed scope columns plus the snapshot."""

    __tablename__ = "governance_approval_requests"

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_STATUS_VALUES})",
            name="ck_governance_approval_requests_status",
        ),
        CheckConstraint("version >= 1", name="ck_governance_approval_requests_version"),
        Index("ix_governance_approval_requests_scope", "tenant_id", "company_id", "status"),
        Index("ix_governance_approval_requests_type", "tenant_id", "approval_type", "status"),
        Index("ix_governance_approval_requests_deadline", "tenant_id", "status", "deadline"),
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    company_id: Mapped[str] = mapped_column(String(100), nullable=False)
    domain: Mapped[str] = mapped_column(String(50), nullable=False)
    approval_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    requested_by: Mapped[str] = mapped_column(String(100), nullable=False)
    deadline: Mapped[datetime] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(nullable=False)
    snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    @staticmethod
    def columns_for(request: ExtendedApprovalRequest) -> dict[str, Any]:
        """Column values (other than id and version) for a snapshot."""
        return {
            "tenant_id": request.tenant_id,
            "company_id": request.company_id,
            "domain": request.domain.value,
            "approval_type": request.approval_type.value,
            "status": request.status.value,
            "requested_by": request.requested_by,
            "deadline": request.deadline,
            "snapshot": encode_request(request),
        }

    @classmethod
    def from_dto(cls, request: ExtendedApprovalRequest, version: int) -> "ApprovalRequestModel":
        return cls(id=request.request_id, version=version, **cls.columns_for(request))

    def to_dto(self) -> ExtendedApprovalRequest:
        return decode_request(self.snapshot, version=self.version)

    def __repr__(self) -> str:
        return f"<ApprovalRequestModel {self.id} {self.approval_type} {self.status} v{self.version}>"
