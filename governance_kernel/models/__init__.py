"""ORM models for the governance snapshot tables."""

from governance_kernel.models.approval import ApprovalRequestModel
from governance_kernel.models.playbook import PlaybookInstanceModel

__all__ = [
    "ApprovalRequestModel",
    "PlaybookInstanceModel",
]
