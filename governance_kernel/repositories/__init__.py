"""Repository implementations: in-memory and SQLAlchemy."""

from governance_kernel.repositories.memory import (
    InMemoryApprovalRequestStore,
    InMemoryPlaybookInstanceStore,
)
from governance_kernel.repositories.sql import (
    SqlApprovalRequestStore,
    SqlPlaybookInstanceStore,
)

__all__ = [
    "InMemoryApprovalRequestStore",
    "InMemoryPlaybookInstanceStore",
    "SqlApprovalRequestStore",
    "SqlPlaybookInstanceStore",
]
