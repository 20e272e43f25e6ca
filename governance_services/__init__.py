"""
Governance services -- orchestration over stores, catalogue and engines.

Services are constructed with their collaborators (store, registry,
notification dispatcher, clock); none of them keep entity state between
calls.
"""

from governance_services.approval_service import ApprovalRequestService
from governance_services.deadline_sweeper import DeadlineSweepResult, PlaybookDeadlineSweeper
from governance_services.escalation_sweeper import EscalationSweepResult, EscalationSweeper
from governance_services.notification import (
    AutomationHook,
    LoggingNotificationSink,
    NotificationDispatcher,
)
from governance_services.playbook_service import PlaybookService, UpcomingDeadline

__all__ = [
    "ApprovalRequestService",
    "AutomationHook",
    "DeadlineSweepResult",
    "EscalationSweepResult",
    "EscalationSweeper",
    "LoggingNotificationSink",
    "NotificationDispatcher",
    "PlaybookDeadlineSweeper",
    "PlaybookService",
    "UpcomingDeadline",
]
