"""
Notification requests and the sink protocol.

The engines describe *what* should be delivered; delivery itself (email,
push, in-app) belongs to whatever implements ``NotificationSink``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol


class DeliveryChannel(str, Enum):
    IN_APP = "in_app"
    EMAIL = "email"
    PUSH = "push"
    SLACK = "slack"


class NotificationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class NotificationKind(str, Enum):
    APPROVAL_REQUESTED = "approval_requested"
    APPROVAL_GRANTED = "approval_granted"
    APPROVAL_REJECTED = "approval_rejected"
    APPROVAL_ESCALATED = "approval_escalated"
    APPROVAL_CANCELLED = "approval_cancelled"
    APPROVAL_EXPIRED = "approval_expired"
    PLAYBOOK_REMINDER = "playbook_reminder"
    PLAYBOOK_ESCALATED = "playbook_escalated"
    PLAYBOOK_STEP_APPROVAL = "playbook_step_approval"
    PLAYBOOK_AUTOMATION = "playbook_automation"


DEFAULT_CHANNELS: tuple[DeliveryChannel, ...] = (
    DeliveryChannel.IN_APP,
    DeliveryChannel.EMAIL,
)


@dataclass(frozen=True)
class NotificationRequest:
    """One fan-out to a set of recipients (role names or user ids)."""

    kind: NotificationKind
    tenant_id: str
    company_id: str
    recipients: tuple[str, ...]
    title: str
    message: str
    channels: tuple[DeliveryChannel, ...] = DEFAULT_CHANNELS
    priority: NotificationPriority = NotificationPriority.NORMAL
    action_url: str | None = None
    action_label: str | None = None
    entity_id: str | None = None


class NotificationSink(Protocol):
    """Delivery collaborator. May raise; callers treat delivery as best-effort."""

    def send(self, request: NotificationRequest) -> None:
        ...
