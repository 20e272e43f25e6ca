"""
Notification dispatch and automation hooks.

Responsibility:
    Hands ``NotificationRequest`` objects to the configured sink after the
    triggering state change has been persisted, and runs non-notify
    playbook automation through an optional ``AutomationHook``.

Architecture position:
    Services -- outbound adapters. Nothing here touches the stores.

Invariants enforced:
    - Fire-and-forget: a failing sink or hook is logged
      (``notification_delivery_failed`` / ``automation_hook_failed``) and
      never propagates, so delivery can not undo a committed transition.
    - An empty recipient list sends nothing.
"""

from __future__ import annotations

from typing import Iterable, Protocol

from governance_kernel.domain.notification import (
    DEFAULT_CHANNELS,
    DeliveryChannel,
    NotificationRequest,
    NotificationSink,
)
from governance_kernel.domain.playbook import (
    AutomationTrigger,
    PlaybookInstance,
    PlaybookStepInstance,
)
from governance_kernel.logging_config import get_logger

logger = get_logger("services.notification")


class AutomationHook(Protocol):
    """Runs create_task / api_call / webhook automation for a step."""

    def fire(
        self,
        trigger: AutomationTrigger,
        instance: PlaybookInstance,
        step: PlaybookStepInstance,
    ) -> None:
        ...


class LoggingNotificationSink:
    """Sink that only writes a structured log line per notification."""

    def send(self, request: NotificationRequest) -> None:
        logger.info(
            "notification_sent",
            extra={
                "kind": request.kind.value,
                "recipients": list(request.recipients),
                "channels": [c.value for c in request.channels],
                "entity_id": request.entity_id,
                "title": request.title,
            },
        )


def resolve_channels(names: Iterable[str]) -> tuple[DeliveryChannel, ...]:
    """Known channel names as enums; unknown names are dropped."""
    channels = []
    for name in names:
        try:
            channels.append(DeliveryChannel(name))
        except ValueError:
            logger.warning("unknown_delivery_channel", extra={"channel": name})
    return tuple(channels) or DEFAULT_CHANNELS


class NotificationDispatcher:
    def __init__(
        self,
        sink: NotificationSink | None = None,
        automation_hook: AutomationHook | None = None,
    ):
        self._sink = sink or LoggingNotificationSink()
        self._automation_hook = automation_hook

    def dispatch(self, request: NotificationRequest) -> bool:
        """Send ``request``. Returns False when nothing was delivered."""
        if not request.recipients:
            return False
        try:
            self._sink.send(request)
        except Exception:
            logger.exception(
                "notification_delivery_failed",
                extra={
                    "kind": request.kind.value,
                    "entity_id": request.entity_id,
                    "recipients": list(request.recipients),
                },
            )
            return False
        return True

    def run_automation(
        self,
        trigger: AutomationTrigger,
        instance: PlaybookInstance,
        step: PlaybookStepInstance,
    ) -> bool:
        if self._automation_hook is None:
            logger.info(
                "automation_hook_missing",
                extra={"action": trigger.action.value, "step_id": step.step_id},
            )
            return False
        try:
            self._automation_hook.fire(trigger, instance, step)
        except Exception:
            logger.exception(
                "automation_hook_failed",
                extra={"action": trigger.action.value, "step_id": step.step_id},
            )
            return False
        return True
