"""
Principal and Capability -- who is acting and what they may do.

Responsibility:
    Replaces raw role-name string checks with capability sets. Policies and
    playbook steps declare the capability they require; a principal carries
    the capabilities its roles grant, and authorization is a single
    ``has_capability`` check.

Architecture position:
    Kernel > Domain -- pure value objects, zero I/O.

Invariants enforced:
    - ``*`` in either half of a granted capability matches anything.
    - The admin role's wildcard grant authorizes every action.
"""

from dataclasses import dataclass, field
from enum import Enum

WILDCARD = "*"


class CapabilityAction(str, Enum):
    """Actions a capability can grant."""

    APPROVE_REQUEST = "approve_request"
    AUTO_APPROVE = "auto_approve"
    APPROVE_STEP = "approve_step"
    CANCEL_REQUEST = "cancel_request"


@dataclass(frozen=True, order=True)
class Capability:
    """An (action, target) permission. Either half may be the wildcard."""

    action: str
    target: str

    @classmethod
    def of(cls, action: CapabilityAction | str, target: str) -> "Capability":
        action_value = action.value if isinstance(action, CapabilityAction) else action
        return cls(action=action_value, target=str(target))

    @classmethod
    def parse(cls, text: str) -> "Capability":
        """Parse ``action:target`` (as written in the role grants catalogue)."""
        action, sep, target = text.partition(":")
        if not sep or not action or not target:
            raise ValueError(f"Capability must be written as action:target, got {text!r}")
        return cls(action=action.strip(), target=target.strip())

    @classmethod
    def superuser(cls) -> "Capability":
        return cls(action=WILDCARD, target=WILDCARD)

    def grants(self, required: "Capability") -> bool:
        """True if holding this capability satisfies ``required``."""
        action_ok = self.action == WILDCARD or self.action == required.action
        target_ok = self.target == WILDCARD or self.target == required.target
        return action_ok and target_ok

    def __str__(self) -> str:
        return f"{self.action}:{self.target}"


@dataclass(frozen=True)
class Principal:
    """
    An authenticated actor as seen by the governance engine.

    ``roles`` is kept for display and audit (the role recorded on a vote);
    authorization only looks at ``capabilities``.
    """

    principal_id: str
    display_name: str
    roles: tuple[str, ...] = ()
    capabilities: frozenset[Capability] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if not self.principal_id:
            raise ValueError("Principal requires a principal_id")

    @property
    def acting_role(self) -> str:
        """The role recorded on votes and audit entries."""
        return self.roles[0] if self.roles else ""

    def has_capability(self, required: Capability) -> bool:
        return any(held.grants(required) for held in self.capabilities)
