"""
Read-only registries over the loaded catalogue.

Responsibility:
    O(1) lookup of approval policies by operation type and playbook
    templates by id, plus the role -> capability catalogue used to build
    ``Principal`` objects.

Architecture position:
    Config layer. Registries are built once by ``load_catalogue`` and
    injected into services; there is no module-level registry.

Invariants enforced:
    - Read-only at runtime: lookups go through ``MappingProxyType`` views.
    - Every registered policy carries a ``policy_hash`` fingerprint, which
      requests snapshot at creation.
    - Approver and trusted roles declared on policies, and approver roles
      declared on template steps, are turned into capability grants; no
      authorization check ever compares role-name strings.
"""

from __future__ import annotations

from dataclasses import asdict, replace
from types import MappingProxyType
from typing import Iterable, Mapping

from governance_kernel.domain.approval import ApprovalDomain, ApprovalPolicy, ApprovalType
from governance_kernel.domain.playbook import PlaybookCategory, PlaybookTemplate
from governance_kernel.domain.principal import Capability, CapabilityAction, Principal
from governance_kernel.exceptions import PolicyNotFoundError, TemplateNotFoundError
from governance_kernel.utils.hashing import hash_payload


def fingerprint_policy(policy: ApprovalPolicy) -> ApprovalPolicy:
    """Return ``policy`` with ``policy_hash`` computed over its content."""
    content = asdict(replace(policy, policy_hash=None))
    content.pop("policy_hash")
    return replace(policy, policy_hash=hash_payload(content))


class PolicyRegistry:
    """Approval policies keyed by operation type."""

    def __init__(self, policies: Iterable[ApprovalPolicy]):
        by_type: dict[ApprovalType, ApprovalPolicy] = {}
        for policy in policies:
            if policy.approval_type in by_type:
                raise ValueError(
                    f"Duplicate policy for approval type {policy.approval_type.value}"
                )
            if policy.policy_hash is None:
                policy = fingerprint_policy(policy)
            by_type[policy.approval_type] = policy
        self._policies: Mapping[ApprovalType, ApprovalPolicy] = MappingProxyType(by_type)

    def get_policy(self, approval_type: ApprovalType) -> ApprovalPolicy:
        policy = self._policies.get(approval_type)
        if policy is None:
            raise PolicyNotFoundError(getattr(approval_type, "value", str(approval_type)))
        return policy

    def find_policy(self, approval_type: ApprovalType) -> ApprovalPolicy | None:
        return self._policies.get(approval_type)

    def all_policies(self) -> tuple[ApprovalPolicy, ...]:
        return tuple(self._policies.values())

    def policies_for_domain(self, domain: ApprovalDomain) -> tuple[ApprovalPolicy, ...]:
        return tuple(p for p in self._policies.values() if p.domain == domain)

    def __contains__(self, approval_type: object) -> bool:
        return approval_type in self._policies

    def __len__(self) -> int:
        return len(self._policies)


class TemplateRegistry:
    """Playbook templates keyed by template id."""

    def __init__(self, templates: Iterable[PlaybookTemplate]):
        by_id: dict[str, PlaybookTemplate] = {}
        for template in templates:
            if template.template_id in by_id:
                raise ValueError(f"Duplicate template id {template.template_id}")
            by_id[template.template_id] = template
        self._templates: Mapping[str, PlaybookTemplate] = MappingProxyType(by_id)

    def get_template(self, template_id: str) -> PlaybookTemplate:
        template = self._templates.get(template_id)
        if template is None:
            raise TemplateNotFoundError(template_id)
        return template

    def find_template(self, template_id: str) -> PlaybookTemplate | None:
        return self._templates.get(template_id)

    def all_templates(
        self,
        category: PlaybookCategory | None = None,
    ) -> tuple[PlaybookTemplate, ...]:
        return tuple(
            t for t in self._templates.values()
            if category is None or t.category == category
        )

    def __len__(self) -> int:
        return len(self._templates)


class RoleCapabilityCatalogue:
    """
    Maps role names to capability sets.

    Derived grants:
        - each role in ``policy.approver_roles`` gets
          ``approve_request:<TYPE>``;
        - each role in ``auto_approve_conditions.trusted_roles`` gets
          ``auto_approve:<TYPE>``;
        - each step ``approver_role`` (and template ``approver_role``) gets
          ``approve_step:<role>``.

    Explicit grants from ``role_grants.yaml`` are merged on top.
    """

    def __init__(self, grants: Mapping[str, frozenset[Capability]]):
        self._grants: Mapping[str, frozenset[Capability]] = MappingProxyType(dict(grants))

    @classmethod
    def build(
        cls,
        policies: PolicyRegistry,
        templates: TemplateRegistry,
        explicit: Mapping[str, frozenset[Capability]] | None = None,
    ) -> "RoleCapabilityCatalogue":
        grants: dict[str, set[Capability]] = {}

        def grant(role: str, capability: Capability) -> None:
            grants.setdefault(role, set()).add(capability)

        for policy in policies.all_policies():
            for role in policy.approver_roles:
                grant(role, policy.approver_capability)
            conditions = policy.auto_approve_conditions
            if conditions is not None:
                for role in conditions.trusted_roles:
                    grant(role, policy.auto_approve_capability)

        for template in templates.all_templates():
            roles = [s.approver_role for s in template.steps if s.approver_role]
            if template.approver_role:
                roles.append(template.approver_role)
            for role in roles:
                grant(role, Capability.of(CapabilityAction.APPROVE_STEP, role))

        for role, capabilities in (explicit or {}).items():
            for capability in capabilities:
                grant(role, capability)

        return cls({role: frozenset(caps) for role, caps in grants.items()})

    @property
    def roles(self) -> tuple[str, ...]:
        return tuple(sorted(self._grants))

    def capabilities_for(self, roles: Iterable[str]) -> frozenset[Capability]:
        result: set[Capability] = set()
        for role in roles:
            result |= self._grants.get(role, frozenset())
        return frozenset(result)

    def principal(
        self,
        principal_id: str,
        display_name: str,
        roles: Iterable[str],
    ) -> Principal:
        """Build a principal whose capabilities are the union of its roles' grants."""
        role_tuple = tuple(roles)
        return Principal(
            principal_id=principal_id,
            display_name=display_name,
            roles=role_tuple,
            capabilities=self.capabilities_for(role_tuple),
        )
