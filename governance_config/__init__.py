"""
governance_config -- the policy and playbook catalogue.

Responsibility:
    Provides ``load_catalogue()``, the single way to obtain approval
    policies, playbook templates and role capability grants at runtime.
    YAML parsing lives in ``loader``; the returned registries are
    read-only.

Architecture position:
    Configuration -- sits above ``governance_kernel`` and
    ``governance_engines`` and below ``governance_services``. The kernel
    never imports from this package.

Invariants enforced:
    - Policy and template invariants are validated at load, never at use.
    - Deterministic fingerprint: the same YAML always yields the same
      ``checksum``.

Failure modes:
    - ``FileNotFoundError`` -- a catalogue file is missing.
    - ``ValueError`` / ``KeyError`` -- schema or shape errors.
    - ``DependencyCycleError`` / ``UnknownDependencyError`` -- bad template
      step graph.

Audit relevance:
    Every successful ``load_catalogue()`` emits a ``catalogue_loaded`` log
    entry with the checksum and counts, tying requests back to the exact
    catalogue that governed them.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from governance_config.loader import (
    compute_checksum,
    load_yaml_file,
    parse_policy,
    parse_role_grants,
    parse_template,
)
from governance_config.registry import (
    PolicyRegistry,
    RoleCapabilityCatalogue,
    TemplateRegistry,
)
from governance_config.settings import GovernanceSettings
from governance_kernel.logging_config import get_logger

logger = get_logger("config")

DEFAULT_CATALOGUE_DIR = Path(__file__).parent / "catalogue"

POLICIES_FILE = "approval_policies.yaml"
TEMPLATES_FILE = "playbook_templates.yaml"
ROLE_GRANTS_FILE = "role_grants.yaml"


@dataclass(frozen=True)
class GovernanceCatalogue:
    policies: PolicyRegistry
    templates: TemplateRegistry
    roles: RoleCapabilityCatalogue
    checksum: str


def load_catalogue(directory: Path | None = None) -> GovernanceCatalogue:
    """
    Load, validate and fingerprint the catalogue in ``directory``.

    A missing ``role_grants.yaml`` is allowed; policies and templates are
    required.
    """
    root = Path(directory) if directory is not None else DEFAULT_CATALOGUE_DIR

    policies_doc = load_yaml_file(root / POLICIES_FILE)
    templates_doc = load_yaml_file(root / TEMPLATES_FILE)
    grants_path = root / ROLE_GRANTS_FILE
    grants_doc = load_yaml_file(grants_path) if grants_path.is_file() else {}

    policies = PolicyRegistry(parse_policy(p) for p in policies_doc.get("policies") or ())
    templates = TemplateRegistry(
        parse_template(t) for t in templates_doc.get("templates") or ()
    )
    roles = RoleCapabilityCatalogue.build(
        policies, templates, parse_role_grants(grants_doc.get("grants") or {})
    )
    checksum = compute_checksum({
        "policies": policies_doc,
        "templates": templates_doc,
        "grants": grants_doc,
    })

    logger.info(
        "catalogue_loaded",
        extra={
            "catalogue_dir": str(root),
            "checksum": checksum,
            "policy_count": len(policies),
            "template_count": len(templates),
            "role_count": len(roles.roles),
        },
    )
    return GovernanceCatalogue(
        policies=policies,
        templates=templates,
        roles=roles,
        checksum=checksum,
    )


__all__ = [
    "DEFAULT_CATALOGUE_DIR",
    "GovernanceCatalogue",
    "GovernanceSettings",
    "PolicyRegistry",
    "RoleCapabilityCatalogue",
    "TemplateRegistry",
    "load_catalogue",
]
