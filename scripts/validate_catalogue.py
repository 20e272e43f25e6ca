#!/usr/bin/env python3
"""
Load, validate and fingerprint the governance catalogue.

Usage:
    python scripts/validate_catalogue.py [--catalogue-dir DIR]

Prints the policies, templates (in dependency order) and role grants, then
the catalogue checksum. Exits 1 if any file fails to parse or validate.
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

import yaml

from governance_config import DEFAULT_CATALOGUE_DIR, load_catalogue
from governance_engines.dependencies import topological_order
from governance_kernel.exceptions import GovernanceError


def describe(catalogue) -> None:
    print(f"Policies ({len(catalogue.policies)}):")
    for policy in sorted(catalogue.policies.all_policies(), key=lambda p: p.approval_type.value):
        quorum = policy.minimum_approvers
        dual = " dual" if policy.requires_dual_approval else ""
        print(
            f"  {policy.approval_type.value:<28} {policy.domain.value:<16} "
            f"quorum={quorum}{dual} deadline={policy.default_deadline_hours}h "
            f"escalate={policy.escalation_hours}h"
        )

    print(f"Templates ({len(catalogue.templates)}):")
    for template in catalogue.templates.all_templates():
        order = " -> ".join(topological_order(template.steps))
        print(f"  {template.template_id} [{template.category.value}, {template.recurrence.value}]")
        print(f"    {order}")

    print(f"Roles ({len(catalogue.roles.roles)}):")
    for role in catalogue.roles.roles:
        grants = sorted(str(c) for c in catalogue.roles.capabilities_for([role]))
        print(f"  {role}: {', '.join(grants)}")

    print(f"Checksum: {catalogue.checksum}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument(
        "--catalogue-dir",
        type=Path,
        default=DEFAULT_CATALOGUE_DIR,
        help="directory holding the catalogue YAML files",
    )
    args = parser.parse_args(argv)

    if not args.catalogue_dir.is_dir():
        print(f"Error: directory not found: {args.catalogue_dir}", file=sys.stderr)
        return 1

    try:
        catalogue = load_catalogue(args.catalogue_dir)
    except (GovernanceError, ValueError, KeyError, FileNotFoundError, yaml.YAMLError) as exc:
        print(f"VALIDATION FAILED: {type(exc).__name__}: {exc}", file=sys.stderr)
        return 1

    describe(catalogue)
    print("Catalogue is valid.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
