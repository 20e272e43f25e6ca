"""
Governance Kernel

Core of the governance workflow engine:
- Four-eyes approval requests with policy-driven quorum and veto
- Multi-step compliance playbooks with dependency gating
- Typed errors, structured logging, injectable clock
- Storage-agnostic persistence with optimistic concurrency
"""

__version__ = "0.1.0"
