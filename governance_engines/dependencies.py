"""
governance_engines.dependencies -- Step dependency resolver.

Responsibility:
    Decide which playbook steps may start, given the state of the steps they
    depend on, and validate that a template's step graph is a DAG.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - A step may start only when every id in ``depends_on`` resolves to a
      COMPLETED or SKIPPED step of the same instance. An id that does not
      resolve counts as unsatisfied.
    - A ``blocked_by_approval`` step additionally needs every approval-gated
      dependency to carry an APPROVED step approval (or to be SKIPPED).
    - Template graphs reference only their own steps and contain no cycle.

Failure modes:
    - UnknownDependencyError / DependencyCycleError from
      ``validate_step_graph``.
"""

from __future__ import annotations

from collections.abc import Sequence

from governance_kernel.domain.playbook import (
    DONE_STEP_STATUSES,
    PlaybookStepInstance,
    PlaybookStepTemplate,
    StepApprovalStatus,
    StepStatus,
)
from governance_kernel.exceptions import DependencyCycleError, UnknownDependencyError


def _by_template_id(
    steps: Sequence[PlaybookStepInstance],
) -> dict[str, PlaybookStepInstance]:
    return {s.template_step_id: s for s in steps}


def _approval_cleared(step: PlaybookStepInstance) -> bool:
    if step.status == StepStatus.SKIPPED or not step.requires_approval:
        return True
    return step.approval is not None and step.approval.status == StepApprovalStatus.APPROVED


def unsatisfied_dependencies(
    step: PlaybookStepInstance,
    steps: Sequence[PlaybookStepInstance],
) -> tuple[str, ...]:
    """Template step ids that keep ``step`` from starting, in declared order."""
    index = _by_template_id(steps)
    blocking: list[str] = []
    for dep_id in step.depends_on:
        dep = index.get(dep_id)
        if dep is None or dep.status not in DONE_STEP_STATUSES:
            blocking.append(dep_id)
        elif step.blocked_by_approval and not _approval_cleared(dep):
            blocking.append(dep_id)
    return tuple(blocking)


def can_start(step: PlaybookStepInstance, steps: Sequence[PlaybookStepInstance]) -> bool:
    return not unsatisfied_dependencies(step, steps)


def ready_steps(steps: Sequence[PlaybookStepInstance]) -> tuple[PlaybookStepInstance, ...]:
    """NOT_STARTED steps whose dependencies are all satisfied, by order."""
    ready = [
        s for s in steps
        if s.status == StepStatus.NOT_STARTED and can_start(s, steps)
    ]
    return tuple(sorted(ready, key=lambda s: s.order))


def validate_step_graph(
    template_id: str,
    steps: Sequence[PlaybookStepTemplate],
) -> tuple[str, ...]:
    """Check references and acyclicity; return a topological order of step ids.

    Ties are broken by the steps' ``order`` so the result is deterministic.
    """
    ids = {s.step_id for s in steps}
    for s in steps:
        for dep in s.depends_on:
            if dep not in ids:
                raise UnknownDependencyError(template_id, s.step_id, dep)

    cycle = _detect_cycle(steps)
    if cycle:
        raise DependencyCycleError(template_id, cycle)

    return topological_order(steps)


def topological_order(steps: Sequence[PlaybookStepTemplate]) -> tuple[str, ...]:
    """Kahn's algorithm over an acyclic graph; dependencies come first."""
    order_of = {s.step_id: (s.order, s.step_id) for s in steps}
    remaining = {s.step_id: set(s.depends_on) for s in steps}
    result: list[str] = []
    while remaining:
        available = sorted(
            (sid for sid, deps in remaining.items() if not deps),
            key=order_of.__getitem__,
        )
        if not available:
            raise DependencyCycleError("<graph>", sorted(remaining))
        nxt = available[0]
        result.append(nxt)
        del remaining[nxt]
        for deps in remaining.values():
            deps.discard(nxt)
    return tuple(result)


def _detect_cycle(steps: Sequence[PlaybookStepTemplate]) -> list[str]:
    """Return one cycle as a closed path of step ids, or [] if acyclic."""
    graph = {s.step_id: tuple(s.depends_on) for s in steps}
    white, grey, black = 0, 1, 2
    color = dict.fromkeys(graph, white)
    path: list[str] = []

    def visit(node: str) -> list[str]:
        color[node] = grey
        path.append(node)
        for dep in graph.get(node, ()):
            if color.get(dep) == grey:
                return path[path.index(dep):] + [dep]
            if color.get(dep) == white:
                found = visit(dep)
                if found:
                    return found
        path.pop()
        color[node] = black
        return []

    for node in sorted(graph):
        if color[node] == white:
            found = visit(node)
            if found:
                return found
    return []
