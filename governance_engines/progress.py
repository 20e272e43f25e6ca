"""
governance_engines.progress -- Playbook progress and instance status.

Responsibility:
    Derive an instance's progress from its steps and settle the instance
    lifecycle after a step moves.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - progress = round_half_up(100 * done / total), done = COMPLETED + SKIPPED,
      capped at 99 while any step is still open.
    - status is COMPLETED exactly when every step is done.
    - DRAFT becomes ACTIVE on the first step that enters IN_PROGRESS.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from governance_kernel.domain.playbook import (
    PlaybookInstance,
    PlaybookStatus,
    PlaybookStepInstance,
)

COMPLETE = 100


def compute_progress(steps: Sequence[PlaybookStepInstance]) -> int:
    """Percentage of done steps, halves rounded up. An empty list is 0."""
    total = len(steps)
    if total == 0:
        return 0
    done = sum(1 for s in steps if s.is_done)
    if done == total:
        return COMPLETE
    ratio = Decimal(100 * done) / Decimal(total)
    # 199 of 200 would round to 100
    return min(int(ratio.quantize(Decimal(1), rounding=ROUND_HALF_UP)), COMPLETE - 1)


def all_steps_done(steps: Sequence[PlaybookStepInstance]) -> bool:
    return bool(steps) and all(s.is_done for s in steps)


def settle_instance(
    instance: PlaybookInstance,
    steps: tuple[PlaybookStepInstance, ...],
    now: datetime,
    *,
    step_started: bool = False,
) -> PlaybookInstance:
    """Return ``instance`` with new steps, recomputed progress and status."""
    progress = compute_progress(steps)
    status = instance.status
    completed_at = instance.completed_at

    if step_started and status == PlaybookStatus.DRAFT:
        status = PlaybookStatus.ACTIVE
    if all_steps_done(steps) and status != PlaybookStatus.COMPLETED:
        status = PlaybookStatus.COMPLETED
        completed_at = now

    return replace(
        instance,
        steps=steps,
        progress=progress,
        status=status,
        completed_at=completed_at,
        updated_at=now,
        last_activity_at=now,
    )
