"""Task completion progress for milestones and projects."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from buildtrack.models.entities import TaskStatus

Q2 = Decimal("0.01")


@dataclass(frozen=True, slots=True)
class TaskProgress:
    total_tasks: int
    completed_tasks: int

    @property
    def completion_percentage(self) -> Decimal:
        if self.total_tasks == 0:
            return Decimal("0.00")
        ratio = Decimal(self.completed_tasks) * Decimal(100) / Decimal(self.total_tasks)
        return ratio.quantize(Q2, rounding=ROUND_HALF_UP)


def task_progress(statuses: Iterable[TaskStatus]) -> TaskProgress:
    total = 0
    completed = 0
    for task_status in statuses:
        total += 1
        if task_status is TaskStatus.COMPLETED:
            completed += 1
    return TaskProgress(total_tasks=total, completed_tasks=completed)


def combine_task_progress(parts: Iterable[TaskProgress]) -> TaskProgress:
    """Project-level progress weighted by task count, not by milestone."""

    total = 0
    completed = 0
    for part in parts:
        total += part.total_tasks
        completed += part.completed_tasks
    return TaskProgress(total_tasks=total, completed_tasks=completed)
