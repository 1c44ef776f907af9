"""Project-level roll-up of milestone figures."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal

from buildtrack.domain.milestone_finance import MilestoneFinancials
from buildtrack.domain.money import Money, money_sum, percentage
from buildtrack.domain.task_progress import TaskProgress, combine_task_progress


@dataclass(frozen=True, slots=True)
class ProjectTotals:
    base: Money
    tax: Money
    total_with_tax: Money
    paid: Money
    pending: Money
    payment_percentage: Decimal
    tasks: TaskProgress


def fold_project_totals(
    milestones: Sequence[MilestoneFinancials],
    task_progress: Sequence[TaskProgress],
) -> ProjectTotals:
    base = money_sum(item.budget for item in milestones)
    tax = money_sum(item.tax_amount for item in milestones)
    total = base + tax
    paid = money_sum(item.paid_amount for item in milestones)
    return ProjectTotals(
        base=base,
        tax=tax,
        total_with_tax=total,
        paid=paid,
        pending=money_sum(item.remaining_with_tax for item in milestones),
        payment_percentage=percentage(paid, total),
        tasks=combine_task_progress(task_progress),
    )
