"""Milestone financial model: tax, totals, paid/pending and derived status."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import Decimal

from buildtrack.domain.money import Money, percentage

MAX_TAX_RATE = Decimal("100")


class MilestonePaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"


@dataclass(frozen=True, slots=True)
class MilestoneFinancials:
    """Derived money figures of one milestone. Never persisted."""

    budget: Money
    has_tax: bool
    tax_rate: Decimal | None
    tax_amount: Money
    total_with_tax: Money
    paid_amount: Money
    remaining_with_tax: Money
    payment_percentage: Decimal
    status: MilestonePaymentStatus


def effective_tax_rate(*, has_tax: bool, tax_rate: Decimal | None, default_tax_rate: Decimal) -> Decimal | None:
    if not has_tax:
        return None
    return tax_rate if tax_rate is not None else default_tax_rate


def derive_status(*, total_with_tax: Money, paid_amount: Money) -> MilestonePaymentStatus:
    if total_with_tax.cents <= 0:
        return MilestonePaymentStatus.UNPAID
    if paid_amount.cents >= total_with_tax.cents:
        return MilestonePaymentStatus.PAID
    if paid_amount.cents > 0:
        return MilestonePaymentStatus.PARTIALLY_PAID
    return MilestonePaymentStatus.UNPAID


def compute_milestone_financials(
    *,
    budget: Decimal,
    has_tax: bool,
    tax_rate: Decimal | None,
    paid_amount: Decimal,
    default_tax_rate: Decimal,
) -> MilestoneFinancials:
    """Compute milestone figures.

    Tax is rounded to the cent on its own and then added to the budget, so
    ``total_with_tax`` always equals the displayed budget plus displayed tax.
    """

    base = Money.from_major(budget)
    paid = Money.from_major(paid_amount)
    rate = effective_tax_rate(has_tax=has_tax, tax_rate=tax_rate, default_tax_rate=default_tax_rate)
    tax = base.percentage_of(rate) if rate is not None else Money.zero()
    total = base + tax
    remaining = (total - paid).clamp_non_negative()

    return MilestoneFinancials(
        budget=base,
        has_tax=has_tax,
        tax_rate=rate,
        tax_amount=tax,
        total_with_tax=total,
        paid_amount=paid,
        remaining_with_tax=remaining,
        payment_percentage=percentage(paid, total),
        status=derive_status(total_with_tax=total, paid_amount=paid),
    )


def financials_for_milestone(milestone, default_tax_rate: Decimal) -> MilestoneFinancials:
    """Financials of a persisted milestone row (anything with the milestone columns)."""

    return compute_milestone_financials(
        budget=milestone.budget,
        has_tax=milestone.has_tax,
        tax_rate=milestone.tax_rate,
        paid_amount=milestone.paid_amount,
        default_tax_rate=default_tax_rate,
    )
