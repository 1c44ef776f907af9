"""Payment application engine: single and distributed payments, edits and deletes.

Every operation runs as one transaction. The settings row is share-locked
first and target milestones are then row-locked in ascending id order. All
overpayment checks complete before the first mutation. Any failure rolls the
whole session back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from buildtrack.core.auth import RequestUserContext
from buildtrack.core.config import get_settings
from buildtrack.core.errors import NotFoundError, OverpaymentError, ValidationError
from buildtrack.domain.milestone_finance import MilestoneFinancials, financials_for_milestone
from buildtrack.domain.money import MAX_AMOUNT, Money, has_whole_cents, money_sum
from buildtrack.models.entities import Milestone, Payment, PaymentDistribution, PaymentMethod, PaymentType
from buildtrack.repositories.project_repository import ProjectRepository
from buildtrack.services.project_service import ProjectService, clean_text
from buildtrack.services.settings_service import SettingsService
from buildtrack.services.transactions import locked_transaction

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DistributionInput:
    milestone_id: UUID
    amount: Decimal


@dataclass(slots=True)
class SinglePaymentData:
    milestone_id: UUID
    amount: Decimal
    payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    description: str | None = None
    payment_date: date | None = None


@dataclass(slots=True)
class DistributedPaymentData:
    distributions: list[DistributionInput]
    payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    description: str | None = None
    payment_date: date | None = None
    total_amount: Decimal | None = None


@dataclass(slots=True)
class PaymentUpdateData:
    amount: Decimal | None = None
    distributions: list[DistributionInput] | None = None
    payment_method: PaymentMethod | None = None
    description: str | None = None
    payment_date: date | None = None


@dataclass(slots=True)
class MilestoneState:
    milestone: Milestone
    financials: MilestoneFinancials


@dataclass(slots=True)
class PaymentResult:
    payment: Payment | None
    distributions: list[PaymentDistribution] = field(default_factory=list)
    milestones: list[MilestoneState] = field(default_factory=list)


def _validate_amount(value: Decimal, field_name: str = "amount") -> Money:
    if not value.is_finite() or value <= 0:
        raise ValidationError(f"{field_name} must be greater than zero.")
    if not has_whole_cents(value):
        raise ValidationError(f"{field_name} must have at most 2 decimal places.")
    if value >= MAX_AMOUNT:
        raise ValidationError(f"{field_name} must be less than {MAX_AMOUNT}.")
    return Money.from_major(value)


def _normalize_distributions(
    entries: list[DistributionInput],
    total_amount: Decimal | None = None,
) -> dict[UUID, Money]:
    """Validate distribution entries and return shares keyed by milestone in caller order."""

    if not entries:
        raise ValidationError("distributions must contain at least one entry.")

    shares: dict[UUID, Money] = {}
    for index, entry in enumerate(entries):
        if entry.milestone_id in shares:
            raise ValidationError(f"Milestone {entry.milestone_id} appears more than once in distributions.")
        shares[entry.milestone_id] = _validate_amount(entry.amount, f"distributions[{index}].amount")

    if total_amount is not None:
        total = _validate_amount(total_amount, "total_amount")
        if total != money_sum(shares.values()):
            raise ValidationError(
                f"Sum of distribution amounts {money_sum(shares.values())} does not equal total_amount {total}."
            )
    return shares


class PaymentService:
    """Applies, edits and reverses payments while keeping ``paid_amount <= total_with_tax``."""

    def __init__(self, db: Session) -> None:
        self.db = db
        self.repo = ProjectRepository(db)
        self.settings = get_settings()
        self.settings_service = SettingsService(db)
        self.projects = ProjectService(db)

    # ---------- Transactions ----------
    def _transaction(self):
        return locked_transaction(
            self.db,
            lock_timeout_ms=self.settings.payment_lock_timeout_ms,
            failure_message="Could not persist payment changes.",
        )

    def _locked_default_tax_rate(self) -> Decimal:
        # Taken before any payment or milestone lock so a concurrent rate change waits.
        return self.settings_service.get_default_tax_rate(locked=True)

    def _lock_milestones(self, *, context: RequestUserContext, milestone_ids: set[UUID]) -> dict[UUID, Milestone]:
        locked = self.repo.lock_milestones(milestone_ids, owner_id=context.owner_id)
        by_id = {milestone.id: milestone for milestone in locked}
        missing = sorted(str(milestone_id) for milestone_id in milestone_ids - by_id.keys())
        if missing:
            raise NotFoundError(f"Milestone not found: {', '.join(missing)}.")
        return by_id

    @staticmethod
    def _check_shares(
        *,
        milestones: dict[UUID, Milestone],
        shares: dict[UUID, Money],
        released: dict[UUID, Money],
        default_tax_rate: Decimal,
    ) -> None:
        """Raise ``OverpaymentError`` for the first share exceeding what its milestone accepts.

        ``released`` holds amounts reversed from the same payment before the new
        shares are applied; they count as available again.
        """

        for milestone_id, amount in shares.items():
            milestone = milestones[milestone_id]
            financials = financials_for_milestone(milestone, default_tax_rate)
            paid_after_reversal = financials.paid_amount - released.get(milestone_id, Money.zero())
            allowed = (financials.total_with_tax - paid_after_reversal).clamp_non_negative()
            if amount.cents > allowed.cents:
                raise OverpaymentError(
                    milestone_id=milestone_id,
                    requested_amount=amount.to_major(),
                    max_allowed_amount=allowed.to_major(),
                )

    @staticmethod
    def _shift_paid(milestone: Milestone, *, subtract: Money, add: Money, now: datetime) -> None:
        if subtract.cents == 0 and add.cents == 0:
            return
        milestone.paid_amount = (Money.from_major(milestone.paid_amount) - subtract + add).to_major()
        milestone.updated_at = now

    def _payment_shares(self, payment: Payment) -> tuple[dict[UUID, Money], list[PaymentDistribution]]:
        if payment.type is PaymentType.SINGLE:
            return {payment.milestone_id: Money.from_major(payment.amount)}, []
        distributions = self.repo.list_distributions(payment.id)
        return {row.milestone_id: Money.from_major(row.amount) for row in distributions}, distributions

    def _result(
        self,
        payment: Payment | None,
        milestone_ids: list[UUID],
        milestones: dict[UUID, Milestone],
        default_tax_rate: Decimal,
    ) -> PaymentResult:
        distributions: list[PaymentDistribution] = []
        if payment is not None:
            self.db.refresh(payment)
            if payment.type is PaymentType.DISTRIBUTED:
                distributions = self.repo.list_distributions(payment.id)

        states: list[MilestoneState] = []
        for milestone_id in milestone_ids:
            milestone = milestones[milestone_id]
            self.db.refresh(milestone)
            states.append(MilestoneState(milestone, financials_for_milestone(milestone, default_tax_rate)))
        return PaymentResult(payment=payment, distributions=distributions, milestones=states)

    # ---------- Serialization ----------
    @staticmethod
    def serialize_payment(payment: Payment, distributions: list[PaymentDistribution] | None = None) -> dict[str, object]:
        return {
            "id": str(payment.id),
            "project_id": str(payment.project_id),
            "type": payment.type.value,
            "milestone_id": str(payment.milestone_id) if payment.milestone_id is not None else None,
            "amount": str(payment.amount),
            "description": payment.description,
            "payment_date": payment.payment_date.isoformat(),
            "payment_method": payment.payment_method.value,
            "created_by": payment.created_by,
            "created_at": payment.created_at.isoformat(),
            "updated_at": payment.updated_at.isoformat(),
            "distributions": [
                {
                    "milestone_id": str(row.milestone_id),
                    "amount": str(row.amount),
                    "sequence_no": row.sequence_no,
                }
                for row in (distributions or [])
            ],
        }

    @classmethod
    def serialize_result(cls, result: PaymentResult) -> dict[str, object]:
        return {
            "payment": cls.serialize_payment(result.payment, result.distributions) if result.payment else None,
            "milestones": [
                ProjectService.serialize_milestone(state.milestone, state.financials) for state in result.milestones
            ],
        }

    # ---------- Apply ----------
    def apply_single_payment(self, *, context: RequestUserContext, data: SinglePaymentData) -> PaymentResult:
        amount = _validate_amount(data.amount)

        with self._transaction():
            default_tax_rate = self._locked_default_tax_rate()
            milestones = self._lock_milestones(context=context, milestone_ids={data.milestone_id})
            milestone = milestones[data.milestone_id]
            self._check_shares(
                milestones=milestones,
                shares={milestone.id: amount},
                released={},
                default_tax_rate=default_tax_rate,
            )

            now = datetime.utcnow()
            payment = Payment(
                project_id=milestone.project_id,
                type=PaymentType.SINGLE,
                milestone_id=milestone.id,
                amount=amount.to_major(),
                description=clean_text(data.description),
                payment_date=data.payment_date or date.today(),
                payment_method=data.payment_method,
                created_by=context.audit_name,
                created_at=now,
                updated_at=now,
            )
            self.repo.add_payment(payment)
            self._shift_paid(milestone, subtract=Money.zero(), add=amount, now=now)

        logger.info(
            "Single payment applied",
            extra={"payment_id": str(payment.id), "milestone_id": str(milestone.id), "amount": str(amount)},
        )
        return self._result(payment, [milestone.id], milestones, default_tax_rate)

    def apply_distributed_payment(
        self,
        *,
        context: RequestUserContext,
        data: DistributedPaymentData,
    ) -> PaymentResult:
        shares = _normalize_distributions(data.distributions, data.total_amount)

        with self._transaction():
            default_tax_rate = self._locked_default_tax_rate()
            milestones = self._lock_milestones(context=context, milestone_ids=set(shares))
            project_ids = {milestone.project_id for milestone in milestones.values()}
            if len(project_ids) != 1:
                raise ValidationError("All milestones of a distributed payment must belong to the same project.")

            self._check_shares(milestones=milestones, shares=shares, released={}, default_tax_rate=default_tax_rate)

            now = datetime.utcnow()
            total = money_sum(shares.values())
            payment = Payment(
                project_id=project_ids.pop(),
                type=PaymentType.DISTRIBUTED,
                milestone_id=None,
                amount=total.to_major(),
                description=clean_text(data.description),
                payment_date=data.payment_date or date.today(),
                payment_method=data.payment_method,
                created_by=context.audit_name,
                created_at=now,
                updated_at=now,
            )
            self.repo.add_payment(payment)
            for sequence_no, (milestone_id, amount) in enumerate(shares.items(), start=1):
                self.repo.add_distribution(
                    PaymentDistribution(
                        payment_id=payment.id,
                        milestone_id=milestone_id,
                        amount=amount.to_major(),
                        sequence_no=sequence_no,
                    )
                )
                self._shift_paid(milestones[milestone_id], subtract=Money.zero(), add=amount, now=now)

        logger.info(
            "Distributed payment applied",
            extra={
                "payment_id": str(payment.id),
                "milestone_ids": [str(milestone_id) for milestone_id in shares],
                "amount": str(total),
            },
        )
        return self._result(payment, list(shares), milestones, default_tax_rate)

    # ---------- Edit ----------
    def edit_payment(
        self,
        *,
        context: RequestUserContext,
        payment_id: UUID,
        data: PaymentUpdateData,
    ) -> PaymentResult:
        with self._transaction():
            default_tax_rate = self._locked_default_tax_rate()
            payment = self.repo.get_payment(payment_id, owner_id=context.owner_id, for_update=True)
            if payment is None:
                raise NotFoundError("Payment not found.")

            old_shares, old_distributions = self._payment_shares(payment)
            if payment.type is PaymentType.SINGLE:
                if data.distributions is not None:
                    raise ValidationError("Single payments cannot be given distributions.")
                new_amount = _validate_amount(data.amount) if data.amount is not None else Money.from_major(payment.amount)
                new_shares = {payment.milestone_id: new_amount}
            elif data.distributions is not None:
                new_shares = _normalize_distributions(data.distributions, data.amount)
            elif data.amount is not None:
                raise ValidationError("Changing a distributed payment amount requires new distributions.")
            else:
                new_shares = dict(old_shares)

            milestones = self._lock_milestones(context=context, milestone_ids=set(old_shares) | set(new_shares))
            if any(milestones[milestone_id].project_id != payment.project_id for milestone_id in new_shares):
                raise ValidationError("All milestones of a payment must belong to the payment's project.")

            self._check_shares(
                milestones=milestones,
                shares=new_shares,
                released=old_shares,
                default_tax_rate=default_tax_rate,
            )

            now = datetime.utcnow()
            for milestone_id, milestone in milestones.items():
                self._shift_paid(
                    milestone,
                    subtract=old_shares.get(milestone_id, Money.zero()),
                    add=new_shares.get(milestone_id, Money.zero()),
                    now=now,
                )

            if payment.type is PaymentType.DISTRIBUTED and new_shares != old_shares:
                for row in old_distributions:
                    self.repo.delete_distribution(row)
                for sequence_no, (milestone_id, amount) in enumerate(new_shares.items(), start=1):
                    self.repo.add_distribution(
                        PaymentDistribution(
                            payment_id=payment.id,
                            milestone_id=milestone_id,
                            amount=amount.to_major(),
                            sequence_no=sequence_no,
                        )
                    )

            payment.amount = money_sum(new_shares.values()).to_major()
            if data.payment_method is not None:
                payment.payment_method = data.payment_method
            if data.description is not None:
                payment.description = clean_text(data.description)
            if data.payment_date is not None:
                payment.payment_date = data.payment_date
            payment.updated_at = now

        logger.info(
            "Payment edited",
            extra={
                "payment_id": str(payment_id),
                "milestone_ids": [str(milestone_id) for milestone_id in sorted(milestones)],
                "amount": str(money_sum(new_shares.values())),
            },
        )
        return self._result(payment, sorted(milestones), milestones, default_tax_rate)

    # ---------- Delete ----------
    def delete_payment(
        self,
        *,
        context: RequestUserContext,
        payment_id: UUID,
        milestone_id: UUID | None = None,
    ) -> PaymentResult:
        """Reverse a payment.

        With ``milestone_id`` on a distributed payment only that milestone's
        entry is reversed and removed; the payment is deleted once no entries
        remain.
        """

        remaining_payment: Payment | None = None
        with self._transaction():
            default_tax_rate = self._locked_default_tax_rate()
            payment = self.repo.get_payment(payment_id, owner_id=context.owner_id, for_update=True)
            if payment is None:
                raise NotFoundError("Payment not found.")

            shares, distributions = self._payment_shares(payment)
            if milestone_id is not None and milestone_id not in shares:
                raise NotFoundError("Payment is not applied to the given milestone.")

            partial = milestone_id is not None and payment.type is PaymentType.DISTRIBUTED and len(shares) > 1
            reversed_shares = {milestone_id: shares[milestone_id]} if partial else shares
            milestones = self._lock_milestones(context=context, milestone_ids=set(reversed_shares))

            now = datetime.utcnow()
            for target_id, amount in reversed_shares.items():
                self._shift_paid(milestones[target_id], subtract=amount, add=Money.zero(), now=now)

            if partial:
                for row in distributions:
                    if row.milestone_id == milestone_id:
                        self.repo.delete_distribution(row)
                payment.amount = (Money.from_major(payment.amount) - shares[milestone_id]).to_major()
                payment.updated_at = now
                remaining_payment = payment
            else:
                self.repo.delete_payment(payment)

        logger.info(
            "Payment reversed",
            extra={
                "payment_id": str(payment_id),
                "milestone_ids": [str(target_id) for target_id in reversed_shares],
                "amount": str(money_sum(reversed_shares.values())),
                "payment_deleted": remaining_payment is None,
            },
        )
        return self._result(remaining_payment, sorted(reversed_shares), milestones, default_tax_rate)

    # ---------- Queries ----------
    def get_payment(self, *, context: RequestUserContext, payment_id: UUID) -> tuple[Payment, list[PaymentDistribution]]:
        payment = self.repo.get_payment(payment_id, owner_id=context.owner_id)
        if payment is None:
            raise NotFoundError("Payment not found.")
        _, distributions = self._payment_shares(payment)
        return payment, distributions

    def _with_distributions(self, payments: list[Payment]) -> list[tuple[Payment, list[PaymentDistribution]]]:
        by_payment: dict[UUID, list[PaymentDistribution]] = {}
        distributed_ids = [payment.id for payment in payments if payment.type is PaymentType.DISTRIBUTED]
        for row in self.repo.list_distributions_for_payments(distributed_ids):
            by_payment.setdefault(row.payment_id, []).append(row)
        return [(payment, by_payment.get(payment.id, [])) for payment in payments]

    def list_payments(self, *, context: RequestUserContext) -> list[tuple[Payment, list[PaymentDistribution]]]:
        return self._with_distributions(self.repo.list_payments(context.owner_id))

    def list_project_payments(
        self,
        *,
        context: RequestUserContext,
        project_id: UUID,
    ) -> list[tuple[Payment, list[PaymentDistribution]]]:
        project = self.projects.ensure_project(context=context, project_id=project_id)
        return self._with_distributions(self.repo.list_payments_for_project(project.id))

    def list_milestone_payments(
        self,
        *,
        context: RequestUserContext,
        milestone_id: UUID,
    ) -> list[tuple[Payment, Decimal]]:
        """Payments touching a milestone with the amount applied to it."""

        milestone = self.projects.ensure_milestone(context=context, milestone_id=milestone_id)
        rows: list[tuple[Payment, Decimal]] = []
        for payment, distributions in self._with_distributions(self.repo.list_payments_for_milestone(milestone.id)):
            if payment.type is PaymentType.SINGLE:
                rows.append((payment, payment.amount))
                continue
            for row in distributions:
                if row.milestone_id == milestone.id:
                    rows.append((payment, row.amount))
        return rows
