"""Settings collaborator: persisted default tax rate."""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from buildtrack.core.config import get_settings
from buildtrack.core.errors import ValidationError
from buildtrack.domain.milestone_finance import MAX_TAX_RATE, compute_milestone_financials
from buildtrack.domain.money import has_whole_cents
from buildtrack.models.entities import AppSettings
from buildtrack.repositories.project_repository import ProjectRepository
from buildtrack.services.transactions import locked_transaction

logger = logging.getLogger(__name__)


def validate_tax_rate(value: Decimal, field_name: str = "tax_rate") -> Decimal:
    if value < 0 or value > MAX_TAX_RATE:
        raise ValidationError(f"{field_name} must be between 0 and 100.")
    if not has_whole_cents(value):
        raise ValidationError(f"{field_name} must have at most 2 decimal places.")
    return value


class SettingsService:
    """Read and update application-wide settings."""

    def __init__(self, db: Session) -> None:
        self.db = db
        self.repo = ProjectRepository(db)
        self.settings = get_settings()

    @staticmethod
    def serialize(row: AppSettings, currency_code: str) -> dict[str, object]:
        return {
            "default_tax_rate": str(row.default_tax_rate),
            "currency_code": currency_code,
            "updated_at": row.updated_at.isoformat(),
        }

    def _ensure_row(self, *, lock: str | None = None) -> AppSettings:
        row = self.repo.get_app_settings(lock=lock)
        if row is None:
            row = self.repo.add_app_settings(
                AppSettings(
                    id=1,
                    default_tax_rate=self.settings.default_tax_rate,
                    updated_at=datetime.utcnow(),
                )
            )
        return row

    def get_app_settings(self) -> AppSettings:
        row = self._ensure_row()
        self.db.commit()
        return row

    def get_default_tax_rate(self, *, locked: bool = False) -> Decimal:
        """Default rate for milestones with tax enabled but no own rate.

        Does not commit; a missing row is seeded within the caller's transaction.
        With ``locked`` the row stays share-locked until that transaction ends.
        """

        return self._ensure_row(lock="share" if locked else None).default_tax_rate

    def update_default_tax_rate(self, value: Decimal) -> AppSettings:
        """Store a new default rate.

        Rejected when a taxed milestone without its own rate has already been
        paid more than its total with tax at the new rate.
        """

        validate_tax_rate(value, "default_tax_rate")
        with locked_transaction(
            self.db,
            lock_timeout_ms=self.settings.payment_lock_timeout_ms,
            failure_message="Could not persist settings.",
        ):
            row = self._ensure_row(lock="update")
            for milestone in self.repo.lock_milestones_using_default_rate():
                financials = compute_milestone_financials(
                    budget=milestone.budget,
                    has_tax=True,
                    tax_rate=None,
                    paid_amount=milestone.paid_amount,
                    default_tax_rate=value,
                )
                if financials.paid_amount.cents > financials.total_with_tax.cents:
                    raise ValidationError(
                        f"Default tax rate {value} would put the total with tax {financials.total_with_tax} of "
                        f"milestone {milestone.id} below its paid amount {financials.paid_amount}."
                    )
            row.default_tax_rate = value
            row.updated_at = datetime.utcnow()
        self.db.refresh(row)
        logger.info("Default tax rate updated", extra={"default_tax_rate": str(value)})
        return row
