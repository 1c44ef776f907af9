"""Repository helpers for projects, milestones, tasks and payments."""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import and_, delete, func, or_, select, text
from sqlalchemy.orm import Session

from buildtrack.models.entities import (
    AppSettings,
    Milestone,
    Payment,
    PaymentDistribution,
    Project,
    Task,
)


def _owner_condition(owner_id: str | None):
    if owner_id is None:
        return Project.owner_id.is_(None)
    return Project.owner_id == owner_id


class ProjectRepository:
    """Persistence operations used by project, payment and report services."""

    def __init__(self, db: Session) -> None:
        self.db = db

    # ---------- Transaction helpers ----------
    def set_lock_timeout(self, timeout_ms: int) -> None:
        """Bound row-lock waits for the current transaction (PostgreSQL only)."""

        if self.db.get_bind().dialect.name != "postgresql":
            return
        self.db.execute(text(f"SET LOCAL lock_timeout = {int(timeout_ms)}"))

    def begin_snapshot_read(self) -> None:
        """Run the following reads in one REPEATABLE READ snapshot (PostgreSQL only).

        Ends any transaction already open on the session so the isolation
        level applies from the first statement.
        """

        if self.db.get_bind().dialect.name != "postgresql":
            return
        self.db.commit()
        self.db.connection(execution_options={"isolation_level": "REPEATABLE READ"})

    # ---------- Projects ----------
    def list_projects(self, owner_id: str | None) -> list[Project]:
        return self.db.scalars(
            select(Project)
            .where(_owner_condition(owner_id))
            .order_by(Project.created_at.asc(), Project.name.asc())
        ).all()

    def get_project(self, project_id: UUID, *, owner_id: str | None) -> Project | None:
        return self.db.scalar(
            select(Project).where(and_(Project.id == project_id, _owner_condition(owner_id)))
        )

    def add_project(self, project: Project) -> Project:
        self.db.add(project)
        self.db.flush()
        return project

    def delete_project(self, project: Project) -> None:
        milestone_ids = select(Milestone.id).where(Milestone.project_id == project.id)
        payment_ids = select(Payment.id).where(Payment.project_id == project.id)
        self.db.execute(delete(PaymentDistribution).where(PaymentDistribution.payment_id.in_(payment_ids)))
        self.db.execute(delete(Payment).where(Payment.project_id == project.id))
        self.db.execute(delete(Task).where(Task.milestone_id.in_(milestone_ids)))
        self.db.execute(delete(Milestone).where(Milestone.project_id == project.id))
        self.db.delete(project)
        self.db.flush()

    # ---------- Milestones ----------
    def list_milestones(self, project_id: UUID) -> list[Milestone]:
        return self.db.scalars(
            select(Milestone)
            .where(Milestone.project_id == project_id)
            .order_by(Milestone.created_at.asc(), Milestone.id.asc())
        ).all()

    def get_milestone(self, milestone_id: UUID, *, owner_id: str | None) -> Milestone | None:
        return self.db.scalar(
            select(Milestone)
            .join(Project, Project.id == Milestone.project_id)
            .where(and_(Milestone.id == milestone_id, _owner_condition(owner_id)))
        )

    def lock_milestones(self, milestone_ids: Iterable[UUID], *, owner_id: str | None) -> list[Milestone]:
        """Load and row-lock milestones in ascending id order."""

        ids = sorted(set(milestone_ids))
        if not ids:
            return []
        return self.db.scalars(
            select(Milestone)
            .join(Project, Project.id == Milestone.project_id)
            .where(and_(Milestone.id.in_(ids), _owner_condition(owner_id)))
            .order_by(Milestone.id.asc())
            .with_for_update(of=Milestone)
            .execution_options(populate_existing=True)
        ).all()

    def lock_milestones_using_default_rate(self) -> list[Milestone]:
        """Row-lock every taxed milestone without its own rate, across all owners."""

        return self.db.scalars(
            select(Milestone)
            .where(and_(Milestone.has_tax.is_(True), Milestone.tax_rate.is_(None)))
            .order_by(Milestone.id.asc())
            .with_for_update(of=Milestone)
            .execution_options(populate_existing=True)
        ).all()

    def add_milestone(self, milestone: Milestone) -> Milestone:
        self.db.add(milestone)
        self.db.flush()
        return milestone

    def delete_milestone(self, milestone: Milestone) -> None:
        self.db.execute(delete(Task).where(Task.milestone_id == milestone.id))
        self.db.delete(milestone)
        self.db.flush()

    # ---------- Tasks ----------
    def list_tasks_for_milestone(self, milestone_id: UUID) -> list[Task]:
        return self.db.scalars(
            select(Task)
            .where(Task.milestone_id == milestone_id)
            .order_by(Task.created_at.asc(), Task.id.asc())
        ).all()

    def list_tasks_for_project(self, project_id: UUID) -> list[Task]:
        return self.db.scalars(
            select(Task)
            .join(Milestone, Milestone.id == Task.milestone_id)
            .where(Milestone.project_id == project_id)
            .order_by(Task.created_at.asc(), Task.id.asc())
        ).all()

    def get_task(self, task_id: UUID, *, owner_id: str | None) -> Task | None:
        return self.db.scalar(
            select(Task)
            .join(Milestone, Milestone.id == Task.milestone_id)
            .join(Project, Project.id == Milestone.project_id)
            .where(and_(Task.id == task_id, _owner_condition(owner_id)))
        )

    def add_task(self, task: Task) -> Task:
        self.db.add(task)
        self.db.flush()
        return task

    def delete_task(self, task: Task) -> None:
        self.db.delete(task)
        self.db.flush()

    # ---------- Payments ----------
    def get_payment(self, payment_id: UUID, *, owner_id: str | None, for_update: bool = False) -> Payment | None:
        query = (
            select(Payment)
            .join(Project, Project.id == Payment.project_id)
            .where(and_(Payment.id == payment_id, _owner_condition(owner_id)))
        )
        if for_update:
            query = query.with_for_update(of=Payment)
        return self.db.scalar(query)

    def list_payments(self, owner_id: str | None) -> list[Payment]:
        return self.db.scalars(
            select(Payment)
            .join(Project, Project.id == Payment.project_id)
            .where(_owner_condition(owner_id))
            .order_by(Payment.payment_date.desc(), Payment.created_at.desc())
        ).all()

    def list_payments_for_project(self, project_id: UUID) -> list[Payment]:
        return self.db.scalars(
            select(Payment)
            .where(Payment.project_id == project_id)
            .order_by(Payment.payment_date.asc(), Payment.created_at.asc())
        ).all()

    def list_payments_for_milestone(self, milestone_id: UUID) -> list[Payment]:
        distributed_ids = select(PaymentDistribution.payment_id).where(
            PaymentDistribution.milestone_id == milestone_id
        )
        return self.db.scalars(
            select(Payment)
            .where(or_(Payment.milestone_id == milestone_id, Payment.id.in_(distributed_ids)))
            .order_by(Payment.payment_date.asc(), Payment.created_at.asc())
        ).all()

    def list_payment_ids_for_milestone(self, milestone_id: UUID) -> list[UUID]:
        """Ids of single payments on the milestone and distributed payments with an entry on it."""

        distributed_ids = select(PaymentDistribution.payment_id).where(
            PaymentDistribution.milestone_id == milestone_id
        )
        return self.db.scalars(
            select(Payment.id)
            .where(or_(Payment.milestone_id == milestone_id, Payment.id.in_(distributed_ids)))
            .order_by(Payment.id.asc())
        ).all()

    def lock_payments(self, payment_ids: Iterable[UUID]) -> list[Payment]:
        """Load and row-lock payments in ascending id order."""

        ids = sorted(set(payment_ids))
        if not ids:
            return []
        return self.db.scalars(
            select(Payment)
            .where(Payment.id.in_(ids))
            .order_by(Payment.id.asc())
            .with_for_update(of=Payment)
            .execution_options(populate_existing=True)
        ).all()

    def add_payment(self, payment: Payment) -> Payment:
        self.db.add(payment)
        self.db.flush()
        return payment

    def delete_payment(self, payment: Payment) -> None:
        self.db.execute(delete(PaymentDistribution).where(PaymentDistribution.payment_id == payment.id))
        self.db.delete(payment)
        self.db.flush()

    # ---------- Distribution entries ----------
    def list_distributions(self, payment_id: UUID) -> list[PaymentDistribution]:
        return self.db.scalars(
            select(PaymentDistribution)
            .where(PaymentDistribution.payment_id == payment_id)
            .order_by(PaymentDistribution.sequence_no.asc())
        ).all()

    def list_distributions_for_payments(self, payment_ids: Iterable[UUID]) -> list[PaymentDistribution]:
        ids = list(payment_ids)
        if not ids:
            return []
        return self.db.scalars(
            select(PaymentDistribution)
            .where(PaymentDistribution.payment_id.in_(ids))
            .order_by(PaymentDistribution.payment_id.asc(), PaymentDistribution.sequence_no.asc())
        ).all()

    def list_distributions_for_milestone(self, milestone_id: UUID) -> list[PaymentDistribution]:
        return self.db.scalars(
            select(PaymentDistribution)
            .where(PaymentDistribution.milestone_id == milestone_id)
            .order_by(PaymentDistribution.payment_id.asc())
        ).all()

    def add_distribution(self, distribution: PaymentDistribution) -> PaymentDistribution:
        self.db.add(distribution)
        self.db.flush()
        return distribution

    def delete_distribution(self, distribution: PaymentDistribution) -> None:
        self.db.delete(distribution)
        self.db.flush()

    def distribution_count(self, payment_id: UUID) -> int:
        return (
            self.db.scalar(
                select(func.count())
                .select_from(PaymentDistribution)
                .where(PaymentDistribution.payment_id == payment_id)
            )
            or 0
        )

    # ---------- Settings ----------
    def get_app_settings(self, *, lock: str | None = None) -> AppSettings | None:
        """Load the settings row; ``lock`` is ``"share"`` or ``"update"`` to row-lock it."""

        query = select(AppSettings).where(AppSettings.id == 1)
        if lock is not None:
            query = query.with_for_update(read=lock == "share").execution_options(populate_existing=True)
        return self.db.scalar(query)

    def add_app_settings(self, row: AppSettings) -> AppSettings:
        self.db.add(row)
        self.db.flush()
        return row
