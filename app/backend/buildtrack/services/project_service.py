"""Application service for project, milestone and task lifecycle and project totals."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from buildtrack.core.auth import RequestUserContext
from buildtrack.core.config import get_settings
from buildtrack.core.errors import ConcurrencyConflictError, NotFoundError, PersistenceFailureError, ValidationError
from buildtrack.domain.milestone_finance import MilestoneFinancials, compute_milestone_financials, financials_for_milestone
from buildtrack.domain.money import MAX_AMOUNT, Money, has_whole_cents
from buildtrack.domain.project_totals import ProjectTotals, fold_project_totals
from buildtrack.domain.task_progress import TaskProgress, task_progress
from buildtrack.models.entities import Milestone, Project, ProjectStatus, Task, TaskStatus
from buildtrack.repositories.project_repository import ProjectRepository
from buildtrack.services.settings_service import SettingsService, validate_tax_rate
from buildtrack.services.transactions import locked_transaction

logger = logging.getLogger(__name__)

UNSET = object()


@dataclass(slots=True)
class ProjectCreateData:
    name: str
    description: str | None = None
    status: ProjectStatus = ProjectStatus.ACTIVE
    start_date: date | None = None
    end_date: date | None = None


@dataclass(slots=True)
class ProjectUpdateData:
    name: str | None = None
    description: str | None = None
    status: ProjectStatus | None = None
    start_date: date | None = None
    end_date: date | None = None


@dataclass(slots=True)
class MilestoneCreateData:
    name: str
    budget: Decimal
    description: str | None = None
    due_date: date | None = None
    has_tax: bool = False
    tax_rate: Decimal | None = None


@dataclass(slots=True)
class MilestoneUpdateData:
    name: str | None = None
    description: str | None = None
    due_date: date | None = None
    budget: Decimal | None = None
    has_tax: bool | None = None
    # UNSET keeps the stored rate; None clears it back to the settings default.
    tax_rate: object = UNSET


@dataclass(slots=True)
class TaskCreateData:
    name: str
    description: str | None = None
    status: TaskStatus = TaskStatus.PENDING
    due_date: date | None = None


@dataclass(slots=True)
class TaskUpdateData:
    name: str | None = None
    description: str | None = None
    status: TaskStatus | None = None
    due_date: date | None = None


def _validate_budget(value: Decimal) -> Decimal:
    if value < 0:
        raise ValidationError("budget must be greater or equal zero.")
    if not has_whole_cents(value):
        raise ValidationError("budget must have at most 2 decimal places.")
    if value >= MAX_AMOUNT:
        raise ValidationError(f"budget must be less than {MAX_AMOUNT}.")
    return value


def _validate_date_range(start: date | None, end: date | None) -> None:
    if start is not None and end is not None and end < start:
        raise ValidationError("end_date must be greater than or equal to start_date.")


def clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


class ProjectService:
    """Project structure CRUD and on-demand project totals."""

    def __init__(self, db: Session) -> None:
        self.db = db
        self.repo = ProjectRepository(db)
        self.settings = get_settings()
        self.settings_service = SettingsService(db)

    # ---------- Scope ----------
    def ensure_project(self, *, context: RequestUserContext, project_id: UUID) -> Project:
        project = self.repo.get_project(project_id, owner_id=context.owner_id)
        if project is None:
            raise NotFoundError("Project not found.")
        return project

    def ensure_milestone(self, *, context: RequestUserContext, milestone_id: UUID) -> Milestone:
        milestone = self.repo.get_milestone(milestone_id, owner_id=context.owner_id)
        if milestone is None:
            raise NotFoundError("Milestone not found.")
        return milestone

    def ensure_task(self, *, context: RequestUserContext, task_id: UUID) -> Task:
        task = self.repo.get_task(task_id, owner_id=context.owner_id)
        if task is None:
            raise NotFoundError("Task not found.")
        return task

    def _commit(self) -> None:
        try:
            self.db.commit()
        except StaleDataError as exc:
            self.db.rollback()
            raise ConcurrencyConflictError("Milestone was modified concurrently. Retry the operation.") from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceFailureError("Could not persist changes.") from exc

    def _locked_transaction(self):
        return locked_transaction(self.db, lock_timeout_ms=self.settings.payment_lock_timeout_ms)

    # ---------- Serialization ----------
    @staticmethod
    def serialize_project(project: Project) -> dict[str, object]:
        return {
            "id": str(project.id),
            "name": project.name,
            "description": project.description,
            "status": project.status.value,
            "start_date": project.start_date.isoformat() if project.start_date else None,
            "end_date": project.end_date.isoformat() if project.end_date else None,
            "sandbox": project.owner_id is None,
            "created_at": project.created_at.isoformat(),
            "updated_at": project.updated_at.isoformat(),
        }

    @staticmethod
    def serialize_financials(financials: MilestoneFinancials) -> dict[str, object]:
        return {
            "budget": str(financials.budget),
            "has_tax": financials.has_tax,
            "tax_rate": str(financials.tax_rate) if financials.tax_rate is not None else None,
            "tax_amount": str(financials.tax_amount),
            "total_with_tax": str(financials.total_with_tax),
            "paid_amount": str(financials.paid_amount),
            "remaining_with_tax": str(financials.remaining_with_tax),
            "payment_percentage": str(financials.payment_percentage),
            "status": financials.status.value,
        }

    @staticmethod
    def serialize_progress(progress: TaskProgress) -> dict[str, object]:
        return {
            "total_tasks": progress.total_tasks,
            "completed_tasks": progress.completed_tasks,
            "task_completion_percentage": str(progress.completion_percentage),
        }

    @classmethod
    def serialize_milestone(
        cls,
        milestone: Milestone,
        financials: MilestoneFinancials,
        progress: TaskProgress | None = None,
    ) -> dict[str, object]:
        payload: dict[str, object] = {
            "id": str(milestone.id),
            "project_id": str(milestone.project_id),
            "name": milestone.name,
            "description": milestone.description,
            "due_date": milestone.due_date.isoformat() if milestone.due_date else None,
            "configured_tax_rate": str(milestone.tax_rate) if milestone.tax_rate is not None else None,
        }
        payload.update(cls.serialize_financials(financials))
        if progress is not None:
            payload.update(cls.serialize_progress(progress))
        return payload

    @staticmethod
    def serialize_task(task: Task) -> dict[str, object]:
        return {
            "id": str(task.id),
            "milestone_id": str(task.milestone_id),
            "name": task.name,
            "description": task.description,
            "status": task.status.value,
            "due_date": task.due_date.isoformat() if task.due_date else None,
        }

    @classmethod
    def serialize_totals(cls, totals: ProjectTotals, currency_code: str) -> dict[str, object]:
        payload: dict[str, object] = {
            "currency_code": currency_code,
            "base": str(totals.base),
            "tax": str(totals.tax),
            "total_with_tax": str(totals.total_with_tax),
            "paid": str(totals.paid),
            "pending": str(totals.pending),
            "payment_percentage": str(totals.payment_percentage),
        }
        payload.update(cls.serialize_progress(totals.tasks))
        return payload

    # ---------- Project CRUD ----------
    def list_projects(self, *, context: RequestUserContext) -> list[Project]:
        return self.repo.list_projects(context.owner_id)

    def create_project(self, *, context: RequestUserContext, data: ProjectCreateData) -> Project:
        name = clean_text(data.name)
        if name is None:
            raise ValidationError("name must not be empty.")
        _validate_date_range(data.start_date, data.end_date)

        now = datetime.utcnow()
        project = Project(
            owner_id=context.owner_id,
            name=name,
            description=clean_text(data.description),
            status=data.status,
            start_date=data.start_date,
            end_date=data.end_date,
            created_at=now,
            updated_at=now,
        )
        self.repo.add_project(project)
        self._commit()
        self.db.refresh(project)
        logger.info("Project created", extra={"project_id": str(project.id), "sandbox": context.sandbox})
        return project

    def get_project(self, *, context: RequestUserContext, project_id: UUID) -> Project:
        return self.ensure_project(context=context, project_id=project_id)

    def update_project(self, *, context: RequestUserContext, project_id: UUID, data: ProjectUpdateData) -> Project:
        project = self.ensure_project(context=context, project_id=project_id)

        target_start = data.start_date if data.start_date is not None else project.start_date
        target_end = data.end_date if data.end_date is not None else project.end_date
        _validate_date_range(target_start, target_end)

        if data.name is not None:
            name = clean_text(data.name)
            if name is None:
                raise ValidationError("name must not be empty.")
            project.name = name
        if data.description is not None:
            project.description = clean_text(data.description)
        if data.status is not None:
            project.status = data.status
        project.start_date = target_start
        project.end_date = target_end
        project.updated_at = datetime.utcnow()

        self._commit()
        self.db.refresh(project)
        return project

    def delete_project(self, *, context: RequestUserContext, project_id: UUID) -> None:
        project = self.ensure_project(context=context, project_id=project_id)
        self.repo.delete_project(project)
        self._commit()
        logger.info("Project deleted", extra={"project_id": str(project_id)})

    # ---------- Milestones ----------
    def milestone_financials(self, milestone: Milestone) -> MilestoneFinancials:
        return financials_for_milestone(milestone, self.settings_service.get_default_tax_rate())

    def milestone_progress(self, milestone: Milestone) -> TaskProgress:
        return task_progress(task.status for task in self.repo.list_tasks_for_milestone(milestone.id))

    def list_milestones(self, *, context: RequestUserContext, project_id: UUID) -> list[Milestone]:
        project = self.ensure_project(context=context, project_id=project_id)
        return self.repo.list_milestones(project.id)

    def get_milestone(self, *, context: RequestUserContext, milestone_id: UUID) -> Milestone:
        return self.ensure_milestone(context=context, milestone_id=milestone_id)

    def create_milestone(
        self,
        *,
        context: RequestUserContext,
        project_id: UUID,
        data: MilestoneCreateData,
    ) -> Milestone:
        project = self.ensure_project(context=context, project_id=project_id)
        name = clean_text(data.name)
        if name is None:
            raise ValidationError("name must not be empty.")
        _validate_budget(data.budget)
        if data.tax_rate is not None:
            validate_tax_rate(data.tax_rate)

        now = datetime.utcnow()
        milestone = Milestone(
            project_id=project.id,
            name=name,
            description=clean_text(data.description),
            due_date=data.due_date,
            budget=data.budget,
            has_tax=data.has_tax,
            tax_rate=data.tax_rate,
            paid_amount=Decimal("0.00"),
            created_at=now,
            updated_at=now,
        )
        self.repo.add_milestone(milestone)
        self._commit()
        self.db.refresh(milestone)
        return milestone

    def update_milestone(
        self,
        *,
        context: RequestUserContext,
        milestone_id: UUID,
        data: MilestoneUpdateData,
    ) -> Milestone:
        with self._locked_transaction():
            default_tax_rate = self.settings_service.get_default_tax_rate(locked=True)
            locked = self.repo.lock_milestones([milestone_id], owner_id=context.owner_id)
            if not locked:
                raise NotFoundError("Milestone not found.")
            milestone = locked[0]

            target_budget = milestone.budget if data.budget is None else _validate_budget(data.budget)
            target_has_tax = milestone.has_tax if data.has_tax is None else data.has_tax
            if data.tax_rate is UNSET:
                target_tax_rate = milestone.tax_rate
            else:
                target_tax_rate = data.tax_rate
                if target_tax_rate is not None:
                    validate_tax_rate(target_tax_rate)

            financials = compute_milestone_financials(
                budget=target_budget,
                has_tax=target_has_tax,
                tax_rate=target_tax_rate,
                paid_amount=milestone.paid_amount,
                default_tax_rate=default_tax_rate,
            )
            if financials.paid_amount.cents > financials.total_with_tax.cents:
                raise ValidationError(
                    f"New total with tax {financials.total_with_tax} would be below the already paid amount "
                    f"{financials.paid_amount}."
                )

            if data.name is not None:
                name = clean_text(data.name)
                if name is None:
                    raise ValidationError("name must not be empty.")
                milestone.name = name
            if data.description is not None:
                milestone.description = clean_text(data.description)
            if data.due_date is not None:
                milestone.due_date = data.due_date
            milestone.budget = target_budget
            milestone.has_tax = target_has_tax
            milestone.tax_rate = target_tax_rate
            milestone.updated_at = datetime.utcnow()

        self.db.refresh(milestone)
        return milestone

    def delete_milestone(self, *, context: RequestUserContext, milestone_id: UUID) -> None:
        """Delete a milestone with its tasks and the payments applied to it.

        Single payments on the milestone are removed. Distributed payments
        lose the milestone's entry and shrink by its amount, and are removed
        once no entries remain.
        """

        with self._locked_transaction():
            self.ensure_milestone(context=context, milestone_id=milestone_id)
            payment_ids = self.repo.list_payment_ids_for_milestone(milestone_id)
            payments = {payment.id: payment for payment in self.repo.lock_payments(payment_ids)}
            locked = self.repo.lock_milestones([milestone_id], owner_id=context.owner_id)
            if not locked:
                raise NotFoundError("Milestone not found.")
            milestone = locked[0]
            if set(self.repo.list_payment_ids_for_milestone(milestone.id)) != payments.keys():
                raise ConcurrencyConflictError("Milestone payments changed concurrently. Retry the operation.")

            for distribution in self.repo.list_distributions_for_milestone(milestone.id):
                payment = payments.pop(distribution.payment_id)
                removed = Money.from_major(distribution.amount)
                self.repo.delete_distribution(distribution)
                if self.repo.distribution_count(payment.id) == 0:
                    self.repo.delete_payment(payment)
                else:
                    payment.amount = (Money.from_major(payment.amount) - removed).to_major()
                    payment.updated_at = datetime.utcnow()
            for payment in payments.values():
                self.repo.delete_payment(payment)

            self.repo.delete_milestone(milestone)
        logger.info("Milestone deleted", extra={"milestone_id": str(milestone_id)})

    # ---------- Tasks ----------
    def list_tasks(self, *, context: RequestUserContext, milestone_id: UUID) -> list[Task]:
        milestone = self.ensure_milestone(context=context, milestone_id=milestone_id)
        return self.repo.list_tasks_for_milestone(milestone.id)

    def create_task(self, *, context: RequestUserContext, milestone_id: UUID, data: TaskCreateData) -> Task:
        milestone = self.ensure_milestone(context=context, milestone_id=milestone_id)
        name = clean_text(data.name)
        if name is None:
            raise ValidationError("name must not be empty.")

        now = datetime.utcnow()
        task = Task(
            milestone_id=milestone.id,
            name=name,
            description=clean_text(data.description),
            status=data.status,
            due_date=data.due_date,
            created_at=now,
            updated_at=now,
        )
        self.repo.add_task(task)
        self._commit()
        self.db.refresh(task)
        return task

    def update_task(self, *, context: RequestUserContext, task_id: UUID, data: TaskUpdateData) -> Task:
        task = self.ensure_task(context=context, task_id=task_id)
        if data.name is not None:
            name = clean_text(data.name)
            if name is None:
                raise ValidationError("name must not be empty.")
            task.name = name
        if data.description is not None:
            task.description = clean_text(data.description)
        if data.status is not None:
            task.status = data.status
        if data.due_date is not None:
            task.due_date = data.due_date
        task.updated_at = datetime.utcnow()

        self._commit()
        self.db.refresh(task)
        return task

    def delete_task(self, *, context: RequestUserContext, task_id: UUID) -> None:
        task = self.ensure_task(context=context, task_id=task_id)
        self.repo.delete_task(task)
        self._commit()

    # ---------- Project totals ----------
    def compute_project_totals(self, *, context: RequestUserContext, project_id: UUID) -> ProjectTotals:
        """Fold every milestone of the project into project totals.

        Reads current persisted state on every call; nothing is cached.
        """

        project = self.ensure_project(context=context, project_id=project_id)
        default_tax_rate = self.settings_service.get_default_tax_rate()
        milestones = self.repo.list_milestones(project.id)

        statuses_by_milestone: dict[UUID, list[TaskStatus]] = {milestone.id: [] for milestone in milestones}
        for task in self.repo.list_tasks_for_project(project.id):
            statuses_by_milestone.setdefault(task.milestone_id, []).append(task.status)

        return fold_project_totals(
            [financials_for_milestone(milestone, default_tax_rate) for milestone in milestones],
            [task_progress(statuses) for statuses in statuses_by_milestone.values()],
        )
