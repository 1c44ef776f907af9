"""Project report tree and its XLSX/CSV exports."""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from openpyxl import Workbook
from sqlalchemy.orm import Session

from buildtrack.core.auth import RequestUserContext
from buildtrack.core.config import get_settings
from buildtrack.core.errors import ValidationError
from buildtrack.domain.milestone_finance import MilestoneFinancials, financials_for_milestone
from buildtrack.domain.project_totals import ProjectTotals, fold_project_totals
from buildtrack.domain.task_progress import TaskProgress, task_progress
from buildtrack.models.entities import Milestone, PaymentType, Project, Task
from buildtrack.repositories.project_repository import ProjectRepository
from buildtrack.services.project_service import ProjectService
from buildtrack.services.settings_service import SettingsService

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
EXPORT_FORMATS = {"csv", "xlsx"}
MILESTONE_COLUMNS = [
    "milestone",
    "due_date",
    "budget",
    "tax_rate",
    "tax_amount",
    "total_with_tax",
    "paid_amount",
    "remaining_with_tax",
    "payment_percentage",
    "status",
    "total_tasks",
    "completed_tasks",
]


@dataclass(slots=True)
class ExportFilePayload:
    media_type: str
    filename: str
    content: bytes


@dataclass(slots=True)
class TaskReportRow:
    name: str
    description: str | None
    status: str
    due_date: date | None


@dataclass(slots=True)
class PaymentReportRow:
    payment_id: UUID
    payment_date: date
    amount: Decimal
    payment_method: str
    payment_type: str
    description: str | None


@dataclass(slots=True)
class MilestoneReport:
    milestone: Milestone
    financials: MilestoneFinancials
    progress: TaskProgress
    tasks: list[TaskReportRow] = field(default_factory=list)
    payments: list[PaymentReportRow] = field(default_factory=list)


@dataclass(slots=True)
class ProjectReport:
    project: Project
    currency_code: str
    generated_at: datetime
    totals: ProjectTotals
    milestones: list[MilestoneReport]


class ReportService:
    """Builds the nested project report and renders it to downloadable files."""

    def __init__(self, db: Session) -> None:
        self.db = db
        self.repo = ProjectRepository(db)
        self.settings = get_settings()
        self.projects = ProjectService(db)
        self.settings_service = SettingsService(db)

    def build_project_report(self, *, context: RequestUserContext, project_id: UUID) -> ProjectReport:
        self.repo.begin_snapshot_read()
        project = self.projects.ensure_project(context=context, project_id=project_id)
        default_tax_rate = self.settings_service.get_default_tax_rate()
        milestones = self.repo.list_milestones(project.id)
        payments = self.repo.list_payments_for_project(project.id)
        distributions = self.repo.list_distributions_for_payments(
            payment.id for payment in payments if payment.type is PaymentType.DISTRIBUTED
        )

        tasks_by_milestone: dict[UUID, list[Task]] = {milestone.id: [] for milestone in milestones}
        for task in self.repo.list_tasks_for_project(project.id):
            tasks_by_milestone.setdefault(task.milestone_id, []).append(task)

        payments_by_id = {payment.id: payment for payment in payments}
        applied: dict[UUID, list[tuple[UUID, Decimal]]] = {milestone.id: [] for milestone in milestones}
        for payment in payments:
            if payment.type is PaymentType.SINGLE:
                applied.setdefault(payment.milestone_id, []).append((payment.id, payment.amount))
        for row in distributions:
            applied.setdefault(row.milestone_id, []).append((row.payment_id, row.amount))

        milestone_reports: list[MilestoneReport] = []
        for milestone in milestones:
            tasks = tasks_by_milestone[milestone.id]
            entries = sorted(
                applied[milestone.id],
                key=lambda entry: (payments_by_id[entry[0]].payment_date, payments_by_id[entry[0]].created_at),
            )
            milestone_reports.append(
                MilestoneReport(
                    milestone=milestone,
                    financials=financials_for_milestone(milestone, default_tax_rate),
                    progress=task_progress(task.status for task in tasks),
                    tasks=[
                        TaskReportRow(
                            name=task.name,
                            description=task.description,
                            status=task.status.value,
                            due_date=task.due_date,
                        )
                        for task in tasks
                    ],
                    payments=[
                        PaymentReportRow(
                            payment_id=payment_id,
                            payment_date=payments_by_id[payment_id].payment_date,
                            amount=amount,
                            payment_method=payments_by_id[payment_id].payment_method.value,
                            payment_type=payments_by_id[payment_id].type.value,
                            description=payments_by_id[payment_id].description,
                        )
                        for payment_id, amount in entries
                    ],
                )
            )

        totals = fold_project_totals(
            [item.financials for item in milestone_reports],
            [item.progress for item in milestone_reports],
        )
        return ProjectReport(
            project=project,
            currency_code=self.settings.currency_code,
            generated_at=datetime.utcnow(),
            totals=totals,
            milestones=milestone_reports,
        )

    @staticmethod
    def serialize_report(report: ProjectReport) -> dict[str, object]:
        return {
            "project": ProjectService.serialize_project(report.project),
            "currency_code": report.currency_code,
            "generated_at": report.generated_at.isoformat(),
            "totals": ProjectService.serialize_totals(report.totals, report.currency_code),
            "milestones": [
                {
                    **ProjectService.serialize_milestone(item.milestone, item.financials, item.progress),
                    "tasks": [
                        {
                            "name": task.name,
                            "description": task.description,
                            "status": task.status,
                            "due_date": task.due_date.isoformat() if task.due_date else None,
                        }
                        for task in item.tasks
                    ],
                    "payments": [
                        {
                            "payment_id": str(payment.payment_id),
                            "payment_date": payment.payment_date.isoformat(),
                            "amount": str(payment.amount),
                            "payment_method": payment.payment_method,
                            "type": payment.payment_type,
                            "description": payment.description,
                        }
                        for payment in item.payments
                    ],
                }
                for item in report.milestones
            ],
        }

    # ---------- Export ----------
    @staticmethod
    def _milestone_rows(report: ProjectReport) -> list[dict[str, object]]:
        rows: list[dict[str, object]] = []
        for item in report.milestones:
            financials = item.financials
            rows.append(
                {
                    "milestone": item.milestone.name,
                    "due_date": item.milestone.due_date.isoformat() if item.milestone.due_date else "",
                    "budget": str(financials.budget),
                    "tax_rate": str(financials.tax_rate) if financials.tax_rate is not None else "",
                    "tax_amount": str(financials.tax_amount),
                    "total_with_tax": str(financials.total_with_tax),
                    "paid_amount": str(financials.paid_amount),
                    "remaining_with_tax": str(financials.remaining_with_tax),
                    "payment_percentage": str(financials.payment_percentage),
                    "status": financials.status.value,
                    "total_tasks": item.progress.total_tasks,
                    "completed_tasks": item.progress.completed_tasks,
                }
            )
        return rows

    @staticmethod
    def _append_sheet(workbook: Workbook, title: str, rows: list[dict[str, object]], columns: list[str]) -> None:
        sheet = workbook.create_sheet(title)
        sheet.append(columns)
        for row in rows:
            sheet.append([row.get(column, "") for column in columns])

    def export_project_report(
        self,
        *,
        context: RequestUserContext,
        project_id: UUID,
        format_name: str,
    ) -> ExportFilePayload:
        normalized_format = format_name.strip().lower()
        if normalized_format not in EXPORT_FORMATS:
            raise ValidationError("format must be one of: csv, xlsx.")

        report = self.build_project_report(context=context, project_id=project_id)
        milestone_rows = self._milestone_rows(report)
        milestone_columns = MILESTONE_COLUMNS
        base_filename = f"project-report-{project_id}"

        if normalized_format == "csv":
            sio = io.StringIO()
            writer = csv.DictWriter(sio, fieldnames=milestone_columns)
            writer.writeheader()
            writer.writerows(milestone_rows)
            return ExportFilePayload(
                media_type="text/csv; charset=utf-8",
                filename=f"{base_filename}.csv",
                content=sio.getvalue().encode("utf-8"),
            )

        totals = report.totals
        workbook = Workbook()
        overview = workbook.active
        overview.title = "Overview"
        for label, value in (
            ("project", report.project.name),
            ("status", report.project.status.value),
            ("currency_code", report.currency_code),
            ("generated_at", report.generated_at.isoformat()),
            ("base", str(totals.base)),
            ("tax", str(totals.tax)),
            ("total_with_tax", str(totals.total_with_tax)),
            ("paid", str(totals.paid)),
            ("pending", str(totals.pending)),
            ("payment_percentage", str(totals.payment_percentage)),
            ("total_tasks", totals.tasks.total_tasks),
            ("completed_tasks", totals.tasks.completed_tasks),
            ("task_completion_percentage", str(totals.tasks.completion_percentage)),
        ):
            overview.append([label, value])

        self._append_sheet(workbook, "Milestones", milestone_rows, milestone_columns)
        self._append_sheet(
            workbook,
            "Tasks",
            [
                {
                    "milestone": item.milestone.name,
                    "task": task.name,
                    "description": task.description or "",
                    "status": task.status,
                    "due_date": task.due_date.isoformat() if task.due_date else "",
                }
                for item in report.milestones
                for task in item.tasks
            ],
            ["milestone", "task", "description", "status", "due_date"],
        )
        self._append_sheet(
            workbook,
            "Payments",
            [
                {
                    "milestone": item.milestone.name,
                    "payment_id": str(payment.payment_id),
                    "payment_date": payment.payment_date.isoformat(),
                    "amount": str(payment.amount),
                    "payment_method": payment.payment_method,
                    "type": payment.payment_type,
                    "description": payment.description or "",
                }
                for item in report.milestones
                for payment in item.payments
            ],
            ["milestone", "payment_id", "payment_date", "amount", "payment_method", "type", "description"],
        )

        output = io.BytesIO()
        workbook.save(output)
        return ExportFilePayload(
            media_type=XLSX_MEDIA_TYPE,
            filename=f"{base_filename}.xlsx",
            content=output.getvalue(),
        )
