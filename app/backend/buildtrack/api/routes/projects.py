"""Project, milestone and task endpoints."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from buildtrack.core.auth import RequestUserContext, get_current_user_context
from buildtrack.core.config import get_settings
from buildtrack.db.dependencies import get_db_session
from buildtrack.models.entities import ProjectStatus, TaskStatus
from buildtrack.services.project_service import (
    UNSET,
    MilestoneCreateData,
    MilestoneUpdateData,
    ProjectCreateData,
    ProjectService,
    ProjectUpdateData,
    TaskCreateData,
    TaskUpdateData,
)

router = APIRouter(tags=["projects"])


class ProjectCreatePayload(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    status: ProjectStatus = ProjectStatus.ACTIVE
    start_date: date | None = None
    end_date: date | None = None


class ProjectUpdatePayload(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    status: ProjectStatus | None = None
    start_date: date | None = None
    end_date: date | None = None


class MilestoneCreatePayload(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    due_date: date | None = None
    budget: Decimal = Decimal("0.00")
    has_tax: bool = False
    tax_rate: Decimal | None = None


class MilestoneUpdatePayload(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    due_date: date | None = None
    budget: Decimal | None = None
    has_tax: bool | None = None
    tax_rate: Decimal | None = None


class TaskCreatePayload(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    status: TaskStatus = TaskStatus.PENDING
    due_date: date | None = None


class TaskUpdatePayload(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    status: TaskStatus | None = None
    due_date: date | None = None


def _project_service(db: Session) -> ProjectService:
    return ProjectService(db)


def _milestone_payload(service: ProjectService, milestone) -> dict[str, object]:
    return service.serialize_milestone(
        milestone,
        service.milestone_financials(milestone),
        service.milestone_progress(milestone),
    )


# ---------- Projects ----------
@router.get("/projects")
def list_projects(
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> dict[str, list[object]]:
    service = _project_service(db)
    items = service.list_projects(context=context)
    return {"items": [service.serialize_project(project) for project in items]}


@router.post("/projects", status_code=status.HTTP_201_CREATED)
def create_project(
    payload: ProjectCreatePayload,
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = _project_service(db)
    project = service.create_project(
        context=context,
        data=ProjectCreateData(
            name=payload.name,
            description=payload.description,
            status=payload.status,
            start_date=payload.start_date,
            end_date=payload.end_date,
        ),
    )
    return service.serialize_project(project)


@router.get("/projects/{project_id}")
def get_project(
    project_id: UUID,
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = _project_service(db)
    project = service.get_project(context=context, project_id=project_id)
    return service.serialize_project(project)


@router.patch("/projects/{project_id}")
def update_project(
    project_id: UUID,
    payload: ProjectUpdatePayload,
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = _project_service(db)
    project = service.update_project(
        context=context,
        project_id=project_id,
        data=ProjectUpdateData(
            name=payload.name,
            description=payload.description,
            status=payload.status,
            start_date=payload.start_date,
            end_date=payload.end_date,
        ),
    )
    return service.serialize_project(project)


@router.delete("/projects/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_project(
    project_id: UUID,
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> Response:
    service = _project_service(db)
    service.delete_project(context=context, project_id=project_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/projects/{project_id}/totals")
def get_project_totals(
    project_id: UUID,
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = _project_service(db)
    totals = service.compute_project_totals(context=context, project_id=project_id)
    payload = service.serialize_totals(totals, get_settings().currency_code)
    payload["project_id"] = str(project_id)
    return payload


# ---------- Milestones ----------
@router.get("/projects/{project_id}/milestones")
def list_project_milestones(
    project_id: UUID,
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> dict[str, list[object]]:
    service = _project_service(db)
    rows = service.list_milestones(context=context, project_id=project_id)
    return {"items": [_milestone_payload(service, milestone) for milestone in rows]}


@router.post("/projects/{project_id}/milestones", status_code=status.HTTP_201_CREATED)
def create_project_milestone(
    project_id: UUID,
    payload: MilestoneCreatePayload,
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = _project_service(db)
    milestone = service.create_milestone(
        context=context,
        project_id=project_id,
        data=MilestoneCreateData(
            name=payload.name,
            description=payload.description,
            due_date=payload.due_date,
            budget=payload.budget,
            has_tax=payload.has_tax,
            tax_rate=payload.tax_rate,
        ),
    )
    return _milestone_payload(service, milestone)


@router.get("/milestones/{milestone_id}")
def get_milestone(
    milestone_id: UUID,
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = _project_service(db)
    milestone = service.get_milestone(context=context, milestone_id=milestone_id)
    return _milestone_payload(service, milestone)


@router.patch("/milestones/{milestone_id}")
def update_milestone(
    milestone_id: UUID,
    payload: MilestoneUpdatePayload,
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = _project_service(db)
    milestone = service.update_milestone(
        context=context,
        milestone_id=milestone_id,
        data=MilestoneUpdateData(
            name=payload.name,
            description=payload.description,
            due_date=payload.due_date,
            budget=payload.budget,
            has_tax=payload.has_tax,
            # An explicit null resets the milestone to the default tax rate.
            tax_rate=payload.tax_rate if "tax_rate" in payload.model_fields_set else UNSET,
        ),
    )
    return _milestone_payload(service, milestone)


@router.delete("/milestones/{milestone_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_milestone(
    milestone_id: UUID,
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> Response:
    service = _project_service(db)
    service.delete_milestone(context=context, milestone_id=milestone_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------- Tasks ----------
@router.get("/milestones/{milestone_id}/tasks")
def list_milestone_tasks(
    milestone_id: UUID,
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> dict[str, list[object]]:
    service = _project_service(db)
    rows = service.list_tasks(context=context, milestone_id=milestone_id)
    return {"items": [service.serialize_task(task) for task in rows]}


@router.post("/milestones/{milestone_id}/tasks", status_code=status.HTTP_201_CREATED)
def create_milestone_task(
    milestone_id: UUID,
    payload: TaskCreatePayload,
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = _project_service(db)
    task = service.create_task(
        context=context,
        milestone_id=milestone_id,
        data=TaskCreateData(
            name=payload.name,
            description=payload.description,
            status=payload.status,
            due_date=payload.due_date,
        ),
    )
    return service.serialize_task(task)


@router.patch("/tasks/{task_id}")
def update_task(
    task_id: UUID,
    payload: TaskUpdatePayload,
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = _project_service(db)
    task = service.update_task(
        context=context,
        task_id=task_id,
        data=TaskUpdateData(
            name=payload.name,
            description=payload.description,
            status=payload.status,
            due_date=payload.due_date,
        ),
    )
    return service.serialize_task(task)


@router.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(
    task_id: UUID,
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> Response:
    service = _project_service(db)
    service.delete_task(context=context, task_id=task_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
