"""Project report endpoint."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from buildtrack.core.auth import RequestUserContext, get_current_user_context
from buildtrack.db.dependencies import get_db_session
from buildtrack.services.report_service import ReportService

router = APIRouter(prefix="/projects", tags=["reports"])


@router.get("/{project_id}/report")
def get_project_report(
    project_id: UUID,
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = ReportService(db)
    report = service.build_project_report(context=context, project_id=project_id)
    return service.serialize_report(report)
