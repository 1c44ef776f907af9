"""Export endpoint for project reports."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from buildtrack.core.auth import RequestUserContext, get_current_user_context
from buildtrack.db.dependencies import get_db_session
from buildtrack.services.report_service import ReportService

router = APIRouter(prefix="/exports", tags=["exports"])


@router.get("/projects/{project_id}")
def export_project_report(
    project_id: UUID,
    format: str = Query(default="xlsx"),
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> Response:
    service = ReportService(db)
    exported = service.export_project_report(context=context, project_id=project_id, format_name=format)
    return Response(
        content=exported.content,
        media_type=exported.media_type,
        headers={"Content-Disposition": f'attachment; filename="{exported.filename}"'},
    )
