"""Application settings endpoints."""

from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from buildtrack.core.auth import RequestUserContext, get_current_user_context
from buildtrack.core.config import get_settings
from buildtrack.db.dependencies import get_db_session
from buildtrack.services.settings_service import SettingsService

router = APIRouter(prefix="/settings", tags=["settings"])


class SettingsUpdatePayload(BaseModel):
    default_tax_rate: Decimal


@router.get("")
def get_app_settings(
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = SettingsService(db)
    return service.serialize(service.get_app_settings(), get_settings().currency_code)


@router.put("")
def update_app_settings(
    payload: SettingsUpdatePayload,
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = SettingsService(db)
    row = service.update_default_tax_rate(payload.default_tax_rate)
    return service.serialize(row, get_settings().currency_code)
