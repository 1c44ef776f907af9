"""Payment endpoints: single and distributed payments, edits and reversals."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from buildtrack.core.auth import RequestUserContext, get_current_user_context
from buildtrack.db.dependencies import get_db_session
from buildtrack.models.entities import PaymentMethod
from buildtrack.services.payment_service import (
    DistributedPaymentData,
    DistributionInput,
    PaymentService,
    PaymentUpdateData,
    SinglePaymentData,
)

router = APIRouter(tags=["payments"])


class DistributionPayload(BaseModel):
    milestone_id: UUID
    amount: Decimal


class SinglePaymentPayload(BaseModel):
    milestone_id: UUID
    amount: Decimal
    payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    description: str | None = Field(default=None, max_length=2000)
    payment_date: date | None = None


class DistributedPaymentPayload(BaseModel):
    distributions: list[DistributionPayload] = Field(min_length=1)
    total_amount: Decimal | None = None
    payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    description: str | None = Field(default=None, max_length=2000)
    payment_date: date | None = None


class PaymentUpdatePayload(BaseModel):
    amount: Decimal | None = None
    distributions: list[DistributionPayload] | None = None
    payment_method: PaymentMethod | None = None
    description: str | None = Field(default=None, max_length=2000)
    payment_date: date | None = None


def _payment_service(db: Session) -> PaymentService:
    return PaymentService(db)


def _distribution_inputs(rows: list[DistributionPayload] | None) -> list[DistributionInput] | None:
    if rows is None:
        return None
    return [DistributionInput(milestone_id=row.milestone_id, amount=row.amount) for row in rows]


@router.get("/payments")
def list_payments(
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> dict[str, list[object]]:
    service = _payment_service(db)
    rows = service.list_payments(context=context)
    return {"items": [service.serialize_payment(payment, distributions) for payment, distributions in rows]}


@router.post("/payments", status_code=status.HTTP_201_CREATED)
def create_payment(
    payload: SinglePaymentPayload,
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = _payment_service(db)
    result = service.apply_single_payment(
        context=context,
        data=SinglePaymentData(
            milestone_id=payload.milestone_id,
            amount=payload.amount,
            payment_method=payload.payment_method,
            description=payload.description,
            payment_date=payload.payment_date,
        ),
    )
    return service.serialize_result(result)


@router.post("/payments/distributed", status_code=status.HTTP_201_CREATED)
def create_distributed_payment(
    payload: DistributedPaymentPayload,
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = _payment_service(db)
    result = service.apply_distributed_payment(
        context=context,
        data=DistributedPaymentData(
            distributions=_distribution_inputs(payload.distributions),
            total_amount=payload.total_amount,
            payment_method=payload.payment_method,
            description=payload.description,
            payment_date=payload.payment_date,
        ),
    )
    return service.serialize_result(result)


@router.get("/payments/{payment_id}")
def get_payment(
    payment_id: UUID,
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = _payment_service(db)
    payment, distributions = service.get_payment(context=context, payment_id=payment_id)
    return service.serialize_payment(payment, distributions)


@router.patch("/payments/{payment_id}")
def update_payment(
    payment_id: UUID,
    payload: PaymentUpdatePayload,
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = _payment_service(db)
    result = service.edit_payment(
        context=context,
        payment_id=payment_id,
        data=PaymentUpdateData(
            amount=payload.amount,
            distributions=_distribution_inputs(payload.distributions),
            payment_method=payload.payment_method,
            description=payload.description,
            payment_date=payload.payment_date,
        ),
    )
    return service.serialize_result(result)


@router.delete("/payments/{payment_id}")
def delete_payment(
    payment_id: UUID,
    milestone_id: UUID | None = Query(default=None),
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = _payment_service(db)
    result = service.delete_payment(context=context, payment_id=payment_id, milestone_id=milestone_id)
    return service.serialize_result(result)


@router.get("/milestones/{milestone_id}/payments")
def list_milestone_payments(
    milestone_id: UUID,
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> dict[str, list[object]]:
    service = _payment_service(db)
    rows = service.list_milestone_payments(context=context, milestone_id=milestone_id)
    return {
        "items": [
            {**service.serialize_payment(payment), "applied_amount": str(applied_amount)}
            for payment, applied_amount in rows
        ]
    }


@router.get("/projects/{project_id}/payments")
def list_project_payments(
    project_id: UUID,
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> dict[str, list[object]]:
    service = _payment_service(db)
    rows = service.list_project_payments(context=context, project_id=project_id)
    return {"items": [service.serialize_payment(payment, distributions) for payment, distributions in rows]}
