"""Domain errors and their HTTP mapping."""

from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class DomainError(Exception):
    """Base exception for service layer failures."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def payload(self) -> dict[str, object]:
        return {"detail": self.message}


class NotFoundError(DomainError):
    """Project, milestone, task or payment id could not be resolved."""

    status_code = status.HTTP_404_NOT_FOUND


class ValidationError(DomainError):
    """Malformed or out-of-range input. Never partially applied."""

    status_code = status.HTTP_422_UNPROCESSABLE_CONTENT


class OverpaymentError(DomainError):
    """Payment amount exceeds the remaining total with tax of a milestone.

    Carries the maximum amount the milestone still accepts so the caller can
    retry with a corrected amount.
    """

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, *, milestone_id: UUID, requested_amount: Decimal, max_allowed_amount: Decimal) -> None:
        super().__init__(
            f"Payment of {requested_amount} exceeds the remaining amount {max_allowed_amount} "
            f"of milestone {milestone_id}."
        )
        self.milestone_id = milestone_id
        self.requested_amount = requested_amount
        self.max_allowed_amount = max_allowed_amount

    def payload(self) -> dict[str, object]:
        return {
            "detail": self.message,
            "milestone_id": str(self.milestone_id),
            "requested_amount": str(self.requested_amount),
            "max_allowed_amount": str(self.max_allowed_amount),
        }


class ConcurrencyConflictError(DomainError):
    """Lock timeout or version conflict. Safe to retry the whole operation."""

    status_code = status.HTTP_409_CONFLICT


class PersistenceFailureError(DomainError):
    """Storage failure. Nothing from the failed operation was committed."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


async def _domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if isinstance(exc, PersistenceFailureError):
        logger.error(
            "Persistence failure",
            exc_info=exc.__cause__ or exc,
            extra={"path": request.url.path, "method": request.method},
        )
    else:
        logger.warning(
            exc.message,
            extra={
                "path": request.url.path,
                "method": request.method,
                "error_type": type(exc).__name__,
            },
        )
    return JSONResponse(status_code=exc.status_code, content=exc.payload())


def register_exception_handlers(app: FastAPI) -> None:
    """Map domain errors to JSON responses."""

    app.add_exception_handler(DomainError, _domain_error_handler)
