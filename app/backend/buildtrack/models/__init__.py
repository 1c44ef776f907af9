"""ORM model package."""

from buildtrack.models.entities import (
    AppSettings,
    Milestone,
    Payment,
    PaymentDistribution,
    Project,
    Task,
)

__all__ = [
    "AppSettings",
    "Milestone",
    "Payment",
    "PaymentDistribution",
    "Project",
    "Task",
]
