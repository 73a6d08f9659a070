"""
ExceptionEntry model: review items raised by steps.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

from .results import utc_now


class ExceptionPriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


def priority_for_amount(amount: Decimal | None) -> ExceptionPriority:
    """
    Review priority from the absolute transaction amount.

    >= 1,000,000 critical, >= 100,000 high, >= 10,000 medium, else low.
    Unknown amounts are medium.
    """
    if amount is None:
        return ExceptionPriority.MEDIUM
    value = abs(amount)
    if value >= 1_000_000:
        return ExceptionPriority.CRITICAL
    if value >= 100_000:
        return ExceptionPriority.HIGH
    if value >= 10_000:
        return ExceptionPriority.MEDIUM
    return ExceptionPriority.LOW


class ExceptionEntry(BaseModel):
    """
    An item in the exception queue.

    Attributes:
        exception_id: EXC- prefixed id, one per (transaction, exception type)
        exception_type: Code such as MISSING_CURRENCY or NO_RULE_MATCH
        priority: critical, high, medium or low
        status: Queue state, starts as pending
        assigned_to: supervisor for high and critical items, operations otherwise
        due_date: One day out for high and critical items, three days otherwise
    """

    exception_id: str
    transaction_id: str
    statement_id: str
    source_type: str
    exception_type: str
    details: str
    amount: Decimal | None = None
    currency: str | None = None
    transaction_date: date | None = None
    priority: ExceptionPriority = ExceptionPriority.MEDIUM
    status: str = "pending"
    assigned_to: str
    due_date: date
    created_at: datetime = Field(default_factory=utc_now)

    class Config:
        json_schema_extra = {
            "example": {
                "exception_id": "EXC-BTX-000123-NO_RULE_MATCH",
                "transaction_id": "BTX-000123",
                "statement_id": "ST-2025-0001",
                "source_type": "bank",
                "exception_type": "NO_RULE_MATCH",
                "details": "No classification rule matched (5 rules evaluated)",
                "priority": "medium",
                "status": "pending",
                "assigned_to": "operations",
                "due_date": "2025-11-20",
            }
        }
