"""
Statement and source Transaction models with their state machines.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .working_record import SourceType


class StatementStatus(str, Enum):
    NEW = "new"
    PROCESSING = "processing"
    PROCESSED = "processed"
    PROCESSED_WITH_ERRORS = "processed_with_errors"


class TransactionStatus(str, Enum):
    NEW = "new"
    ENRICHED = "enriched"
    FAILED = "failed"


# Allowed forward transitions. Nothing moves back to NEW.
STATEMENT_TRANSITIONS = {
    StatementStatus.NEW: {StatementStatus.PROCESSING},
    StatementStatus.PROCESSING: {StatementStatus.PROCESSED, StatementStatus.PROCESSED_WITH_ERRORS},
    StatementStatus.PROCESSED: set(),
    StatementStatus.PROCESSED_WITH_ERRORS: set(),
}

TRANSACTION_TRANSITIONS = {
    TransactionStatus.NEW: {TransactionStatus.ENRICHED, TransactionStatus.FAILED},
    TransactionStatus.ENRICHED: set(),
    TransactionStatus.FAILED: set(),
}


def can_transition(current: str, target: str, transitions: dict) -> bool:
    """
    Check a status change against a transition table.

    Unknown current values (rows written by other tools) allow any change.
    """
    try:
        current_status = next(s for s in transitions if s.value == current)
    except StopIteration:
        return True
    return any(s.value == target for s in transitions[current_status])


class Statement(BaseModel):
    """
    Parent grouping of transactions from one source feed.

    Attributes:
        statement_id: Statement id
        account_type: bank or secu, selects the transaction collection
        bank: BIC of the issuing bank
        from_date: First day covered by the statement
        to_date: Last day covered by the statement
        status: Statement lifecycle state
        processing_started: When the loader picked the statement up
        processing_completed: When the state coordinator finalized it
        transactions_processed: Transactions handled in the finalizing run
        transactions_success: Transactions enriched or routed to manual review
        transactions_failed: Transactions that failed the pipeline or persistence
    """

    statement_id: str = Field(..., min_length=1)
    account_type: SourceType
    bank: str | None = None
    from_date: date | None = None
    to_date: date | None = None
    status: StatementStatus = StatementStatus.NEW
    processing_started: datetime | None = None
    processing_completed: datetime | None = None
    transactions_processed: int = 0
    transactions_success: int = 0
    transactions_failed: int = 0

    class Config:
        json_schema_extra = {
            "example": {
                "statement_id": "ST-2025-0001",
                "account_type": "bank",
                "bank": "HABAEE2X",
                "from_date": "2025-11-01",
                "to_date": "2025-11-30",
                "status": "new",
            }
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Statement":
        return cls(
            statement_id=row["id"],
            account_type=row.get("account_type"),
            bank=row.get("bank"),
            from_date=row.get("from_date") or None,
            to_date=row.get("to_date") or None,
            status=row.get("status", StatementStatus.NEW.value),
            processing_started=row.get("processing_started") or None,
            processing_completed=row.get("processing_completed") or None,
            transactions_processed=int(row.get("transactions_processed") or 0),
            transactions_success=int(row.get("transactions_success") or 0),
            transactions_failed=int(row.get("transactions_failed") or 0),
        )

