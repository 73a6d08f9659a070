"""
AuditEntry model: append-only trail of enrichment actions.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .results import utc_now


class AuditEntry(BaseModel):
    """
    One audit trail entry.

    Attributes:
        subject_id: Transaction, enrichment or statement the entry is about
        action: Action code (e.g. "ENRICHMENT_SAVED", "STATEMENT_PROCESSED")
        details: Free-text detail
        step_name: Step or stage that wrote the entry
        timestamp: When the action happened
        transaction_id: Source transaction, when the subject is not the transaction itself
        statement_id: Parent statement
        status: Outcome of the action
    """

    subject_id: str
    action: str
    details: str = ""
    step_name: str
    timestamp: datetime = Field(default_factory=utc_now)
    transaction_id: str | None = None
    statement_id: str | None = None
    status: str | None = None

    class Config:
        json_schema_extra = {
            "example": {
                "subject_id": "TRX-5D41402ABC",
                "action": "ENRICHMENT_SAVED",
                "details": "Enrichment saved: TRX-5D41402ABC (Status: enriched)",
                "step_name": "EnrichmentPersistence",
                "transaction_id": "BTX-000123",
                "statement_id": "ST-2025-0001",
                "status": "enriched",
            }
        }
