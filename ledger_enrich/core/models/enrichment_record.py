"""
EnrichmentRecord model: the persisted output for one enriched transaction.
"""

from datetime import date, datetime
from decimal import Decimal
from hashlib import md5

from pydantic import BaseModel, Field

from .results import utc_now
from .working_record import SourceType


def enrichment_id_for(transaction_id: str) -> str:
    """
    Deterministic enrichment record id for a source transaction.

    A rerun after a partial write finds the record it already wrote.
    """
    digest = md5(transaction_id.encode("utf-8")).hexdigest()[:10].upper()
    return f"TRX-{digest}"


class EnrichmentRecord(BaseModel):
    """
    Persisted enrichment output. Immutable after creation except pairing_status.

    Attributes:
        enrichment_id: TRX- prefixed id derived from the transaction id
        source_trx_id: Source transaction id
        source_type: bank or secu
        source_table: Collection the transaction came from
        statement_id: Parent statement id
        processing_status: enriched or manual_review
        requires_review: True when an unresolved field or low confidence was found
        pairing_status: Owned by the downstream pairing workflow, starts as pending
    """

    enrichment_id: str
    source_trx_id: str
    source_type: SourceType
    source_table: str | None = None
    statement_id: str

    # Core transaction fields
    transaction_date: date | None = None
    amount: Decimal | None = None
    currency: str | None = None
    description: str | None = None
    reference_number: str | None = None

    # Entities
    counterparty_id: str
    counterparty_name: str | None = None
    counterparty_bic: str | None = None
    counterparty_type: str | None = None
    customer_id: str | None = None
    customer_name: str | None = None
    customer_code: str | None = None
    customer_confidence: Decimal | None = Field(None, ge=0, le=1)
    customer_method: str | None = None

    # Classification
    internal_type: str
    rule_id: str | None = None
    rule_name: str | None = None
    rule_priority: int | None = None
    matching_confidence: Decimal = Decimal("0.0")

    # FX
    original_amount: Decimal | None = None
    original_currency: str | None = None
    base_amount: Decimal | None = None
    base_currency: str | None = None
    fx_rate: Decimal | None = None
    fx_rate_date: date | None = None
    fx_rate_source: str | None = None
    fx_rate_type: str = "SPOT"

    # Bank-only
    payment_date: date | None = None
    debit_credit: str | None = None
    other_side_bic: str | None = None
    other_side_account: str | None = None
    other_side_name: str | None = None
    payment_description: str | None = None

    # Securities-only
    ticker: str | None = None
    trade_type: str | None = None
    quantity: Decimal | None = None
    price: Decimal | None = None
    fee: Decimal | None = None

    # Metadata
    processing_status: str
    requires_review: bool = False
    pairing_status: str = "pending"
    pipeline_version: str = "1.0"
    processed_steps: list[str] = Field(default_factory=list)
    created_by: str = "SYSTEM"
    created_at: datetime = Field(default_factory=utc_now)

    class Config:
        json_schema_extra = {
            "example": {
                "enrichment_id": "TRX-5D41402ABC",
                "source_trx_id": "BTX-000123",
                "source_type": "bank",
                "statement_id": "ST-2025-0001",
                "amount": "500.00",
                "currency": "EUR",
                "counterparty_id": "CPT-0001",
                "customer_id": "CUST-001",
                "customer_confidence": "0.95",
                "internal_type": "PAYMENT_CUSTOMER",
                "base_amount": "500.00",
                "base_currency": "EUR",
                "processing_status": "enriched",
                "pairing_status": "pending",
            }
        }
