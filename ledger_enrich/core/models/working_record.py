"""
WorkingRecord model: the mutable per-transaction context steps read and write.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SourceType(str, Enum):
    """Feed a transaction was extracted from."""

    BANK = "bank"
    SECURITIES = "secu"


class CurrencyInfo(BaseModel):
    """Currency master attributes for a validated currency code."""

    code: str
    name: str | None = None
    decimal_places: int = 2
    symbol: str | None = None


class FxConversion(BaseModel):
    """
    Conversion of the transaction amount into the base currency.

    Attributes:
        original_amount: Amount in the transaction currency
        original_currency: Transaction currency
        base_amount: Amount in the base currency (0.00 when no rate was found)
        base_currency: Base currency code
        rate: Rate applied (original -> base), None when missing
        rate_date: Effective date of the rate used
        rate_source: BASE_CURRENCY, ECB, FALLBACK or MISSING
    """

    original_amount: Decimal
    original_currency: str
    base_amount: Decimal
    base_currency: str
    rate: Decimal | None = None
    rate_date: date | None = None
    rate_source: str

    @property
    def missing(self) -> bool:
        return self.rate is None


class CounterpartyInfo(BaseModel):
    """Counterparty resolved from the statement bank."""

    counterparty_id: str
    name: str | None = None
    bic: str | None = None
    counterparty_type: str | None = None


class CustomerMatch(BaseModel):
    """Customer identified for a bank transaction."""

    customer_id: str
    name: str | None = None
    customer_code: str | None = None
    customer_type: str | None = None
    confidence: int = Field(0, ge=0, le=100)
    method: str = "NONE"
    active: bool = True


class Classification(BaseModel):
    """Internal transaction type produced by rule matching."""

    internal_type: str
    matched: bool
    rule_id: str | None = None
    rule_name: str | None = None
    priority: int | None = None
    rules_evaluated: int = 0


# Field names rules may use that are not attribute names on the record.
_FIELD_ALIASES = {
    "type": "trade_type",
    "d_c": "debit_credit",
    "reference_number": "reference",
    "payment_amount": "amount",
    "total_amount": "amount",
}

# Derived values exposed to rule conditions under stable names.
_DERIVED_FIELDS = {
    "counterparty_id": lambda r: r.counterparty.counterparty_id if r.counterparty else None,
    "counterparty_name": lambda r: r.counterparty.name if r.counterparty else None,
    "counterparty_type": lambda r: r.counterparty.counterparty_type if r.counterparty else None,
    "customer_id": lambda r: r.customer.customer_id if r.customer else None,
    "customer_confidence": lambda r: r.customer.confidence if r.customer else None,
    "base_amount": lambda r: r.fx.base_amount if r.fx and not r.fx.missing else None,
    "fx_rate": lambda r: r.fx.rate if r.fx else None,
    "currency_name": lambda r: r.currency_info.name if r.currency_info else None,
    "internal_type": lambda r: r.classification.internal_type if r.classification else None,
    "source_type": lambda r: r.source_type.value,
}

_RAW_FIELDS = frozenset({
    "transaction_id", "statement_id", "currency", "amount", "transaction_date",
    "bank_bic", "description", "reference", "customer_ref", "account_number",
    "payment_date", "debit_credit", "other_side_bic", "other_side_account",
    "other_side_name", "payment_description", "trade_type", "ticker",
    "quantity", "price", "fee",
})


class WorkingRecord(BaseModel):
    """
    Mutable per-transaction context for one pipeline run.

    Raw fields come from the loader and are not changed by steps, except
    for currency normalization. Each step writes its own typed derived field
    (currency_info, fx, counterparty, customer, classification). Data that
    has no named field goes into ``extras``.

    Attributes:
        transaction_id: Source transaction id
        statement_id: Parent statement id
        source_type: bank or secu
        source_table: Collection the transaction was read from
        bank_bic: BIC of the bank that issued the statement
        customer_ref: Raw customer id carried on the source row
        raw: Unmodified source row
        extras: Step-specific values not promoted to a named field
        processing_status: Label of the record's position in the run
        error_message: Message of the first failed step in the current run
        processed_steps: Names of steps that have executed on the record, in order
    """

    transaction_id: str = Field(..., min_length=1)
    statement_id: str = Field(..., min_length=1)
    source_type: SourceType
    source_table: str | None = None

    # Raw extracted fields
    currency: str | None = None
    amount: Decimal | None = None
    transaction_date: date | None = None
    bank_bic: str | None = None
    description: str | None = None
    reference: str | None = None
    customer_ref: str | None = None
    account_number: str | None = None

    # Bank-only
    payment_date: date | None = None
    debit_credit: str | None = None
    other_side_bic: str | None = None
    other_side_account: str | None = None
    other_side_name: str | None = None
    payment_description: str | None = None

    # Securities-only
    trade_type: str | None = None
    ticker: str | None = None
    quantity: Decimal | None = None
    price: Decimal | None = None
    fee: Decimal | None = None

    raw: dict[str, Any] = Field(default_factory=dict)

    # Derived fields
    currency_info: CurrencyInfo | None = None
    fx: FxConversion | None = None
    counterparty: CounterpartyInfo | None = None
    customer: CustomerMatch | None = None
    classification: Classification | None = None
    extras: dict[str, Any] = Field(default_factory=dict)

    processing_status: str = "new"
    error_message: str | None = None
    processed_steps: list[str] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "transaction_id": "BTX-000123",
                "statement_id": "ST-2025-0001",
                "source_type": "bank",
                "source_table": "bank_total_trx",
                "currency": "EUR",
                "amount": "500.00",
                "transaction_date": "2025-11-17",
                "bank_bic": "HABAEE2X",
                "debit_credit": "C",
                "payment_description": "Invoice 2025-118",
                "customer_ref": "CUST-001",
            }
        }

    @property
    def is_bank(self) -> bool:
        return self.source_type == SourceType.BANK

    @property
    def is_securities(self) -> bool:
        return self.source_type == SourceType.SECURITIES

    def mark_step(self, step_name: str) -> None:
        """Record that a step touched this record (kept unique, in first-touch order)."""
        if step_name not in self.processed_steps:
            self.processed_steps.append(step_name)

    def resolve_field(self, name: str) -> Any:
        """
        Look up a value by the name a rule condition uses.

        Resolution order: aliases, derived values, raw extracted fields,
        extras, then the unmodified source row. Returns None when the name
        is unknown or the value is absent.
        """
        key = name.strip()
        if key in _DERIVED_FIELDS:
            return _DERIVED_FIELDS[key](self)

        attr = _FIELD_ALIASES.get(key, key)
        if attr in _RAW_FIELDS:
            value = getattr(self, attr)
            if value is not None:
                return value

        if key in self.extras:
            return self.extras[key]
        return self.raw.get(key)

    def snapshot(self) -> dict[str, Any]:
        """Comparable copy of everything steps may change."""
        return self.model_dump(mode="json")
