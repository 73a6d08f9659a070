"""
Run configuration for the enrichment pipeline.

Status literals, sentinels and collection names are held in one immutable
value that is handed to the pipeline, steps, loader and state coordinator
at construction.
"""
import os
from decimal import Decimal

from pydantic import BaseModel, Field

from ledger_enrich.core.errors import ConfigurationFault


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "y", "on")


class CollectionNames(BaseModel):
    """Row-store collection (table) names."""

    statements: str = "bank_statement"
    bank_transactions: str = "bank_total_trx"
    secu_transactions: str = "secu_total_trx"
    enrichments: str = "trx_enrichment"
    exceptions: str = "exception_queue"
    audit_log: str = "audit_log"
    rules: str = "cp_txn_mapping"
    currencies: str = "currency"
    fx_rates: str = "fx_rates_eur"
    counterparties: str = "counterparty_master"
    customers: str = "customer"
    customer_accounts: str = "customer_account"

    class Config:
        frozen = True


class EnrichmentConfig(BaseModel):
    """
    Immutable configuration for one enrichment run.

    Attributes:
        collections: Row-store collection names
        unknown: Sentinel for an unresolved counterparty or customer
        unmatched: Sentinel classification code when no rule matched
        wildcard_counterparty: Counterparty id of rules that apply to every counterparty
        base_currency: Currency all amounts are converted into
        max_fx_rate_age_days: Oldest FX rate (in days) accepted as a fallback
        manual_review_confidence: Customer confidence below which a record needs review
        stop_on_error: Default stop-on-error policy for new pipelines
        mark_failed_transactions: Move source transactions to "failed" when their pipeline fails
        pipeline_version: Version stamped on every enrichment record
        created_by: Author stamped on every enrichment record
    """

    collections: CollectionNames = Field(default_factory=CollectionNames)

    # Statement states
    statement_new: str = "new"
    statement_processing: str = "processing"
    statement_processed: str = "processed"
    statement_processed_with_errors: str = "processed_with_errors"

    # Source transaction states
    transaction_new: str = "new"
    transaction_enriched: str = "enriched"
    transaction_failed: str = "failed"

    # Enrichment record states
    enrichment_enriched: str = "enriched"
    enrichment_manual_review: str = "manual_review"
    enrichment_failed: str = "failed"
    pairing_pending: str = "pending"

    unknown: str = "UNKNOWN"
    unmatched: str = "UNMATCHED"
    wildcard_counterparty: str = "SYSTEM"

    base_currency: str = "EUR"
    max_fx_rate_age_days: int = Field(5, ge=0)
    manual_review_confidence: int = Field(80, ge=0, le=100)

    stop_on_error: bool = True
    mark_failed_transactions: bool = False

    pipeline_version: str = "1.0"
    created_by: str = "SYSTEM"

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "base_currency": "EUR",
                "max_fx_rate_age_days": 5,
                "manual_review_confidence": 80,
                "stop_on_error": True,
                "mark_failed_transactions": False,
                "pipeline_version": "1.0",
            }
        }

    @property
    def sentinels(self) -> frozenset[str]:
        """Values that mark an unresolved derived field."""
        return frozenset({self.unknown, self.unmatched})

    def requires_review(self, confidence: int | Decimal | None) -> bool:
        """True when a customer confidence score falls below the review threshold."""
        if confidence is None:
            return False
        return confidence < self.manual_review_confidence

    @classmethod
    def from_env(cls) -> "EnrichmentConfig":
        """
        Build a configuration from ENRICH_* environment variables.

        Unset variables keep their defaults.

        Raises:
            ConfigurationFault: If a variable holds an unusable value
        """
        try:
            return cls(
                base_currency=os.getenv("ENRICH_BASE_CURRENCY", "EUR").strip().upper(),
                max_fx_rate_age_days=int(os.getenv("ENRICH_MAX_FX_RATE_AGE_DAYS", "5")),
                manual_review_confidence=int(os.getenv("ENRICH_MANUAL_REVIEW_CONFIDENCE", "80")),
                stop_on_error=_env_bool("ENRICH_STOP_ON_ERROR", True),
                mark_failed_transactions=_env_bool("ENRICH_MARK_FAILED_TRANSACTIONS", False),
                pipeline_version=os.getenv("ENRICH_PIPELINE_VERSION", "1.0"),
            )
        except ValueError as e:
            # pydantic.ValidationError is a ValueError
            raise ConfigurationFault(f"Invalid enrichment configuration: {e}") from e
