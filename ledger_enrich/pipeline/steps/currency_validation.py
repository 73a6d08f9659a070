"""
CurrencyValidationStep - checks the transaction currency against the currency master.
"""

from ledger_enrich.config import EnrichmentConfig
from ledger_enrich.core.models import StepResult, WorkingRecord
from ledger_enrich.lookups import CurrencyLookup
from ledger_enrich.observability.logger import get_logger
from ledger_enrich.pipeline.step import BaseStep

logger = get_logger(__name__)


class CurrencyValidationStep(BaseStep):
    """
    Normalizes the currency code (trimmed, upper case) and requires it to be
    an active entry of the currency master.

    Writes ``currency_info``. Missing or unknown codes fail the step and raise
    MISSING_CURRENCY / INVALID_CURRENCY with a priority taken from the amount.
    """

    def __init__(
        self,
        currencies: CurrencyLookup,
        config: EnrichmentConfig | None = None,
        exceptions=None,
        audit=None,
    ):
        super().__init__(config, exceptions, audit)
        self.currencies = currencies

    @property
    def name(self) -> str:
        return "CurrencyValidation"

    def should_execute(self, record: WorkingRecord) -> bool:
        return record.error_message is None

    def perform_step(self, record: WorkingRecord) -> StepResult:
        currency = (record.currency or "").strip().upper()
        if not currency:
            logger.error(f"No currency specified for transaction: {record.transaction_id}")
            self.raise_exception(record, "MISSING_CURRENCY", "Currency code is missing")
            return StepResult.fail("Currency validation failed: Currency code is missing")

        record.currency = currency
        info = self.currencies.find_currency(currency)
        if info is None:
            logger.error(f"Invalid currency: {currency} for transaction: {record.transaction_id}")
            self.raise_exception(record, "INVALID_CURRENCY", f"Invalid currency code: {currency}")
            return StepResult.fail(f"Currency validation failed: Invalid currency code: {currency}")

        record.currency_info = info
        record.processing_status = "currency_validated"
        self.write_audit(record, "CURRENCY_VALIDATED", f"Currency {currency} validated successfully")
        return StepResult.ok(
            f"Currency validated successfully: {currency}",
            currency=currency,
            currency_name=info.name,
        )
