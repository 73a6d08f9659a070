"""
FxConversionStep - converts the transaction amount into the base currency.
"""

from decimal import ROUND_HALF_UP, Decimal

from ledger_enrich.config import EnrichmentConfig
from ledger_enrich.core.models import ExceptionPriority, FxConversion, StepResult, WorkingRecord
from ledger_enrich.lookups import FxRateLookup
from ledger_enrich.observability.logger import get_logger
from ledger_enrich.pipeline.step import BaseStep

logger = get_logger(__name__)

AMOUNT_QUANTUM = Decimal("0.01")


def to_base(amount: Decimal, rate: Decimal) -> Decimal:
    return (amount * rate).quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)


class FxConversionStep(BaseStep):
    """
    Writes ``fx`` for every record that reaches it.

    - Base-currency transactions convert at rate 1 (source BASE_CURRENCY).
    - Otherwise the rate for the transaction date is used, or the most
      recent rate at most ``max_fx_rate_age_days`` older (raises OLD_FX_RATE).
    - Without a usable rate the step still succeeds with a 0.00 placeholder
      (source MISSING) and raises FX_RATE_MISSING.
    - A missing amount, currency or transaction date fails the step.
    """

    def __init__(
        self,
        rates: FxRateLookup,
        config: EnrichmentConfig | None = None,
        exceptions=None,
        audit=None,
    ):
        super().__init__(config, exceptions, audit)
        self.rates = rates

    @property
    def name(self) -> str:
        return "FxConversion"

    def should_execute(self, record: WorkingRecord) -> bool:
        return record.error_message is None

    def perform_step(self, record: WorkingRecord) -> StepResult:
        base_currency = self.config.base_currency
        currency = (record.currency or "").strip().upper()

        if not currency:
            self.raise_exception(
                record, "MISSING_CURRENCY", "Currency not specified for transaction",
                ExceptionPriority.HIGH,
            )
            return StepResult.fail("FX conversion failed: No currency specified")

        if record.amount is None:
            self.raise_exception(
                record, "INVALID_AMOUNT", "Amount missing or not numeric",
                ExceptionPriority.HIGH,
            )
            return StepResult.fail("FX conversion failed: Invalid amount")

        if currency == base_currency:
            record.fx = FxConversion(
                original_amount=record.amount,
                original_currency=currency,
                base_amount=record.amount,
                base_currency=base_currency,
                rate=Decimal(1),
                rate_source="BASE_CURRENCY",
            )
            record.processing_status = "fx_converted"
            return StepResult.ok(
                f"No FX conversion needed - transaction in {base_currency}",
                base_amount=record.amount,
                rate_source="BASE_CURRENCY",
            )

        if record.transaction_date is None:
            self.raise_exception(
                record, "INVALID_FX_DATE",
                "Could not determine appropriate date for FX rate lookup",
                ExceptionPriority.HIGH,
            )
            return StepResult.fail("FX conversion failed: Invalid date")

        max_age = self.config.max_fx_rate_age_days
        rate = self.rates.find_rate(currency, record.transaction_date, max_age)

        if rate is None:
            logger.error(
                f"No valid FX rate for {currency} to {base_currency} within {max_age} days "
                f"of {record.transaction_date}"
            )
            self.raise_exception(
                record, "FX_RATE_MISSING",
                f"No FX rate available for {currency} to {base_currency} on "
                f"{record.transaction_date} (max age: {max_age} days)",
                ExceptionPriority.HIGH,
            )
            record.fx = FxConversion(
                original_amount=record.amount,
                original_currency=currency,
                base_amount=Decimal("0.00"),
                base_currency=base_currency,
                rate_source="MISSING",
            )
            return StepResult.ok(
                "FX rate missing - exception created, continuing with placeholder",
                rate_source="MISSING",
            )

        base_amount = to_base(record.amount, rate.rate)
        record.fx = FxConversion(
            original_amount=record.amount,
            original_currency=currency,
            base_amount=base_amount,
            base_currency=base_currency,
            rate=rate.rate,
            rate_date=rate.rate_date,
            rate_source=rate.source,
        )
        if record.is_securities and record.fee is not None:
            record.extras["base_fee"] = to_base(record.fee, rate.rate)

        if rate.age_days > 0:
            self.raise_exception(
                record, "OLD_FX_RATE",
                f"Using FX rate from {rate.rate_date} ({rate.age_days} days old)",
                ExceptionPriority.LOW,
            )

        record.processing_status = "fx_converted"
        summary = (
            f"{record.amount} {currency} = {base_amount} {base_currency} (Rate: {rate.rate})"
        )
        logger.debug(f"FX conversion for {record.transaction_id}: {summary}")
        self.write_audit(record, "BASE_CURRENCY_CALCULATED", f"FX conversion applied: {summary}")
        return StepResult.ok(
            f"FX conversion successful: {base_amount} {base_currency}",
            base_amount=base_amount,
            rate=rate.rate,
            rate_source=rate.source,
        )
