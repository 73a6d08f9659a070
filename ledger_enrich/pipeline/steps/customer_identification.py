"""
CustomerIdentificationStep - identifies the customer of a bank transaction.
"""

from ledger_enrich.config import EnrichmentConfig
from ledger_enrich.core.models import CustomerMatch, ExceptionPriority, StepResult, WorkingRecord
from ledger_enrich.lookups import CustomerLookup
from ledger_enrich.observability.logger import get_logger
from ledger_enrich.pipeline.step import BaseStep

logger = get_logger(__name__)


class CustomerIdentificationStep(BaseStep):
    """
    Writes ``customer`` for bank transactions. Securities transactions are
    the bank's own portfolio operations and are skipped.

    An unidentified customer becomes UNKNOWN with confidence 0 and the step
    still succeeds; the state coordinator routes the record to manual review.
    """

    def __init__(
        self,
        customers: CustomerLookup,
        config: EnrichmentConfig | None = None,
        exceptions=None,
        audit=None,
    ):
        super().__init__(config, exceptions, audit)
        self.customers = customers

    @property
    def name(self) -> str:
        return "CustomerIdentification"

    def should_execute(self, record: WorkingRecord) -> bool:
        return record.is_bank and record.error_message is None

    def perform_step(self, record: WorkingRecord) -> StepResult:
        match = self.customers.identify(record)

        if match is None:
            logger.warning(
                f"Customer not found for transaction: {record.transaction_id}, "
                f"customer_id field was: {record.customer_ref!r}, "
                f"other_side_name: {record.other_side_name!r}"
            )
            self.raise_exception(
                record, "MISSING_CUSTOMER",
                f"Could not identify customer. customer_id='{record.customer_ref}', "
                f"other_side_name='{record.other_side_name}'",
                ExceptionPriority.HIGH,
            )
            record.customer = CustomerMatch(
                customer_id=self.config.unknown,
                name="Unknown Customer",
                confidence=0,
                method="NONE",
            )
            return StepResult.ok(
                f"Customer not found - exception created, continuing with {self.config.unknown}",
                customer_id=self.config.unknown,
                confidence=0,
            )

        record.customer = match
        record.processing_status = "customer_identified"

        if not match.active:
            self.raise_exception(
                record, "INACTIVE_CUSTOMER",
                f"Customer {match.customer_id} is inactive",
                ExceptionPriority.HIGH,
            )
        if self.config.requires_review(match.confidence):
            self.raise_exception(
                record, "LOW_CONFIDENCE_IDENTIFICATION",
                f"Customer identified with low confidence ({match.confidence}%) "
                f"using {match.method} method",
                ExceptionPriority.LOW,
            )

        self.write_audit(
            record, "CUSTOMER_IDENTIFIED",
            f"Customer identified: {match.customer_id} (Method: {match.method}, "
            f"Confidence: {match.confidence}%)",
        )
        return StepResult.ok(
            f"Customer identified: {match.customer_id}",
            customer_id=match.customer_id,
            confidence=match.confidence,
            method=match.method,
        )
