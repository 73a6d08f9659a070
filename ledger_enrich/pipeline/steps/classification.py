"""
ClassificationStep - assigns the internal transaction type with the rule engine.
"""

from datetime import date

from ledger_enrich.config import EnrichmentConfig
from ledger_enrich.core.models import Classification, ExceptionPriority, StepResult, WorkingRecord
from ledger_enrich.core.rules import ClassificationEngine
from ledger_enrich.observability.logger import get_logger
from ledger_enrich.pipeline.step import BaseStep

logger = get_logger(__name__)


class ClassificationStep(BaseStep):
    """
    Writes ``classification``. Runs after counterparty determination, since
    rule candidates are scoped by counterparty.

    Rule effective dates are checked against the transaction date (today when
    the record has none). A miss is not a failure: the record is classified
    UNMATCHED and an exception is raised (NO_RULES when there were no
    candidates at all, NO_RULE_MATCH otherwise).
    """

    def __init__(
        self,
        engine: ClassificationEngine,
        config: EnrichmentConfig | None = None,
        exceptions=None,
        audit=None,
    ):
        super().__init__(config, exceptions, audit)
        self.engine = engine

    @property
    def name(self) -> str:
        return "Classification"

    def should_execute(self, record: WorkingRecord) -> bool:
        return record.error_message is None

    def perform_step(self, record: WorkingRecord) -> StepResult:
        as_of = record.transaction_date or date.today()
        match = self.engine.classify(record, as_of)

        record.classification = Classification(
            internal_type=match.internal_type,
            matched=match.matched,
            rule_id=match.rule_id,
            rule_name=match.rule_name,
            priority=match.priority,
            rules_evaluated=match.rules_evaluated,
        )

        if not match.matched:
            counterparty_id = record.resolve_field("counterparty_id")
            if match.candidate_count == 0:
                self.raise_exception(
                    record, "NO_RULES",
                    f"No classification rules for {record.source_type.value} "
                    f"transactions of counterparty {counterparty_id}",
                    ExceptionPriority.HIGH,
                )
            else:
                self.raise_exception(
                    record, "NO_RULE_MATCH",
                    f"No classification rule matched ({match.rules_evaluated} rules evaluated)",
                    ExceptionPriority.MEDIUM,
                )
            return StepResult.ok(
                f"No matching rule - classified as {match.internal_type}",
                internal_type=match.internal_type,
                rules_evaluated=match.rules_evaluated,
            )

        record.processing_status = "classified"
        self.write_audit(
            record, "CLASSIFIED",
            f"Rule {match.rule_id} ({match.rule_name}) matched: {match.internal_type}",
        )
        return StepResult.ok(
            f"Classified as {match.internal_type} by rule {match.rule_id}",
            internal_type=match.internal_type,
            rule_id=match.rule_id,
            rules_evaluated=match.rules_evaluated,
        )
