"""
Enrichment job orchestration.

Coordinates one run: load -> pipeline -> persist -> summarize
"""

from typing import Any

from ledger_enrich.config import EnrichmentConfig
from ledger_enrich.core.rules import ClassificationEngine, RowStoreRuleRepository, RuleRepository
from ledger_enrich.lookups import (
    RowStoreCounterpartyLookup,
    RowStoreCurrencyLookup,
    RowStoreCustomerLookup,
    RowStoreFxRateLookup,
)
from ledger_enrich.observability.logger import get_logger, log_operation
from ledger_enrich.observability.metrics import (
    batch_duration_seconds,
    record_run_summary,
    track_duration,
)
from ledger_enrich.pipeline import EnrichmentPipeline
from ledger_enrich.pipeline.steps import (
    ClassificationStep,
    CounterpartyDeterminationStep,
    CurrencyValidationStep,
    CustomerIdentificationStep,
    FxConversionStep,
)
from ledger_enrich.warehouse import (
    ExceptionQueue,
    RowStoreAuditSink,
    StateCoordinator,
    TransactionLoader,
)

logger = get_logger(__name__)


def build_default_pipeline(
    store,
    config: EnrichmentConfig | None = None,
    rules: RuleRepository | None = None,
    audit=None,
    exceptions: ExceptionQueue | None = None,
) -> EnrichmentPipeline:
    """
    Pipeline with the five standard steps wired to row-store lookups.

    Args:
        store: RowStore holding reference data, the audit trail and the exception queue
        config: Run configuration
        rules: Rule repository (defaults to the row store's mapping collection)
        audit: AuditSink for step entries (defaults to the row store)
        exceptions: Exception queue (defaults to the row store)

    Returns:
        EnrichmentPipeline: currency, FX, customer, counterparty, classification
    """
    config = config or EnrichmentConfig()
    rules = rules or RowStoreRuleRepository(store, config)
    audit = audit or RowStoreAuditSink(store, config)
    exceptions = exceptions or ExceptionQueue(store, config)
    shared = {"config": config, "exceptions": exceptions, "audit": audit}

    return (
        EnrichmentPipeline(config)
        .add_step(CurrencyValidationStep(RowStoreCurrencyLookup(store, config), **shared))
        .add_step(FxConversionStep(RowStoreFxRateLookup(store, config), **shared))
        .add_step(CustomerIdentificationStep(RowStoreCustomerLookup(store, config), **shared))
        .add_step(CounterpartyDeterminationStep(RowStoreCounterpartyLookup(store, config), **shared))
        .add_step(ClassificationStep(ClassificationEngine(rules, config), **shared))
    )


class EnrichmentJob:
    """
    One enrichment run over every new statement.

    Flow:
    1. Loader claims new statements and yields their new transactions
    2. Pipeline runs the step chain for each transaction
    3. State coordinator persists results and finalizes statements
    """

    def __init__(
        self,
        loader: TransactionLoader,
        pipeline: EnrichmentPipeline,
        coordinator: StateCoordinator,
    ):
        self.loader = loader
        self.pipeline = pipeline
        self.coordinator = coordinator

    @classmethod
    def from_store(
        cls,
        store,
        config: EnrichmentConfig | None = None,
        rules: RuleRepository | None = None,
    ) -> "EnrichmentJob":
        """Job with every collaborator backed by one row store."""
        config = config or EnrichmentConfig()
        audit = RowStoreAuditSink(store, config)
        return cls(
            loader=TransactionLoader(store, config),
            pipeline=build_default_pipeline(store, config, rules=rules, audit=audit),
            coordinator=StateCoordinator(store, config, audit=audit),
        )

    def run(self, limit: int | None = None) -> dict[str, Any]:
        """
        Execute the run.

        Args:
            limit: Maximum number of statements to claim

        Returns:
            Dictionary with run results:
            - statements_loaded: Statements claimed by the loader
            - transactions_loaded: Transactions read for those statements
            - pipeline_failures: Transactions whose pipeline failed
            - records_persisted: Enrichment records written or reused
            - manual_review: Persisted records flagged for manual review
            - failures: Transactions that failed the pipeline or persistence
            - statements_processed / statements_with_errors: Statement outcomes
            - duration_seconds: Wall time of the run

        Raises:
            ConfigurationFault: If the pipeline has no steps (nothing is loaded)
        """
        self.pipeline.validate()

        with log_operation("Enrichment run", logger=logger) as op:
            with track_duration(batch_duration_seconds, stage="run"):
                loaded = self.loader.load(limit=limit)
                batch = self.pipeline.execute_batch(loaded.records)
                persisted = self.coordinator.persist_batch(
                    loaded.records, batch, statement_ids=loaded.statement_ids
                )

        record_run_summary(
            persisted.success_count, persisted.failure_count, persisted.manual_review_count
        )

        summary = {
            "statements_loaded": len(loaded.statements),
            "transactions_loaded": len(loaded.records),
            "pipeline_failures": batch.failure_count,
            "records_persisted": persisted.records_persisted,
            "manual_review": persisted.manual_review_count,
            "failures": persisted.failure_count,
            "statements_processed": persisted.statements_processed,
            "statements_with_errors": persisted.statements_with_errors,
            "duration_seconds": round(op.duration, 3),
        }

        logger.info("=" * 60)
        logger.info("ENRICHMENT RUN COMPLETE")
        logger.info("=" * 60)
        logger.info(f"Statements loaded: {summary['statements_loaded']}")
        logger.info(f"Transactions loaded: {summary['transactions_loaded']}")
        logger.info(f"Records persisted: {summary['records_persisted']}")
        logger.info(f"  of which manual review: {summary['manual_review']}")
        logger.info(f"Failed transactions: {summary['failures']}")
        logger.info(
            f"Statements processed: {summary['statements_processed']} "
            f"({summary['statements_with_errors']} with errors)"
        )
        logger.info("=" * 60)
        return summary
