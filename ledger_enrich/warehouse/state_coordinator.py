"""
State coordinator: persists enrichment results and advances statement and
transaction state.

Write order per successful transaction:
1. Enrichment record (id derived from the transaction id; reused if present)
2. Source transaction status -> enriched
3. ENRICHMENT_SAVED audit entry

A failure in steps 1 or 2 is recorded against the transaction and the batch
continues. A failed audit write after step 2 is logged and counted but does
not undo a transaction that is already enriched. Each statement is
finalized once all of its transactions have been handled.
"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Sequence

from ledger_enrich.config import EnrichmentConfig
from ledger_enrich.core.errors import PersistenceFault
from ledger_enrich.core.models import (
    AuditEntry,
    BatchPersistenceResult,
    BatchResult,
    EnrichmentRecord,
    PersistenceResult,
    SourceType,
    StatementOutcome,
    WorkingRecord,
    enrichment_id_for,
)
from ledger_enrich.core.models.results import utc_now
from ledger_enrich.core.models.statement import (
    STATEMENT_TRANSITIONS,
    TRANSACTION_TRANSITIONS,
    can_transition,
)
from ledger_enrich.observability.logger import get_logger
from ledger_enrich.observability.metrics import (
    batch_duration_seconds,
    enrichment_records_total,
    increment_counter,
    persistence_failures_total,
    statements_finalized_total,
    track_duration,
)
from ledger_enrich.warehouse.audit import RowStoreAuditSink

logger = get_logger(__name__)

CONFIDENCE_SCALE = Decimal("0.01")


def needs_manual_review(record: WorkingRecord, config: EnrichmentConfig) -> bool:
    """
    True when a derived field is unresolved or the customer match is weak.

    Unresolved means the counterparty id, customer id or classification is
    missing or one of the UNKNOWN / UNMATCHED sentinels.
    """
    sentinels = config.sentinels
    counterparty_id = record.resolve_field("counterparty_id")
    internal_type = record.resolve_field("internal_type")
    if counterparty_id is None or counterparty_id in sentinels:
        return True
    if internal_type is None or internal_type in sentinels:
        return True
    if record.customer is not None:
        if record.customer.customer_id in sentinels:
            return True
        if config.requires_review(record.customer.confidence):
            return True
    return False


def build_enrichment_record(
    record: WorkingRecord,
    processing_status: str,
    requires_review: bool,
    config: EnrichmentConfig,
    created_at: datetime | None = None,
) -> EnrichmentRecord:
    """Assemble the persisted enrichment record from a working record."""
    counterparty = record.counterparty
    customer = record.customer
    classification = record.classification
    fx = record.fx

    return EnrichmentRecord(
        enrichment_id=enrichment_id_for(record.transaction_id),
        source_trx_id=record.transaction_id,
        source_type=record.source_type,
        source_table=record.source_table,
        statement_id=record.statement_id,
        transaction_date=record.transaction_date,
        amount=record.amount,
        currency=record.currency,
        description=record.description,
        reference_number=record.reference,
        counterparty_id=counterparty.counterparty_id if counterparty else config.unknown,
        counterparty_name=counterparty.name if counterparty else None,
        counterparty_bic=counterparty.bic if counterparty else record.bank_bic,
        counterparty_type=counterparty.counterparty_type if counterparty else None,
        customer_id=customer.customer_id if customer else None,
        customer_name=customer.name if customer else None,
        customer_code=customer.customer_code if customer else None,
        customer_confidence=(
            (Decimal(customer.confidence) / 100).quantize(CONFIDENCE_SCALE) if customer else None
        ),
        customer_method=customer.method if customer else None,
        internal_type=classification.internal_type if classification else config.unmatched,
        rule_id=classification.rule_id if classification else None,
        rule_name=classification.rule_name if classification else None,
        rule_priority=classification.priority if classification else None,
        matching_confidence=(
            Decimal("1.0") if classification and classification.matched else Decimal("0.0")
        ),
        original_amount=fx.original_amount if fx else record.amount,
        original_currency=fx.original_currency if fx else record.currency,
        base_amount=fx.base_amount if fx else None,
        base_currency=fx.base_currency if fx else config.base_currency,
        fx_rate=fx.rate if fx else None,
        fx_rate_date=fx.rate_date if fx else None,
        fx_rate_source=fx.rate_source if fx else None,
        payment_date=record.payment_date,
        debit_credit=record.debit_credit,
        other_side_bic=record.other_side_bic,
        other_side_account=record.other_side_account,
        other_side_name=record.other_side_name,
        payment_description=record.payment_description,
        ticker=record.ticker,
        trade_type=record.trade_type,
        quantity=record.quantity,
        price=record.price,
        fee=record.fee,
        processing_status=processing_status,
        requires_review=requires_review,
        pairing_status=config.pairing_pending,
        pipeline_version=config.pipeline_version,
        processed_steps=list(record.processed_steps),
        created_by=config.created_by,
        created_at=created_at or utc_now(),
    )


class StateCoordinator:
    """
    Converges statements, source transactions and enrichment records to a
    consistent state after a pipeline batch.
    """

    def __init__(self, store, config: EnrichmentConfig | None = None, audit=None):
        """
        Initialize coordinator.

        Args:
            store: RowStore holding statements, transactions and enrichments
            config: Run configuration
            audit: AuditSink (defaults to the row store's audit collection)
        """
        self.store = store
        self.config = config or EnrichmentConfig()
        self.collections = self.config.collections
        self.audit = audit or RowStoreAuditSink(store, self.config)

    def transaction_collection(self, record: WorkingRecord) -> str:
        if record.source_table:
            return record.source_table
        if record.source_type == SourceType.BANK:
            return self.collections.bank_transactions
        return self.collections.secu_transactions

    def persist_batch(
        self,
        records: Sequence[WorkingRecord],
        batch_result: BatchResult,
        statement_ids: Iterable[str] | None = None,
    ) -> BatchPersistenceResult:
        """
        Persist a pipeline batch and finalize its statements.

        Args:
            records: Working records in loader order
            batch_result: Pipeline results keyed by transaction id
            statement_ids: Statements handed over by the loader; those with no
                records are finalized with zero counts

        Returns:
            BatchPersistenceResult with per-transaction and per-statement outcomes
        """
        result = BatchPersistenceResult()
        groups: dict[str, list[WorkingRecord]] = {sid: [] for sid in statement_ids or ()}
        for record in records:
            groups.setdefault(record.statement_id, []).append(record)

        logger.info(
            f"Persisting {len(records)} transactions across {len(groups)} statements"
        )

        with track_duration(batch_duration_seconds, stage="persistence"):
            for statement_id, group in groups.items():
                successes = failures = 0
                for record in group:
                    outcome = self.persist_record(record, batch_result)
                    result.results.append(outcome)
                    if outcome.success:
                        successes += 1
                        result.records_persisted += 1
                        if outcome.processing_status == self.config.enrichment_manual_review:
                            result.manual_review_count += 1
                    else:
                        failures += 1

                statement = self.finalize_statement(statement_id, successes, failures)
                result.statements[statement_id] = statement
                result.success_count += successes
                result.failure_count += failures
                if statement.error is None:
                    result.statements_processed += 1
                    if statement.status == self.config.statement_processed_with_errors:
                        result.statements_with_errors += 1

        result.ended_at = utc_now()
        logger.info(
            f"Persistence complete: {result.records_persisted} persisted "
            f"({result.manual_review_count} for manual review), {result.failure_count} failed, "
            f"{result.statements_processed} statements processed "
            f"({result.statements_with_errors} with errors)"
        )
        return result

    def persist_record(self, record: WorkingRecord, batch_result: BatchResult) -> PersistenceResult:
        """Persist one transaction; never raises."""
        pipeline_result = batch_result.get(record.transaction_id)
        if pipeline_result is None or not pipeline_result.success:
            if pipeline_result is None:
                message = "No pipeline result"
            else:
                message = pipeline_result.error_message or record.error_message or "Pipeline failed"
            logger.warning(f"Transaction {record.transaction_id} not persisted: {message}")
            if self.config.mark_failed_transactions:
                self._mark_failed(record, message)
            return PersistenceResult(
                transaction_id=record.transaction_id,
                statement_id=record.statement_id,
                success=False,
                message=message,
            )

        try:
            return self._write_enrichment(record)
        except PersistenceFault as e:
            logger.error(f"Failed to persist transaction {record.transaction_id}: {e}")
            increment_counter(persistence_failures_total, collection=e.collection)
            return PersistenceResult(
                transaction_id=record.transaction_id,
                statement_id=record.statement_id,
                success=False,
                message=str(e),
            )
        except Exception as e:
            logger.error(
                f"Unexpected error persisting transaction {record.transaction_id}: {e}",
                exc_info=True,
            )
            increment_counter(persistence_failures_total, collection=self.collections.enrichments)
            return PersistenceResult(
                transaction_id=record.transaction_id,
                statement_id=record.statement_id,
                success=False,
                message=f"Unexpected error: {e}",
            )

    def _write_enrichment(self, record: WorkingRecord) -> PersistenceResult:
        enrichment_id = enrichment_id_for(record.transaction_id)
        existing = self.store.get(self.collections.enrichments, enrichment_id)

        if existing is not None:
            reused = True
            status = existing.get("processing_status")
            logger.info(
                f"Enrichment {enrichment_id} already exists for transaction "
                f"{record.transaction_id}, completing status update"
            )
        else:
            reused = False
            requires_review = needs_manual_review(record, self.config)
            status = (
                self.config.enrichment_manual_review
                if requires_review
                else self.config.enrichment_enriched
            )
            enrichment = build_enrichment_record(record, status, requires_review, self.config)
            self.store.insert(
                self.collections.enrichments,
                enrichment.model_dump(mode="json"),
                record_id=enrichment_id,
            )

        self._mark_enriched(record, enrichment_id)
        self._write_audit(
            subject_id=enrichment_id,
            action="ENRICHMENT_SAVED",
            details=f"Enrichment saved: {enrichment_id} (Status: {status})",
            step_name="EnrichmentPersistence",
            transaction_id=record.transaction_id,
            statement_id=record.statement_id,
            status=status,
        )
        increment_counter(
            enrichment_records_total,
            processing_status=status or "unknown",
            reused=str(reused).lower(),
        )
        return PersistenceResult(
            transaction_id=record.transaction_id,
            statement_id=record.statement_id,
            success=True,
            enrichment_id=enrichment_id,
            processing_status=status,
            reused=reused,
        )

    def _write_audit(self, **fields) -> bool:
        """Append an audit entry for state that is already written; never raises."""
        try:
            self.audit.write(AuditEntry(**fields))
        except Exception as e:
            logger.error(
                f"Audit entry {fields.get('action')} for {fields.get('subject_id')} not written: {e}",
                exc_info=True,
            )
            increment_counter(persistence_failures_total, collection=self.collections.audit_log)
            return False
        return True

    def _mark_enriched(self, record: WorkingRecord, enrichment_id: str) -> None:
        collection = self.transaction_collection(record)
        current = self.store.get(collection, record.transaction_id)
        if current is None:
            raise PersistenceFault(collection, "source transaction not found", record.transaction_id)

        target = self.config.transaction_enriched
        status = current.get("status")
        if status == target:
            return
        if not can_transition(status, target, TRANSACTION_TRANSITIONS):
            raise PersistenceFault(
                collection,
                f"cannot move transaction from {status} to {target}",
                record.transaction_id,
            )
        self.store.update(
            collection,
            record.transaction_id,
            {"status": target, "enrichment_id": enrichment_id, "enriched_at": utc_now()},
        )

    def _mark_failed(self, record: WorkingRecord, message: str) -> None:
        collection = self.transaction_collection(record)
        try:
            current = self.store.get(collection, record.transaction_id)
            target = self.config.transaction_failed
            if current is None or not can_transition(current.get("status"), target, TRANSACTION_TRANSITIONS):
                return
            self.store.update(
                collection,
                record.transaction_id,
                {"status": target, "error_message": message},
            )
        except PersistenceFault as e:
            logger.error(f"Could not mark transaction {record.transaction_id} as failed: {e}")
            increment_counter(persistence_failures_total, collection=e.collection)
        except Exception as e:
            logger.error(
                f"Could not mark transaction {record.transaction_id} as failed: {e}", exc_info=True
            )
            increment_counter(persistence_failures_total, collection=collection)

    def finalize_statement(self, statement_id: str, successes: int, failures: int) -> StatementOutcome:
        """
        Move a statement to processed or processed_with_errors with its counts.

        Faults are recorded on the returned outcome rather than raised.
        """
        total = successes + failures
        status = (
            self.config.statement_processed
            if failures == 0
            else self.config.statement_processed_with_errors
        )
        outcome = StatementOutcome(
            statement_id=statement_id,
            status=status,
            total=total,
            success_count=successes,
            failure_count=failures,
        )
        collection = self.collections.statements

        try:
            current = self.store.get(collection, statement_id)
            if current is None:
                raise PersistenceFault(collection, "statement not found", statement_id)
            if not can_transition(current.get("status"), status, STATEMENT_TRANSITIONS):
                raise PersistenceFault(
                    collection,
                    f"cannot move statement from {current.get('status')} to {status}",
                    statement_id,
                )
            completed_at = utc_now()
            self.store.update(
                collection,
                statement_id,
                {
                    "status": status,
                    "processing_completed": completed_at,
                    "transactions_processed": total,
                    "transactions_success": successes,
                    "transactions_failed": failures,
                },
            )
        except PersistenceFault as e:
            logger.error(f"Failed to finalize statement {statement_id}: {e}")
            increment_counter(persistence_failures_total, collection=e.collection)
            outcome.error = str(e)
            return outcome
        except Exception as e:
            logger.error(f"Unexpected error finalizing statement {statement_id}: {e}", exc_info=True)
            increment_counter(persistence_failures_total, collection=collection)
            outcome.error = f"Unexpected error: {e}"
            return outcome

        self._write_audit(
            subject_id=statement_id,
            action="STATEMENT_PROCESSED",
            details=(
                f"Statement processed: {successes} success, {failures} failures "
                f"out of {total} total"
            ),
            step_name="StatementCompletion",
            statement_id=statement_id,
            status=status,
        )

        outcome.completed_at = completed_at
        increment_counter(statements_finalized_total, status=status)
        logger.info(
            f"Statement {statement_id} -> {status} "
            f"({successes} success, {failures} failed, {total} total)"
        )
        return outcome
