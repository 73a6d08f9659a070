"""
Unit tests for the state coordinator
"""
from decimal import Decimal

import pytest

from ledger_enrich.config import EnrichmentConfig
from ledger_enrich.core.models import (
    BatchResult,
    Classification,
    CounterpartyInfo,
    CustomerMatch,
    FxConversion,
    PipelineResult,
    SourceType,
    enrichment_id_for,
)
from ledger_enrich.observability.metrics import get_counter_value, persistence_failures_total
from ledger_enrich.warehouse import InMemoryRowStore, RowStoreAuditSink, StateCoordinator, query_audit_entries
from ledger_enrich.warehouse.state_coordinator import build_enrichment_record, needs_manual_review


def enrich(record, confidence=100, counterparty_id="CPT-0001", internal_type="PAYMENT_CUSTOMER"):
    """Fill the derived fields the way a clean pipeline run would"""
    record.counterparty = CounterpartyInfo(
        counterparty_id=counterparty_id, name="Swedbank", bic="HABAEE2X", counterparty_type="Bank"
    )
    if record.is_bank:
        record.customer = CustomerMatch(
            customer_id="CUST-001", name="Acme Trading OU", customer_code="C001",
            confidence=confidence, method="DIRECT_ID",
        )
    record.classification = Classification(
        internal_type=internal_type,
        matched=internal_type != "UNMATCHED",
        rule_id="MAP-0001" if internal_type != "UNMATCHED" else None,
    )
    record.fx = FxConversion(
        original_amount=record.amount,
        original_currency=record.currency,
        base_amount=record.amount,
        base_currency="EUR",
        rate=Decimal(1),
        rate_source="BASE_CURRENCY",
    )
    record.processed_steps = ["CurrencyValidation", "FxConversion", "Classification"]
    return record


def batch_for(*outcomes):
    """BatchResult from (record, success) pairs"""
    batch = BatchResult()
    for record, success in outcomes:
        batch.add(PipelineResult(
            transaction_id=record.transaction_id,
            success=success,
            error_message=None if success else "Pipeline stopped at step: CurrencyValidation",
        ))
    return batch



class FailingStore(InMemoryRowStore):
    """In-memory store whose writes to chosen rows raise a driver-style error"""

    def __init__(self, failing_writes):
        super().__init__()
        self.failing_writes = set(failing_writes)

    def _maybe_fail(self, collection, record_id):
        if (collection, record_id) in self.failing_writes:
            raise RuntimeError("connection reset")

    def insert(self, collection, data, record_id=None):
        self._maybe_fail(collection, record_id)
        return super().insert(collection, data, record_id=record_id)

    def update(self, collection, record_id, changes):
        self._maybe_fail(collection, record_id)
        return super().update(collection, record_id, changes)


class SelectiveAuditSink:
    """Audit sink that rejects one action and forwards the rest"""

    def __init__(self, inner, rejected_action):
        self.inner = inner
        self.rejected_action = rejected_action

    def write(self, entry):
        if entry.action == self.rejected_action:
            raise RuntimeError("audit log unavailable")
        return self.inner.write(entry)

@pytest.fixture
def coordinator(store, config):
    return StateCoordinator(store, config)


@pytest.fixture
def statement(store, seed_statement):
    """ST-1 claimed by a run, with three new transactions"""
    seed_statement(store, status="processing", transactions=[
        {"id": "BTX-0001", "payment_amount": "500.00"},
        {"id": "BTX-0002", "payment_amount": "75.00"},
        {"id": "BTX-0003", "payment_amount": "10.00"},
    ])
    return "ST-1"


@pytest.mark.unit
class TestNeedsManualReview:
    """Test routing to manual review"""

    def test_fully_resolved(self, make_record, config):
        """Test a resolved record with a confident customer"""
        assert not needs_manual_review(enrich(make_record()), config)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"counterparty_id": "UNKNOWN"},
            {"internal_type": "UNMATCHED"},
            {"confidence": 79},
        ],
    )
    def test_unresolved_or_weak(self, make_record, config, overrides):
        """Test sentinels and low confidence require review"""
        assert needs_manual_review(enrich(make_record(), **overrides), config)

    def test_unknown_customer(self, make_record, config):
        """Test an UNKNOWN customer requires review"""
        record = enrich(make_record())
        record.customer = CustomerMatch(customer_id="UNKNOWN", confidence=0)

        assert needs_manual_review(record, config)

    def test_missing_derived_fields(self, make_record, config):
        """Test a record no step resolved requires review"""
        assert needs_manual_review(make_record(), config)

    def test_securities_without_customer(self, make_record, config):
        """Test securities records do not need a customer"""
        record = enrich(make_record(source_type=SourceType.SECURITIES))

        assert record.customer is None
        assert not needs_manual_review(record, config)


@pytest.mark.unit
class TestBuildEnrichmentRecord:
    """Test assembly of the persisted record"""

    def test_fields(self, make_record, config):
        """Test identifiers, scaled confidence and FX fields"""
        record = enrich(make_record(transaction_id="BTX-0001"), confidence=95)

        enrichment = build_enrichment_record(record, "enriched", False, config)

        assert enrichment.enrichment_id == enrichment_id_for("BTX-0001")
        assert enrichment.customer_confidence == Decimal("0.95")
        assert enrichment.matching_confidence == Decimal("1.0")
        assert enrichment.base_amount == Decimal("500.00")
        assert enrichment.fx_rate_source == "BASE_CURRENCY"
        assert enrichment.counterparty_bic == "HABAEE2X"
        assert enrichment.processed_steps == record.processed_steps

    def test_unresolved_defaults(self, make_record, config):
        """Test sentinels stand in for fields no step produced"""
        enrichment = build_enrichment_record(make_record(), "manual_review", True, config)

        assert enrichment.counterparty_id == "UNKNOWN"
        assert enrichment.internal_type == "UNMATCHED"
        assert enrichment.customer_confidence is None
        assert enrichment.matching_confidence == Decimal("0.0")
        assert enrichment.requires_review


@pytest.mark.unit
class TestPersistBatch:
    """Test persistence and statement finalization"""

    def test_partial_failure(self, store, coordinator, statement, make_record):
        """Test a statement with one failed transaction"""
        records = [
            enrich(make_record(transaction_id="BTX-0001")),
            enrich(make_record(transaction_id="BTX-0002")),
            make_record(transaction_id="BTX-0003", currency="XXX"),
        ]
        batch = batch_for((records[0], True), (records[1], True), (records[2], False))

        result = coordinator.persist_batch(records, batch, statement_ids=[statement])

        assert (result.success_count, result.failure_count) == (2, 1)
        assert result.records_persisted == 2
        assert (result.statements_processed, result.statements_with_errors) == (1, 1)

        row = store.get("bank_statement", statement)
        assert row["status"] == "processed_with_errors"
        assert (row["transactions_processed"], row["transactions_success"], row["transactions_failed"]) == (3, 2, 1)
        assert row["processing_completed"] is not None

        assert store.get("bank_total_trx", "BTX-0001")["status"] == "enriched"
        assert store.get("bank_total_trx", "BTX-0003")["status"] == "new"
        assert store.get("trx_enrichment", enrichment_id_for("BTX-0003")) is None

        audit = query_audit_entries(store, action="STATEMENT_PROCESSED")
        assert audit[0]["details"] == "Statement processed: 2 success, 1 failures out of 3 total"

    def test_all_succeed(self, store, coordinator, statement, make_record):
        """Test a clean statement becomes processed"""
        records = [enrich(make_record(transaction_id=f"BTX-000{n}")) for n in (1, 2, 3)]

        result = coordinator.persist_batch(records, batch_for(*[(r, True) for r in records]))

        assert result.statements[statement].status == "processed"
        assert result.statements_with_errors == 0
        enrichment = store.get("trx_enrichment", enrichment_id_for("BTX-0002"))
        assert enrichment["processing_status"] == "enriched"
        assert enrichment["customer_confidence"] == "1.00"
        assert store.get("bank_total_trx", "BTX-0002")["enrichment_id"] == enrichment_id_for("BTX-0002")

    def test_manual_review_counted(self, store, coordinator, statement, make_record):
        """Test records needing review are persisted as manual_review"""
        records = [
            enrich(make_record(transaction_id="BTX-0001")),
            enrich(make_record(transaction_id="BTX-0002"), internal_type="UNMATCHED"),
        ]

        result = coordinator.persist_batch(records, batch_for(*[(r, True) for r in records]))

        assert result.manual_review_count == 1
        enrichment = store.get("trx_enrichment", enrichment_id_for("BTX-0002"))
        assert enrichment["processing_status"] == "manual_review"
        assert enrichment["requires_review"] is True
        assert store.get("bank_total_trx", "BTX-0002")["status"] == "enriched"

    def test_enrichment_reused_on_resume(self, store, coordinator, statement, make_record):
        """Test an enrichment left by an interrupted run completes the status update"""
        record = enrich(make_record(transaction_id="BTX-0001"))
        enrichment_id = enrichment_id_for("BTX-0001")
        store.insert("trx_enrichment", {"processing_status": "manual_review"}, record_id=enrichment_id)

        outcome = coordinator.persist_record(record, batch_for((record, True)))

        assert outcome.success
        assert outcome.reused
        assert outcome.processing_status == "manual_review"
        assert store.count("trx_enrichment") == 1
        assert store.get("bank_total_trx", "BTX-0001")["status"] == "enriched"

    def test_already_enriched_transaction(self, store, coordinator, statement, make_record):
        """Test a second persist of the same transaction is a no-op"""
        record = enrich(make_record(transaction_id="BTX-0001"))
        batch = batch_for((record, True))
        coordinator.persist_record(record, batch)
        enriched_at = store.get("bank_total_trx", "BTX-0001")["enriched_at"]

        outcome = coordinator.persist_record(record, batch)

        assert outcome.success and outcome.reused
        assert store.get("bank_total_trx", "BTX-0001")["enriched_at"] == enriched_at

    def test_missing_source_row(self, coordinator, statement, make_record):
        """Test a transaction without a source row fails persistence"""
        record = enrich(make_record(transaction_id="BTX-0404"))

        outcome = coordinator.persist_record(record, batch_for((record, True)))

        assert not outcome.success
        assert "source transaction not found" in outcome.message

    def test_failed_transaction_cannot_be_enriched(self, store, coordinator, statement, make_record):
        """Test terminal transaction states are respected"""
        store.update("bank_total_trx", "BTX-0001", {"status": "failed"})
        record = enrich(make_record(transaction_id="BTX-0001"))

        outcome = coordinator.persist_record(record, batch_for((record, True)))

        assert not outcome.success
        assert "cannot move transaction from failed to enriched" in outcome.message

    def test_no_pipeline_result(self, coordinator, statement, make_record):
        """Test records missing from the batch are failures"""
        outcome = coordinator.persist_record(make_record(transaction_id="BTX-0001"), BatchResult())

        assert not outcome.success
        assert outcome.message == "No pipeline result"

    def test_mark_failed_transactions(self, store, statement, make_record):
        """Test failed transactions are marked when configured"""
        coordinator = StateCoordinator(store, EnrichmentConfig(mark_failed_transactions=True))
        record = make_record(transaction_id="BTX-0003", currency="XXX")

        outcome = coordinator.persist_record(record, batch_for((record, False)))

        assert not outcome.success
        row = store.get("bank_total_trx", "BTX-0003")
        assert row["status"] == "failed"
        assert row["error_message"] == "Pipeline stopped at step: CurrencyValidation"

    def test_empty_statement(self, store, coordinator, statement):
        """Test a claimed statement with no new transactions is finalized"""
        result = coordinator.persist_batch([], BatchResult(), statement_ids=[statement])

        outcome = result.statements[statement]
        assert outcome.status == "processed"
        assert (outcome.total, outcome.success_count, outcome.failure_count) == (0, 0, 0)
        assert store.get("bank_statement", statement)["status"] == "processed"

    def test_statement_not_processing(self, store, coordinator, seed_statement):
        """Test a statement that was never claimed is not finalized"""
        seed_statement(store, statement_id="ST-9", status="new")

        result = coordinator.persist_batch([], BatchResult(), statement_ids=["ST-9"])

        assert "cannot move statement from new to processed" in result.statements["ST-9"].error
        assert result.statements_processed == 0
        assert store.get("bank_statement", "ST-9")["status"] == "new"


@pytest.mark.unit
class TestFailureContainment:
    """Test store and audit faults stay inside the transaction or statement they hit"""

    @pytest.fixture
    def two_statements(self, seed_statement, make_record):
        """ST-1 with two transactions and ST-2 with one, both claimed"""
        def _seed(store):
            seed_statement(store, status="processing", transactions=[
                {"id": "BTX-0001", "payment_amount": "500.00"},
                {"id": "BTX-0002", "payment_amount": "75.00"},
            ])
            seed_statement(store, statement_id="ST-2", status="processing", transactions=[
                {"id": "BTX-0101", "payment_amount": "20.00"},
            ])
            return [
                enrich(make_record(transaction_id="BTX-0001")),
                enrich(make_record(transaction_id="BTX-0002")),
                enrich(make_record(transaction_id="BTX-0101", statement_id="ST-2")),
            ]
        return _seed

    def test_unexpected_insert_error(self, config, two_statements):
        """Test a non-persistence exception fails only its transaction"""
        store = FailingStore({("trx_enrichment", enrichment_id_for("BTX-0001"))})
        records = two_statements(store)
        before = get_counter_value(persistence_failures_total, collection="trx_enrichment")

        result = StateCoordinator(store, config).persist_batch(
            records, batch_for(*[(r, True) for r in records])
        )

        failed = result.results[0]
        assert not failed.success
        assert failed.message == "Unexpected error: connection reset"
        assert (result.success_count, result.failure_count) == (2, 1)
        assert store.get("bank_total_trx", "BTX-0001")["status"] == "new"
        assert store.get("bank_total_trx", "BTX-0002")["status"] == "enriched"
        assert store.get("bank_statement", "ST-1")["status"] == "processed_with_errors"
        assert store.get("bank_statement", "ST-2")["status"] == "processed"
        assert get_counter_value(persistence_failures_total, collection="trx_enrichment") == before + 1

    def test_unexpected_statement_update_error(self, config, two_statements):
        """Test a statement that cannot be finalized does not stop the next one"""
        store = FailingStore({("bank_statement", "ST-1")})
        records = two_statements(store)

        result = StateCoordinator(store, config).persist_batch(
            records, batch_for(*[(r, True) for r in records])
        )

        assert result.statements["ST-1"].error == "Unexpected error: connection reset"
        assert result.statements["ST-2"].status == "processed"
        assert result.statements_processed == 1
        assert result.success_count == 3
        assert store.get("bank_statement", "ST-2")["status"] == "processed"

    def test_enrichment_audit_failure_keeps_success(self, store, config, statement, make_record):
        """Test a lost ENRICHMENT_SAVED entry does not turn an enriched transaction into a failure"""
        audit = SelectiveAuditSink(RowStoreAuditSink(store, config), "ENRICHMENT_SAVED")
        coordinator = StateCoordinator(store, config, audit=audit)
        records = [enrich(make_record(transaction_id=f"BTX-000{n}")) for n in (1, 2, 3)]
        before = get_counter_value(persistence_failures_total, collection="audit_log")

        result = coordinator.persist_batch(records, batch_for(*[(r, True) for r in records]))

        assert (result.success_count, result.failure_count) == (3, 0)
        assert result.records_persisted == 3
        row = store.get("bank_statement", statement)
        assert row["status"] == "processed"
        assert (row["transactions_success"], row["transactions_failed"]) == (3, 0)
        assert store.get("bank_total_trx", "BTX-0001")["status"] == "enriched"
        assert query_audit_entries(store, action="ENRICHMENT_SAVED") == []
        assert len(query_audit_entries(store, action="STATEMENT_PROCESSED")) == 1
        assert get_counter_value(persistence_failures_total, collection="audit_log") == before + 3

    def test_statement_audit_failure_keeps_status(self, store, config, statement):
        """Test the statement stays finalized when its audit entry is lost"""
        audit = SelectiveAuditSink(RowStoreAuditSink(store, config), "STATEMENT_PROCESSED")

        result = StateCoordinator(store, config, audit=audit).persist_batch(
            [], BatchResult(), statement_ids=[statement]
        )

        assert result.statements[statement].error is None
        assert result.statements_processed == 1
        assert store.get("bank_statement", statement)["status"] == "processed"
