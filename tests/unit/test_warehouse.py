"""
Unit tests for the in-memory row store, exception queue and audit trail
"""
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from ledger_enrich.core.errors import PersistenceFault
from ledger_enrich.core.models import AuditEntry, ExceptionPriority
from ledger_enrich.observability.metrics import exceptions_raised_total, get_counter_value
from ledger_enrich.utils.validation import ValidationError
from ledger_enrich.warehouse import (
    ExceptionQueue,
    InMemoryRowStore,
    RowStoreAuditSink,
    get_audit_summary,
    query_audit_entries,
)
from ledger_enrich.warehouse.row_store import calculate_checksum

FIXED_NOW = datetime(2025, 11, 17, 9, 30, tzinfo=timezone.utc)


@pytest.mark.unit
class TestInMemoryRowStore:
    """Test the dictionary-backed row store"""

    def test_rows_normalized_to_json(self):
        """Test decimals and dates are stored as strings"""
        store = InMemoryRowStore()
        store.upsert("bank_total_trx", "BTX-1", {"payment_amount": Decimal("500.00"), "payment_date": date(2025, 11, 17)})

        row = store.get("bank_total_trx", "BTX-1")

        assert row == {"id": "BTX-1", "payment_amount": "500.00", "payment_date": "2025-11-17"}

    def test_get_returns_copy(self):
        """Test mutating a returned row does not change the store"""
        store = InMemoryRowStore({"currency": [{"id": "CUR-EUR", "code": "EUR"}]})

        store.get("currency", "CUR-EUR")["code"] = "XXX"

        assert store.get("currency", "CUR-EUR")["code"] == "EUR"

    def test_get_missing(self):
        """Test missing rows and collections return None"""
        assert InMemoryRowStore().get("currency", "CUR-EUR") is None

    def test_find_criteria_and_order(self):
        """Test equality filters and ordering with missing values last"""
        store = InMemoryRowStore({"bank_statement": [
            {"id": "ST-3", "status": "new", "from_date": "2025-11-03"},
            {"id": "ST-1", "status": "new", "from_date": "2025-11-01"},
            {"id": "ST-X", "status": "new"},
            {"id": "ST-2", "status": "processed", "from_date": "2025-11-02"},
        ]})

        rows = store.find("bank_statement", {"status": "new"}, order_by="from_date")

        assert [row["id"] for row in rows] == ["ST-1", "ST-3", "ST-X"]

    def test_insert_rejects_duplicates(self):
        """Test insert never overwrites"""
        store = InMemoryRowStore()
        store.insert("trx_enrichment", {"x": 1}, record_id="TRX-1")

        with pytest.raises(PersistenceFault, match="duplicate id") as exc_info:
            store.insert("trx_enrichment", {"x": 2}, record_id="TRX-1")

        assert exc_info.value.collection == "trx_enrichment"
        assert store.get("trx_enrichment", "TRX-1")["x"] == 1

    def test_insert_generates_id(self):
        """Test insert assigns an id when none is given"""
        store = InMemoryRowStore()

        first = store.insert("audit_log", {"action": "A"})
        second = store.insert("audit_log", {"action": "B"})

        assert first != second
        assert store.count("audit_log") == 2

    def test_update(self):
        """Test update merges changes into existing rows only"""
        store = InMemoryRowStore({"bank_total_trx": [{"id": "BTX-1", "status": "new", "d_c": "C"}]})

        assert store.update("bank_total_trx", "BTX-1", {"status": "enriched"})
        assert not store.update("bank_total_trx", "BTX-404", {"status": "enriched"})
        assert store.get("bank_total_trx", "BTX-1") == {"id": "BTX-1", "status": "enriched", "d_c": "C"}

    def test_invalid_names_are_persistence_faults(self):
        """Test unsafe collection names and ids are rejected"""
        store = InMemoryRowStore()

        with pytest.raises(PersistenceFault) as exc_info:
            store.upsert("user", "X-1", {})
        assert isinstance(exc_info.value.__cause__, ValidationError)

        with pytest.raises(PersistenceFault):
            store.get("currency", "bad id!")

    def test_checksum_ignores_key_order(self):
        """Test checksums are computed over canonical JSON"""
        assert calculate_checksum({"a": 1, "b": Decimal("2.50")}) == calculate_checksum({"b": Decimal("2.50"), "a": 1})


@pytest.mark.unit
class TestExceptionQueue:
    """Test queuing of review items"""

    @pytest.fixture
    def queue(self, config):
        store = InMemoryRowStore()
        return ExceptionQueue(store, config, clock=lambda: FIXED_NOW)

    def test_entry_fields(self, queue, make_record):
        """Test the queued row describes the transaction"""
        record = make_record(transaction_id="BTX-1", amount=Decimal("250.00"))

        entry = queue.raise_exception(record, "NO_RULE_MATCH", "No rule matched")

        assert entry.exception_id == "EXC-BTX-1-NO_RULE_MATCH"
        assert entry.priority == ExceptionPriority.LOW
        assert entry.assigned_to == "operations"
        assert entry.due_date == date(2025, 11, 20)
        row = queue.store.get("exception_queue", "EXC-BTX-1-NO_RULE_MATCH")
        assert row["status"] == "pending"
        assert row["amount"] == "250.00"
        assert row["statement_id"] == "ST-1"

    def test_urgent_items_go_to_supervisor(self, queue, make_record):
        """Test high and critical items are due next day"""
        record = make_record(amount=Decimal("2500000"))

        entry = queue.raise_exception(record, "COUNTERPARTY_NOT_FOUND", "Unknown BIC")

        assert entry.priority == ExceptionPriority.CRITICAL
        assert entry.assigned_to == "supervisor"
        assert entry.due_date == (FIXED_NOW + timedelta(days=1)).date()

    def test_explicit_priority(self, queue, make_record):
        """Test an explicit priority overrides the amount-based one"""
        entry = queue.raise_exception(make_record(), "MISSING_CUSTOMER", "x", ExceptionPriority.HIGH)

        assert entry.priority == ExceptionPriority.HIGH

    def test_idempotent(self, queue, make_record):
        """Test raising the same exception twice keeps one row"""
        record = make_record(transaction_id="BTX-1")

        queue.raise_exception(record, "FX_RATE_MISSING", "first")
        queue.raise_exception(record, "FX_RATE_MISSING", "second")
        queue.raise_exception(record, "OLD_FX_RATE", "other type")

        assert queue.store.count("exception_queue") == 2
        assert len(queue.pending_for("BTX-1")) == 2
        assert queue.store.get("exception_queue", "EXC-BTX-1-FX_RATE_MISSING")["details"] == "second"

    def test_metric(self, queue, make_record):
        """Test raised exceptions are counted by type and priority"""
        before = get_counter_value(exceptions_raised_total, exception_type="INVALID_AMOUNT", priority="high")

        queue.raise_exception(make_record(), "INVALID_AMOUNT", "x", ExceptionPriority.HIGH)

        after = get_counter_value(exceptions_raised_total, exception_type="INVALID_AMOUNT", priority="high")
        assert after == before + 1


@pytest.mark.unit
class TestAuditTrail:
    """Test audit writes and queries"""

    @pytest.fixture
    def audit_store(self, config):
        store = InMemoryRowStore()
        sink = RowStoreAuditSink(store, config)
        base = datetime(2025, 11, 17, 10, 0, tzinfo=timezone.utc)
        entries = [
            ("BTX-1", "CURRENCY_VALIDATED", "BTX-1"),
            ("TRX-AAAAAAAAAA", "ENRICHMENT_SAVED", "BTX-1"),
            ("TRX-BBBBBBBBBB", "ENRICHMENT_SAVED", "BTX-2"),
            ("ST-1", "STATEMENT_PROCESSED", None),
        ]
        for minute, (subject, action, trx) in enumerate(entries):
            sink.write(AuditEntry(
                subject_id=subject,
                action=action,
                step_name="test",
                transaction_id=trx,
                statement_id="ST-1",
                timestamp=base + timedelta(minutes=minute),
            ))
        return store

    def test_write_appends(self, audit_store):
        """Test each write adds a row"""
        assert audit_store.count("audit_log") == 4

    def test_query_newest_first(self, audit_store):
        """Test entries come back newest first"""
        rows = query_audit_entries(audit_store, statement_id="ST-1")

        assert [row["action"] for row in rows] == [
            "STATEMENT_PROCESSED", "ENRICHMENT_SAVED", "ENRICHMENT_SAVED", "CURRENCY_VALIDATED",
        ]

    def test_query_filters(self, audit_store):
        """Test action and transaction filters combine"""
        rows = query_audit_entries(audit_store, action="ENRICHMENT_SAVED", transaction_id="BTX-1")

        assert [row["subject_id"] for row in rows] == ["TRX-AAAAAAAAAA"]

    def test_query_limit(self, audit_store):
        """Test the limit is applied and validated"""
        assert len(query_audit_entries(audit_store, limit=2)) == 2

        with pytest.raises(ValidationError):
            query_audit_entries(audit_store, limit=0)

    def test_summary(self, audit_store):
        """Test action counts"""
        summary = get_audit_summary(audit_store)

        assert summary["total_entries"] == 4
        assert summary["entries_by_action"]["ENRICHMENT_SAVED"] == 2
