"""
Persistence layer: row stores, loader, state coordinator, audit trail and
exception queue.
"""

from .audit import AuditSink, RowStoreAuditSink, get_audit_summary, query_audit_entries
from .exception_queue import ExceptionQueue
from .loader import LoadResult, TransactionLoader
from .row_store import InMemoryRowStore, PostgresRowStore, RowStore
from .state_coordinator import StateCoordinator, build_enrichment_record, needs_manual_review

__all__ = [
    "AuditSink",
    "ExceptionQueue",
    "InMemoryRowStore",
    "LoadResult",
    "PostgresRowStore",
    "RowStore",
    "RowStoreAuditSink",
    "StateCoordinator",
    "TransactionLoader",
    "build_enrichment_record",
    "get_audit_summary",
    "needs_manual_review",
    "query_audit_entries",
]
