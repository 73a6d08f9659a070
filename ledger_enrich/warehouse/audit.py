"""
Audit trail operations.

Audit entries are append-only rows in the audit collection. Writers call
``AuditSink.write``; the query helpers read the trail back for reports
and tests.
"""

from typing import Any, Protocol

from ledger_enrich.config import EnrichmentConfig
from ledger_enrich.core.errors import PersistenceFault
from ledger_enrich.core.models import AuditEntry
from ledger_enrich.observability.logger import get_logger
from ledger_enrich.utils.validation import validate_limit

logger = get_logger(__name__)


class AuditSink(Protocol):
    """Append-only audit writer."""

    def write(self, entry: AuditEntry) -> str:
        ...


class RowStoreAuditSink:
    """Writes audit entries into the row store's audit collection."""

    def __init__(self, store, config: EnrichmentConfig | None = None):
        """
        Initialize audit sink.

        Args:
            store: RowStore to append to
            config: Run configuration (collection names)
        """
        self.store = store
        self.collection = (config or EnrichmentConfig()).collections.audit_log

    def write(self, entry: AuditEntry) -> str:
        """
        Append an audit entry.

        Returns:
            Id of the new audit row

        Raises:
            PersistenceFault: If the write fails
        """
        try:
            log_id = self.store.insert(self.collection, entry.model_dump(mode="json"))
        except PersistenceFault as e:
            logger.error(f"Failed to insert audit log: {e}")
            raise

        logger.debug(
            f"Inserted audit log entry: log_id={log_id}, "
            f"subject_id={entry.subject_id}, action={entry.action}"
        )
        return log_id


def query_audit_entries(
    store,
    subject_id: str | None = None,
    action: str | None = None,
    transaction_id: str | None = None,
    statement_id: str | None = None,
    limit: int = 1000,
    config: EnrichmentConfig | None = None,
) -> list[dict[str, Any]]:
    """
    Query audit entries, newest first.

    Args:
        store: RowStore holding the audit collection
        subject_id: Filter on subject id
        action: Filter on action code
        transaction_id: Filter on source transaction id
        statement_id: Filter on statement id
        limit: Maximum number of entries to return

    Returns:
        Audit rows as dictionaries
    """
    limit = validate_limit(limit)
    collection = (config or EnrichmentConfig()).collections.audit_log
    criteria = {
        key: value
        for key, value in {
            "subject_id": subject_id,
            "action": action,
            "transaction_id": transaction_id,
            "statement_id": statement_id,
        }.items()
        if value is not None
    }
    rows = store.find(collection, criteria, order_by="timestamp")
    rows.reverse()
    logger.debug(f"Found {len(rows)} audit entries for {criteria}")
    return rows[:limit]


def get_audit_summary(store, config: EnrichmentConfig | None = None) -> dict[str, Any]:
    """
    Summary statistics from the audit trail.

    Returns:
        Dictionary with total_entries and entries_by_action
    """
    collection = (config or EnrichmentConfig()).collections.audit_log
    by_action: dict[str, int] = {}
    rows = store.find(collection)
    for row in rows:
        action = row.get("action", "UNKNOWN")
        by_action[action] = by_action.get(action, 0) + 1

    summary = {"total_entries": len(rows), "entries_by_action": by_action}
    logger.info(f"Audit summary: {summary}")
    return summary
