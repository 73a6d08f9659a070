"""
Exception queue: review items raised by enrichment steps.

Each (transaction, exception type) pair maps to one queue row, so running
a step twice does not raise the same item twice.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable

from ledger_enrich.config import EnrichmentConfig
from ledger_enrich.core.models import (
    ExceptionEntry,
    ExceptionPriority,
    WorkingRecord,
    priority_for_amount,
)
from ledger_enrich.observability.logger import get_logger
from ledger_enrich.observability.metrics import exceptions_raised_total, increment_counter

logger = get_logger(__name__)

_URGENT = (ExceptionPriority.CRITICAL, ExceptionPriority.HIGH)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ExceptionQueue:
    """Writes ExceptionEntry rows into the exception collection."""

    def __init__(
        self,
        store,
        config: EnrichmentConfig | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        """
        Initialize exception queue.

        Args:
            store: RowStore holding the exception collection
            config: Run configuration (collection names)
            clock: Source of the current time (due dates are computed from it)
        """
        self.store = store
        self.config = config or EnrichmentConfig()
        self.collection = self.config.collections.exceptions
        self.clock = clock

    def raise_exception(
        self,
        record: WorkingRecord,
        exception_type: str,
        details: str,
        priority: ExceptionPriority | None = None,
    ) -> ExceptionEntry:
        """
        Queue a review item for a record.

        Args:
            record: Record the item is about
            exception_type: Code such as NO_RULE_MATCH
            details: Human-readable description
            priority: Explicit priority; derived from the amount when None

        Returns:
            The queued entry

        Raises:
            PersistenceFault: If the queue write fails
        """
        priority = priority or priority_for_amount(record.amount)
        now = self.clock()
        urgent = priority in _URGENT

        entry = ExceptionEntry(
            exception_id=f"EXC-{record.transaction_id}-{exception_type}",
            transaction_id=record.transaction_id,
            statement_id=record.statement_id,
            source_type=record.source_type.value,
            exception_type=exception_type,
            details=details,
            amount=record.amount,
            currency=record.currency,
            transaction_date=record.transaction_date,
            priority=priority,
            assigned_to="supervisor" if urgent else "operations",
            due_date=(now + timedelta(days=1 if urgent else 3)).date(),
            created_at=now,
        )
        self.store.upsert(self.collection, entry.exception_id, entry.model_dump(mode="json"))
        increment_counter(
            exceptions_raised_total,
            exception_type=exception_type,
            priority=priority.value,
        )
        logger.info(
            f"Exception {exception_type} ({priority.value}) queued for transaction "
            f"{record.transaction_id}: {details}"
        )
        return entry

    def pending_for(self, transaction_id: str) -> list[dict]:
        """Pending queue rows for a transaction."""
        return self.store.find(
            self.collection, {"transaction_id": transaction_id, "status": "pending"}
        )