"""
Base step interface for all enrichment steps.

All steps implement ``name``, ``should_execute`` and ``execute``. Steps that
inherit from BaseStep implement ``perform_step``; ``execute`` wraps it so a
fault inside the step becomes a failed StepResult instead of an exception.
"""

import time
from abc import ABC, abstractmethod
from typing import Protocol

from ledger_enrich.config import EnrichmentConfig
from ledger_enrich.core.errors import StepFault
from ledger_enrich.core.models import AuditEntry, ExceptionPriority, StepResult, WorkingRecord
from ledger_enrich.observability.logger import get_logger
from ledger_enrich.observability.metrics import (
    increment_counter,
    observe_histogram,
    step_duration_seconds,
    step_failures_total,
)

logger = get_logger(__name__)


class Step(Protocol):
    """Contract the pipeline relies on."""

    @property
    def name(self) -> str:
        ...

    def should_execute(self, record: WorkingRecord) -> bool:
        ...

    def execute(self, record: WorkingRecord) -> StepResult:
        ...


class BaseStep(ABC):
    """
    Abstract base class for enrichment steps.

    Subclasses get optional access to the exception queue and the audit
    sink. Both are skipped when not configured, so a step can run against
    lookups alone.
    """

    def __init__(
        self,
        config: EnrichmentConfig | None = None,
        exceptions=None,
        audit=None,
    ):
        """
        Initialize step.

        Args:
            config: Run configuration
            exceptions: ExceptionQueue for review items (optional)
            audit: AuditSink for step audit entries (optional)
        """
        self.config = config or EnrichmentConfig()
        self.exceptions = exceptions
        self.audit = audit

    @property
    @abstractmethod
    def name(self) -> str:
        """Step name, unique within a pipeline."""
        pass

    def should_execute(self, record: WorkingRecord) -> bool:
        return True

    @abstractmethod
    def perform_step(self, record: WorkingRecord) -> StepResult:
        """
        Apply the step to a record.

        May raise; ``execute`` converts the fault into a failed result.
        """
        pass

    def execute(self, record: WorkingRecord) -> StepResult:
        """Run ``perform_step`` and contain any fault it raises."""
        start = time.monotonic()
        try:
            result = self.perform_step(record)
        except StepFault as fault:
            result = self._contain(record, fault)
        except Exception as e:
            result = self._contain(record, StepFault(self.name, str(e)))
        finally:
            observe_histogram(step_duration_seconds, time.monotonic() - start, step=self.name)

        if not result.success:
            increment_counter(step_failures_total, step=self.name)
        return result

    def _contain(self, record: WorkingRecord, fault: StepFault) -> StepResult:
        logger.error(
            f"Step {self.name} failed for transaction {record.transaction_id}: {fault.message}",
            exc_info=True,
        )
        return StepResult.fail(str(fault))

    def raise_exception(
        self,
        record: WorkingRecord,
        exception_type: str,
        details: str,
        priority: ExceptionPriority | None = None,
    ) -> None:
        """Queue a review item for the record, if a queue is configured."""
        if self.exceptions is not None:
            self.exceptions.raise_exception(record, exception_type, details, priority)

    def write_audit(self, record: WorkingRecord, action: str, details: str) -> None:
        """Append a step audit entry, if an audit sink is configured."""
        if self.audit is None:
            return
        self.audit.write(
            AuditEntry(
                subject_id=record.transaction_id,
                action=action,
                details=details,
                step_name=self.name,
                transaction_id=record.transaction_id,
                statement_id=record.statement_id,
                status=record.processing_status,
            )
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name})"
