"""
Core data models for the transaction enrichment engine.

All models use Pydantic for runtime validation and type safety.
"""

from .audit_log import AuditEntry
from .enrichment_record import EnrichmentRecord, enrichment_id_for
from .exception_entry import ExceptionEntry, ExceptionPriority, priority_for_amount
from .results import (
    BatchPersistenceResult,
    BatchResult,
    PersistenceResult,
    PipelineResult,
    StatementOutcome,
    StepResult,
)
from .rule import ClassificationRule, RuleMatch
from .statement import Statement, StatementStatus, TransactionStatus
from .working_record import (
    Classification,
    CounterpartyInfo,
    CurrencyInfo,
    CustomerMatch,
    FxConversion,
    SourceType,
    WorkingRecord,
)

__all__ = [
    "AuditEntry",
    "BatchPersistenceResult",
    "BatchResult",
    "Classification",
    "ClassificationRule",
    "CounterpartyInfo",
    "CurrencyInfo",
    "CustomerMatch",
    "EnrichmentRecord",
    "ExceptionEntry",
    "ExceptionPriority",
    "FxConversion",
    "PersistenceResult",
    "PipelineResult",
    "RuleMatch",
    "SourceType",
    "Statement",
    "StatementOutcome",
    "StatementStatus",
    "StepResult",
    "TransactionStatus",
    "WorkingRecord",
    "enrichment_id_for",
    "priority_for_amount",
]
