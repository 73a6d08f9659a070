"""
Result models for steps, pipeline runs, batches and persistence (ephemeral).
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StepResult(BaseModel):
    """
    Outcome of one step on one record.

    Attributes:
        success: Whether the step completed
        message: Human-readable outcome
        output: Key-values the step produced (for audit and inspection)
        skipped: True when the step's preconditions were not met
    """

    success: bool
    message: str = ""
    output: dict[str, Any] = Field(default_factory=dict)
    skipped: bool = False

    @classmethod
    def ok(cls, message: str = "", **output: Any) -> "StepResult":
        return cls(success=True, message=message, output=output)

    @classmethod
    def fail(cls, message: str, **output: Any) -> "StepResult":
        return cls(success=False, message=message, output=output)

    @classmethod
    def skip(cls, message: str = "Step skipped - preconditions not met") -> "StepResult":
        return cls(success=True, message=message, skipped=True)


class PipelineResult(BaseModel):
    """
    Outcome of running the whole step chain for one transaction.

    Attributes:
        transaction_id: Transaction the run was for
        success: False if any executed step failed
        error_message: Set only when the pipeline halted
        failed_step: Step that caused the halt
        step_results: Step name -> StepResult, in execution order
        started_at: When the run began
        ended_at: When the run finished
    """

    transaction_id: str
    success: bool = True
    error_message: str | None = None
    failed_step: str | None = None
    step_results: dict[str, StepResult] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=utc_now)
    ended_at: datetime | None = None

    class Config:
        json_schema_extra = {
            "example": {
                "transaction_id": "BTX-000123",
                "success": False,
                "error_message": "Pipeline stopped at step: CurrencyValidation",
                "failed_step": "CurrencyValidation",
                "step_results": {
                    "CurrencyValidation": {
                        "success": False,
                        "message": "Invalid or inactive currency: XXX",
                    }
                },
            }
        }

    @property
    def failed_steps(self) -> list[str]:
        return [name for name, result in self.step_results.items() if not result.success]

    @property
    def duration_seconds(self) -> float:
        if self.ended_at is None:
            return 0.0
        return (self.ended_at - self.started_at).total_seconds()

    def outcome(self) -> dict[str, Any]:
        """Result without timestamps, for comparing two runs."""
        return self.model_dump(exclude={"started_at", "ended_at"})


class BatchResult(BaseModel):
    """Aggregate over the PipelineResults of one batch."""

    total: int = 0
    success_count: int = 0
    failure_count: int = 0
    started_at: datetime = Field(default_factory=utc_now)
    ended_at: datetime | None = None
    results: dict[str, PipelineResult] = Field(default_factory=dict)

    def add(self, result: PipelineResult) -> None:
        self.results[result.transaction_id] = result
        self.total += 1
        if result.success:
            self.success_count += 1
        else:
            self.failure_count += 1

    def get(self, transaction_id: str) -> PipelineResult | None:
        return self.results.get(transaction_id)


class PersistenceResult(BaseModel):
    """
    Outcome of persisting one transaction.

    Attributes:
        transaction_id: Source transaction id
        statement_id: Parent statement id
        success: True when the enrichment record exists and the transaction is enriched
        enrichment_id: Id of the enrichment record written or reused
        processing_status: enriched or manual_review for successes
        reused: True when an enrichment record from an earlier run was found
        message: Failure reason
    """

    transaction_id: str
    statement_id: str
    success: bool
    enrichment_id: str | None = None
    processing_status: str | None = None
    reused: bool = False
    message: str = ""


class StatementOutcome(BaseModel):
    """Terminal state reached by one statement."""

    statement_id: str
    status: str
    total: int = 0
    success_count: int = 0
    failure_count: int = 0
    completed_at: datetime | None = None
    error: str | None = None


class BatchPersistenceResult(BaseModel):
    """Aggregate of a State Coordinator run."""

    records_persisted: int = 0
    success_count: int = 0
    failure_count: int = 0
    manual_review_count: int = 0
    statements_processed: int = 0
    statements_with_errors: int = 0
    results: list[PersistenceResult] = Field(default_factory=list)
    statements: dict[str, StatementOutcome] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=utc_now)
    ended_at: datetime | None = None

    @property
    def total(self) -> int:
        return self.success_count + self.failure_count
