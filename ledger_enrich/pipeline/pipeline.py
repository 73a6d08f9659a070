"""
Enrichment pipeline orchestration.

Runs an ordered list of steps over one WorkingRecord, and over a batch of
records one after another.
"""

from typing import Iterable

from ledger_enrich.config import EnrichmentConfig
from ledger_enrich.core.errors import ConfigurationFault
from ledger_enrich.core.models import (
    BatchResult,
    PipelineResult,
    StepResult,
    WorkingRecord,
)
from ledger_enrich.core.models.results import utc_now
from ledger_enrich.observability.logger import get_logger
from ledger_enrich.observability.metrics import (
    batch_duration_seconds,
    increment_counter,
    track_duration,
    transactions_processed_total,
)
from ledger_enrich.pipeline.step import Step

logger = get_logger(__name__)


class EnrichmentPipeline:
    """
    Ordered step chain for one record at a time.

    Flow per record:
    1. Clear the error message left by any earlier run
    2. For each step: skip it if ``should_execute`` is false, else execute it
    3. On a failed step, set the record's error message; with stop-on-error
       the run halts there
    """

    def __init__(self, config: EnrichmentConfig | None = None):
        """
        Initialize pipeline.

        Args:
            config: Run configuration (provides the stop-on-error default)
        """
        self.config = config or EnrichmentConfig()
        self.steps: list[Step] = []
        self._stop_on_error = self.config.stop_on_error

    def add_step(self, step: Step) -> "EnrichmentPipeline":
        if any(existing.name == step.name for existing in self.steps):
            raise ConfigurationFault(f"Duplicate step name: {step.name}")
        self.steps.append(step)
        return self

    def stop_on_error(self, enabled: bool = True) -> "EnrichmentPipeline":
        self._stop_on_error = enabled
        return self

    @property
    def stops_on_error(self) -> bool:
        return self._stop_on_error

    def validate(self) -> None:
        """
        Check the pipeline can run.

        Raises:
            ConfigurationFault: If no steps are configured
        """
        if not self.steps:
            raise ConfigurationFault("Pipeline has no steps configured")

    def execute(self, record: WorkingRecord) -> PipelineResult:
        """
        Run the step chain for one record.

        Args:
            record: Working record; mutated in place by the steps

        Returns:
            PipelineResult with one StepResult per step reached

        Raises:
            ConfigurationFault: If no steps are configured
        """
        self.validate()
        result = PipelineResult(transaction_id=record.transaction_id)
        record.error_message = None

        for step in self.steps:
            step_name = step.name
            try:
                if not step.should_execute(record):
                    result.step_results[step_name] = StepResult.skip()
                    logger.debug(f"Skipped step {step_name} for transaction {record.transaction_id}")
                    continue
                step_result = step.execute(record)
            except Exception as e:
                # Steps that do not derive from BaseStep may raise
                logger.error(
                    f"Unexpected error in step {step_name} for transaction "
                    f"{record.transaction_id}: {e}",
                    exc_info=True,
                )
                step_result = StepResult.fail(f"Unexpected error: {e}")

            record.mark_step(step_name)
            result.step_results[step_name] = step_result

            if not step_result.success:
                result.success = False
                if record.error_message is None:
                    record.error_message = step_result.message
                logger.warning(
                    f"Step {step_name} failed for transaction {record.transaction_id}: "
                    f"{step_result.message}"
                )
                if self._stop_on_error:
                    result.failed_step = step_name
                    result.error_message = f"Pipeline stopped at step: {step_name}"
                    break

        result.ended_at = utc_now()
        increment_counter(
            transactions_processed_total,
            source_type=record.source_type.value,
            status="success" if result.success else "failure",
        )
        return result

    def execute_batch(self, records: Iterable[WorkingRecord]) -> BatchResult:
        """
        Run the pipeline over records sequentially, in the order given.

        Raises:
            ConfigurationFault: If no steps are configured (before any record is touched)
        """
        self.validate()
        batch = BatchResult()

        with track_duration(batch_duration_seconds, stage="pipeline"):
            for record in records:
                batch.add(self.execute(record))

        batch.ended_at = utc_now()
        logger.info(
            f"Batch complete: {batch.total} transactions, "
            f"{batch.success_count} succeeded, {batch.failure_count} failed"
        )
        return batch

    def __repr__(self) -> str:
        names = ", ".join(step.name for step in self.steps)
        return f"EnrichmentPipeline(steps=[{names}], stop_on_error={self._stop_on_error})"
