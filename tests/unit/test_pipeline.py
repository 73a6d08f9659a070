"""
Unit tests for EnrichmentPipeline
"""
import pytest

from ledger_enrich.batch.enrichment_job import build_default_pipeline
from ledger_enrich.config import EnrichmentConfig
from ledger_enrich.core.errors import ConfigurationFault
from ledger_enrich.core.models import StepResult
from ledger_enrich.core.rules import InMemoryRuleRepository, RuleConfigBuilder
from ledger_enrich.pipeline import BaseStep, EnrichmentPipeline


class RecordingStep(BaseStep):
    """Step that appends its name to record.extras["trail"]"""

    def __init__(self, name, fail=False, runs=True):
        super().__init__()
        self._name = name
        self.fail = fail
        self.runs = runs

    @property
    def name(self):
        return self._name

    def should_execute(self, record):
        return self.runs

    def perform_step(self, record):
        record.extras.setdefault("trail", []).append(self._name)
        if self.fail:
            return StepResult.fail(f"{self._name} failed")
        return StepResult.ok(f"{self._name} done")


class RaisingStep:
    """Step that does not derive from BaseStep and raises"""

    name = "Raising"

    def should_execute(self, record):
        return True

    def execute(self, record):
        raise ValueError("bad input")


@pytest.mark.unit
class TestPipelineConfiguration:
    """Test pipeline construction"""

    def test_empty_pipeline_rejected(self, make_record):
        """Test a pipeline without steps cannot run"""
        pipeline = EnrichmentPipeline()

        with pytest.raises(ConfigurationFault, match="no steps"):
            pipeline.validate()
        with pytest.raises(ConfigurationFault):
            pipeline.execute(make_record())
        with pytest.raises(ConfigurationFault):
            pipeline.execute_batch([make_record()])

    def test_duplicate_step_name(self):
        """Test step names must be unique"""
        pipeline = EnrichmentPipeline().add_step(RecordingStep("A"))

        with pytest.raises(ConfigurationFault, match="Duplicate step name: A"):
            pipeline.add_step(RecordingStep("A"))

    def test_stop_on_error_from_config(self):
        """Test the default comes from configuration and can be overridden"""
        pipeline = EnrichmentPipeline(EnrichmentConfig(stop_on_error=False))
        assert not pipeline.stops_on_error

        assert pipeline.stop_on_error().stops_on_error


@pytest.mark.unit
class TestPipelineExecution:
    """Test running the step chain on one record"""

    def test_steps_run_in_order(self, make_record):
        """Test steps execute in insertion order and are recorded"""
        record = make_record()
        pipeline = (
            EnrichmentPipeline()
            .add_step(RecordingStep("A"))
            .add_step(RecordingStep("B"))
            .add_step(RecordingStep("C"))
        )

        result = pipeline.execute(record)

        assert result.success
        assert record.extras["trail"] == ["A", "B", "C"]
        assert record.processed_steps == ["A", "B", "C"]
        assert list(result.step_results) == ["A", "B", "C"]
        assert result.ended_at is not None

    def test_skipped_step_changes_nothing(self, make_record):
        """Test a step whose precondition fails leaves the record untouched"""
        record = make_record()
        before = record.snapshot()

        result = EnrichmentPipeline().add_step(RecordingStep("A", runs=False)).execute(record)

        assert result.success
        assert result.step_results["A"].skipped
        assert record.snapshot() == before

    def test_stop_on_error(self, make_record):
        """Test a failed step halts the run"""
        record = make_record()
        pipeline = (
            EnrichmentPipeline()
            .add_step(RecordingStep("A"))
            .add_step(RecordingStep("B", fail=True))
            .add_step(RecordingStep("C"))
        )

        result = pipeline.execute(record)

        assert not result.success
        assert result.failed_step == "B"
        assert result.error_message == "Pipeline stopped at step: B"
        assert "C" not in result.step_results
        assert record.error_message == "B failed"
        assert record.processed_steps == ["A", "B"]

    def test_continue_on_error(self, make_record):
        """Test every step runs when stop-on-error is off"""
        record = make_record()
        pipeline = (
            EnrichmentPipeline()
            .stop_on_error(False)
            .add_step(RecordingStep("A", fail=True))
            .add_step(RecordingStep("B", fail=True))
            .add_step(RecordingStep("C"))
        )

        result = pipeline.execute(record)

        assert not result.success
        assert result.failed_steps == ["A", "B"]
        assert result.failed_step is None
        assert result.error_message is None
        assert record.error_message == "A failed"
        assert record.extras["trail"] == ["A", "B", "C"]

    def test_unexpected_error_contained(self, make_record):
        """Test a raising step that does not derive from BaseStep"""
        result = EnrichmentPipeline().add_step(RaisingStep()).execute(make_record())

        assert not result.success
        assert result.step_results["Raising"].message == "Unexpected error: bad input"

    def test_error_message_cleared_between_runs(self, make_record):
        """Test a rerun starts without the previous run's error"""
        record = make_record(error_message="stale")

        EnrichmentPipeline().add_step(RecordingStep("A")).execute(record)

        assert record.error_message is None


@pytest.mark.unit
class TestDefaultPipeline:
    """Test the five-step pipeline against reference data"""

    @pytest.fixture
    def pipeline(self, store, config):
        rules = (
            RuleConfigBuilder()
            .add_rule("MAP-0001", 'd_c equals "C" AND payment_description contains "INVOICE"',
                      "PAYMENT_CUSTOMER", priority=10, counterparty_id="CPT-0001")
            .build()
        )
        return build_default_pipeline(store, config, rules=InMemoryRuleRepository(rules))

    def test_step_order(self, pipeline):
        """Test the standard step order"""
        assert [step.name for step in pipeline.steps] == [
            "CurrencyValidation",
            "FxConversion",
            "CustomerIdentification",
            "CounterpartyDetermination",
            "Classification",
        ]

    def test_full_enrichment(self, pipeline, make_record):
        """Test a clean bank payment passes every step"""
        record = make_record()

        result = pipeline.execute(record)

        assert result.success
        assert record.processed_steps == [step.name for step in pipeline.steps]
        assert record.classification.internal_type == "PAYMENT_CUSTOMER"
        assert record.counterparty.counterparty_id == "CPT-0001"
        assert record.customer.customer_id == "CUST-001"

    def test_invalid_currency_halts(self, pipeline, make_record):
        """Test later steps do not run after a currency failure"""
        record = make_record(currency="XXX")

        result = pipeline.execute(record)

        assert result.failed_step == "CurrencyValidation"
        assert record.classification is None
        assert record.processed_steps == ["CurrencyValidation"]

    def test_rerun_is_idempotent(self, pipeline, make_record):
        """Test running the same record twice gives the same outcome"""
        record = make_record(currency="USD", customer_ref=None, other_side_name="ACME")

        first = pipeline.execute(record)
        after_first = record.snapshot()
        second = pipeline.execute(record)

        assert first.outcome() == second.outcome()
        assert record.snapshot() == after_first

    def test_batch_counts(self, pipeline, make_record):
        """Test batch aggregation over successes and failures"""
        records = [make_record(), make_record(currency="XXX"), make_record(currency="USD")]

        batch = pipeline.execute_batch(records)

        assert (batch.total, batch.success_count, batch.failure_count) == (3, 2, 1)
        assert not batch.get(records[1].transaction_id).success
        assert batch.ended_at is not None
