"""
CounterpartyDeterminationStep - resolves the counterparty from the statement bank.
"""

from ledger_enrich.config import EnrichmentConfig
from ledger_enrich.core.models import CounterpartyInfo, StepResult, WorkingRecord
from ledger_enrich.lookups import CounterpartyLookup
from ledger_enrich.observability.logger import get_logger
from ledger_enrich.pipeline.step import BaseStep

logger = get_logger(__name__)

_TRADING_TYPES = ("BUY", "SELL", "TRADE")


def securities_counterparty_type(trade_type: str | None) -> str:
    """Broker for trading activity, Custodian for everything else."""
    if trade_type and any(t in trade_type.upper() for t in _TRADING_TYPES):
        return "Broker"
    return "Custodian"


class CounterpartyDeterminationStep(BaseStep):
    """
    The counterparty of every transaction is the bank that issued its
    statement, looked up by BIC.

    For bank transactions the other side of the payment is kept in
    ``extras`` for reference. An unknown BIC yields the UNKNOWN counterparty
    and a COUNTERPARTY_NOT_FOUND exception; the step still succeeds.
    """

    def __init__(
        self,
        counterparties: CounterpartyLookup,
        config: EnrichmentConfig | None = None,
        exceptions=None,
        audit=None,
    ):
        super().__init__(config, exceptions, audit)
        self.counterparties = counterparties

    @property
    def name(self) -> str:
        return "CounterpartyDetermination"

    def should_execute(self, record: WorkingRecord) -> bool:
        return record.error_message is None

    def perform_step(self, record: WorkingRecord) -> StepResult:
        bic = (record.bank_bic or "").strip() or None

        if record.is_bank:
            counterparty_type = "Bank"
            if record.other_side_bic:
                record.extras["other_side_bic"] = record.other_side_bic
                record.extras["other_side_name"] = record.other_side_name
        else:
            counterparty_type = securities_counterparty_type(record.trade_type)

        found = self.counterparties.find_by_bic(bic) if bic else None

        if found is None:
            unknown = self.config.unknown
            logger.warning(f"Counterparty not found for transaction: {record.transaction_id}")
            self.raise_exception(
                record, "COUNTERPARTY_NOT_FOUND",
                f"Could not determine counterparty. Statement Bank: {bic}",
            )
            record.counterparty = CounterpartyInfo(
                counterparty_id=unknown,
                name="Unknown Counterparty",
                bic=bic or unknown,
                counterparty_type="Unknown",
            )
            return StepResult.ok(
                f"Counterparty not found - exception created, continuing with {unknown}",
                counterparty_id=unknown,
            )

        record.counterparty = found.model_copy(
            update={"bic": bic, "counterparty_type": counterparty_type}
        )
        record.processing_status = "counterparty_determined"
        self.write_audit(
            record, "COUNTERPARTY_DETERMINED",
            f"Counterparty identified: {found.counterparty_id} "
            f"(Type: {counterparty_type}, BIC: {bic})",
        )
        return StepResult.ok(
            f"Counterparty determined: {found.counterparty_id}",
            counterparty_id=found.counterparty_id,
            counterparty_type=counterparty_type,
        )
