"""
Counterparty master lookup over the row store.
"""

from ledger_enrich.config import EnrichmentConfig
from ledger_enrich.core.models import CounterpartyInfo
from ledger_enrich.lookups.base import is_active, text
from ledger_enrich.observability.logger import get_logger

logger = get_logger(__name__)

# Counterparty type -> row field holding its BIC
_BIC_FIELDS = {
    "Bank": "bankId",
    "Custodian": "custodianId",
    "Broker": "brokerId",
}


class RowStoreCounterpartyLookup:
    """
    Resolves a statement bank BIC to a counterparty.

    The BIC is compared against the id field that matches the row's
    counterpartyType (bankId, custodianId or brokerId). Rows without a type
    are matched on any of the three.
    """

    def __init__(self, store, config: EnrichmentConfig | None = None):
        self.store = store
        self.collection = (config or EnrichmentConfig()).collections.counterparties

    def find_by_bic(self, bic: str) -> CounterpartyInfo | None:
        bic = bic.strip()
        for row in self.store.find(self.collection):
            if not is_active(row, "status", "isActive"):
                continue
            counterparty_type = text(row.get("counterpartyType"))
            if counterparty_type in _BIC_FIELDS:
                fields = [_BIC_FIELDS[counterparty_type]]
            else:
                fields = list(_BIC_FIELDS.values())
            if any(text(row.get(name)) == bic for name in fields):
                counterparty_id = text(row.get("counterpartyId")) or row["id"]
                logger.debug(f"BIC {bic} resolved to counterparty {counterparty_id}")
                return CounterpartyInfo(
                    counterparty_id=counterparty_id,
                    name=text(row.get("counterpartyName")) or text(row.get("name")),
                    bic=bic,
                    counterparty_type=counterparty_type,
                )

        logger.warning(f"No counterparty found for BIC: {bic}")
        return None
