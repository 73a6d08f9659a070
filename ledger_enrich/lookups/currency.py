"""
Currency master lookup over the row store.
"""

from ledger_enrich.config import EnrichmentConfig
from ledger_enrich.core.models import CurrencyInfo
from ledger_enrich.lookups.base import is_active, text
from ledger_enrich.observability.logger import get_logger

logger = get_logger(__name__)


class RowStoreCurrencyLookup:
    """Reads currency rows (code, name, decimal_places, symbol, status)."""

    def __init__(self, store, config: EnrichmentConfig | None = None):
        self.store = store
        self.collection = (config or EnrichmentConfig()).collections.currencies

    def find_currency(self, code: str) -> CurrencyInfo | None:
        code = code.strip().upper()
        for row in self.store.find(self.collection, {"code": code}):
            if not is_active(row):
                logger.warning(f"Currency {code} exists but is not active")
                return None
            decimal_places = row.get("decimal_places")
            return CurrencyInfo(
                code=code,
                name=text(row.get("name")),
                decimal_places=int(decimal_places) if decimal_places not in (None, "") else 2,
                symbol=text(row.get("symbol")),
            )
        return None
