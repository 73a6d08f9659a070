"""
FX rate lookup over the row store.

Rate rows are quoted from the base currency (EUR -> XXX), keyed by
``targetCurrency`` and ``effectiveDate``. The lookup inverts them so that
``amount * rate`` gives the base-currency amount.
"""

from datetime import date
from decimal import Decimal, InvalidOperation

from ledger_enrich.config import EnrichmentConfig
from ledger_enrich.lookups.base import FxRate, is_active, text
from ledger_enrich.observability.logger import get_logger

logger = get_logger(__name__)

RATE_PRECISION = Decimal("0.0000000001")


def _quoted_rate(row: dict) -> Decimal | None:
    for key in ("exchangeRate", "midRate"):
        raw = row.get(key)
        if raw in (None, ""):
            continue
        try:
            value = Decimal(str(raw).strip())
        except InvalidOperation:
            continue
        if value.is_finite() and value > 0:
            return value
    return None


def _rate_date(row: dict) -> date | None:
    raw = text(row.get("effectiveDate"))
    if raw is None:
        return None
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        return None


class RowStoreFxRateLookup:
    """Finds the rate for a currency on a date, falling back to recent rates."""

    def __init__(self, store, config: EnrichmentConfig | None = None):
        self.store = store
        self.collection = (config or EnrichmentConfig()).collections.fx_rates

    def find_rate(self, currency: str, on_date: date, max_age_days: int) -> FxRate | None:
        """
        Rate effective on ``on_date`` or the newest one at most ``max_age_days`` older.

        Rows dated after ``on_date``, inactive rows and rows without a usable
        exchangeRate or midRate are ignored.
        """
        currency = currency.strip().upper()
        best: tuple[date, Decimal, dict] | None = None

        for row in self.store.find(self.collection, {"targetCurrency": currency}):
            if not is_active(row):
                continue
            rate_date = _rate_date(row)
            quoted = _quoted_rate(row)
            if rate_date is None or quoted is None:
                continue
            age = (on_date - rate_date).days
            if age < 0 or age > max_age_days:
                continue
            if best is None or rate_date > best[0]:
                best = (rate_date, quoted, row)

        if best is None:
            logger.debug(f"No FX rate for {currency} within {max_age_days} days of {on_date}")
            return None

        rate_date, quoted, row = best
        return FxRate(
            currency=currency,
            rate=(Decimal(1) / quoted).quantize(RATE_PRECISION),
            rate_date=rate_date,
            source=text(row.get("importSource")) or "manual",
            age_days=(on_date - rate_date).days,
        )
