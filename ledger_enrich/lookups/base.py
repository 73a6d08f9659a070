"""
Lookup service interfaces.

Steps only depend on these protocols. The row-store implementations in this
package read the reference collections named in EnrichmentConfig.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Protocol

from pydantic import BaseModel, Field

from ledger_enrich.core.models import CounterpartyInfo, CurrencyInfo, CustomerMatch, WorkingRecord

ACTIVE_STATUSES = frozenset({"active", "true", "1", "yes", "y"})


def is_active(row: dict[str, Any], *keys: str) -> bool:
    """True when the first present status-like key of a reference row says active."""
    for key in keys or ("status",):
        value = row.get(key)
        if value is None:
            continue
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ACTIVE_STATUSES
    return False


def text(value: Any) -> str | None:
    """Stripped string form of a row value, None when blank."""
    if value is None:
        return None
    value = str(value).strip()
    return value or None


class FxRate(BaseModel):
    """
    Rate that converts one unit of a currency into the base currency.

    Attributes:
        currency: Transaction currency
        rate: Multiplier (currency -> base currency)
        rate_date: Effective date of the rate
        source: Import source of the rate (e.g. ECB)
        age_days: Days between the rate date and the requested date
    """

    currency: str
    rate: Decimal = Field(..., gt=0)
    rate_date: date
    source: str = "manual"
    age_days: int = Field(0, ge=0)


class CurrencyLookup(Protocol):
    def find_currency(self, code: str) -> CurrencyInfo | None:
        """Active currency master entry for a code, None when unknown or inactive."""
        ...


class FxRateLookup(Protocol):
    def find_rate(self, currency: str, on_date: date, max_age_days: int) -> FxRate | None:
        """Rate effective on ``on_date``, or the most recent one at most ``max_age_days`` older."""
        ...


class CounterpartyLookup(Protocol):
    def find_by_bic(self, bic: str) -> CounterpartyInfo | None:
        """Active counterparty whose bank, custodian or broker id is the BIC."""
        ...


class CustomerLookup(Protocol):
    def identify(self, record: WorkingRecord) -> CustomerMatch | None:
        """Best customer match for a transaction, None when nobody matches."""
        ...
