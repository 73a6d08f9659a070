"""
Reference data lookups used by the enrichment steps.
"""

from .base import CounterpartyLookup, CurrencyLookup, CustomerLookup, FxRate, FxRateLookup
from .counterparty import RowStoreCounterpartyLookup
from .currency import RowStoreCurrencyLookup
from .customer import RowStoreCustomerLookup
from .fx_rates import RowStoreFxRateLookup

__all__ = [
    "CounterpartyLookup",
    "CurrencyLookup",
    "CustomerLookup",
    "FxRate",
    "FxRateLookup",
    "RowStoreCounterpartyLookup",
    "RowStoreCurrencyLookup",
    "RowStoreCustomerLookup",
    "RowStoreFxRateLookup",
]
