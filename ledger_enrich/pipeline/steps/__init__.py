"""
Enrichment step implementations, in pipeline order.
"""

from .classification import ClassificationStep
from .counterparty_determination import CounterpartyDeterminationStep
from .currency_validation import CurrencyValidationStep
from .customer_identification import CustomerIdentificationStep
from .fx_conversion import FxConversionStep

__all__ = [
    "CurrencyValidationStep",
    "FxConversionStep",
    "CustomerIdentificationStep",
    "CounterpartyDeterminationStep",
    "ClassificationStep",
]
