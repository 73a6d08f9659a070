"""
ledger-enrich: staged enrichment of bank and securities transactions.
"""

__version__ = "1.0.0"
