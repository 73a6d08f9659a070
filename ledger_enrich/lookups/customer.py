"""
Customer master lookup over the row store.

Identification methods are tried in order of confidence:

1. DIRECT_ID (100): the customer id carried on the transaction, either a
   customer row id or a registration / personal / tax id.
2. ACCOUNT_NUMBER (95): the transaction account number in customer_account.
3. REGISTRATION_NUMBER_EXTRACTED (90): a "REG:" style token found in the
   reference or description.
4. NAME_PATTERN (70): the other side name (bank) or a "FOR:" style name in
   the description (securities) against customer name and short name.
"""

import re
from typing import Any

from ledger_enrich.config import EnrichmentConfig
from ledger_enrich.core.models import CustomerMatch, WorkingRecord
from ledger_enrich.lookups.base import is_active, text
from ledger_enrich.observability.logger import get_logger

logger = get_logger(__name__)

CONFIDENCE_DIRECT_ID = 100
CONFIDENCE_ACCOUNT_NUMBER = 95
CONFIDENCE_REGISTRATION_NUMBER = 90
CONFIDENCE_NAME_MATCH = 70

_CUSTOMER_ID_PATTERN = re.compile(r"^[A-Z]+-\d+$")
_REGISTRATION_MARKERS = ("REGISTRATION:", "REGNUM:", "REG:", "REG-")
_NAME_MARKERS = ("FOR:", "CLIENT:", "CUSTOMER:", "ACCOUNT:")
_ID_FIELDS = ("registrationNumber", "personalId", "tax_id")

# Partial name matches must cover this share of the longer name
_MIN_NAME_OVERLAP = 0.7
_MIN_NAME_LENGTH = 5


def extract_registration_number(*texts: str | None) -> str | None:
    """First token following a registration marker in any of the texts."""
    for value in texts:
        if not value or not value.strip():
            continue
        upper = value.upper()
        for marker in _REGISTRATION_MARKERS:
            index = upper.find(marker)
            if index >= 0:
                token = value[index + len(marker):].strip().split(" ", 1)[0]
                if token:
                    return token
    return None


def extract_name(description: str | None) -> str | None:
    """Name following a "FOR:" style marker, cut at the next comma or semicolon."""
    if not description or not description.strip():
        return None
    upper = description.upper()
    for marker in _NAME_MARKERS:
        index = upper.find(marker)
        if index >= 0:
            name = re.split(r"[,;]", description[index + len(marker):], maxsplit=1)[0]
            return name.strip() or None
    return None


def is_reasonable_match(search: str, candidate: str) -> bool:
    """Substring match that covers at least 70% of the longer name."""
    if len(search) < _MIN_NAME_LENGTH or len(candidate) < _MIN_NAME_LENGTH:
        return False
    if candidate in search:
        overlap = len(candidate)
    elif search in candidate:
        overlap = len(search)
    else:
        return False
    return overlap / max(len(search), len(candidate)) >= _MIN_NAME_OVERLAP


class RowStoreCustomerLookup:
    """Identifies customers from the customer and customer_account collections."""

    def __init__(self, store, config: EnrichmentConfig | None = None):
        collections = (config or EnrichmentConfig()).collections
        self.store = store
        self.customers = collections.customers
        self.accounts = collections.customer_accounts

    def identify(self, record: WorkingRecord) -> CustomerMatch | None:
        methods = (
            (self._by_direct_id, CONFIDENCE_DIRECT_ID, "DIRECT_ID"),
            (self._by_account_number, CONFIDENCE_ACCOUNT_NUMBER, "ACCOUNT_NUMBER"),
            (self._by_registration_number, CONFIDENCE_REGISTRATION_NUMBER, "REGISTRATION_NUMBER_EXTRACTED"),
            (self._by_name, CONFIDENCE_NAME_MATCH, "NAME_PATTERN"),
        )
        for method, confidence, label in methods:
            row = method(record)
            if row is not None:
                logger.debug(f"Transaction {record.transaction_id}: customer {row['id']} found by {label}")
                return CustomerMatch(
                    customer_id=row["id"],
                    name=text(row.get("name")),
                    customer_code=text(row.get("customer_code")),
                    customer_type=text(row.get("customer_type")),
                    confidence=confidence,
                    method=label,
                    active=is_active(row),
                )
        return None

    def _by_identifier(self, value: str) -> dict[str, Any] | None:
        for row in self.store.find(self.customers):
            if any(text(row.get(name)) == value for name in _ID_FIELDS):
                return row
        return None

    def _by_direct_id(self, record: WorkingRecord) -> dict[str, Any] | None:
        value = text(record.customer_ref)
        if value is None:
            return None
        if value.startswith("CUST-") or _CUSTOMER_ID_PATTERN.match(value):
            return self.store.get(self.customers, value)
        return self._by_identifier(value)

    def _by_account_number(self, record: WorkingRecord) -> dict[str, Any] | None:
        if not record.is_bank:
            return None
        account = text(record.account_number)
        if account is None:
            return None
        for row in self.store.find(self.accounts, {"account_number": account}):
            customer_id = text(row.get("customer_id"))
            if customer_id and is_active(row):
                return self.store.get(self.customers, customer_id)
        return None

    def _by_registration_number(self, record: WorkingRecord) -> dict[str, Any] | None:
        value = extract_registration_number(record.reference, record.description)
        return self._by_identifier(value) if value else None

    def _by_name(self, record: WorkingRecord) -> dict[str, Any] | None:
        name = record.other_side_name if record.is_bank else extract_name(record.description)
        search = (text(name) or "").upper()
        if not search:
            return None

        rows = self.store.find(self.customers)
        for row in rows:
            names = (text(row.get("name")), text(row.get("short_name")))
            if any(n is not None and n.upper() == search for n in names):
                return row
        for row in rows:
            candidate = (text(row.get("name")) or "").upper()
            if candidate and is_reasonable_match(search, candidate):
                return row
        return None
