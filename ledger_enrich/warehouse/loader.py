"""
Transaction loader: turns new statements into WorkingRecords.

Statements in state ``new`` are taken in from_date order, moved to
``processing``, and their ``new`` transactions are read from the bank or
securities collection in date order.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

from pydantic import BaseModel, Field
from pydantic import ValidationError as ModelValidationError

from ledger_enrich.config import EnrichmentConfig
from ledger_enrich.core.models import SourceType, Statement, WorkingRecord
from ledger_enrich.core.models.results import utc_now
from ledger_enrich.observability.logger import get_logger

logger = get_logger(__name__)


def parse_decimal(value: Any) -> Decimal | None:
    """Decimal from a row value; blank or unparseable values give None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    raw = str(value).strip().replace(",", "")
    if not raw:
        return None
    try:
        parsed = Decimal(raw)
    except InvalidOperation:
        return None
    return parsed if parsed.is_finite() else None


def parse_date(value: Any) -> date | None:
    """Date from an ISO date or datetime string; None when absent or invalid."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = str(value).strip()
    try:
        return date.fromisoformat(raw[:10]) if raw else None
    except ValueError:
        return None


def _text(value: Any) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


class LoadResult(BaseModel):
    """Statements handed over to a run and their transactions, in processing order."""

    statements: list[Statement] = Field(default_factory=list)
    records: list[WorkingRecord] = Field(default_factory=list)
    skipped_statements: list[str] = Field(default_factory=list)

    @property
    def statement_ids(self) -> list[str]:
        return [statement.statement_id for statement in self.statements]


class TransactionLoader:
    """Row-store loader for bank and securities statements."""

    def __init__(
        self,
        store,
        config: EnrichmentConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize loader.

        Args:
            store: RowStore holding statements and transactions
            config: Run configuration (collection names, status literals)
            clock: Source of the processing_started timestamp
        """
        self.store = store
        self.config = config or EnrichmentConfig()
        self.collections = self.config.collections
        self.clock = clock

    def load(self, limit: int | None = None) -> LoadResult:
        """
        Claim new statements and load their new transactions.

        Args:
            limit: Maximum number of statements to claim

        Returns:
            LoadResult with records in statement order, then date order
        """
        result = LoadResult()
        rows = self.store.find(
            self.collections.statements,
            {"status": self.config.statement_new},
            order_by="from_date",
        )
        if limit is not None:
            rows = rows[:limit]

        for row in rows:
            try:
                statement = Statement.from_row(row)
            except ModelValidationError as e:
                logger.error(f"Skipping malformed statement {row.get('id')}: {e}")
                result.skipped_statements.append(str(row.get("id")))
                continue

            # Transactions are read before the claim so a statement that cannot
            # be loaded stays new instead of stuck in processing.
            try:
                records = self.load_statement(statement)
                self.store.update(
                    self.collections.statements,
                    statement.statement_id,
                    {"status": self.config.statement_processing, "processing_started": self.clock()},
                )
            except Exception as e:
                logger.error(f"Skipping statement {statement.statement_id}: {e}", exc_info=True)
                result.skipped_statements.append(statement.statement_id)
                continue

            result.statements.append(statement)
            result.records.extend(records)
            logger.info(
                f"Statement {statement.statement_id} ({statement.account_type.value}, "
                f"bank {statement.bank}): {len(records)} new transactions"
            )

        logger.info(
            f"Loaded {len(result.records)} transactions from {len(result.statements)} statements"
        )
        return result

    def load_statement(self, statement: Statement) -> list[WorkingRecord]:
        """New transactions of one statement as WorkingRecords."""
        if statement.account_type == SourceType.BANK:
            collection, order_by = self.collections.bank_transactions, "payment_date"
            build = self.bank_record
        else:
            collection, order_by = self.collections.secu_transactions, "transaction_date"
            build = self.securities_record

        rows = self.store.find(
            collection,
            {"statement_id": statement.statement_id, "status": self.config.transaction_new},
            order_by=order_by,
        )
        return [build(row, statement, collection) for row in rows]

    @staticmethod
    def bank_record(row: dict[str, Any], statement: Statement, collection: str) -> WorkingRecord:
        payment_date = parse_date(row.get("payment_date"))
        return WorkingRecord(
            transaction_id=row["id"],
            statement_id=statement.statement_id,
            source_type=SourceType.BANK,
            source_table=collection,
            currency=_text(row.get("currency")),
            amount=parse_decimal(row.get("payment_amount")),
            transaction_date=payment_date,
            bank_bic=statement.bank,
            description=_text(row.get("payment_description")),
            reference=_text(row.get("reference_number")),
            customer_ref=_text(row.get("customer_id")),
            account_number=_text(row.get("account_number")),
            payment_date=payment_date,
            debit_credit=_text(row.get("d_c")),
            other_side_bic=_text(row.get("other_side_bic")),
            other_side_account=_text(row.get("other_side_account")),
            other_side_name=_text(row.get("other_side_name")),
            payment_description=_text(row.get("payment_description")),
            raw=row,
        )

    @staticmethod
    def securities_record(row: dict[str, Any], statement: Statement, collection: str) -> WorkingRecord:
        return WorkingRecord(
            transaction_id=row["id"],
            statement_id=statement.statement_id,
            source_type=SourceType.SECURITIES,
            source_table=collection,
            currency=_text(row.get("currency")),
            amount=parse_decimal(row.get("total_amount")),
            transaction_date=parse_date(row.get("transaction_date")),
            bank_bic=statement.bank,
            description=_text(row.get("description")),
            reference=_text(row.get("reference")),
            customer_ref=_text(row.get("customer_id")),
            trade_type=_text(row.get("type")),
            ticker=_text(row.get("ticker")),
            quantity=parse_decimal(row.get("quantity")),
            price=parse_decimal(row.get("price")),
            fee=parse_decimal(row.get("fee")),
            raw=row,
        )
