"""
Pytest configuration and fixtures for ledger-enrich tests

This module provides shared fixtures for unit, integration, and E2E tests.
"""
import os
from datetime import date
from decimal import Decimal
from typing import Generator

import pytest

from ledger_enrich.config import EnrichmentConfig
from ledger_enrich.core.models import SourceType, WorkingRecord
from ledger_enrich.warehouse.row_store import InMemoryRowStore


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Docker containers"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests that run the full enrichment job"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def postgres_container():
    """
    Start PostgreSQL container for integration tests

    Yields:
        PostgresContainer instance
    """
    from testcontainers.postgres import PostgresContainer

    with PostgresContainer(
        image="postgres:16.2-alpine",
        username="test_enrich",
        password="test_password",
        dbname="test_ledger",
    ) as postgres:
        # Wait for container to be ready
        postgres.get_connection_url()
        yield postgres


@pytest.fixture(scope="function")
def db_pool(postgres_container):
    """
    Open connection pool against the test container

    Yields:
        DatabaseConnectionPool (closed after the test)
    """
    from ledger_enrich.warehouse.connection import DatabaseConnectionPool

    pool = DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_ledger",
        user="test_enrich",
        password="test_password",
    )
    pool.open()
    yield pool
    pool.close()


@pytest.fixture(scope="function")
def pg_store(db_pool):
    """
    PostgresRowStore over a clean schema

    Drops every table in the public schema before the test.
    """
    from ledger_enrich.warehouse.row_store import PostgresRowStore

    tables = db_pool.execute_query(
        "SELECT tablename FROM pg_tables WHERE schemaname = 'public'"
    )
    for row in tables:
        db_pool.execute_command(f'DROP TABLE IF EXISTS "{row["tablename"]}" CASCADE')
    return PostgresRowStore(db_pool)


# =======================
# CONFIGURATION FIXTURES
# =======================

@pytest.fixture
def config() -> EnrichmentConfig:
    return EnrichmentConfig()


@pytest.fixture
def test_env_vars(monkeypatch):
    """
    Set test environment variables

    Loads config/test.env for the duration of one test
    """
    from dotenv import dotenv_values

    env_path = os.path.join(
        os.path.dirname(os.path.dirname(__file__)),
        "config",
        "test.env"
    )

    values = dotenv_values(env_path)
    for name, value in values.items():
        if value is not None:
            monkeypatch.setenv(name, value)
    return values


# =======================
# DATA FIXTURES
# =======================

REFERENCE_DATA = {
    "currency": [
        {"id": "CUR-EUR", "code": "EUR", "name": "Euro", "decimal_places": 2, "symbol": "€", "status": "active"},
        {"id": "CUR-USD", "code": "USD", "name": "US Dollar", "decimal_places": 2, "symbol": "$", "status": "active"},
        {"id": "CUR-GBP", "code": "GBP", "name": "Pound Sterling", "decimal_places": 2, "symbol": "£", "status": "inactive"},
    ],
    "fx_rates_eur": [
        {"id": "FX-USD-1117", "targetCurrency": "USD", "effectiveDate": "2025-11-17",
         "exchangeRate": "1.25", "importSource": "ECB", "rateType": "spot", "status": "active"},
        {"id": "FX-USD-1112", "targetCurrency": "USD", "effectiveDate": "2025-11-12",
         "exchangeRate": "1.20", "importSource": "ECB", "rateType": "spot", "status": "active"},
        {"id": "FX-SEK-1101", "targetCurrency": "SEK", "effectiveDate": "2025-11-01",
         "midRate": "11.50", "importSource": "ECB", "status": "Active"},
    ],
    "counterparty_master": [
        {"id": "CP-1", "counterpartyId": "CPT-0001", "counterpartyType": "Bank",
         "bankId": "HABAEE2X", "counterpartyName": "Swedbank", "status": "active"},
        {"id": "CP-2", "counterpartyId": "CPT-0002", "counterpartyType": "Custodian",
         "custodianId": "LHVBEE22", "counterpartyName": "LHV Pank", "status": "active"},
        {"id": "CP-3", "counterpartyId": "CPT-0003", "counterpartyType": "Bank",
         "bankId": "CLOSEDXX", "counterpartyName": "Closed Bank", "status": "inactive"},
    ],
    "customer": [
        {"id": "CUST-001", "name": "Acme Trading OU", "short_name": "ACME", "customer_code": "C001",
         "customer_type": "company", "registrationNumber": "12345678", "status": "active"},
        {"id": "CUST-002", "name": "Baltic Ventures AS", "customer_code": "C002",
         "customer_type": "company", "registrationNumber": "87654321", "status": "inactive"},
        {"id": "CUST-003", "name": "Mari Tamm", "customer_code": "C003",
         "customer_type": "individual", "personalId": "49001010000", "status": "active"},
    ],
    "customer_account": [
        {"id": "CA-1", "account_number": "EE382200221020145685", "customer_id": "CUST-003", "status": "active"},
        {"id": "CA-2", "account_number": "EE000000000000000001", "customer_id": "CUST-001", "status": "closed"},
    ],
}


@pytest.fixture
def store() -> InMemoryRowStore:
    """In-memory row store seeded with currency, FX, counterparty and customer reference data"""
    return InMemoryRowStore(REFERENCE_DATA)


@pytest.fixture
def seeded_pg_store(pg_store):
    """PostgresRowStore holding the same reference data as the in-memory store"""
    for collection, rows in REFERENCE_DATA.items():
        for row in rows:
            pg_store.upsert(collection, row["id"], row)
    return pg_store


@pytest.fixture
def make_record():
    """
    Factory for WorkingRecords

    Defaults describe a 500.00 EUR incoming bank payment on statement ST-1.
    """
    counter = {"n": 0}

    def _make(**overrides) -> WorkingRecord:
        counter["n"] += 1
        values = {
            "transaction_id": f"BTX-{counter['n']:04d}",
            "statement_id": "ST-1",
            "source_type": SourceType.BANK,
            "source_table": "bank_total_trx",
            "currency": "EUR",
            "amount": Decimal("500.00"),
            "transaction_date": date(2025, 11, 17),
            "bank_bic": "HABAEE2X",
            "debit_credit": "C",
            "payment_description": "INVOICE 2025-118",
            "description": "INVOICE 2025-118",
            "customer_ref": "CUST-001",
        }
        values.update(overrides)
        return WorkingRecord(**values)

    return _make


@pytest.fixture
def seed_statement():
    """
    Factory that writes a statement and its transactions into a store

    Transactions are bank_total_trx / secu_total_trx style rows; each gets
    statement_id and status "new" unless given.
    """

    def _seed(store, statement_id="ST-1", account_type="bank", bank="HABAEE2X",
              from_date="2025-11-01", status="new", transactions=()):
        store.upsert("bank_statement", statement_id, {
            "account_type": account_type,
            "bank": bank,
            "from_date": from_date,
            "status": status,
        })
        collection = "bank_total_trx" if account_type == "bank" else "secu_total_trx"
        for trx in transactions:
            row = {"statement_id": statement_id, "status": "new", **trx}
            store.upsert(collection, row.pop("id"), row)

    return _seed


# =======================
# FILE FIXTURES
# =======================

@pytest.fixture(scope="function")
def rules_file(tmp_path) -> Generator[str, None, None]:
    """YAML rule file with a counterparty rule, a wildcard rule and a securities rule"""
    path = tmp_path / "classification_rules.yaml"
    path.write_text(
        """
defaults:
  source_type: bank
  case_sensitive: false

rules:
  - id: MAP-0001
    name: Customer payment
    counterparty_id: CPT-0001
    priority: 10
    condition: 'd_c equals "C" AND payment_description contains "invoice"'
    internal_type: PAYMENT_CUSTOMER

  - id: MAP-0900
    name: Bank fee
    counterparty_id: SYSTEM
    priority: 900
    field: payment_description
    operator: startswith
    value: FEE
    internal_type: BANK_FEE

  - id: MAP-0100
    name: Securities buy
    source_type: secu
    counterparty_id: SYSTEM
    field: type
    operator: in
    value: BUY,SELL
    internal_type: SEC_TRADE
"""
    )
    yield str(path)
