"""
Command-line interface for enrichment runs.

Usage:
    ledger-enrich run [--limit N] [--rules <rules.yaml>] [options]
    ledger-enrich import-rules --rule-file <rules.yaml> [options]
    ledger-enrich audit-summary [options]
"""

import argparse
import json
import sys

from dotenv import load_dotenv

from ledger_enrich.batch import EnrichmentJob
from ledger_enrich.config import EnrichmentConfig
from ledger_enrich.core.errors import EnrichmentError
from ledger_enrich.core.rules import InMemoryRuleRepository, RowStoreRuleRepository, RuleConfigLoader
from ledger_enrich.observability.logger import get_logger
from ledger_enrich.observability.metrics import start_metrics_server
from ledger_enrich.utils.validation import ValidationError, validate_file_path
from ledger_enrich.warehouse import PostgresRowStore, get_audit_summary
from ledger_enrich.warehouse.connection import DatabaseConnectionPool

logger = get_logger(__name__)


def create_pool(args) -> DatabaseConnectionPool:
    """Open a connection pool from CLI arguments (unset ones fall back to DB_* env vars)."""
    pool = DatabaseConnectionPool(
        host=args.db_host,
        port=args.db_port,
        database=args.db_name,
        user=args.db_user,
        password=args.db_password,
    )
    pool.open()
    return pool


def load_rule_file(path: str):
    rule_file = validate_file_path(path, "rule_file")
    rules = RuleConfigLoader(rule_file).load_rules()
    logger.info(f"Loaded {len(rules)} rules from {rule_file}")
    return rules


def run_command(args) -> int:
    """
    Execute an enrichment run over all new statements.

    Args:
        args: Command-line arguments
    """
    config = EnrichmentConfig.from_env()
    if args.no_stop_on_error:
        config = config.model_copy(update={"stop_on_error": False})
    if args.mark_failed:
        config = config.model_copy(update={"mark_failed_transactions": True})

    if args.metrics_port:
        start_metrics_server(args.metrics_port)
        logger.info(f"Serving metrics on port {args.metrics_port}")

    rules = None
    if args.rules:
        rules = InMemoryRuleRepository(load_rule_file(args.rules), config.wildcard_counterparty)

    pool = create_pool(args)
    try:
        store = PostgresRowStore(pool)
        job = EnrichmentJob.from_store(store, config, rules=rules)
        summary = job.run(limit=args.limit)
    finally:
        pool.close()

    if args.json:
        print(json.dumps(summary, indent=2))
    return 0


def import_rules_command(args) -> int:
    """
    Load a YAML rule file into the mapping collection.

    Args:
        args: Command-line arguments
    """
    config = EnrichmentConfig.from_env()
    rules = load_rule_file(args.rule_file)

    pool = create_pool(args)
    try:
        repository = RowStoreRuleRepository(PostgresRowStore(pool), config)
        count = repository.save_all(rules)
    finally:
        pool.close()

    logger.info(f"Imported {count} rules into {config.collections.rules}")
    return 0


def audit_summary_command(args) -> int:
    """Print action counts from the audit trail."""
    config = EnrichmentConfig.from_env()
    pool = create_pool(args)
    try:
        summary = get_audit_summary(PostgresRowStore(pool), config)
    finally:
        pool.close()

    print(json.dumps(summary, indent=2))
    return 0


def add_db_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--db-host", default=None, help="Database host (default: $DB_HOST)")
    parser.add_argument("--db-port", type=int, default=None, help="Database port (default: $DB_PORT)")
    parser.add_argument("--db-name", default=None, help="Database name (default: $DB_NAME)")
    parser.add_argument("--db-user", default=None, help="Database user (default: $DB_USER)")
    parser.add_argument("--db-password", default=None, help="Database password (default: $DB_PASSWORD)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ledger-enrich",
        description="Transaction enrichment pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Enrich every new statement
  ledger-enrich run

  # Enrich at most 10 statements, classifying with a local rule file
  ledger-enrich run --limit 10 --rules config/classification_rules.yaml

  # Store a rule file in the database
  ledger-enrich import-rules --rule-file config/classification_rules.yaml
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Enrich new statements")
    run_parser.add_argument("--limit", type=int, default=None, help="Maximum statements to claim")
    run_parser.add_argument("--rules", default=None, help="YAML rule file (default: stored rules)")
    run_parser.add_argument(
        "--no-stop-on-error",
        action="store_true",
        help="Run every step even after one fails",
    )
    run_parser.add_argument(
        "--mark-failed",
        action="store_true",
        help="Mark transactions whose pipeline fails as failed",
    )
    run_parser.add_argument("--metrics-port", type=int, default=None, help="Expose Prometheus metrics")
    run_parser.add_argument("--json", action="store_true", help="Print the run summary as JSON")
    add_db_arguments(run_parser)

    import_parser = subparsers.add_parser("import-rules", help="Import classification rules")
    import_parser.add_argument("--rule-file", required=True, help="YAML rule file")
    add_db_arguments(import_parser)

    audit_parser = subparsers.add_parser("audit-summary", help="Show audit trail statistics")
    add_db_arguments(audit_parser)

    return parser


COMMANDS = {
    "run": run_command,
    "import-rules": import_rules_command,
    "audit-summary": audit_summary_command,
}


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return COMMANDS[args.command](args)
    except (EnrichmentError, ValidationError, FileNotFoundError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    except Exception as e:
        logger.error(f"Unexpected error during {args.command}: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
