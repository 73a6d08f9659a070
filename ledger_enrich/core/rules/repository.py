"""
Rule repositories: where the classification engine gets candidate rules.
"""

from typing import Any, Iterable, Protocol

from pydantic import ValidationError

from ledger_enrich.config import EnrichmentConfig
from ledger_enrich.core.errors import ConfigurationFault
from ledger_enrich.core.models import ClassificationRule, SourceType
from ledger_enrich.core.rules.expression import build_comparison, compile_condition, render
from ledger_enrich.observability.logger import get_logger
from ledger_enrich.observability.metrics import configuration_faults_total, increment_counter

logger = get_logger(__name__)

ACTIVE_STATUSES = ("active", "Active")


class RuleRepository(Protocol):
    """Supplies candidate rules for a (source type, counterparty) scope."""

    def find_candidates(
        self, source_type: SourceType, counterparty_id: str | None
    ) -> list[ClassificationRule]:
        ...


class InMemoryRuleRepository:
    """Rules held in a list (tests, YAML rule files)."""

    def __init__(self, rules: Iterable[ClassificationRule] = (), wildcard: str = "SYSTEM"):
        self.rules: list[ClassificationRule] = list(rules)
        self.wildcard = wildcard

    def add(self, rule: ClassificationRule) -> "InMemoryRuleRepository":
        self.rules.append(rule)
        return self

    def find_candidates(
        self, source_type: SourceType, counterparty_id: str | None
    ) -> list[ClassificationRule]:
        return [
            rule for rule in self.rules
            if rule.source_type == source_type
            and rule.counterparty_id in (counterparty_id, self.wildcard)
        ]


def _flag(value: Any, default: bool) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "y", "yes", "1")


def condition_from_row(row: dict[str, Any]) -> str:
    """
    Build a condition string from a stored mapping row.

    A row either carries a full ``condition``, a ``complexRuleExpression``
    (with ``matchingField`` set to "combined"), or a single
    ``matchingField``/``matchOperator``/``matchValue`` triple. An optional
    ``arithmeticCondition`` such as "> 100" is ANDed on the amount.

    Raises:
        ConditionSyntaxError: If the stored parts do not form a valid condition
        ConfigurationFault: If the row carries no condition at all
    """
    if row.get("condition"):
        return str(row["condition"])

    field_name = row.get("matchingField")
    if field_name == "combined":
        condition = row.get("complexRuleExpression") or ""
    elif field_name:
        node = build_comparison(field_name, row.get("matchOperator") or "", row.get("matchValue"))
        condition = render(node)
    else:
        condition = ""

    if not condition.strip():
        raise ConfigurationFault(f"Rule {row.get('id')} has no condition")

    arithmetic = (row.get("arithmeticCondition") or "").strip()
    if arithmetic:
        condition = f"({condition}) AND amount {arithmetic}"
    return condition


def rule_from_row(row: dict[str, Any]) -> ClassificationRule:
    """
    Convert a stored mapping row into a ClassificationRule.

    Raises:
        ConfigurationFault: If the row is incomplete or its condition is unparseable
    """
    condition = condition_from_row(row)
    compile_condition(condition)
    raw_priority = row.get("priority")
    try:
        priority = 999 if raw_priority in (None, "") else int(raw_priority)
    except (TypeError, ValueError):
        priority = 999
    try:
        return ClassificationRule(
            rule_id=row["id"],
            name=row.get("mappingName") or row.get("name") or "",
            source_type=row.get("sourceType"),
            counterparty_id=row.get("counterpartyId"),
            active=row.get("status") in ACTIVE_STATUSES,
            priority=priority,
            condition=condition,
            internal_type=row.get("internalType"),
            case_sensitive=_flag(row.get("caseSensitive"), False),
            effective_date=row.get("effectiveDate") or None,
        )
    except (KeyError, ValidationError) as e:
        raise ConfigurationFault(f"Invalid rule row {row.get('id')}: {e}") from e


def rule_to_row(rule: ClassificationRule) -> dict[str, Any]:
    """Stored form of a ClassificationRule."""
    return {
        "id": rule.rule_id,
        "mappingName": rule.name,
        "sourceType": rule.source_type.value,
        "counterpartyId": rule.counterparty_id,
        "status": "active" if rule.active else "inactive",
        "priority": rule.priority,
        "condition": rule.condition,
        "internalType": rule.internal_type,
        "caseSensitive": rule.case_sensitive,
        "effectiveDate": rule.effective_date.isoformat() if rule.effective_date else None,
    }


class RowStoreRuleRepository:
    """
    Rules stored in the row store's mapping collection.

    Rows that cannot be converted are logged and skipped so one bad rule
    never stops classification of the rest.
    """

    def __init__(self, store, config: EnrichmentConfig | None = None):
        """
        Initialize repository.

        Args:
            store: RowStore holding the mapping collection
            config: Run configuration (collection names, wildcard)
        """
        self.store = store
        self.config = config or EnrichmentConfig()
        self.collection = self.config.collections.rules

    def find_candidates(
        self, source_type: SourceType, counterparty_id: str | None
    ) -> list[ClassificationRule]:
        rules = []
        scopes = [self.config.wildcard_counterparty]
        if counterparty_id and counterparty_id != self.config.wildcard_counterparty:
            scopes.insert(0, counterparty_id)

        for scope in scopes:
            rows = self.store.find(
                self.collection,
                {"sourceType": source_type.value, "counterpartyId": scope},
            )
            for row in rows:
                try:
                    rules.append(rule_from_row(row))
                except ConfigurationFault as e:
                    # ConditionSyntaxError is a ConfigurationFault
                    logger.error(f"Skipping stored rule {row.get('id')}: {e}")
                    increment_counter(configuration_faults_total, component="rule_repository")
        return rules

    def save(self, rule: ClassificationRule) -> None:
        self.store.upsert(self.collection, rule.rule_id, rule_to_row(rule))

    def save_all(self, rules: Iterable[ClassificationRule]) -> int:
        count = 0
        for rule in rules:
            self.save(rule)
            count += 1
        return count
