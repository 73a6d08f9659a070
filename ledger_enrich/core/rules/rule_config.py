"""
Rule configuration management.

Loads classification rules from YAML files and provides a builder for
assembling rule sets in code.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from ledger_enrich.core.errors import ConfigurationFault
from ledger_enrich.core.models import ClassificationRule
from ledger_enrich.core.rules.expression import build_comparison, compile_condition, render


class RuleConfigLoader:
    """
    Loads classification rules from YAML configuration files.

    Expected YAML format:
    ```yaml
    defaults:
      source_type: bank
      counterparty_id: SYSTEM
      case_sensitive: false

    rules:
      - id: MAP-0001
        name: Customer payment
        counterparty_id: CPT-0001
        priority: 10
        condition: 'd_c equals "C" AND payment_description contains "INVOICE"'
        internal_type: PAYMENT_CUSTOMER

      - id: MAP-0002
        name: Securities trade
        source_type: secu
        field: type
        operator: in
        value: BUY,SELL
        internal_type: SEC_TRADE
        effective_date: 2025-01-01
    ```

    Every condition is compiled at load time, so a malformed rule file is
    rejected before any record is processed.
    """

    def __init__(self, config_path: str | Path):
        """
        Initialize the rule config loader.

        Args:
            config_path: Path to the YAML configuration file
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise FileNotFoundError(f"Rule configuration file not found: {config_path}")

    def load_rules(self) -> list[ClassificationRule]:
        """
        Load and parse classification rules from the YAML file.

        Returns:
            List of ClassificationRule objects

        Raises:
            ConfigurationFault: If YAML is invalid, a rule is incomplete, a
                condition does not parse, or two rules share an id
        """
        try:
            with open(self.config_path) as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationFault(f"Invalid YAML in {self.config_path}: {e}") from e

        if not config or "rules" not in config:
            raise ConfigurationFault("Configuration file must contain 'rules' section")

        rule_defs = config["rules"]
        if not isinstance(rule_defs, list):
            raise ConfigurationFault("'rules' must be a list")

        defaults = config.get("defaults") or {}
        rules = []
        seen: set[str] = set()
        for idx, rule_def in enumerate(rule_defs):
            if not isinstance(rule_def, dict):
                raise ConfigurationFault(f"Rule #{idx} must be a mapping")
            rule = parse_rule({**defaults, **rule_def}, idx)
            if rule.rule_id in seen:
                raise ConfigurationFault(f"Duplicate rule id '{rule.rule_id}'")
            seen.add(rule.rule_id)
            rules.append(rule)

        return rules


def parse_rule(rule_def: dict[str, Any], idx: int = 0) -> ClassificationRule:
    """
    Parse a single rule definition.

    Args:
        rule_def: The rule definition (defaults already merged in)
        idx: Position of the rule in its file (for generated ids and messages)

    Returns:
        ClassificationRule with a validated condition

    Raises:
        ConfigurationFault: If the definition is invalid
    """
    rule_id = str(rule_def.get("id") or f"rule_{idx}")

    if rule_def.get("condition"):
        condition = str(rule_def["condition"])
    elif rule_def.get("field"):
        if "operator" not in rule_def:
            raise ConfigurationFault(f"Rule '{rule_id}' is missing 'operator'")
        node = build_comparison(rule_def["field"], rule_def["operator"], rule_def.get("value"))
        condition = render(node)
    else:
        raise ConfigurationFault(f"Rule '{rule_id}' needs 'condition' or 'field'/'operator'/'value'")

    # ConditionSyntaxError is a ConfigurationFault
    compile_condition(condition)

    if "internal_type" not in rule_def:
        raise ConfigurationFault(f"Rule '{rule_id}' is missing 'internal_type'")

    try:
        return ClassificationRule(
            rule_id=rule_id,
            name=rule_def.get("name", rule_id),
            source_type=rule_def.get("source_type", "bank"),
            counterparty_id=rule_def.get("counterparty_id", "SYSTEM"),
            active=rule_def.get("active", True),
            priority=rule_def.get("priority", 999),
            condition=condition,
            internal_type=rule_def["internal_type"],
            case_sensitive=rule_def.get("case_sensitive", True),
            effective_date=rule_def.get("effective_date"),
        )
    except ValidationError as e:
        raise ConfigurationFault(f"Invalid rule '{rule_id}': {e}") from e


class RuleConfigBuilder:
    """
    Programmatically build rule sets (for testing or dynamic rules).
    """

    def __init__(self, source_type: str = "bank", counterparty_id: str = "SYSTEM"):
        self.source_type = source_type
        self.counterparty_id = counterparty_id
        self.rules: list[ClassificationRule] = []

    def add_rule(
        self,
        rule_id: str,
        condition: str,
        internal_type: str,
        priority: int = 999,
        counterparty_id: str | None = None,
        source_type: str | None = None,
        **options: Any,
    ) -> "RuleConfigBuilder":
        """Add a rule with a full condition expression."""
        self.rules.append(parse_rule({
            "id": rule_id,
            "condition": condition,
            "internal_type": internal_type,
            "priority": priority,
            "counterparty_id": counterparty_id or self.counterparty_id,
            "source_type": source_type or self.source_type,
            **options,
        }))
        return self

    def add_field_rule(
        self,
        rule_id: str,
        field_name: str,
        operator: str,
        value: Any,
        internal_type: str,
        priority: int = 999,
        counterparty_id: str | None = None,
        source_type: str | None = None,
        **options: Any,
    ) -> "RuleConfigBuilder":
        """Add a rule with a single field/operator/value predicate."""
        self.rules.append(parse_rule({
            "id": rule_id,
            "field": field_name,
            "operator": operator,
            "value": value,
            "internal_type": internal_type,
            "priority": priority,
            "counterparty_id": counterparty_id or self.counterparty_id,
            "source_type": source_type or self.source_type,
            **options,
        }))
        return self

    def build(self) -> list[ClassificationRule]:
        return list(self.rules)
