"""
Classification engine: picks the internal transaction type for a record.

Candidates are the active rules for the record's source type, scoped either
to the record's counterparty or to the wildcard counterparty. They are tried
in the order (specificity_rank, priority, rule_id) and the first rule whose
condition holds wins.
"""

from datetime import date
from typing import Iterable

from ledger_enrich.config import EnrichmentConfig
from ledger_enrich.core.errors import ConditionSyntaxError
from ledger_enrich.core.models import ClassificationRule, RuleMatch, SourceType, WorkingRecord
from ledger_enrich.core.rules.expression import Node, compile_condition, evaluate
from ledger_enrich.core.rules.repository import RuleRepository
from ledger_enrich.observability.logger import get_logger
from ledger_enrich.observability.metrics import (
    classification_outcomes_total,
    configuration_faults_total,
    increment_counter,
)

logger = get_logger(__name__)


def rule_sort_key(rule: ClassificationRule, wildcard: str) -> tuple[int, int, str]:
    """Counterparty-specific rules first, then ascending priority, then rule id."""
    return (1 if rule.is_wildcard(wildcard) else 0, rule.priority, rule.rule_id)


def select_candidates(
    rules: Iterable[ClassificationRule],
    source_type: SourceType,
    counterparty_id: str | None,
    wildcard: str,
    as_of: date | None = None,
) -> list[ClassificationRule]:
    """
    Filter and order the rules that apply to one (source type, counterparty) scope.

    Args:
        rules: Rules as supplied by a repository (any order, may be unfiltered)
        source_type: Record source type
        counterparty_id: Record counterparty (None matches wildcard rules only)
        wildcard: Counterparty id of rules that apply everywhere
        as_of: Rules with a later effective date are dropped

    Returns:
        Candidate rules in evaluation order
    """
    candidates = [
        rule for rule in rules
        if rule.active
        and rule.source_type == source_type
        and (rule.counterparty_id == wildcard
             or (counterparty_id is not None and rule.counterparty_id == counterparty_id))
        and (as_of is None or rule.is_effective(as_of))
    ]
    candidates.sort(key=lambda rule: rule_sort_key(rule, wildcard))
    return candidates


class ClassificationEngine:
    """
    Matches WorkingRecords against classification rules.

    Conditions are compiled once and cached. A rule whose condition cannot
    be parsed is logged, counted and skipped; it never stops a batch.
    """

    def __init__(self, repository: RuleRepository, config: EnrichmentConfig | None = None):
        """
        Initialize the engine.

        Args:
            repository: Source of candidate rules
            config: Run configuration (sentinels and wildcard)
        """
        self.repository = repository
        self.config = config or EnrichmentConfig()
        self._compiled: dict[tuple[str, str], Node] = {}
        self._broken: set[tuple[str, str]] = set()

    def _compile(self, rule: ClassificationRule) -> Node | None:
        key = (rule.rule_id, rule.condition)
        if key in self._compiled:
            return self._compiled[key]
        if key in self._broken:
            return None
        try:
            node = compile_condition(rule.condition)
        except ConditionSyntaxError as e:
            self._broken.add(key)
            logger.error(f"Skipping rule {rule.rule_id} ({rule.name}): {e}")
            increment_counter(configuration_faults_total, component="classification_rule")
            return None
        self._compiled[key] = node
        return node

    def candidates_for(self, record: WorkingRecord, as_of: date | None = None) -> list[ClassificationRule]:
        """Ordered candidate rules for a record."""
        counterparty_id = record.counterparty.counterparty_id if record.counterparty else None
        rules = self.repository.find_candidates(record.source_type, counterparty_id)
        return select_candidates(
            rules,
            record.source_type,
            counterparty_id,
            self.config.wildcard_counterparty,
            as_of,
        )

    def match(self, record: WorkingRecord, rules: list[ClassificationRule]) -> RuleMatch:
        """
        Return the first rule in ``rules`` whose condition holds for the record.

        Args:
            record: Record to classify
            rules: Candidates, already in evaluation order

        Returns:
            RuleMatch with the winning rule, or the UNMATCHED sentinel
        """
        evaluated = 0
        for rule in rules:
            node = self._compile(rule)
            if node is None:
                continue
            evaluated += 1
            if evaluate(node, record.resolve_field, case_sensitive=rule.case_sensitive):
                logger.debug(
                    f"Transaction {record.transaction_id} matched rule {rule.rule_id} "
                    f"(priority {rule.priority}) -> {rule.internal_type}"
                )
                return RuleMatch(
                    internal_type=rule.internal_type,
                    matched=True,
                    rule_id=rule.rule_id,
                    rule_name=rule.name,
                    priority=rule.priority,
                    candidate_count=len(rules),
                    rules_evaluated=evaluated,
                )

        return RuleMatch(
            internal_type=self.config.unmatched,
            matched=False,
            candidate_count=len(rules),
            rules_evaluated=evaluated,
        )

    def classify(self, record: WorkingRecord, as_of: date | None = None) -> RuleMatch:
        """
        Classify a record using the rules its scope selects.

        Args:
            record: Record with its counterparty already determined
            as_of: Reference date for rule effective dates (None disables the check)

        Returns:
            RuleMatch; internal_type is UNMATCHED when nothing matched
        """
        rules = self.candidates_for(record, as_of)
        result = self.match(record, rules)

        if result.matched:
            outcome = "matched"
        elif result.candidate_count == 0:
            outcome = "no_rules"
        else:
            outcome = "unmatched"
        increment_counter(
            classification_outcomes_total,
            source_type=record.source_type.value,
            outcome=outcome,
        )
        return result

    def get_rule_summary(self) -> dict[str, int]:
        """Counts of conditions compiled and rejected so far."""
        return {
            "compiled_conditions": len(self._compiled),
            "rejected_conditions": len(self._broken),
        }
