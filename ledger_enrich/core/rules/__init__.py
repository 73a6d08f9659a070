"""
Classification rules: condition language, engine, configuration and repositories.
"""

from .expression import And, Comparison, Group, Node, Or, compile_condition, evaluate, render
from .repository import InMemoryRuleRepository, RowStoreRuleRepository, RuleRepository
from .rule_config import RuleConfigBuilder, RuleConfigLoader
from .rule_engine import ClassificationEngine, rule_sort_key, select_candidates

__all__ = [
    "And",
    "ClassificationEngine",
    "Comparison",
    "Group",
    "InMemoryRuleRepository",
    "Node",
    "Or",
    "RowStoreRuleRepository",
    "RuleConfigBuilder",
    "RuleConfigLoader",
    "RuleRepository",
    "compile_condition",
    "evaluate",
    "render",
    "rule_sort_key",
    "select_candidates",
]
