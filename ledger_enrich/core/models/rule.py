"""
ClassificationRule and RuleMatch models.
"""

from datetime import date

from pydantic import BaseModel, Field, field_validator

from .working_record import SourceType


class ClassificationRule(BaseModel):
    """
    Scoped rule mapping a condition to an internal transaction type.

    Attributes:
        rule_id: Stable identifier, final tie-break in rule ordering
        name: Human-readable rule name
        source_type: bank or secu
        counterparty_id: Counterparty the rule is scoped to, or the wildcard
        active: Inactive rules are never candidates
        priority: Ascending; lower values are evaluated first within a scope group
        condition: Condition expression, e.g. ``d_c equals "C" AND amount > 100``
        internal_type: Classification code assigned on match
        case_sensitive: When False, string operators ignore case
        effective_date: The rule is not a candidate before this date
    """

    rule_id: str = Field(..., min_length=1)
    name: str = ""
    source_type: SourceType
    counterparty_id: str = Field(..., min_length=1)
    active: bool = True
    priority: int = 999
    condition: str
    internal_type: str = Field(..., min_length=1)
    case_sensitive: bool = True
    effective_date: date | None = None

    @field_validator("condition")
    @classmethod
    def check_condition_present(cls, v: str) -> str:
        """A rule without a condition would match nothing or everything."""
        if not v or not v.strip():
            raise ValueError("condition must not be empty")
        return v.strip()

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "rule_id": "MAP-0001",
                "name": "Customer payment",
                "source_type": "bank",
                "counterparty_id": "CPT-0001",
                "active": True,
                "priority": 10,
                "condition": 'd_c equals "C" AND payment_description contains "INVOICE"',
                "internal_type": "PAYMENT_CUSTOMER",
                "case_sensitive": False,
            }
        }

    def is_wildcard(self, wildcard: str) -> bool:
        return self.counterparty_id == wildcard

    def is_effective(self, as_of: date) -> bool:
        return self.effective_date is None or self.effective_date <= as_of


class RuleMatch(BaseModel):
    """Outcome of classifying one record."""

    internal_type: str
    matched: bool
    rule_id: str | None = None
    rule_name: str | None = None
    priority: int | None = None
    candidate_count: int = 0
    rules_evaluated: int = 0
