"""
Condition expression language for classification rules.

A condition is compiled once into a small expression tree and then
evaluated against any number of records.

Grammar (AND binds tighter than OR, keywords are case-insensitive):

    expression := and_expr ( OR and_expr )*
    and_expr   := term ( AND term )*
    term       := "(" expression ")" | comparison
    comparison := FIELD OPERATOR VALUE

Operators:
    equals (also == and =), contains, startswith (starts_with),
    endswith (ends_with), regex, in, >, <, >=, <=

Values are double- or single-quoted strings (backslash escapes the quote)
or bare tokens. Regex patterns containing parentheses must be quoted.
The ``in`` operator takes a comma-separated list.
"""

import operator as _op
import re
from dataclasses import dataclass, field as dc_field
from decimal import Decimal, InvalidOperation
from enum import Enum
from functools import lru_cache
from typing import Any, Callable, Union

from ledger_enrich.core.errors import ConditionSyntaxError

_TOKEN_RE = re.compile(
    r"""
      (?P<ws>\s+)
    | (?P<lparen>\()
    | (?P<rparen>\))
    | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
    | (?P<symbol>>=|<=|==|=|>|<)
    | (?P<word>[^\s()"'<>=]+)
    """,
    re.VERBOSE,
)

# Only quotes and backslashes are escapes; "\d" in a quoted regex stays as is
_ESCAPE_RE = re.compile(r"""\\([\\"'])""")

OPERATOR_ALIASES = {
    "equals": "equals",
    "==": "equals",
    "=": "equals",
    "contains": "contains",
    "startswith": "startswith",
    "starts_with": "startswith",
    "endswith": "endswith",
    "ends_with": "endswith",
    "regex": "regex",
    "in": "in",
    ">": ">",
    "<": "<",
    ">=": ">=",
    "<=": "<=",
}

NUMERIC_OPERATORS = {
    ">": _op.gt,
    "<": _op.lt,
    ">=": _op.ge,
    "<=": _op.le,
}

_KEYWORDS = ("AND", "OR")


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    value: str
    pos: int


@dataclass(frozen=True)
class Comparison:
    """Atomic predicate ``field operator value``."""

    field: str
    operator: str
    value: str
    options: tuple[str, ...] = ()
    number: Decimal | None = None
    pattern: re.Pattern | None = dc_field(default=None, compare=False, repr=False)
    pattern_ci: re.Pattern | None = dc_field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class And:
    operands: tuple["Node", ...]


@dataclass(frozen=True)
class Or:
    operands: tuple["Node", ...]


@dataclass(frozen=True)
class Group:
    inner: "Node"


Node = Union[Comparison, And, Or, Group]


def tokenize(text: str) -> list[Token]:
    """
    Split a condition into tokens.

    Raises:
        ConditionSyntaxError: On an unterminated string or a stray character
    """
    tokens: list[Token] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            if text[pos] in "\"'":
                raise ConditionSyntaxError("Unterminated string", text, pos)
            raise ConditionSyntaxError(f"Unexpected character {text[pos]!r}", text, pos)

        kind = match.lastgroup
        raw = match.group()
        if kind != "ws":
            value = _ESCAPE_RE.sub(r"\1", raw[1:-1]) if kind == "string" else raw
            tokens.append(Token(kind=kind, text=raw, value=value, pos=pos))
        pos = match.end()
    return tokens


def build_comparison(
    field_name: str,
    operator: str,
    value: Any,
    expression: str = "",
    position: int = 0,
) -> Comparison:
    """
    Build a validated Comparison node.

    Used by the parser and by rule sources that store a single
    field/operator/value triple instead of a condition string.

    Raises:
        ConditionSyntaxError: If the operator is unknown, a numeric operand is
            not a finite number, a regex does not compile, or an ``in`` list is empty
    """
    expression = expression or f"{field_name} {operator} {value}"
    if not field_name or not str(field_name).strip():
        raise ConditionSyntaxError("Expected field name", expression, position)

    canonical = OPERATOR_ALIASES.get(str(operator).strip().lower())
    if canonical is None:
        raise ConditionSyntaxError(f"Unknown operator {operator!r}", expression, position)

    text = "" if value is None else str(value)

    if canonical in NUMERIC_OPERATORS:
        number = to_decimal(text)
        if number is None:
            raise ConditionSyntaxError(
                f"Operator {canonical!r} requires a number, got {text!r}", expression, position
            )
        return Comparison(field=field_name.strip(), operator=canonical, value=text, number=number)

    if canonical == "regex":
        try:
            pattern = re.compile(text)
            pattern_ci = re.compile(text, re.IGNORECASE)
        except re.error as e:
            raise ConditionSyntaxError(f"Invalid regex {text!r}: {e}", expression, position) from e
        return Comparison(
            field=field_name.strip(), operator=canonical, value=text,
            pattern=pattern, pattern_ci=pattern_ci,
        )

    if canonical == "in":
        options = tuple(part.strip() for part in text.split(",") if part.strip())
        if not options:
            raise ConditionSyntaxError("Operator 'in' requires at least one value", expression, position)
        return Comparison(field=field_name.strip(), operator=canonical, value=text, options=options)

    return Comparison(field=field_name.strip(), operator=canonical, value=text)


class _Parser:
    """Recursive-descent parser over a token list."""

    def __init__(self, text: str):
        self.text = text
        self.tokens = tokenize(text)
        self.pos = 0

    def parse(self) -> Node:
        if not self.tokens:
            raise ConditionSyntaxError("Empty condition", self.text, 0)
        node = self._expression()
        if self.pos < len(self.tokens):
            token = self.tokens[self.pos]
            raise ConditionSyntaxError(f"Unexpected token {token.text!r}", self.text, token.pos)
        return node

    def _peek(self) -> Token | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _next(self, expected: str) -> Token:
        token = self._peek()
        if token is None:
            raise ConditionSyntaxError(f"Expected {expected}, found end of condition", self.text, len(self.text))
        self.pos += 1
        return token

    def _at_keyword(self, keyword: str) -> bool:
        token = self._peek()
        return token is not None and token.kind == "word" and token.text.upper() == keyword

    def _expression(self) -> Node:
        operands = [self._and_expr()]
        while self._at_keyword("OR"):
            self.pos += 1
            operands.append(self._and_expr())
        return operands[0] if len(operands) == 1 else Or(tuple(operands))

    def _and_expr(self) -> Node:
        operands = [self._term()]
        while self._at_keyword("AND"):
            self.pos += 1
            operands.append(self._term())
        return operands[0] if len(operands) == 1 else And(tuple(operands))

    def _term(self) -> Node:
        token = self._peek()
        if token is not None and token.kind == "lparen":
            self.pos += 1
            inner = self._expression()
            closing = self._peek()
            if closing is None or closing.kind != "rparen":
                pos = closing.pos if closing else len(self.text)
                raise ConditionSyntaxError("Missing closing parenthesis", self.text, pos)
            self.pos += 1
            return Group(inner)
        return self._comparison()

    def _comparison(self) -> Comparison:
        field_token = self._next("field name")
        if field_token.kind != "word" or field_token.text.upper() in _KEYWORDS:
            raise ConditionSyntaxError(
                f"Expected field name, found {field_token.text!r}", self.text, field_token.pos
            )

        op_token = self._next("operator")
        if op_token.kind not in ("word", "symbol") or op_token.text.lower() not in OPERATOR_ALIASES:
            raise ConditionSyntaxError(f"Unknown operator {op_token.text!r}", self.text, op_token.pos)

        value_token = self._next("value")
        if value_token.kind not in ("word", "string"):
            raise ConditionSyntaxError(
                f"Expected value, found {value_token.text!r}", self.text, value_token.pos
            )

        return build_comparison(
            field_token.value, op_token.value, value_token.value, self.text, value_token.pos
        )


@lru_cache(maxsize=4096)
def compile_condition(text: str) -> Node:
    """
    Compile a condition string into an expression tree.

    Results are cached by condition text; failures are not cached.

    Raises:
        ConditionSyntaxError: If the condition is empty or malformed
    """
    return _Parser(text).parse()


def to_decimal(value: Any) -> Decimal | None:
    """Parse a finite decimal, or return None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, Decimal)):
            number = Decimal(value)
        else:
            number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return number if number.is_finite() else None


def _as_text(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


def _compare(node: Comparison, raw: Any, case_sensitive: bool) -> bool:
    if raw is None:
        return False

    if node.operator in NUMERIC_OPERATORS:
        number = to_decimal(raw)
        if number is None:
            return False
        return NUMERIC_OPERATORS[node.operator](number, node.number)

    text = _as_text(raw)
    if node.operator == "regex":
        pattern = node.pattern if case_sensitive else node.pattern_ci
        return pattern.fullmatch(text) is not None

    expected = node.value
    options = node.options
    if not case_sensitive:
        text = text.upper()
        expected = expected.upper()
        options = tuple(option.upper() for option in options)

    if node.operator == "equals":
        return text == expected
    if node.operator == "contains":
        return expected in text
    if node.operator == "startswith":
        return text.startswith(expected)
    if node.operator == "endswith":
        return text.endswith(expected)
    if node.operator == "in":
        return text.strip() in options
    raise ValueError(f"Unsupported operator: {node.operator}")


def evaluate(node: Node, resolve: Callable[[str], Any], case_sensitive: bool = True) -> bool:
    """
    Evaluate an expression tree.

    Args:
        node: Compiled condition
        resolve: Returns the value of a field by name, None when absent
        case_sensitive: When False, string operators ignore case

    Returns:
        True if the condition holds. A missing field makes its predicate false.
    """
    if isinstance(node, Comparison):
        return _compare(node, resolve(node.field), case_sensitive)
    if isinstance(node, And):
        return all(evaluate(operand, resolve, case_sensitive) for operand in node.operands)
    if isinstance(node, Or):
        return any(evaluate(operand, resolve, case_sensitive) for operand in node.operands)
    if isinstance(node, Group):
        return evaluate(node.inner, resolve, case_sensitive)
    raise TypeError(f"Unknown condition node: {node!r}")


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def render(node: Node) -> str:
    """Render an expression tree back into condition text."""
    if isinstance(node, Comparison):
        value = node.value if node.operator in NUMERIC_OPERATORS else _quote(node.value)
        return f"{node.field} {node.operator} {value}"
    if isinstance(node, And):
        return " AND ".join(render(operand) for operand in node.operands)
    if isinstance(node, Or):
        return " OR ".join(render(operand) for operand in node.operands)
    if isinstance(node, Group):
        return f"({render(node.inner)})"
    raise TypeError(f"Unknown condition node: {node!r}")


def referenced_fields(node: Node) -> set[str]:
    """Names of all fields a condition reads."""
    if isinstance(node, Comparison):
        return {node.field}
    if isinstance(node, (And, Or)):
        return set().union(*(referenced_fields(operand) for operand in node.operands))
    return referenced_fields(node.inner)
