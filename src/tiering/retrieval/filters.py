"""Filter predicates for CREATE TABLE ... FROM ARCHIVE OF.

Retrieval cost grows with every archived file touched, so a filter is
mandatory. A filter is a conjunction of ``column OP literal`` conditions:

    t.transaction_date BETWEEN '2023-01-01' AND '2023-03-31' AND customer_id = 42

The left side of every condition must be a column and the right side must
be literals. That rules out tautologies such as ``1 = 1`` by construction.

Supported operators: =, !=, <>, <, <=, >, >=, BETWEEN ... AND ..., IN (...).
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from tiering.common.exceptions import ArchiveFilterRequiredError, FilterSyntaxError

COMPARISON_OPERATORS = ("=", "!=", "<", "<=", ">", ">=")

_TOKEN = re.compile(
    r"""
    \s*(?:
        (?P<string>'(?:[^']|'')*')
      | (?P<number>-?\d+(?:\.\d+)?)
      | (?P<op><=|>=|<>|!=|=|<|>)
      | (?P<punct>[(),])
      | (?P<ident>[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)?)
    )
    """,
    re.VERBOSE,
)

_INTEGER_TYPES = ("TINYINT", "SMALLINT", "INTEGER", "BIGINT", "HUGEINT", "UTINYINT",
                  "USMALLINT", "UINTEGER", "UBIGINT")
_FLOAT_TYPES = ("FLOAT", "REAL", "DOUBLE")


@dataclass(frozen=True)
class Condition:
    """One ``column OP literal`` test."""

    column: str
    operator: str
    values: tuple[Any, ...]

    def __post_init__(self):
        operator = self.operator.upper()
        if operator == "<>":
            operator = "!="
        if operator not in COMPARISON_OPERATORS + ("BETWEEN", "IN"):
            raise FilterSyntaxError(f"Unsupported operator: {self.operator}")
        expected = {"BETWEEN": 2}.get(operator, 1)
        if operator == "IN":
            if not self.values:
                raise FilterSyntaxError("IN requires at least one value")
        elif len(self.values) != expected:
            raise FilterSyntaxError(f"{operator} takes {expected} value(s), got {len(self.values)}")
        object.__setattr__(self, "column", self.column.lower())
        object.__setattr__(self, "operator", operator)
        object.__setattr__(self, "values", tuple(self.values))

    def to_sql(self) -> tuple[str, list[Any]]:
        column = f'"{self.column}"'
        if self.operator == "BETWEEN":
            return f"{column} BETWEEN ? AND ?", list(self.values)
        if self.operator == "IN":
            placeholders = ", ".join("?" for _ in self.values)
            return f"{column} IN ({placeholders})", list(self.values)
        return f"{column} {self.operator} ?", [self.values[0]]

    def may_match(self, low: Any, high: Any) -> bool:
        """Whether any value in [low, high] can satisfy this condition."""
        if low is None or high is None:
            return True
        op, values = self.operator, self.values
        if op == "=":
            return low <= values[0] <= high
        if op == "!=":
            return not (low == high == values[0])
        if op == "<":
            return low < values[0]
        if op == "<=":
            return low <= values[0]
        if op == ">":
            return high > values[0]
        if op == ">=":
            return high >= values[0]
        if op == "BETWEEN":
            return high >= values[0] and low <= values[1]
        return any(low <= v <= high for v in values)

    def bind(self, column_type: str) -> "Condition":
        """Coerce literals to the column's type."""
        return Condition(
            self.column,
            self.operator,
            tuple(coerce_literal(v, column_type, self.column) for v in self.values),
        )

    def __str__(self) -> str:
        if self.operator == "BETWEEN":
            return f"{self.column} BETWEEN {_render(self.values[0])} AND {_render(self.values[1])}"
        if self.operator == "IN":
            return f"{self.column} IN ({', '.join(_render(v) for v in self.values)})"
        return f"{self.column} {self.operator} {_render(self.values[0])}"


@dataclass(frozen=True)
class ArchiveFilter:
    """Non-empty conjunction of conditions over the archived table's columns."""

    conditions: tuple[Condition, ...]
    alias: Optional[str] = field(default=None, compare=False)

    def __post_init__(self):
        if not self.conditions:
            raise ArchiveFilterRequiredError()
        object.__setattr__(self, "conditions", tuple(self.conditions))

    def to_sql(self) -> tuple[str, list[Any]]:
        parts, params = [], []
        for condition in self.conditions:
            sql, values = condition.to_sql()
            parts.append(sql)
            params.extend(values)
        return " AND ".join(parts), params

    def bind(self, columns: dict[str, str]) -> "ArchiveFilter":
        """Validate columns against a table and coerce literals.

        Args:
            columns: Column name -> DuckDB type of the source table

        Raises:
            FilterSyntaxError: On unknown columns or literals of the wrong type
        """
        bound = []
        for condition in self.conditions:
            if condition.column not in columns:
                raise FilterSyntaxError(f"Invalid identifier '{condition.column}'")
            bound.append(condition.bind(columns[condition.column]))
        return ArchiveFilter(tuple(bound), alias=self.alias)

    def may_match_partition(self, partition_column: str, low: Any, high: Any) -> bool:
        """Partition pruning on min/max statistics of the partition column."""
        return all(
            condition.may_match(low, high)
            for condition in self.conditions
            if condition.column == partition_column
        )

    def columns(self) -> set[str]:
        return {condition.column for condition in self.conditions}

    def __str__(self) -> str:
        return " AND ".join(str(condition) for condition in self.conditions)


def _render(value: Any) -> str:
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return str(value)
    text = value.isoformat() if isinstance(value, (date, datetime)) else str(value)
    return "'" + text.replace("'", "''") + "'"


def coerce_literal(value: Any, column_type: str, column: str = "") -> Any:
    """Convert a parsed literal to the Python type of a DuckDB column type."""
    base = column_type.upper().split("(")[0].strip()
    try:
        if base == "DATE":
            if isinstance(value, datetime):
                return value.date()
            if isinstance(value, date):
                return value
            return date.fromisoformat(str(value))
        if base.startswith("TIMESTAMP"):
            if isinstance(value, datetime):
                return value
            return datetime.fromisoformat(str(value))
        if base in ("DECIMAL", "NUMERIC"):
            return Decimal(str(value))
        if base in _INTEGER_TYPES:
            number = Decimal(str(value))
            if number != number.to_integral_value():
                raise ValueError(f"{value} is not an integer")
            return int(number)
        if base in _FLOAT_TYPES:
            return float(value)
        if base == "BOOLEAN":
            if isinstance(value, bool):
                return value
            lowered = str(value).lower()
            if lowered not in ("true", "false"):
                raise ValueError(f"{value} is not a boolean")
            return lowered == "true"
        return str(value)
    except (ValueError, InvalidOperation) as e:
        raise FilterSyntaxError(
            f"Value {value!r} is not a valid {column_type} for column '{column}'"
        ) from e


# ==============================================================================
# Parser
# ==============================================================================


def _tokenize(text: str) -> list[tuple[str, str]]:
    tokens, position = [], 0
    text = text.rstrip()
    while position < len(text):
        match = _TOKEN.match(text, position)
        if not match or match.end() == position:
            raise FilterSyntaxError(f"Unexpected input at position {position}: {text[position:]!r}")
        kind = match.lastgroup
        tokens.append((kind, match.group(kind)))
        position = match.end()
    return tokens


class _Parser:
    def __init__(self, tokens: list[tuple[str, str]]):
        self.tokens = tokens
        self.position = 0
        self.alias: Optional[str] = None

    def peek(self) -> Optional[tuple[str, str]]:
        return self.tokens[self.position] if self.position < len(self.tokens) else None

    def take(self) -> tuple[str, str]:
        token = self.peek()
        if token is None:
            raise FilterSyntaxError("Unexpected end of filter")
        self.position += 1
        return token

    def keyword(self, word: str) -> bool:
        token = self.peek()
        if token and token[0] == "ident" and token[1].upper() == word:
            self.position += 1
            return True
        return False

    def expect_keyword(self, word: str) -> None:
        if not self.keyword(word):
            raise FilterSyntaxError(f"Expected {word}, got {self._describe(self.peek())}")

    def expect_punct(self, char: str) -> None:
        token = self.take()
        if token != ("punct", char):
            raise FilterSyntaxError(f"Expected '{char}', got {self._describe(token)}")

    @staticmethod
    def _describe(token: Optional[tuple[str, str]]) -> str:
        return "end of filter" if token is None else repr(token[1])

    def parse(self) -> ArchiveFilter:
        self.keyword("WHERE")
        conditions = [self.condition()]
        while self.keyword("AND"):
            conditions.append(self.condition())
        if self.peek() is not None:
            raise FilterSyntaxError(f"Unexpected {self._describe(self.peek())}")
        return ArchiveFilter(tuple(conditions), alias=self.alias)

    def column(self) -> str:
        kind, value = self.take()
        if kind != "ident" or value.upper() in ("AND", "BETWEEN", "IN", "WHERE", "DATE"):
            raise FilterSyntaxError(f"Expected a column name, got {value!r}")
        if "." in value:
            alias, value = value.split(".", 1)
            if self.alias is not None and alias.lower() != self.alias:
                raise FilterSyntaxError(f"Unknown table alias '{alias}'")
            self.alias = alias.lower()
        return value

    def literal(self) -> Any:
        kind, value = self.take()
        if kind == "ident" and value.upper() in ("DATE", "TIMESTAMP"):
            kind, value = self.take()
            if kind != "string":
                raise FilterSyntaxError("Expected a quoted value after DATE/TIMESTAMP")
        if kind == "string":
            return value[1:-1].replace("''", "'")
        if kind == "number":
            return Decimal(value) if "." in value else int(value)
        if kind == "ident" and value.upper() in ("TRUE", "FALSE"):
            return value.upper() == "TRUE"
        raise FilterSyntaxError(f"Expected a literal value, got {value!r}")

    def condition(self) -> Condition:
        column = self.column()
        if self.keyword("BETWEEN"):
            low = self.literal()
            self.expect_keyword("AND")
            high = self.literal()
            return Condition(column, "BETWEEN", (low, high))
        if self.keyword("IN"):
            self.expect_punct("(")
            values = [self.literal()]
            while self.peek() == ("punct", ","):
                self.take()
                values.append(self.literal())
            self.expect_punct(")")
            return Condition(column, "IN", tuple(values))
        kind, operator = self.take()
        if kind != "op":
            raise FilterSyntaxError(f"Expected an operator after '{column}', got {operator!r}")
        return Condition(column, operator, (self.literal(),))


def parse_filter(text: str | None) -> ArchiveFilter:
    """Parse a WHERE clause into an ArchiveFilter.

    Raises:
        ArchiveFilterRequiredError: If the text is empty
        FilterSyntaxError: If the text is not a supported filter
    """
    if text is None or not text.strip():
        raise ArchiveFilterRequiredError()
    tokens = _tokenize(text)
    if len(tokens) == 1 and tokens[0][0] == "ident" and tokens[0][1].upper() == "WHERE":
        raise ArchiveFilterRequiredError()
    return _Parser(tokens).parse()
