"""Quarter arithmetic and the age-based archival predicate.

The archival boundary slides with the calendar: on any evaluation date the
cutoff is the first day of the quarter preceding the current one, so rows
are archived once they are older than "two quarters ago".

    >>> archive_cutoff(date(2025, 11, 5))
    datetime.date(2025, 7, 1)
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

_IDENTIFIER_CHARS = set("abcdefghijklmnopqrstuvwxyz0123456789_")


def quarter_of(d: date) -> int:
    """Calendar quarter (1-4) containing d."""
    return (d.month - 1) // 3 + 1


def quarter_start(d: date) -> date:
    """First day of the calendar quarter containing d (date_trunc(quarter, d))."""
    return date(d.year, 3 * (quarter_of(d) - 1) + 1, 1)


def shift_quarters(d: date, quarters: int) -> date:
    """First day of the quarter `quarters` quarters away from d's quarter."""
    index = d.year * 4 + (quarter_of(d) - 1) + quarters
    year, offset = divmod(index, 4)
    return date(year, offset * 3 + 1, 1)


def archive_cutoff(evaluation_date: date, quarters_back: int = 1) -> date:
    """Sliding archival boundary for an evaluation date.

    Args:
        evaluation_date: The day the policy is evaluated
        quarters_back: Whole quarters before the current one (default: 1)

    Returns:
        First day of the quarter `quarters_back` quarters before the current quarter
    """
    if quarters_back < 0:
        raise ValueError(f"quarters_back must be >= 0, got {quarters_back}")
    return shift_quarters(_as_date(evaluation_date), -quarters_back)


def quarter_label(d: date) -> str:
    """Quarter label in YYYY-Q# format (e.g. '2024-Q3')."""
    return f"{d.year}-Q{quarter_of(d)}"


def _as_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value)
    raise TypeError(f"Expected a date, got {type(value).__name__}")


@dataclass(frozen=True)
class AgingPredicate:
    """Row-age test of a storage lifecycle policy.

    Equivalent to the policy body
    ``<column> < date_trunc(quarter, dateadd(quarter, -<quarters_back>, current_date()))``.
    The result only depends on (row date, evaluation date) and, because the
    cutoff never moves backwards, once true for a row it stays true.
    """

    column: str
    quarters_back: int = 1

    def __post_init__(self):
        column = self.column.strip().lower() if self.column else ""
        if not column or column[0].isdigit() or not set(column) <= _IDENTIFIER_CHARS:
            raise ValueError(f"Invalid column name: {self.column!r}")
        if self.quarters_back < 0:
            raise ValueError(f"quarters_back must be >= 0, got {self.quarters_back}")
        object.__setattr__(self, "column", column)

    def cutoff(self, evaluation_date: date) -> date:
        return archive_cutoff(evaluation_date, self.quarters_back)

    def applies(self, row_date: date | None, evaluation_date: date) -> bool:
        """True when the row is older than the cutoff. NULL dates never age out."""
        if row_date is None:
            return False
        return _as_date(row_date) < self.cutoff(evaluation_date)

    def to_sql(self, evaluation_date: date) -> tuple[str, list[Any]]:
        """Parameterized SQL condition for DuckDB."""
        return f'"{self.column}" < ?', [self.cutoff(evaluation_date)]

    def signature(self) -> str:
        return f"({self.column} DATE) RETURNS BOOLEAN"

    def expression(self) -> str:
        """Policy body as the platform displays it."""
        return (
            f"{self.column} < date_trunc(quarter, "
            f"dateadd(quarter, -{self.quarters_back}, current_date()))"
        )
