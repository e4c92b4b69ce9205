"""
Unit tests for archive retrieval filters.

Tests cover:
- Parsing WHERE clauses (BETWEEN, IN, comparisons, aliases)
- Rejection of empty and non-column filters
- Binding literals to column types
- Partition pruning on min/max statistics
"""

from datetime import date
from decimal import Decimal

import pytest

from tiering.common.exceptions import ArchiveFilterRequiredError, FilterSyntaxError
from tiering.retrieval.filters import ArchiveFilter, Condition, coerce_literal, parse_filter

COLUMNS = {
    "transaction_id": "BIGINT",
    "customer_id": "BIGINT",
    "transaction_date": "DATE",
    "transaction_amount": "DECIMAL(18,2)",
    "transaction_type": "VARCHAR",
}


class TestParseFilter:
    """Test suite for WHERE clause parsing."""

    def test_between_with_alias(self):
        """Test the canonical quarterly restore filter."""
        f = parse_filter("WHERE t.transaction_date BETWEEN '2023-01-01' AND '2023-03-31'")

        assert f.alias == "t"
        assert f.conditions == (
            Condition("transaction_date", "BETWEEN", ("2023-01-01", "2023-03-31")),
        )

    def test_conjunction(self):
        """Test AND-joined conditions."""
        f = parse_filter("customer_id = 42 AND transaction_type IN ('DEBIT', 'CREDIT')")

        assert [c.operator for c in f.conditions] == ["=", "IN"]
        assert f.conditions[1].values == ("DEBIT", "CREDIT")

    def test_not_equal_normalized(self):
        """Test <> and != are the same operator."""
        assert parse_filter("customer_id <> 1") == parse_filter("customer_id != 1")

    def test_date_literal(self):
        """Test DATE 'yyyy-mm-dd' literals."""
        f = parse_filter("transaction_date >= DATE '2024-01-01'")
        assert f.conditions[0].values == ("2024-01-01",)

    def test_numbers_and_booleans(self):
        """Test numeric and boolean literals."""
        f = parse_filter("transaction_amount > -10.50 AND customer_id < 7 AND flagged = TRUE")

        assert f.conditions[0].values == (Decimal("-10.50"),)
        assert f.conditions[1].values == (7,)
        assert f.conditions[2].values == (True,)

    def test_quoted_quote(self):
        """Test doubled single quotes inside strings."""
        f = parse_filter("transaction_type = 'O''Brien'")
        assert f.conditions[0].values == ("O'Brien",)

    @pytest.mark.parametrize("text", [None, "", "   ", "WHERE", "where  "])
    def test_empty_filter_rejected(self, text):
        """Test a filter is mandatory."""
        with pytest.raises(ArchiveFilterRequiredError):
            parse_filter(text)

    @pytest.mark.parametrize(
        "text",
        [
            "1 = 1",
            "customer_id",
            "customer_id = ",
            "customer_id = 1 OR customer_id = 2",
            "customer_id BETWEEN 1 2",
            "customer_id IN ()",
            "customer_id = other_column",
            "a.customer_id = 1 AND b.customer_id = 2",
            "customer_id = 1; DROP TABLE x",
        ],
    )
    def test_invalid_filters_rejected(self, text):
        """Test unsupported or malformed filters."""
        with pytest.raises(FilterSyntaxError):
            parse_filter(text)

    def test_str_round_trips_for_display(self):
        """Test filters render back as SQL text."""
        f = parse_filter("transaction_date BETWEEN '2023-01-01' AND '2023-03-31' AND customer_id IN (1, 2)")
        assert str(f) == "transaction_date BETWEEN '2023-01-01' AND '2023-03-31' AND customer_id IN (1, 2)"


class TestBinding:
    """Test suite for binding filters to a table."""

    def test_bind_coerces_literals(self):
        """Test literals take the column's type."""
        f = parse_filter("transaction_date BETWEEN '2023-01-01' AND '2023-03-31' AND transaction_amount > 5")
        bound = f.bind(COLUMNS)

        assert bound.conditions[0].values == (date(2023, 1, 1), date(2023, 3, 31))
        assert bound.conditions[1].values == (Decimal("5"),)

    def test_unknown_column(self):
        """Test columns must exist on the source table."""
        with pytest.raises(FilterSyntaxError, match="Invalid identifier"):
            parse_filter("posted_date < '2024-01-01'").bind(COLUMNS)

    def test_bad_literal(self):
        """Test literals must convert to the column type."""
        with pytest.raises(FilterSyntaxError, match="not a valid DATE"):
            parse_filter("transaction_date < 'yesterday'").bind(COLUMNS)

    def test_to_sql(self):
        """Test bound filters render as parameterized SQL."""
        bound = parse_filter("customer_id IN (1, 2) AND transaction_date < '2024-01-01'").bind(COLUMNS)
        sql, params = bound.to_sql()

        assert sql == '"customer_id" IN (?, ?) AND "transaction_date" < ?'
        assert params == [1, 2, date(2024, 1, 1)]

    @pytest.mark.parametrize(
        "value,column_type,expected",
        [
            ("42", "BIGINT", 42),
            (Decimal("3.0"), "INTEGER", 3),
            ("1.5", "DOUBLE", 1.5),
            ("true", "BOOLEAN", True),
            (7, "VARCHAR", "7"),
        ],
    )
    def test_coerce_literal(self, value, column_type, expected):
        assert coerce_literal(value, column_type) == expected

    def test_coerce_fractional_integer_rejected(self):
        with pytest.raises(FilterSyntaxError):
            coerce_literal(Decimal("1.5"), "BIGINT", "customer_id")


class TestPartitionPruning:
    """Test suite for min/max pruning on the partition column."""

    def setup_method(self):
        self.february = (date(2023, 2, 1), date(2023, 2, 28))

    def _bound(self, text: str) -> ArchiveFilter:
        return parse_filter(text).bind(COLUMNS)

    def test_between_overlap(self):
        f = self._bound("transaction_date BETWEEN '2023-01-01' AND '2023-03-31'")
        assert f.may_match_partition("transaction_date", *self.february)

    def test_between_disjoint(self):
        f = self._bound("transaction_date BETWEEN '2023-04-01' AND '2023-06-30'")
        assert not f.may_match_partition("transaction_date", *self.february)

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("transaction_date < '2023-02-01'", False),
            ("transaction_date <= '2023-02-01'", True),
            ("transaction_date > '2023-02-28'", False),
            ("transaction_date >= '2023-02-28'", True),
            ("transaction_date = '2023-02-14'", True),
            ("transaction_date = '2023-03-14'", False),
            ("transaction_date IN ('2023-01-05', '2023-02-05')", True),
            ("transaction_date != '2023-02-14'", True),
        ],
    )
    def test_comparisons(self, text, expected):
        assert self._bound(text).may_match_partition("transaction_date", *self.february) is expected

    def test_other_columns_never_prune(self):
        """Test conditions on non-partition columns keep every partition."""
        f = self._bound("customer_id = 42")
        assert f.may_match_partition("transaction_date", *self.february)

    def test_missing_statistics_never_prune(self):
        f = self._bound("transaction_date < '2000-01-01'")
        assert f.may_match_partition("transaction_date", None, None)

    def test_empty_filter_object_rejected(self):
        with pytest.raises(ArchiveFilterRequiredError):
            ArchiveFilter(())
