"""
Unit tests for quarter arithmetic and the aging predicate.

Tests cover:
- Sliding archive cutoff for evaluation dates across quarters and years
- Monotonicity: once a row ages out it stays aged out
- NULL handling and SQL rendering
"""

from datetime import date, datetime, timedelta

import pytest

from tiering.lifecycle.aging import (
    AgingPredicate,
    archive_cutoff,
    quarter_label,
    quarter_of,
    quarter_start,
    shift_quarters,
)


class TestQuarterArithmetic:
    """Test suite for quarter helpers."""

    @pytest.mark.parametrize(
        "day,expected",
        [
            (date(2025, 1, 1), 1),
            (date(2025, 3, 31), 1),
            (date(2025, 4, 1), 2),
            (date(2025, 9, 30), 3),
            (date(2025, 12, 31), 4),
        ],
    )
    def test_quarter_of(self, day, expected):
        """Test months map to the right calendar quarter."""
        assert quarter_of(day) == expected

    def test_quarter_start(self):
        """Test truncation to the first day of the quarter."""
        assert quarter_start(date(2025, 11, 5)) == date(2025, 10, 1)
        assert quarter_start(date(2025, 1, 1)) == date(2025, 1, 1)

    def test_shift_quarters_crosses_year_boundary(self):
        """Test shifting backwards and forwards across years."""
        assert shift_quarters(date(2025, 2, 10), -1) == date(2024, 10, 1)
        assert shift_quarters(date(2025, 2, 10), -5) == date(2023, 10, 1)
        assert shift_quarters(date(2024, 11, 30), 1) == date(2025, 1, 1)

    def test_quarter_label(self):
        """Test YYYY-Q# labels."""
        assert quarter_label(date(2024, 8, 15)) == "2024-Q3"


class TestArchiveCutoff:
    """Test suite for the sliding archive boundary."""

    def test_cutoff_is_start_of_previous_quarter(self):
        """Test evaluation on 2025-11-05 archives rows before 2025-07-01."""
        assert archive_cutoff(date(2025, 11, 5)) == date(2025, 7, 1)

    def test_cutoff_in_first_quarter(self):
        """Test evaluation in Q1 reaches back into the previous year."""
        assert archive_cutoff(date(2026, 2, 14)) == date(2025, 10, 1)

    def test_zero_quarters_back(self):
        """Test quarters_back=0 cuts at the start of the current quarter."""
        assert archive_cutoff(date(2025, 11, 5), quarters_back=0) == date(2025, 10, 1)

    def test_negative_quarters_back_rejected(self):
        """Test negative offsets are rejected."""
        with pytest.raises(ValueError):
            archive_cutoff(date(2025, 11, 5), quarters_back=-1)

    def test_accepts_datetime_and_iso_string(self):
        """Test the evaluation date may be a datetime or an ISO string."""
        assert archive_cutoff(datetime(2025, 11, 5, 23, 59)) == date(2025, 7, 1)
        assert archive_cutoff("2025-11-05") == date(2025, 7, 1)

    def test_cutoff_never_moves_backwards(self):
        """Test the cutoff is non-decreasing over two years of daily evaluations."""
        day = date(2024, 1, 1)
        previous = archive_cutoff(day)
        for _ in range(730):
            day += timedelta(days=1)
            current = archive_cutoff(day)
            assert current >= previous
            previous = current


class TestAgingPredicate:
    """Test suite for the aging predicate."""

    def test_applies_before_cutoff(self):
        """Test rows strictly before the cutoff age out."""
        predicate = AgingPredicate("transaction_date")
        evaluation = date(2025, 11, 5)

        assert predicate.applies(date(2025, 6, 30), evaluation) is True
        assert predicate.applies(date(2025, 7, 1), evaluation) is False
        assert predicate.applies(date(2025, 11, 1), evaluation) is False

    def test_null_never_applies(self):
        """Test NULL dates are never archived."""
        predicate = AgingPredicate("transaction_date")
        assert predicate.applies(None, date(2030, 1, 1)) is False

    def test_once_true_stays_true(self):
        """Test monotonicity for a fixed row over later evaluation dates."""
        predicate = AgingPredicate("transaction_date")
        row_date = date(2024, 12, 31)
        evaluation = date(2025, 1, 1)
        seen_true = False
        for _ in range(400):
            result = predicate.applies(row_date, evaluation)
            if seen_true:
                assert result is True
            seen_true = seen_true or result
            evaluation += timedelta(days=1)
        assert seen_true

    def test_column_normalized(self):
        """Test column names are case-insensitive."""
        assert AgingPredicate("Transaction_Date").column == "transaction_date"

    @pytest.mark.parametrize("column", ["", "1col", "bad-name", "drop table"])
    def test_invalid_column_rejected(self, column):
        """Test malformed column names are rejected."""
        with pytest.raises(ValueError):
            AgingPredicate(column)

    def test_to_sql(self):
        """Test the predicate renders as a parameterized condition."""
        sql, params = AgingPredicate("transaction_date").to_sql(date(2025, 11, 5))

        assert sql == '"transaction_date" < ?'
        assert params == [date(2025, 7, 1)]

    def test_expression_and_signature(self):
        """Test the policy body and signature as displayed by DESCRIBE."""
        predicate = AgingPredicate("transaction_date", quarters_back=2)

        assert predicate.signature() == "(transaction_date DATE) RETURNS BOOLEAN"
        assert predicate.expression() == (
            "transaction_date < date_trunc(quarter, dateadd(quarter, -2, current_date()))"
        )
