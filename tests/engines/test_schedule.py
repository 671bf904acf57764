"""
Tests for income schedule math.

Covers:
- Day cadences step by fixed days, month cadences by calendar months
- Month-end clamping (Jan 31 + 1 month = Feb 29 in a leap year)
- advance_past returns the first occurrence strictly after now
- monthly_amount_cents approximations
- project_payouts starts at the given moment
"""

from datetime import datetime, timezone

import pytest

from guardrail_engines.schedule import (
    Cadence,
    add_months,
    advance_past,
    monthly_amount_cents,
    next_scheduled_at,
    project_payouts,
)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestNextScheduledAt:
    @pytest.mark.parametrize(
        "cadence, expected",
        [
            (Cadence.DAILY, utc(2024, 1, 2, 9)),
            (Cadence.WEEKLY, utc(2024, 1, 8, 9)),
            (Cadence.BIWEEKLY, utc(2024, 1, 15, 9)),
            (Cadence.MONTHLY, utc(2024, 2, 1, 9)),
            (Cadence.QUARTERLY, utc(2024, 4, 1, 9)),
            (Cadence.YEARLY, utc(2025, 1, 1, 9)),
        ],
    )
    def test_one_interval(self, cadence, expected):
        assert next_scheduled_at(cadence, utc(2024, 1, 1, 9), utc(2030, 1, 1)) == expected

    def test_falls_back_when_no_reference(self):
        assert next_scheduled_at("weekly", None, utc(2024, 3, 1)) == utc(2024, 3, 8)

    def test_unknown_cadence_rejected(self):
        with pytest.raises(ValueError):
            next_scheduled_at("fortnightly", None, utc(2024, 3, 1))


class TestAddMonths:
    def test_clamps_to_leap_february(self):
        assert add_months(utc(2024, 1, 31), 1) == utc(2024, 2, 29)

    def test_clamps_to_short_february(self):
        assert add_months(utc(2023, 1, 31), 1) == utc(2023, 2, 28)

    def test_crosses_year_boundary(self):
        assert add_months(utc(2024, 11, 15), 3) == utc(2025, 2, 15)


class TestAdvancePast:
    def test_skips_missed_occurrences(self):
        assert advance_past(Cadence.WEEKLY, utc(2024, 1, 1), utc(2024, 1, 20)) == utc(2024, 1, 22)

    def test_occurrence_equal_to_now_is_not_after_now(self):
        assert advance_past(Cadence.DAILY, utc(2024, 1, 1, 12), utc(2024, 1, 1, 12)) == utc(2024, 1, 2, 12)

    def test_future_occurrence_is_kept(self):
        assert advance_past(Cadence.MONTHLY, utc(2024, 5, 1), utc(2024, 1, 1)) == utc(2024, 5, 1)


class TestMonthlyAmount:
    @pytest.mark.parametrize(
        "cadence, expected",
        [
            (Cadence.DAILY, 3000),
            (Cadence.WEEKLY, 400),
            (Cadence.BIWEEKLY, 200),
            (Cadence.MONTHLY, 100),
            (Cadence.QUARTERLY, 33),
            (Cadence.YEARLY, 8),
        ],
    )
    def test_approximation(self, cadence, expected):
        assert monthly_amount_cents(100, cadence) == expected


class TestProjectPayouts:
    def test_starts_at_start(self):
        assert project_payouts(Cadence.BIWEEKLY, utc(2024, 1, 5), 3) == [
            utc(2024, 1, 5),
            utc(2024, 1, 19),
            utc(2024, 2, 2),
        ]

    def test_non_positive_count_is_empty(self):
        assert project_payouts(Cadence.DAILY, utc(2024, 1, 5), 0) == []
        assert project_payouts(Cadence.DAILY, utc(2024, 1, 5), -2) == []
