"""
Income schedule math -- cadence intervals and payout projections.

Day-based cadences advance by a fixed number of days.  Month-based cadences
(monthly, quarterly, yearly) advance by calendar months, clamping the day to
the end of shorter months (Jan 31 + 1 month = Feb 28/29).
"""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta
from enum import Enum


class Cadence(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


_DAY_INTERVALS = {
    Cadence.DAILY: 1,
    Cadence.WEEKLY: 7,
    Cadence.BIWEEKLY: 14,
}

_MONTH_INTERVALS = {
    Cadence.MONTHLY: 1,
    Cadence.QUARTERLY: 3,
    Cadence.YEARLY: 12,
}


def add_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def next_scheduled_at(
    cadence: Cadence | str,
    reference: datetime | None,
    fallback: datetime,
) -> datetime:
    """One cadence interval after ``reference`` (or ``fallback`` when None)."""
    cadence = Cadence(cadence)
    base = reference if reference is not None else fallback
    if cadence in _MONTH_INTERVALS:
        return add_months(base, _MONTH_INTERVALS[cadence])
    return base + timedelta(days=_DAY_INTERVALS[cadence])


def advance_past(cadence: Cadence | str, scheduled: datetime, now: datetime) -> datetime:
    """First occurrence strictly after ``now``, stepping from ``scheduled``."""
    moment = scheduled
    while moment <= now:
        moment = next_scheduled_at(cadence, moment, now)
    return moment


def monthly_amount_cents(amount_cents: int, cadence: Cadence | str) -> int:
    """Approximate monthly income for a per-payout amount."""
    cadence = Cadence(cadence)
    if cadence == Cadence.DAILY:
        return amount_cents * 30
    if cadence == Cadence.WEEKLY:
        return amount_cents * 4
    if cadence == Cadence.BIWEEKLY:
        return amount_cents * 2
    if cadence == Cadence.QUARTERLY:
        return round(amount_cents / 3)
    if cadence == Cadence.YEARLY:
        return round(amount_cents / 12)
    return amount_cents


def project_payouts(cadence: Cadence | str, start: datetime, count: int) -> list[datetime]:
    """The next ``count`` payout times, starting with ``start`` itself."""
    moments: list[datetime] = []
    moment = start
    for _ in range(max(0, count)):
        moments.append(moment)
        moment = next_scheduled_at(cadence, moment, moment)
    return moments
