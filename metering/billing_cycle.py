"""
Billing cycle arithmetic.

Free users (and paid users without a recorded subscription start) are billed
per calendar month. Subscribed users get monthly windows anchored on the day
of month their subscription started, clamped to the length of shorter months
(a subscription started on the 31st renews on Feb 28/29, Apr 30, ...).

All functions are pure: the current time is always passed in.
"""

import calendar
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional

from metering.tiers import resolve_tier
from models.base import PlanTier


@dataclass(frozen=True)
class BillingCycle:
    start: date
    end: date  # inclusive

    @property
    def resets_at(self) -> datetime:
        """First instant of the next cycle."""
        return datetime.combine(self.end + timedelta(days=1), time.min)

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


def _anchored(year: int, month: int, anchor_day: int) -> date:
    return date(year, month, min(anchor_day, calendar.monthrange(year, month)[1]))


def _shift_month(year: int, month: int, delta: int):
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def _anchor_day(user) -> Optional[int]:
    started = getattr(user, "subscription_started_at", None)
    if started is None or resolve_tier(user) == PlanTier.FREE:
        return None
    return started.day


def billing_cycle_for(user, now: Optional[datetime] = None) -> BillingCycle:
    """Cycle containing `now` for the given user."""
    today = (now or datetime.utcnow()).date()
    anchor_day = _anchor_day(user)

    if anchor_day is None:
        start = today.replace(day=1)
        end = today.replace(day=calendar.monthrange(today.year, today.month)[1])
        return BillingCycle(start=start, end=end)

    start = _anchored(today.year, today.month, anchor_day)
    if start > today:
        start = _anchored(*_shift_month(today.year, today.month, -1), anchor_day)
    next_start = _anchored(*_shift_month(start.year, start.month, 1), anchor_day)
    return BillingCycle(start=start, end=next_start - timedelta(days=1))


def billing_cycle_start(user, now: Optional[datetime] = None) -> date:
    return billing_cycle_for(user, now).start


def billing_cycle_end(user, now: Optional[datetime] = None) -> date:
    return billing_cycle_for(user, now).end
