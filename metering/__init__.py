"""
Usage metering and quota enforcement.

Modules:
    tiers: Plan tiers, per-cycle limits (UNLIMITED sentinel) and hourly rate limits
    billing_cycle: Pure billing-cycle arithmetic (calendar month or subscription anchored)
    usage_meter: Atomic counters, quota checks and reservations

Usage:
    from metering.usage_meter import UsageMeter

    meter = UsageMeter(async_session_maker)
    if await meter.can_perform_action(user, "satellite_analyses"):
        ...
"""

from metering.tiers import UNLIMITED, PLAN_LIMITS, RATE_LIMITS
from metering.billing_cycle import BillingCycle, billing_cycle_for, billing_cycle_start, billing_cycle_end
from metering.usage_meter import UsageMeter

__all__ = [
    "UNLIMITED",
    "PLAN_LIMITS",
    "RATE_LIMITS",
    "BillingCycle",
    "billing_cycle_for",
    "billing_cycle_start",
    "billing_cycle_end",
    "UsageMeter",
]
