"""
Savings goal domain rules: progress math, completion, recurring due policy.

Pure functions only, no database access. Calendar decisions are made in UTC.

Frequencies:
- daily: one auto-debit per UTC calendar day
- weekly: one auto-debit per 7 elapsed days
- monthly: one auto-debit per UTC (year, month)
- custom: never auto-debited
"""
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal

from app.utils.money import ceil_cents
from app.utils.time import as_utc

FREQ_DAILY = "daily"
FREQ_WEEKLY = "weekly"
FREQ_MONTHLY = "monthly"
FREQ_CUSTOM = "custom"

VALID_FREQUENCIES = frozenset({FREQ_DAILY, FREQ_WEEKLY, FREQ_MONTHLY, FREQ_CUSTOM})
SCHEDULED_FREQUENCIES = (FREQ_DAILY, FREQ_WEEKLY, FREQ_MONTHLY)

METHOD_MANUAL = "manual"
METHOD_AUTO_DEBIT = "auto-debit"
PROVIDER_METHODS = frozenset({"mpesa", "card", "bank"})
VALID_METHODS = frozenset({METHOD_MANUAL, METHOD_AUTO_DEBIT}) | PROVIDER_METHODS
# auto-debit is written by the scheduler only
CLIENT_METHODS = frozenset({METHOD_MANUAL}) | PROVIDER_METHODS

CONTRIBUTION_COMPLETED = "completed"

WEEKLY_INTERVAL = timedelta(days=7)


def compute_progress(current_amount: Decimal, target_amount: Decimal) -> Decimal:
    """
    Progress in percent, unrounded. May exceed 100 on overshoot.

    Raises:
        ValueError: if target_amount is not positive
    """
    if target_amount <= 0:
        raise ValueError("target_amount must be positive")
    return current_amount / target_amount * Decimal(100)


def is_goal_reached(current_amount: Decimal, target_amount: Decimal) -> bool:
    return current_amount >= target_amount


def is_contribution_due(frequency: str, last_contribution: datetime | None, now: datetime) -> bool:
    """
    Decide whether a recurring auto-debit is due for this period.

    Args:
        frequency: goal frequency
        last_contribution: last recorded contribution of any kind (None = never)
        now: evaluation instant

    Returns:
        True if a new auto-debit should be made
    """
    if frequency not in SCHEDULED_FREQUENCIES:
        return False
    if last_contribution is None:
        return True

    last = as_utc(last_contribution)
    current = as_utc(now)

    if frequency == FREQ_DAILY:
        return last.date() != current.date()
    if frequency == FREQ_WEEKLY:
        return current - last >= WEEKLY_INTERVAL
    return (last.year, last.month) != (current.year, current.month)


def period_key(frequency: str, last_contribution: datetime | None, now: datetime) -> str:
    """
    Stable label of the period an auto-debit belongs to.

    Two scheduler runs that see the same goal state produce the same key, so the
    unique idempotency key on contributions rejects the second debit.
    """
    current = as_utc(now)
    if frequency == FREQ_DAILY:
        return current.date().isoformat()
    if frequency == FREQ_MONTHLY:
        return f"{current.year:04d}-{current.month:02d}"
    if last_contribution is None:
        return "first"
    return "after-" + as_utc(last_contribution).isoformat()


def auto_debit_key(goal_id: int, frequency: str, last_contribution: datetime | None, now: datetime) -> str:
    return f"{METHOD_AUTO_DEBIT}:{goal_id}:{period_key(frequency, last_contribution, now)}"


def manual_contribution_key(goal_id: int, client_key: str) -> str:
    """Client Idempotency-Key scoped to one goal, so keys never clash across goals or users"""
    return f"{METHOD_MANUAL}:{goal_id}:{client_key}"


@dataclass(frozen=True)
class SavingsPlan:
    frequency: str
    amount_per_period: Decimal
    total_periods: int
    estimated_completion: date


def calculate_savings_plan(
    target_amount: Decimal,
    frequency: str,
    target_date: date,
    today: date,
) -> SavingsPlan:
    """
    Amount to save per period to reach target_amount by target_date.

    Raises:
        ValueError: unknown frequency, non-positive target or a target date
            that leaves no whole period
    """
    if frequency not in VALID_FREQUENCIES:
        raise ValueError(f"invalid frequency: {frequency}")
    if target_amount <= 0:
        raise ValueError("target_amount must be positive")

    days = (target_date - today).days
    if frequency == FREQ_DAILY:
        periods = days
    elif frequency == FREQ_WEEKLY:
        periods = math.ceil(days / 7)
    elif frequency == FREQ_MONTHLY:
        periods = (target_date.year - today.year) * 12 + (target_date.month - today.month)
    else:
        periods = 1

    if periods < 1:
        raise ValueError("target_date is too close to fit a single period")

    return SavingsPlan(
        frequency=frequency,
        amount_per_period=ceil_cents(target_amount / periods),
        total_periods=periods,
        estimated_completion=target_date,
    )
