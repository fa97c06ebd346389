"""Rental pricing from tiered daily/weekly/monthly rates.

A date range is priced by decomposing its length in days into whole months
(30 days), then whole weeks (7 days), then remaining single days:

    days = (end - start).days
    months, rest = divmod(days, 30)
    weeks, remaining_days = divmod(rest, 7)
    total = months * monthly + weeks * weekly + remaining_days * daily

The end date is exclusive, so 2024-01-01 -> 2024-01-02 is one day. The deposit
is passed through from the price table and never decomposed. Both the
appliance quote endpoint and rental creation go through ``compute_rental_cost``
so a quoted total always matches the stored one.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime
from numbers import Real

from .errors import ValidationError

DAYS_PER_MONTH = 30
DAYS_PER_WEEK = 7


def as_date(value) -> date:
    """Coerce a date, datetime or 'YYYY-MM-DD' (optionally ISO with T) string to a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return date.fromisoformat(value.strip().split("T", 1)[0])
        except ValueError:
            pass
    raise ValidationError(f"Invalid date {value!r}, expected YYYY-MM-DD", error="invalid_date")


def _amount(name: str, value) -> float:
    if isinstance(value, bool) or not isinstance(value, (Real, str)):
        raise ValidationError(f"pricing.{name} must be a number", error="invalid_pricing")
    try:
        number = float(value)
    except ValueError:
        raise ValidationError(f"pricing.{name} must be a number", error="invalid_pricing") from None
    if not math.isfinite(number) or number < 0:
        raise ValidationError(f"pricing.{name} must be a finite non-negative number", error="invalid_pricing")
    return number


@dataclass(frozen=True)
class PricingTiers:
    """Price table of an appliance, all amounts in the same currency unit."""

    daily: float
    weekly: float
    monthly: float
    deposit: float = 0.0

    def __post_init__(self) -> None:
        for name in ("daily", "weekly", "monthly", "deposit"):
            object.__setattr__(self, name, _amount(name, getattr(self, name)))

    @classmethod
    def from_payload(cls, data) -> "PricingTiers":
        if not isinstance(data, dict):
            raise ValidationError("pricing must be an object with daily, weekly, monthly and deposit",
                                  error="invalid_pricing")
        missing = [k for k in ("daily", "weekly", "monthly", "deposit") if data.get(k) is None]
        if missing:
            raise ValidationError(f"pricing is missing: {', '.join(missing)}", error="invalid_pricing")
        return cls(daily=data["daily"], weekly=data["weekly"], monthly=data["monthly"], deposit=data["deposit"])

    def to_dict(self) -> dict[str, float]:
        return {"daily": self.daily, "weekly": self.weekly, "monthly": self.monthly, "deposit": self.deposit}


@dataclass(frozen=True)
class RentalCost:
    days: int
    months: int
    weeks: int
    remaining_days: int
    total_amount: float
    deposit: float
    tiers: PricingTiers

    @property
    def breakdown(self) -> dict[str, dict[str, float]]:
        return {
            "monthly": {"units": self.months, "rate": self.tiers.monthly,
                        "amount": round(self.months * self.tiers.monthly, 2)},
            "weekly": {"units": self.weeks, "rate": self.tiers.weekly,
                       "amount": round(self.weeks * self.tiers.weekly, 2)},
            "daily": {"units": self.remaining_days, "rate": self.tiers.daily,
                      "amount": round(self.remaining_days * self.tiers.daily, 2)},
        }

    def to_dict(self) -> dict[str, object]:
        return {
            "days": self.days,
            "months": self.months,
            "weeks": self.weeks,
            "remaining_days": self.remaining_days,
            "total_amount": self.total_amount,
            "deposit": self.deposit,
            "breakdown": self.breakdown,
        }


def days_between(start, end) -> int:
    """Whole days from start to end, end exclusive."""
    d1, d2 = as_date(start), as_date(end)
    if d2 < d1:
        raise ValidationError("end_date must not be before start_date", error="invalid_date_range")
    return (d2 - d1).days


def compute_rental_cost(start, end, tiers: PricingTiers) -> RentalCost:
    days = days_between(start, end)
    months, rest = divmod(days, DAYS_PER_MONTH)
    weeks, remaining_days = divmod(rest, DAYS_PER_WEEK)
    total = months * tiers.monthly + weeks * tiers.weekly + remaining_days * tiers.daily
    return RentalCost(
        days=days,
        months=months,
        weeks=weeks,
        remaining_days=remaining_days,
        total_amount=round(total, 2),
        deposit=tiers.deposit,
        tiers=tiers,
    )
