"""Pricing calculator: list/promotional price, pro-rata deltas and custom quota prices."""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from cyclepay.core.errors import ValidationError
from cyclepay.models.plan import Plan
from cyclepay.models.shared import to_money, utc_now
from cyclepay.models.subscription import PriceOrigin
from cyclepay.services.subscription_dates import remaining_days

DEFAULT_CYCLE_LENGTH_DAYS = 30
DEFAULT_MIN_CHARGE = Decimal("0.01")


@dataclass(frozen=True)
class StandardPrice:
    amount: Decimal
    origin: PriceOrigin


@dataclass(frozen=True)
class QuotaTier:
    """One published sub-plan tier: ``price`` buys up to ``quota`` units."""

    quota: int
    price: Decimal


@dataclass(frozen=True)
class PayoutAmounts:
    gross: Decimal
    fee: Decimal
    net: Decimal


def round2(value: Decimal | int | float | str) -> Decimal:
    return to_money(value)


def compute_standard_price(plan: Plan) -> StandardPrice:
    """Promotional price while the plan's promotion is on, list price otherwise."""
    if plan.promotion_active and plan.promotional_price is not None:
        return StandardPrice(round2(plan.promotional_price), PriceOrigin.PROMOTIONAL)
    return StandardPrice(round2(plan.price or 0), PriceOrigin.NORMAL)


def compute_pro_rata(
    monthly_delta: Decimal | int | str,
    cycle_end: date | None,
    min_charge: Decimal = DEFAULT_MIN_CHARGE,
    cycle_length_days: int = DEFAULT_CYCLE_LENGTH_DAYS,
    now: datetime | date | None = None,
) -> Decimal:
    """Charge for the remainder of the current cycle.

    The remaining day count is rounded up and clamped to ``[0, cycle_length_days]``.
    A positive delta never yields less than ``min_charge``. Without a known
    ``cycle_end``, or for a non-positive delta, the delta is returned as is.
    """
    delta = Decimal(str(monthly_delta))
    if cycle_end is None or delta <= 0:
        return delta

    if cycle_length_days <= 0:
        raise ValidationError("Cycle length must be positive")

    days = min(remaining_days(cycle_end, now or utc_now()), cycle_length_days)
    value = round2(delta / Decimal(cycle_length_days) * Decimal(days))
    return max(value, round2(min_charge))


def compute_custom_quota_price(
    quota: int,
    tiers: Sequence[QuotaTier],
    overage_rate: Decimal,
) -> Decimal:
    """Price of an arbitrary quota against the published tiers.

    Inside the tier range the unit price of the smallest tier that fits is used.
    Above the largest tier, each extra unit costs ``overage_rate``.
    """
    if quota <= 0:
        raise ValidationError("Quota must be positive", details={"quota": quota})
    if not tiers:
        raise ValidationError("No quota tiers are published for this plan")

    ordered = sorted(tiers, key=lambda t: t.quota, reverse=True)
    largest = ordered[0]
    if quota > largest.quota:
        return round2(largest.price + Decimal(quota - largest.quota) * Decimal(overage_rate))

    fitting = [t for t in ordered if t.quota >= quota]
    tier = min(fitting, key=lambda t: t.quota)
    return round2(Decimal(quota) * tier.price / Decimal(tier.quota))


def tiers_from_plans(plans: Sequence[Plan]) -> list[QuotaTier]:
    return [
        QuotaTier(quota=int(p.quota), price=compute_standard_price(p).amount)
        for p in plans
        if p.quota
    ]


def compute_payout_amounts(gross: Decimal, platform_fee: Decimal) -> PayoutAmounts:
    """Split a collected amount into the platform fee and the driver's net payout."""
    gross = round2(gross)
    fee = round2(platform_fee)
    return PayoutAmounts(gross=gross, fee=fee, net=round2(gross - fee))
