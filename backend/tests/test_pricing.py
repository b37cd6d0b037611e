"""Tests for the pricing calculator."""

from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from cyclepay.core.errors import ValidationError
from cyclepay.models.plan import Plan
from cyclepay.models.subscription import PriceOrigin
from cyclepay.services.pricing import (
    QuotaTier,
    compute_custom_quota_price,
    compute_payout_amounts,
    compute_pro_rata,
    compute_standard_price,
    tiers_from_plans,
)

TIERS = [QuotaTier(quota=10, price=Decimal("100.00")), QuotaTier(quota=20, price=Decimal("180.00"))]


class TestStandardPrice:
    def test_list_price_without_promotion(self):
        plan = Plan(slug="essential", price=Decimal("49.90"), promotion_active=False)
        price = compute_standard_price(plan)
        assert price.amount == Decimal("49.90")
        assert price.origin == PriceOrigin.NORMAL

    def test_promotional_price_when_active(self):
        plan = Plan(
            slug="essential",
            price=Decimal("49.90"),
            promotional_price=Decimal("29.90"),
            promotion_active=True,
        )
        price = compute_standard_price(plan)
        assert price.amount == Decimal("29.90")
        assert price.origin == PriceOrigin.PROMOTIONAL

    def test_promotion_flag_without_price_falls_back_to_list(self):
        plan = Plan(slug="essential", price=Decimal("49.90"), promotion_active=True)
        assert compute_standard_price(plan).origin == PriceOrigin.NORMAL


class TestProRata:
    def test_half_cycle(self):
        now = datetime(2026, 3, 1, 0, 0, tzinfo=UTC)
        amount = compute_pro_rata(Decimal("30.00"), date(2026, 3, 16), now=now)
        assert amount == Decimal("15.00")

    def test_partial_day_counts_as_full_day(self):
        now = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
        # 14.5 days left, rounded up to 15
        amount = compute_pro_rata(Decimal("30.00"), date(2026, 3, 16), now=now)
        assert amount == Decimal("15.00")

    def test_remaining_days_clamped_to_cycle_length(self):
        now = datetime(2026, 1, 1, tzinfo=UTC)
        amount = compute_pro_rata(Decimal("30.00"), date(2026, 3, 1), now=now)
        assert amount == Decimal("30.00")

    def test_minimum_charge_for_positive_delta(self):
        now = datetime(2026, 3, 16, tzinfo=UTC)
        amount = compute_pro_rata(Decimal("0.10"), date(2026, 3, 17), now=now)
        assert amount == Decimal("0.01")

        elapsed = compute_pro_rata(Decimal("30.00"), date(2026, 3, 1), now=now)
        assert elapsed == Decimal("0.01")

    def test_custom_minimum_charge(self):
        now = datetime(2026, 3, 16, tzinfo=UTC)
        amount = compute_pro_rata(
            Decimal("30.00"), date(2026, 3, 17), min_charge=Decimal("5.00"), now=now
        )
        assert amount == Decimal("5.00")

    def test_non_positive_delta_returned_unchanged(self):
        now = datetime(2026, 3, 1, tzinfo=UTC)
        assert compute_pro_rata(Decimal("-20.00"), date(2026, 3, 16), now=now) == Decimal("-20.00")
        assert compute_pro_rata(Decimal("0"), date(2026, 3, 16), now=now) == Decimal("0")

    def test_unknown_cycle_end_bills_full_delta(self):
        assert compute_pro_rata(Decimal("30.00"), None) == Decimal("30.00")

    def test_invalid_cycle_length(self):
        with pytest.raises(ValidationError):
            compute_pro_rata(Decimal("30.00"), date(2026, 3, 16), cycle_length_days=0)


class TestCustomQuotaPrice:
    def test_exact_tier(self):
        assert compute_custom_quota_price(10, TIERS, Decimal("2.50")) == Decimal("100.00")
        assert compute_custom_quota_price(20, TIERS, Decimal("2.50")) == Decimal("180.00")

    def test_between_tiers_uses_smallest_fitting_unit_price(self):
        # 15 units at 180/20 = 9.00 each
        assert compute_custom_quota_price(15, TIERS, Decimal("2.50")) == Decimal("135.00")

    def test_below_smallest_tier(self):
        # 5 units at 100/10 = 10.00 each
        assert compute_custom_quota_price(5, TIERS, Decimal("2.50")) == Decimal("50.00")

    def test_above_largest_tier_adds_overage(self):
        assert compute_custom_quota_price(24, TIERS, Decimal("2.50")) == Decimal("190.00")

    def test_tier_order_does_not_matter(self):
        reversed_tiers = list(reversed(TIERS))
        assert compute_custom_quota_price(15, reversed_tiers, Decimal("2.50")) == Decimal("135.00")

    def test_non_positive_quota_rejected(self):
        with pytest.raises(ValidationError):
            compute_custom_quota_price(0, TIERS, Decimal("2.50"))

    def test_no_tiers_rejected(self):
        with pytest.raises(ValidationError):
            compute_custom_quota_price(5, [], Decimal("2.50"))

    def test_tiers_from_plans_skips_plans_without_quota(self):
        plans = [
            Plan(slug="professional", price=Decimal("99.00")),
            Plan(slug="professional-10", price=Decimal("100.00"), quota=10),
        ]
        assert tiers_from_plans(plans) == [QuotaTier(quota=10, price=Decimal("100.00"))]


class TestPayoutAmounts:
    def test_fee_is_deducted(self):
        amounts = compute_payout_amounts(Decimal("150.00"), Decimal("0.99"))
        assert amounts.gross == Decimal("150.00")
        assert amounts.fee == Decimal("0.99")
        assert amounts.net == Decimal("149.01")

    def test_net_can_be_non_positive(self):
        assert compute_payout_amounts(Decimal("0.50"), Decimal("0.99")).net == Decimal("-0.49")
