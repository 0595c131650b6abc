"""Unit tests for promotion discounting and active-promotion lookups."""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from libs.common.datetime_utils import utc_now
from services.ordering_service.models import DiscountType, OrderType
from services.ordering_service.services.promotions import (
    best_promotion_discount,
    calculate_promotion_discount,
    hero_promotions,
    list_active_promotions,
    promotion_applies_to_order_type,
)
from tests.factories import PromotionFactory, persist

# ---------------------------------------------------------------------------
# calculate_promotion_discount
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_percentage_discount():
    promo = PromotionFactory.create(discount_value=Decimal("20"))
    assert calculate_promotion_discount(Decimal("12.50"), promo) == Decimal("2.5")


@pytest.mark.unit
def test_fixed_discount():
    promo = PromotionFactory.create(
        discount_type=DiscountType.FIXED, discount_value=Decimal("3.00")
    )
    assert calculate_promotion_discount(Decimal("12.50"), promo) == Decimal("3.00")


@pytest.mark.unit
def test_cap_is_binding_when_lower_than_raw_discount():
    promo = PromotionFactory.create(
        discount_value=Decimal("50"), max_discount_amount=Decimal("4.00")
    )
    assert calculate_promotion_discount(Decimal("20.00"), promo) == Decimal("4.00")


@pytest.mark.unit
def test_cap_above_raw_discount_is_ignored():
    promo = PromotionFactory.create(
        discount_value=Decimal("10"), max_discount_amount=Decimal("10.00")
    )
    assert calculate_promotion_discount(Decimal("20.00"), promo) == Decimal("2")


@pytest.mark.unit
def test_fixed_discount_never_exceeds_price():
    promo = PromotionFactory.create(
        discount_type=DiscountType.FIXED, discount_value=Decimal("15.00")
    )
    assert calculate_promotion_discount(Decimal("9.90"), promo) == Decimal("9.90")


@pytest.mark.unit
def test_percentage_over_hundred_is_clamped_to_price():
    promo = PromotionFactory.create(discount_value=Decimal("150"))
    assert calculate_promotion_discount(Decimal("8.00"), promo) == Decimal("8.00")


@pytest.mark.unit
def test_negative_discount_value_is_clamped_to_zero():
    promo = PromotionFactory.create(
        discount_type=DiscountType.FIXED, discount_value=Decimal("-2.00")
    )
    assert calculate_promotion_discount(Decimal("8.00"), promo) == Decimal("0")


@pytest.mark.unit
@pytest.mark.parametrize("price", [Decimal("0"), Decimal("-1.00")])
def test_non_positive_price_gets_no_discount(price):
    promo = PromotionFactory.create()
    assert calculate_promotion_discount(price, promo) == Decimal("0")


@pytest.mark.unit
@pytest.mark.parametrize(
    "discount_type, value, cap, price",
    [
        (DiscountType.PERCENTAGE, "10", None, "0.01"),
        (DiscountType.PERCENTAGE, "99.99", "1.00", "250.00"),
        (DiscountType.PERCENTAGE, "100", None, "13.37"),
        (DiscountType.FIXED, "5.00", None, "4.99"),
        (DiscountType.FIXED, "5.00", "0", "20.00"),
        (DiscountType.FIXED, "0.50", "10.00", "1000.00"),
    ],
)
def test_discount_always_within_zero_and_price(discount_type, value, cap, price):
    promo = PromotionFactory.create(
        discount_type=discount_type,
        discount_value=Decimal(value),
        max_discount_amount=Decimal(cap) if cap is not None else None,
    )
    result = calculate_promotion_discount(Decimal(price), promo)
    assert Decimal("0") <= result <= Decimal(price)


@pytest.mark.unit
def test_min_order_amount_checked_against_order_total():
    promo = PromotionFactory.create(min_order_amount=Decimal("30.00"))
    assert calculate_promotion_discount(Decimal("10.00"), promo, order_total=25) == 0
    assert calculate_promotion_discount(
        Decimal("10.00"), promo, order_total=30
    ) == Decimal("1")
    # Without an order total the minimum is not checked
    assert calculate_promotion_discount(Decimal("10.00"), promo) == Decimal("1")


@pytest.mark.unit
def test_best_promotion_discount_picks_largest():
    small = PromotionFactory.create(name="small", discount_value=Decimal("5"))
    large = PromotionFactory.create(
        name="large", discount_type=DiscountType.FIXED, discount_value=Decimal("2.00")
    )
    amount, promo = best_promotion_discount(Decimal("10.00"), [small, large])
    assert amount == Decimal("2.00")
    assert promo.name == "large"

    assert best_promotion_discount(Decimal("10.00"), []) == (Decimal("0.00"), None)


# ---------------------------------------------------------------------------
# promotion_applies_to_order_type
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_unrestricted_promotion_applies_everywhere():
    promo = PromotionFactory.create()
    for order_type in OrderType:
        assert promotion_applies_to_order_type(promo, order_type)


@pytest.mark.unit
def test_flagged_promotion_applies_only_to_flagged_types():
    promo = PromotionFactory.create(pickup_only=True, dine_in_only=True)
    assert promotion_applies_to_order_type(promo, "pickup")
    assert promotion_applies_to_order_type(promo, OrderType.DINE_IN)
    assert not promotion_applies_to_order_type(promo, OrderType.DELIVERY)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_list_active_promotions_filters_window_scope_and_type(db_session):
    branch_id, other_branch = uuid.uuid4(), uuid.uuid4()
    category_id = uuid.uuid4()
    now = utc_now()

    await persist(
        db_session,
        PromotionFactory.create(name="everywhere", discount_value=Decimal("5")),
        PromotionFactory.create(
            name="this-branch", branch_id=branch_id, discount_value=Decimal("15")
        ),
        PromotionFactory.create(
            name="other-branch", branch_id=other_branch, discount_value=Decimal("20")
        ),
        PromotionFactory.create(
            name="category", category_id=category_id, discount_value=Decimal("10")
        ),
        PromotionFactory.create(
            name="delivery-only", delivery_only=True, discount_value=Decimal("12")
        ),
        PromotionFactory.create(name="inactive", is_active=False),
        PromotionFactory.create(
            name="expired",
            start_date=now - timedelta(days=10),
            end_date=now - timedelta(days=1),
        ),
        PromotionFactory.create(
            name="upcoming",
            start_date=now + timedelta(days=1),
            end_date=now + timedelta(days=5),
        ),
    )

    found = await list_active_promotions(
        db_session,
        category_id=category_id,
        branch_id=branch_id,
        order_type=OrderType.PICKUP,
    )
    assert [p.name for p in found] == ["this-branch", "category", "everywhere"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_hero_promotions_limited_and_ordered(db_session):
    await persist(
        db_session,
        *[
            PromotionFactory.create(name=f"p{i}", discount_value=Decimal(i))
            for i in range(1, 8)
        ],
    )
    hero = await hero_promotions(db_session, limit=3)
    assert [p.name for p in hero] == ["p7", "p6", "p5"]
