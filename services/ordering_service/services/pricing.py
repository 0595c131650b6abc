"""Order total calculation with promotion and coupon discounts."""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from libs.common.currency import ZERO, round_cents, to_decimal
from services.ordering_service.services.coupons import CouponValidation


@dataclass
class OrderQuote:
    """Running price of a checkout.

    Holds at most one coupon. Promotion and coupon discounts stack, but the
    combined discount never exceeds what is being paid for, so the total
    cannot go below zero.
    """

    subtotal: Decimal
    delivery_fee: Decimal = ZERO
    promotion_discount: Decimal = ZERO
    coupon_code: Optional[str] = None
    coupon_discount: Decimal = ZERO
    coupon_error: Optional[str] = None
    _coupon: Optional[CouponValidation] = field(default=None, repr=False)

    def __post_init__(self):
        self.subtotal = round_cents(self.subtotal)
        self.delivery_fee = round_cents(self.delivery_fee)
        self.promotion_discount = round_cents(self.promotion_discount)

    @property
    def gross(self) -> Decimal:
        return self.subtotal + self.delivery_fee

    @property
    def discount_total(self) -> Decimal:
        return min(self.promotion_discount + self.coupon_discount, self.gross)

    @property
    def total(self) -> Decimal:
        return max(self.gross - self.discount_total, ZERO)

    def apply_coupon(self, validation: CouponValidation) -> bool:
        """Replace any applied coupon with ``validation``'s result.

        A rejected validation clears the previous coupon and keeps its message
        in ``coupon_error``.
        """
        self.remove_coupon()
        if not validation.valid:
            self.coupon_error = validation.message
            return False

        self._coupon = validation
        self.coupon_code = validation.code
        self.coupon_discount = min(to_decimal(validation.discount_amount), self.subtotal)
        return True

    def remove_coupon(self) -> None:
        self._coupon = None
        self.coupon_code = None
        self.coupon_discount = ZERO
        self.coupon_error = None

    @property
    def coupon_id(self):
        return self._coupon.coupon_id if self._coupon else None
