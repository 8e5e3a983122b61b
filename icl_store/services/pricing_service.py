from __future__ import annotations

from dataclasses import dataclass, field

from icl_store.core.errors import (
    EmptyCart,
    InsufficientBalance,
    InvalidAmount,
    InvalidRedemption,
    RedemptionExceedsOrderValue,
)
from icl_store.core.settings import PricingConfig


@dataclass(frozen=True)
class CartLine:
    product_id: int
    name: str
    size: str
    quantity: int
    unit_price: int
    coins_reward: int = 0

    @property
    def line_total(self) -> int:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class CartSnapshot:
    lines: tuple[CartLine, ...] = field(default_factory=tuple)
    discount_amount: int = 0
    coupon_code: str | None = None
    free_shipping: bool = False

    @property
    def subtotal(self) -> int:
        return sum(line.line_total for line in self.lines)


@dataclass(frozen=True)
class PricingResult:
    subtotal: int
    discount_amount: int
    coins_requested: int
    coins_used: int
    coins_discount: int
    coins_clamped: bool
    shipping_cost: int
    total: int
    coins_earned: int


def coins_for_request(use_coins: bool, coins: int | None, config: PricingConfig) -> int:
    """Turn the checkout redemption fields into a coin count.

    In ``flat`` mode the only redemption on offer is the fixed block; an
    explicit amount is accepted only when it equals that block.
    """
    if config.redemption_mode == "arbitrary":
        if coins is not None:
            return coins
        return config.flat_redemption if use_coins else 0

    if coins is not None and coins not in (0, config.flat_redemption):
        raise InvalidRedemption(f"only {config.flat_redemption} coins can be redeemed per order")
    if coins is not None:
        return coins
    return config.flat_redemption if use_coins else 0


def shipping_for(subtotal: int, payment_method: str, free_shipping: bool, config: PricingConfig) -> int:
    # strictly above the threshold ships free; exactly at it still pays
    if free_shipping or subtotal > config.free_shipping_threshold:
        cost = 0
    else:
        cost = config.flat_shipping_fee
    if payment_method == "cod":
        cost += config.cod_surcharge
    return cost


def coins_earned_for(cart: CartSnapshot, amount_paid: int, config: PricingConfig) -> int:
    from_products = sum(line.coins_reward * line.quantity for line in cart.lines)
    if from_products > 0:
        return from_products
    if config.currency_per_coin_earned <= 0:
        return 0
    return amount_paid // config.currency_per_coin_earned


def quote(
    cart: CartSnapshot,
    payment_method: str,
    coins_requested: int,
    balance: int,
    config: PricingConfig,
) -> PricingResult:
    """Price a cart snapshot against a balance. No I/O."""
    if not cart.lines:
        raise EmptyCart("cart is empty")
    if coins_requested < 0:
        raise InvalidAmount("coins requested cannot be negative")
    if coins_requested > balance:
        raise InsufficientBalance(coins_requested, balance)

    subtotal = cart.subtotal
    discount = min(cart.discount_amount, subtotal)
    discountable = subtotal - discount

    unit = max(config.coin_unit_value, 1)
    redeemable = discountable // unit
    coins_used = coins_requested
    clamped = False
    if coins_requested > redeemable:
        if not config.clamp_redemption:
            raise RedemptionExceedsOrderValue(coins_requested, redeemable)
        coins_used = redeemable
        clamped = True
    coins_discount = coins_used * unit

    shipping = shipping_for(subtotal, payment_method, cart.free_shipping, config)
    total = max(0, discountable - coins_discount) + shipping

    return PricingResult(
        subtotal=subtotal,
        discount_amount=discount,
        coins_requested=coins_requested,
        coins_used=coins_used,
        coins_discount=coins_discount,
        coins_clamped=clamped,
        shipping_cost=shipping,
        total=total,
        coins_earned=coins_earned_for(cart, total, config),
    )
