# Overview: Pricing & discount engine; pure VAT and senior/PWD discount computation (no I/O).

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Iterable, Sequence

from ..money_utils import quantize
from ..validation import CUSTOMER_TYPES, ValidationError

"""
Pricing invariants (authoritative)

- Shelf prices are VAT-inclusive; VAT is extracted, never added:
    vat_amount = total * rate / (100 + rate), net_sales = total - vat_amount
- Regular customers: line total = unit_price * quantity (minus any manual line
  discount); total = subtotal + tax - discount.
- Senior / PWD customers: eligible lines are VAT-exempted first
  (net = gross / (1 + rate/100)), then the statutory discount applies to the
  VAT-exempted net. total = amount_due = sum of final line prices.
- Rounding is ROUND_HALF_UP to 0.01, applied once per line on the final
  values. Unit-level intermediates are never rounded. Totals are sums of the
  rounded line values.
"""

DEFAULT_VAT_RATE = Decimal("12")
DEFAULT_DISCOUNT_RATE = Decimal("20")
ZERO = Decimal("0")


def _as_decimal(value, field_name: str) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{field_name} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{field_name} must be a finite number")
    return result


def _check_rate(rate, field_name: str) -> Decimal:
    value = _as_decimal(rate, field_name)
    if value < 0 or value > 100:
        raise ValidationError(f"{field_name} must be between 0 and 100")
    return value


def _check_customer_type(customer_type: str) -> str:
    if customer_type not in CUSTOMER_TYPES:
        raise ValidationError(
            "Invalid customer type",
            details={"allowed": list(CUSTOMER_TYPES)},
        )
    return customer_type


@dataclass(frozen=True)
class VatBreakdown:
    total: Decimal
    vat_amount: Decimal
    net_sales: Decimal
    vat_rate: Decimal

    def to_dict(self) -> dict:
        return {
            "total": float(self.total),
            "vat_amount": float(self.vat_amount),
            "net_sales": float(self.net_sales),
            "vat_rate": float(self.vat_rate),
        }


def calculate_vat_from_inclusive(total, vat_rate=DEFAULT_VAT_RATE) -> VatBreakdown:
    """Extract VAT from a VAT-inclusive amount."""
    amount = _as_decimal(total, "total")
    if amount < 0:
        raise ValidationError("Total amount cannot be negative")
    rate = _check_rate(vat_rate, "VAT rate")

    vat_amount = amount * (rate / (100 + rate))
    net_sales = amount - vat_amount
    return VatBreakdown(
        total=quantize(amount),
        vat_amount=quantize(vat_amount),
        net_sales=quantize(net_sales),
        vat_rate=rate,
    )


def calculate_vat_from_exclusive(net_amount, vat_rate=DEFAULT_VAT_RATE) -> VatBreakdown:
    """Add VAT on top of a VAT-exclusive amount."""
    amount = _as_decimal(net_amount, "net amount")
    if amount < 0:
        raise ValidationError("Net amount cannot be negative")
    rate = _check_rate(vat_rate, "VAT rate")

    vat_amount = amount * (rate / 100)
    return VatBreakdown(
        total=quantize(amount + vat_amount),
        vat_amount=quantize(vat_amount),
        net_sales=quantize(amount),
        vat_rate=rate,
    )


def validate_vat_breakdown(breakdown: VatBreakdown) -> bool:
    """True when net_sales + vat_amount matches total within one cent."""
    drift = (breakdown.net_sales + breakdown.vat_amount) - breakdown.total
    return abs(drift) <= Decimal("0.01")


@dataclass(frozen=True)
class ItemDiscount:
    original_price: Decimal
    net_of_vat: Decimal
    vat_amount: Decimal
    discount_amount: Decimal
    final_price: Decimal
    vat_exempt: bool
    discount_applied: bool


def calculate_item_discount(
    price,
    is_discountable: bool,
    is_vat_exemptable: bool,
    customer_type: str,
    *,
    quantity: int = 1,
    vat_rate=DEFAULT_VAT_RATE,
    discount_rate=DEFAULT_DISCOUNT_RATE,
) -> ItemDiscount:
    """
    Senior/PWD discount for one line (price is the VAT-inclusive unit price).

    All amounts in the result are line-level (unit value * quantity), rounded
    once at the end.
    """
    unit_price = _as_decimal(price, "price")
    if unit_price < 0:
        raise ValidationError("Price cannot be negative")
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    rate = _check_rate(vat_rate, "VAT rate")
    statutory = _check_rate(discount_rate, "Discount rate")
    _check_customer_type(customer_type)

    gross = unit_price * quantity

    if customer_type == "regular" or (not is_discountable and not is_vat_exemptable):
        line = quantize(gross)
        return ItemDiscount(
            original_price=line,
            net_of_vat=line,
            vat_amount=ZERO,
            discount_amount=ZERO,
            final_price=line,
            vat_exempt=False,
            discount_applied=False,
        )

    net_of_vat = gross
    vat_amount = ZERO
    discount_amount = ZERO

    if is_vat_exemptable:
        net_of_vat = gross / (1 + rate / 100)
        vat_amount = gross - net_of_vat

    if is_discountable:
        discount_amount = net_of_vat * statutory / 100

    final_price = net_of_vat - discount_amount

    return ItemDiscount(
        original_price=quantize(gross),
        net_of_vat=quantize(net_of_vat),
        vat_amount=quantize(vat_amount),
        discount_amount=quantize(discount_amount),
        final_price=quantize(final_price),
        vat_exempt=bool(is_vat_exemptable),
        discount_applied=bool(is_discountable),
    )


@dataclass(frozen=True)
class PricingInput:
    product_id: int
    product_name: str
    unit_price: Decimal
    quantity: int
    is_discountable: bool = False
    is_vat_exemptable: bool = False
    # Manual line discount, regular customers only
    discount: Decimal = ZERO


@dataclass(frozen=True)
class PricedItem:
    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    discount: Decimal
    vat_exempt: bool
    discount_applied: bool
    discount_amount: Decimal
    final_price: Decimal

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": float(self.unit_price),
            "total_price": float(self.total_price),
            "discount": float(self.discount),
            "vat_exempt": self.vat_exempt,
            "discount_applied": self.discount_applied,
            "discount_amount": float(self.discount_amount),
            "final_price": float(self.final_price),
        }


@dataclass(frozen=True)
class PricedCart:
    customer_type: str
    items: tuple[PricedItem, ...]
    subtotal: Decimal
    total_vat_exempt: Decimal
    total_discount_amount: Decimal
    amount_due: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal
    vat: VatBreakdown = field(repr=False)

    def to_dict(self) -> dict:
        return {
            "customer_type": self.customer_type,
            "items": [item.to_dict() for item in self.items],
            "subtotal": float(self.subtotal),
            "total_vat_exempt": float(self.total_vat_exempt),
            "total_discount_amount": float(self.total_discount_amount),
            "amount_due": float(self.amount_due),
            "tax": float(self.tax),
            "discount": float(self.discount),
            "total": float(self.total),
            "vat": self.vat.to_dict(),
        }


def _price_regular(items: Sequence[PricingInput]) -> list[PricedItem]:
    priced = []
    for item in items:
        total_price = quantize(item.unit_price * item.quantity)
        if item.discount > total_price:
            raise ValidationError(
                f"Discount for {item.product_name} exceeds the line total",
                details={"product_id": item.product_id},
            )
        line_discount = quantize(item.discount)
        priced.append(PricedItem(
            product_id=item.product_id,
            product_name=item.product_name,
            quantity=item.quantity,
            unit_price=quantize(item.unit_price),
            total_price=total_price,
            discount=line_discount,
            vat_exempt=False,
            discount_applied=line_discount > 0,
            discount_amount=line_discount,
            final_price=total_price - line_discount,
        ))
    return priced


def _price_statutory(
    items: Sequence[PricingInput],
    customer_type: str,
    vat_rate: Decimal,
    discount_rate: Decimal,
) -> tuple[list[PricedItem], Decimal]:
    priced = []
    total_vat_exempt = ZERO
    for item in items:
        if item.discount:
            raise ValidationError(
                "Manual line discounts cannot be combined with senior/PWD pricing",
                details={"product_id": item.product_id},
            )
        result = calculate_item_discount(
            item.unit_price,
            item.is_discountable,
            item.is_vat_exemptable,
            customer_type,
            quantity=item.quantity,
            vat_rate=vat_rate,
            discount_rate=discount_rate,
        )
        total_vat_exempt += result.vat_amount
        priced.append(PricedItem(
            product_id=item.product_id,
            product_name=item.product_name,
            quantity=item.quantity,
            unit_price=quantize(item.unit_price),
            total_price=result.original_price,
            discount=ZERO,
            vat_exempt=result.vat_exempt,
            discount_applied=result.discount_applied,
            discount_amount=result.discount_amount,
            final_price=result.final_price,
        ))
    return priced, total_vat_exempt


def price_cart(
    items: Iterable[PricingInput],
    customer_type: str = "regular",
    *,
    vat_rate=DEFAULT_VAT_RATE,
    discount_rate=DEFAULT_DISCOUNT_RATE,
    discount=ZERO,
    tax=ZERO,
) -> PricedCart:
    """
    Price a cart: per-item final pricing plus transaction totals.

    `discount` and `tax` are transaction-level manual adjustments and are
    only accepted for regular customers.
    """
    items = list(items)
    if not items:
        raise ValidationError("Transaction must have at least one item")
    _check_customer_type(customer_type)
    rate = _check_rate(vat_rate, "VAT rate")
    statutory = _check_rate(discount_rate, "Discount rate")
    manual_discount = _as_decimal(discount, "discount")
    extra_tax = _as_decimal(tax, "tax")
    if manual_discount < 0:
        raise ValidationError("Discount cannot be negative")
    if extra_tax < 0:
        raise ValidationError("Tax cannot be negative")

    for item in items:
        _as_decimal(item.unit_price, "unit price")
        _as_decimal(item.discount, "item discount")
        if item.quantity < 1:
            raise ValidationError("Quantity must be at least 1", details={"product_id": item.product_id})
        if item.unit_price < 0:
            raise ValidationError("Unit price cannot be negative", details={"product_id": item.product_id})
        if item.discount < 0:
            raise ValidationError("Item discount cannot be negative", details={"product_id": item.product_id})

    if customer_type == "regular":
        priced = _price_regular(items)
        subtotal = sum((p.final_price for p in priced), ZERO)
        total_discount_amount = sum((p.discount_amount for p in priced), ZERO)
        amount_due = subtotal
        total = quantize(subtotal + extra_tax - manual_discount)
        if total < 0:
            raise ValidationError("Discount cannot exceed subtotal plus tax")
        vat = calculate_vat_from_inclusive(total, rate)
        return PricedCart(
            customer_type=customer_type,
            items=tuple(priced),
            subtotal=quantize(subtotal),
            total_vat_exempt=ZERO,
            total_discount_amount=quantize(total_discount_amount),
            amount_due=quantize(amount_due),
            tax=quantize(extra_tax),
            discount=quantize(manual_discount),
            total=total,
            vat=vat,
        )

    if manual_discount or extra_tax:
        raise ValidationError("Manual discount and tax adjustments are not allowed with senior/PWD pricing")

    priced, total_vat_exempt = _price_statutory(items, customer_type, rate, statutory)
    subtotal = sum((p.total_price for p in priced), ZERO)
    total_discount_amount = sum((p.discount_amount for p in priced), ZERO)
    amount_due = sum((p.final_price for p in priced), ZERO)

    # VAT-exempt lines carry no VAT; extract it from the remaining lines only
    vatable = sum((p.final_price for p in priced if not p.vat_exempt), ZERO)
    vatable_breakdown = calculate_vat_from_inclusive(vatable, rate)
    vat = VatBreakdown(
        total=quantize(amount_due),
        vat_amount=vatable_breakdown.vat_amount,
        net_sales=quantize(amount_due) - vatable_breakdown.vat_amount,
        vat_rate=rate,
    )

    return PricedCart(
        customer_type=customer_type,
        items=tuple(priced),
        subtotal=quantize(subtotal),
        total_vat_exempt=quantize(total_vat_exempt),
        total_discount_amount=quantize(total_discount_amount),
        amount_due=quantize(amount_due),
        tax=ZERO,
        discount=quantize(total_discount_amount),
        total=quantize(amount_due),
        vat=vat,
    )
