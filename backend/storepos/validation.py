# Overview: Error taxonomy and request-shape validation shared by services and routes.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from .time_utils import parse_iso_datetime


PAYMENT_METHODS = ("cash", "card", "digital")
CUSTOMER_TYPES = ("regular", "senior", "pwd")
TRANSACTION_STATUSES = ("completed", "refunded")

ROLES = ("cashier", "manager", "admin", "superadmin")
# Roles that see every cashier's transactions and the store-wide dashboard
MANAGER_ROLES = ("manager", "admin", "superadmin")
ADMIN_ROLES = ("admin", "superadmin")

MAX_NOTES_LENGTH = 500
# Maximum unit price: 9,999,999.99
MAX_PRICE = Decimal("9999999.99")


class PosError(Exception):
    """Base class for business and infrastructure errors raised by services."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ValidationError(PosError):
    """400-level input problem."""


class NotFoundError(PosError):
    """Referenced transaction or product does not exist."""

    status_code = 404


class InsufficientStockError(PosError):
    """Requested quantity exceeds the product's available stock."""

    status_code = 409


class ProductUnavailableError(PosError):
    """Product exists but is not in a sellable status."""

    status_code = 409


class InvalidStateError(PosError):
    """Transition not allowed from the transaction's current status."""

    status_code = 409


class AccessDeniedError(PosError):
    status_code = 403


class PersistenceError(PosError):
    """
    Database failure while handling a request.

    The request is fatal; clients may safely re-submit the whole operation.
    """

    status_code = 500


@dataclass(frozen=True)
class CartItemInput:
    product_id: int
    quantity: int
    unit_price: Decimal | None = None
    discount: Decimal = Decimal("0")


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion: rejects bools, floats, decimals and scientific notation.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a plain integer")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    raise ValidationError(f"{field} must be an integer")


def coerce_amount(value: Any, field: str) -> Decimal:
    """Parse a non-negative currency amount with at most 2 decimal places."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number")
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative")
    if amount > MAX_PRICE:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE:,.2f}")
    if amount != amount.quantize(Decimal("0.01")):
        raise ValidationError(f"{field} cannot have more than 2 decimal places")
    return amount


def parse_cart_items(raw_items: Any) -> list[CartItemInput]:
    if not raw_items or not isinstance(raw_items, list):
        raise ValidationError("Transaction must have at least one item")

    items: list[CartItemInput] = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        if raw.get("product_id") in (None, ""):
            raise ValidationError("Product ID is required for each item")

        product_id = coerce_int(raw["product_id"], f"items[{index}].product_id")
        quantity = coerce_int(raw.get("quantity"), f"items[{index}].quantity")
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than 0", details={"index": index})

        unit_price = None
        if raw.get("unit_price") is not None:
            unit_price = coerce_amount(raw["unit_price"], f"items[{index}].unit_price")

        discount = Decimal("0")
        if raw.get("discount") is not None:
            discount = coerce_amount(raw["discount"], f"items[{index}].discount")

        items.append(CartItemInput(product_id, quantity, unit_price, discount))
    return items


def validate_payment_method(value: Any) -> str:
    if not value:
        raise ValidationError("Payment method is required")
    method = str(value).strip().lower()
    if method not in PAYMENT_METHODS:
        raise ValidationError(
            "Invalid payment method",
            details={"allowed": list(PAYMENT_METHODS)},
        )
    return method


def validate_customer_type(value: Any) -> str:
    if value in (None, ""):
        return "regular"
    customer_type = str(value).strip().lower()
    if customer_type not in CUSTOMER_TYPES:
        raise ValidationError(
            "Invalid customer type",
            details={"allowed": list(CUSTOMER_TYPES)},
        )
    return customer_type


def validate_cashier(cashier_id: Any, cashier_name: Any) -> tuple[str, str]:
    if cashier_id in (None, "") or not str(cashier_id).strip():
        raise ValidationError("Cashier ID is required")
    if cashier_name in (None, "") or not str(cashier_name).strip():
        raise ValidationError("Cashier name is required")
    return str(cashier_id).strip(), str(cashier_name).strip()


def validate_notes(notes: Any) -> str | None:
    if notes is None:
        return None
    text = str(notes).strip()
    if len(text) > MAX_NOTES_LENGTH:
        raise ValidationError(f"Notes cannot exceed {MAX_NOTES_LENGTH} characters")
    return text or None


def validate_status(status: Any) -> str:
    value = str(status).strip().lower()
    if value not in TRANSACTION_STATUSES:
        raise ValidationError(
            f"Invalid transaction status. Must be one of: {', '.join(TRANSACTION_STATUSES)}"
        )
    return value


def parse_date_param(value: str | None, field: str):
    if not value:
        return None
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def validate_date_range(start, end, now=None) -> None:
    if start and end and start > end:
        raise ValidationError("Start date cannot be after end date")
    if start and now and start > now:
        raise ValidationError("Start date cannot be in the future")


def validate_amount_range(min_amount: Decimal | None, max_amount: Decimal | None) -> None:
    if min_amount is not None and max_amount is not None and min_amount > max_amount:
        raise ValidationError("Minimum amount cannot be greater than maximum amount")


def validate_period(value: Any, default: int = 30) -> int:
    if value in (None, ""):
        return default
    days = coerce_int(value, "period")
    if days < 1 or days > 366:
        raise ValidationError("period must be between 1 and 366 days")
    return days
