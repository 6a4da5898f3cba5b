# Overview: Stock ledger operations; the only code path that mutates Product.stock.

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import Product
from ..validation import (
    InsufficientStockError,
    NotFoundError,
    ProductUnavailableError,
    ValidationError,
)


def _load_product(product_id: int, *, refresh: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if refresh:
        # Bulk UPDATE bypasses the identity map; reload the row from the DB.
        query = query.execution_options(populate_existing=True)
    product = query.first()
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def _check_quantity(quantity: int) -> None:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise ValidationError("Quantity must be greater than 0")


def _diagnose(product: Product, quantity: int) -> None:
    if not product.is_active:
        raise ProductUnavailableError(
            f"Product {product.name} is not available",
            details={"product_id": product.id, "status": product.status},
        )
    if product.stock < quantity:
        raise InsufficientStockError(
            f"Insufficient stock for {product.name}. Available: {product.stock}",
            details={
                "product_id": product.id,
                "requested": quantity,
                "available": product.stock,
            },
        )


def check_availability(product_id: int, quantity: int) -> Product:
    """
    Read-only availability check (no mutation).

    Used for the up-front pass over a whole cart before any reservation, so
    a cart that cannot be fulfilled fails before stock is touched.
    """
    _check_quantity(quantity)
    product = _load_product(product_id)
    _diagnose(product, quantity)
    return product


def reserve_stock(product_id: int, quantity: int) -> Product:
    """
    Atomically decrement stock if the product is sellable and has enough.

    CRITICAL: check and decrement are one conditional UPDATE, so two
    concurrent sales can never both pass the check against the same units.
    Does NOT commit; the caller owns the unit of work.
    """
    _check_quantity(quantity)

    stmt = (
        update(Product)
        .where(
            Product.id == product_id,
            Product.status == "active",
            Product.stock >= quantity,
        )
        .values(stock=Product.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)

    product = _load_product(product_id, refresh=True)
    if result.rowcount != 1:
        _diagnose(product, quantity)
        # Row changed between the UPDATE and the diagnostic read
        raise InsufficientStockError(
            f"Insufficient stock for {product.name}. Available: {product.stock}",
            details={"product_id": product.id, "requested": quantity, "available": product.stock},
        )
    return product


def restore_stock(product_id: int, quantity: int) -> Product:
    """
    Add sold units back (refund / cancel).

    Unconditionally additive: no max_stock ceiling and no status check,
    since reversing a sale must never itself be rejected.
    """
    _check_quantity(quantity)

    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(stock=Product.stock + quantity)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return _load_product(product_id, refresh=True)


def get_stock(product_id: int) -> int:
    return _load_product(product_id).stock
