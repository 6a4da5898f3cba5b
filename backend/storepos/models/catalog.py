from __future__ import annotations

from ..extensions import db


PRODUCT_STATUSES = ("active", "inactive", "discontinued")


class Product(db.Model):
    """
    Catalog product with its stock counter.

    The catalog owns the row, but `stock` is mutated exclusively through
    stock_service (reserve on sale, restore on refund/cancel). The CHECK
    constraint is the last line of defense for the non-negative invariant.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_products_stock_nonnegative"),
        db.CheckConstraint("price_cents >= 0", name="ck_products_price_nonnegative"),
        db.Index("ix_products_status_category", "status", "category"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(120), nullable=True, index=True)

    # Authoritative storage in cents (VAT-inclusive shelf price)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)
    max_stock = db.Column(db.Integer, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="active")

    # Senior citizen / PWD eligibility flags
    is_discountable = db.Column(db.Boolean, nullable=False, default=False)
    is_vat_exemptable = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock}>"

