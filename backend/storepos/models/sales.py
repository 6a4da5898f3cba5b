from __future__ import annotations

from ..extensions import db
from ..money_utils import bps_to_rate, cents_to_amount
from storepos.time_utils import to_utc_z, utcnow


class Transaction(db.Model):
    """
    Sale record, immutable once completed.

    Lifecycle: created as `completed` by transaction_service after every
    stock reservation succeeded; mutated exactly once more on refund or
    cancel (status + appended notes); never deleted.

    cashier_id / cashier_name are denormalized at creation time and are not
    re-synced if the cashier record changes later.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("transaction_number", name="uq_transactions_number"),
        db.CheckConstraint("total_cents >= 0", name="ck_transactions_total_nonnegative"),
        db.Index("ix_transactions_status_created", "status", "created_at"),
        db.Index("ix_transactions_cashier_created", "cashier_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "TXN20261019000042")
    transaction_number = db.Column(db.String(32), nullable=False)

    # Money (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    # VAT breakdown of the VAT-inclusive total
    vat_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    net_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    vat_rate_bps = db.Column(db.Integer, nullable=False, default=1200)
    vat_exempt_cents = db.Column(db.Integer, nullable=False, default=0)

    customer_type = db.Column(db.String(16), nullable=False, default="regular")
    payment_method = db.Column(db.String(16), nullable=False)
    customer_id = db.Column(db.String(64), nullable=True)
    customer_name = db.Column(db.String(255), nullable=True)

    cashier_id = db.Column(db.String(64), nullable=False, index=True)
    cashier_name = db.Column(db.String(255), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="completed", index=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "TransactionLine",
        back_populates="transaction",
        order_by="TransactionLine.line_number",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} number={self.transaction_number!r} status={self.status}>"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "transaction_number": self.transaction_number,
            "subtotal": cents_to_amount(self.subtotal_cents),
            "tax": cents_to_amount(self.tax_cents),
            "discount": cents_to_amount(self.discount_cents),
            "total": cents_to_amount(self.total_cents),
            "vat_amount": cents_to_amount(self.vat_amount_cents),
            "net_sales": cents_to_amount(self.net_sales_cents),
            "vat_rate": float(bps_to_rate(self.vat_rate_bps)),
            "vat_exempt": cents_to_amount(self.vat_exempt_cents),
            "customer_type": self.customer_type,
            "payment_method": self.payment_method,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "cashier_id": self.cashier_id,
            "cashier_name": self.cashier_name,
            "status": self.status,
            "notes": self.notes,
            "item_count": self.item_count,
            "created_at": to_utc_z(self.created_at),
            "refunded_at": to_utc_z(self.refunded_at) if self.refunded_at else None,
            "version_id": self.version_id,
        }
        if include_lines:
            data["items"] = [line.to_dict() for line in self.lines]
        return data


class TransactionLine(db.Model):
    """Priced line item, flattened from the discount engine result."""
    __tablename__ = "transaction_lines"
    __table_args__ = (
        db.Index("ix_transaction_lines_txn_line", "transaction_id", "line_number", unique=True),
        db.CheckConstraint("quantity >= 1", name="ck_transaction_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    # Snapshot so reporting does not depend on the mutable catalog
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)
    # Manual line discount (regular customers only)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)

    vat_exempt = db.Column(db.Boolean, nullable=False, default=False)
    discount_applied = db.Column(db.Boolean, nullable=False, default=False)
    discount_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    final_price_cents = db.Column(db.Integer, nullable=False)

    transaction = db.relationship("Transaction", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "line_number": self.line_number,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": cents_to_amount(self.unit_price_cents),
            "total_price": cents_to_amount(self.total_price_cents),
            "discount": cents_to_amount(self.discount_cents),
            "vat_exempt": self.vat_exempt,
            "discount_applied": self.discount_applied,
            "discount_amount": cents_to_amount(self.discount_amount_cents),
            "final_price": cents_to_amount(self.final_price_cents),
        }
