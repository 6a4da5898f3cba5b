from __future__ import annotations

from ..extensions import db
from ..money_utils import bps_to_rate
from storepos.time_utils import to_utc_z


class StoreSettings(db.Model):
    """
    Store-wide configuration consumed by the sale path.

    Single row. tax_rate_bps is nullable: when unset the configured
    DEFAULT_VAT_RATE applies.
    """
    __tablename__ = "store_settings"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    store_name = db.Column(db.String(120), nullable=False, default="Main Store")
    currency = db.Column(db.String(8), nullable=False, default="PHP")

    # 1200 = 12.00%
    tax_rate_bps = db.Column(db.Integer, nullable=True)

    updated_by = db.Column(db.String(64), nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_name": self.store_name,
            "currency": self.currency,
            "tax_rate": float(bps_to_rate(self.tax_rate_bps)) if self.tax_rate_bps is not None else None,
            "updated_by": self.updated_by,
            "updated_at": to_utc_z(self.updated_at),
        }
