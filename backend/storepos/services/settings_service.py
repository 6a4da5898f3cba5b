from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import StoreSettings
from ..money_utils import bps_to_rate, rate_to_bps
from ..validation import ValidationError


def get_settings() -> StoreSettings | None:
    """The single store settings row, or None before `flask system seed`."""
    return db.session.query(StoreSettings).order_by(StoreSettings.id.asc()).first()


def get_vat_rate() -> Decimal:
    """
    VAT rate in percent used by the sale path.

    Falls back to DEFAULT_VAT_RATE when no settings row exists or its
    tax_rate is unset.
    """
    settings = get_settings()
    if settings is not None and settings.tax_rate_bps is not None:
        return bps_to_rate(settings.tax_rate_bps)
    return Decimal(str(current_app.config.get("DEFAULT_VAT_RATE", 12)))


def get_discount_rate() -> Decimal:
    return Decimal(str(current_app.config.get("SENIOR_PWD_DISCOUNT_RATE", 20)))


def update_settings(
    *,
    store_name: str | None = None,
    currency: str | None = None,
    tax_rate=None,
    updated_by: str | None = None,
    commit: bool = True,
) -> StoreSettings:
    settings = get_settings()
    if settings is None:
        settings = StoreSettings()
        db.session.add(settings)

    if store_name is not None:
        if not str(store_name).strip():
            raise ValidationError("Store name cannot be empty")
        settings.store_name = str(store_name).strip()
    if currency is not None:
        settings.currency = str(currency).strip().upper()
    if tax_rate is not None:
        rate = Decimal(str(tax_rate))
        if rate < 0 or rate > 100:
            raise ValidationError("Tax rate must be between 0 and 100")
        settings.tax_rate_bps = rate_to_bps(rate)
    settings.updated_by = updated_by

    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return settings
