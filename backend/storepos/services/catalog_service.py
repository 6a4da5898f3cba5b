# Overview: Category lookups for analytics breakdowns and exports.

from __future__ import annotations

from ..extensions import db
from ..models import Product

UNCATEGORIZED = "Uncategorized"


def category_map(product_ids=None) -> dict[int, str]:
    """product_id -> category name ("Uncategorized" when unset)."""
    query = db.session.query(Product.id, Product.category)
    if product_ids is not None:
        ids = list(product_ids)
        if not ids:
            return {}
        query = query.filter(Product.id.in_(ids))
    return {pid: (category or UNCATEGORIZED) for pid, category in query.all()}
