# Overview: Flattened (transaction, line) export rows and their delimited-text rendering.

from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from ..models import Transaction
from ..money_utils import from_cents
from ..time_utils import iso_week_label, month_label, to_utc_z
from .catalog_service import UNCATEGORIZED, category_map
from .transaction_service import TransactionFilters, filtered_query

NO_DATA = "No data available"

EXPORT_HEADERS = (
    "Transaction Number",
    "Date",
    "Time",
    "Week",
    "Month",
    "Cashier Name",
    "Product ID",
    "Product Name",
    "Category",
    "Quantity",
    "Unit Price",
    "Line Total",
    "Total Transaction Value",
    "Status",
)


@dataclass(frozen=True)
class ExportRow:
    transaction_number: str
    date: str
    time: str
    week: str
    month: str
    cashier_name: str
    product_id: str
    product_name: str
    category: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    transaction_total: Decimal
    status: str

    def values(self) -> list[str]:
        return [
            self.transaction_number,
            self.date,
            self.time,
            self.week,
            self.month,
            self.cashier_name,
            self.product_id,
            self.product_name,
            self.category,
            str(self.quantity),
            f"{self.unit_price:.2f}",
            f"{self.line_total:.2f}",
            f"{self.transaction_total:.2f}",
            self.status,
        ]


def _rows_for(txn: Transaction, categories: dict[int, str]) -> list[ExportRow]:
    created = txn.created_at
    common = {
        "transaction_number": txn.transaction_number,
        "date": created.strftime("%m/%d/%Y"),
        "time": created.strftime("%I:%M:%S %p"),
        "week": iso_week_label(created),
        "month": month_label(created),
        "cashier_name": txn.cashier_name or "Unknown",
        "transaction_total": from_cents(txn.total_cents),
        "status": "Completed" if txn.status == "completed" else "Refunded",
    }

    if not txn.lines:
        return [ExportRow(
            product_id="",
            product_name="No items",
            category="",
            quantity=0,
            unit_price=Decimal("0"),
            line_total=Decimal("0"),
            **common,
        )]

    return [
        ExportRow(
            product_id=str(line.product_id),
            product_name=line.product_name or "Unknown Product",
            category=categories.get(line.product_id, UNCATEGORIZED),
            quantity=line.quantity,
            unit_price=from_cents(line.unit_price_cents),
            line_total=from_cents(line.total_price_cents),
            **common,
        )
        for line in txn.lines
    ]


def get_export_rows(filters: TransactionFilters) -> list[ExportRow]:
    """One row per (transaction, line), newest transaction first."""
    transactions = filtered_query(filters).order_by(Transaction.created_at.desc(), Transaction.id.desc()).all()
    product_ids = {line.product_id for txn in transactions for line in txn.lines}
    categories = category_map(product_ids)

    rows: list[ExportRow] = []
    for txn in transactions:
        rows.extend(_rows_for(txn, categories))
    return rows


def rows_to_csv(rows: Iterable[ExportRow], delimiter: str = ",") -> str:
    """
    Render rows as delimited text.

    Text fields containing the delimiter, a quote or a newline are quoted
    with embedded quotes doubled; money fields use fixed 2 decimals.
    """
    rows = list(rows)
    if not rows:
        return NO_DATA

    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=delimiter, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(EXPORT_HEADERS)
    for row in rows:
        writer.writerow(row.values())
    return buffer.getvalue().rstrip("\n")


def export_statistics(filters: TransactionFilters) -> dict:
    rows = get_export_rows(filters)
    return {
        "total_transactions": len({row.transaction_number for row in rows}),
        "total_rows": len(rows),
        "date_range": {
            "start": to_utc_z(filters.start) if filters.start else "N/A",
            "end": to_utc_z(filters.end) if filters.end else "N/A",
        },
    }
