# Overview: Windowed sales KPIs computed from transaction snapshots (pure functions, plus one loader).

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from ..extensions import db
from ..models import Transaction
from ..money_utils import cents_to_amount
from ..time_utils import to_utc_z
from .catalog_service import UNCATEGORIZED


@dataclass(frozen=True)
class LineRecord:
    product_id: int
    quantity: int
    total_price_cents: int
    final_price_cents: int


@dataclass(frozen=True)
class TransactionRecord:
    """Read-only snapshot of a transaction, detached from the session."""
    id: int
    cashier_id: str
    cashier_name: str
    status: str
    total_cents: int
    created_at: datetime
    lines: tuple[LineRecord, ...] = ()

    @classmethod
    def from_model(cls, txn: Transaction) -> "TransactionRecord":
        return cls(
            id=txn.id,
            cashier_id=txn.cashier_id,
            cashier_name=txn.cashier_name,
            status=txn.status,
            total_cents=txn.total_cents,
            created_at=txn.created_at,
            lines=tuple(
                LineRecord(
                    product_id=line.product_id,
                    quantity=line.quantity,
                    total_price_cents=line.total_price_cents,
                    final_price_cents=line.final_price_cents,
                )
                for line in txn.lines
            ),
        )


@dataclass(frozen=True)
class PeriodWindow:
    days: int
    start: datetime
    end: datetime
    label: str

    @property
    def previous_start(self) -> datetime:
        return self.start - timedelta(days=self.days)

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end

    def contains_previous(self, moment: datetime) -> bool:
        return self.previous_start <= moment < self.start

    def to_dict(self) -> dict:
        return {
            "days": self.days,
            "label": self.label,
            "start": to_utc_z(self.start),
            "end": to_utc_z(self.end),
        }


def period_label(days: int) -> str:
    if days == 1:
        return "Today"
    if days == 7:
        return "Last 7 days"
    if days == 30:
        return "Last 30 days"
    return f"Last {days} days"


def period_window(days: int, now: datetime) -> PeriodWindow:
    """Current window [now - days, now]; the comparison window precedes it."""
    if days < 1:
        raise ValueError("period must be at least 1 day")
    return PeriodWindow(days=days, start=now - timedelta(days=days), end=now, label=period_label(days))


def _completed(txns: Iterable[TransactionRecord]) -> list[TransactionRecord]:
    return [t for t in txns if t.status == "completed"]


def _average_cents(total_cents: int, count: int) -> int:
    return round(total_cents / count) if count else 0


def net_totals(txns: Sequence[TransactionRecord]) -> dict:
    """Sales count completed transactions only; refunds are reported separately."""
    completed = _completed(txns)
    refunded = [t for t in txns if t.status == "refunded"]

    total_cents = sum(t.total_cents for t in completed)
    return {
        "total_sales": cents_to_amount(total_cents),
        "total_transactions": len(completed),
        "average_transaction_value": cents_to_amount(_average_cents(total_cents, len(completed))),
        "refunded_count": len(refunded),
        "refunded_amount": cents_to_amount(sum(t.total_cents for t in refunded)),
    }


def percent_change(current: float, previous: float) -> float:
    """
    Growth in percent, rounded to 1 decimal.

    previous == 0: +100 when there is any current value, else 0.
    """
    if previous > 0:
        return round((current - previous) / previous * 100, 1)
    return 100.0 if current > 0 else 0.0


def growth_delta(current: Mapping, previous: Mapping) -> dict:
    return {
        "sales": percent_change(current["total_sales"], previous["total_sales"]),
        "transactions": percent_change(current["total_transactions"], previous["total_transactions"]),
        "average_transaction": percent_change(
            current["average_transaction_value"], previous["average_transaction_value"]
        ),
    }


def normalize_kpis(totals: Mapping, refunded_count: int) -> dict:
    return {
        "sales": round(totals["total_sales"], 2),
        "transactions": totals["total_transactions"],
        "average_transaction": round(totals["average_transaction_value"], 2),
        "refunded_transactions": refunded_count,
    }


def _trend(value: float) -> str:
    return f"{'+' if value >= 0 else ''}{value:.1f}%"


def format_metrics(totals: Mapping, growth: Mapping, currency_symbol: str = "₱") -> dict:
    return {
        "total_sales": {
            "value": totals["total_sales"],
            "formatted": f"{currency_symbol}{totals['total_sales']:,.2f}",
            "trend": growth["sales"],
            "trend_formatted": _trend(growth["sales"]),
        },
        "total_transactions": {
            "value": totals["total_transactions"],
            "formatted": f"{totals['total_transactions']:,}",
            "trend": growth["transactions"],
            "trend_formatted": _trend(growth["transactions"]),
        },
        "average_transaction_value": {
            "value": totals["average_transaction_value"],
            "formatted": f"{currency_symbol}{totals['average_transaction_value']:,.2f}",
            "trend": growth["average_transaction"],
            "trend_formatted": _trend(growth["average_transaction"]),
        },
    }


def sales_by_category(txns: Iterable[TransactionRecord], category_lookup: Mapping[int, str]) -> list[dict]:
    """Line totals of completed sales grouped by catalog category, largest first."""
    amounts: dict[str, int] = {}
    counts: dict[str, int] = {}
    for txn in _completed(txns):
        for line in txn.lines:
            category = category_lookup.get(line.product_id) or UNCATEGORIZED
            amounts[category] = amounts.get(category, 0) + line.total_price_cents
            counts[category] = counts.get(category, 0) + line.quantity

    ordered = sorted(amounts, key=lambda name: (-amounts[name], name))
    return [
        {"category": name, "amount": cents_to_amount(amounts[name]), "count": counts[name]}
        for name in ordered
    ]


def hourly_sales(txns: Iterable[TransactionRecord]) -> list[dict]:
    """24 buckets by UTC hour of day."""
    amounts = [0] * 24
    counts = [0] * 24
    for txn in _completed(txns):
        hour = txn.created_at.hour
        amounts[hour] += txn.total_cents
        counts[hour] += 1
    return [
        {"hour": hour, "amount": cents_to_amount(amounts[hour]), "count": counts[hour]}
        for hour in range(24)
    ]


def top_performer(txns: Iterable[TransactionRecord]) -> dict | None:
    totals: dict[str, list] = {}
    for txn in _completed(txns):
        entry = totals.setdefault(txn.cashier_id, [txn.cashier_name, 0, 0])
        entry[1] += txn.total_cents
        entry[2] += 1

    if not totals:
        return None
    # Ties resolve to the lowest cashier id
    cashier_id = min(totals, key=lambda cid: (-totals[cid][1], cid))
    name, amount_cents, count = totals[cashier_id]
    return {
        "cashier_id": cashier_id,
        "name": name,
        "amount": cents_to_amount(amount_cents),
        "count": count,
        "average": cents_to_amount(_average_cents(amount_cents, count)),
    }


def weekly_trend(txns: Iterable[TransactionRecord], now: datetime) -> list[dict]:
    """Trailing 7 calendar days ending today, oldest first."""
    today = now.date()
    days = [today - timedelta(days=offset) for offset in range(6, -1, -1)]
    amounts = {day: 0 for day in days}
    counts = {day: 0 for day in days}
    for txn in _completed(txns):
        day = txn.created_at.date()
        if day in amounts:
            amounts[day] += txn.total_cents
            counts[day] += 1
    return [
        {
            "date": day.isoformat(),
            "day": day.strftime("%a"),
            "sales": cents_to_amount(amounts[day]),
            "transactions": counts[day],
        }
        for day in days
    ]


def _windowed_report(txns: Sequence[TransactionRecord], days: int, now: datetime) -> tuple[dict, list]:
    window = period_window(days, now)
    current = [t for t in txns if window.contains(t.created_at)]
    previous = [t for t in txns if window.contains_previous(t.created_at)]

    current_totals = net_totals(current)
    previous_totals = net_totals(previous)
    growth = growth_delta(current_totals, previous_totals)

    report = {
        "period": window.label,
        "window": window.to_dict(),
        "metrics": current_totals,
        "previous_metrics": previous_totals,
        "summary": {
            "period": window.label,
            "start_date": to_utc_z(window.start),
            "end_date": to_utc_z(window.end),
            **current_totals,
        },
        "normalized": normalize_kpis(current_totals, current_totals["refunded_count"]),
        "growth_delta": growth,
        "formatted_metrics": format_metrics(current_totals, growth),
    }
    return report, current


def dashboard_analytics(
    txns: Sequence[TransactionRecord],
    days: int,
    now: datetime,
    category_lookup: Mapping[int, str] | None = None,
) -> dict:
    """
    Store-wide snapshot: current window vs the window before it, plus
    breakdowns over the current window and the trailing week.
    """
    report, current = _windowed_report(txns, days, now)
    report.update({
        "sales_by_category": sales_by_category(current, category_lookup or {}),
        "hourly_sales": hourly_sales(current),
        "top_performer": top_performer(current),
        "weekly_trend": weekly_trend(txns, now),
        "generated_at": to_utc_z(now),
    })
    return report


def cashier_analytics(
    txns: Sequence[TransactionRecord],
    cashier_id: str,
    days: int,
    now: datetime,
) -> dict:
    own = [t for t in txns if t.cashier_id == cashier_id]
    report, current = _windowed_report(own, days, now)
    report.update({
        "cashier_id": cashier_id,
        "hourly_sales": hourly_sales(current),
        "weekly_trend": weekly_trend(own, now),
        "generated_at": to_utc_z(now),
    })
    return report


def load_transaction_records(since: datetime | None = None, cashier_id: str | None = None) -> list[TransactionRecord]:
    """The only I/O here: snapshot rows so the pure functions never touch the session."""
    query = db.session.query(Transaction)
    if since is not None:
        query = query.filter(Transaction.created_at >= since)
    if cashier_id is not None:
        query = query.filter(Transaction.cashier_id == cashier_id)
    return [TransactionRecord.from_model(txn) for txn in query.order_by(Transaction.created_at.desc()).all()]
