"""
Analytics aggregation tests (pure functions over transaction snapshots).
"""

from datetime import datetime, timedelta

import pytest

from storepos.services.analytics_service import (
    LineRecord,
    TransactionRecord,
    cashier_analytics,
    dashboard_analytics,
    hourly_sales,
    net_totals,
    percent_change,
    period_label,
    period_window,
    sales_by_category,
    top_performer,
    weekly_trend,
)

NOW = datetime(2026, 10, 19, 12, 0, 0)


def _txn(txn_id, cents, *, days_ago=0.0, status="completed", cashier="c1", lines=()):
    return TransactionRecord(
        id=txn_id,
        cashier_id=cashier,
        cashier_name=cashier.upper(),
        status=status,
        total_cents=cents,
        created_at=NOW - timedelta(days=days_ago),
        lines=tuple(lines),
    )


class TestGrowth:

    @pytest.mark.parametrize(
        "current,previous,expected",
        [
            (150.0, 100.0, 50.0),
            (50.0, 100.0, -50.0),
            (100.0, 0.0, 100.0),
            (0.0, 0.0, 0.0),
            (1.0, 3.0, -66.7),
        ],
    )
    def test_percent_change(self, current, previous, expected):
        assert percent_change(current, previous) == expected


class TestWindows:

    def test_labels(self):
        assert period_label(1) == "Today"
        assert period_label(7) == "Last 7 days"
        assert period_label(30) == "Last 30 days"
        assert period_label(90) == "Last 90 days"

    def test_window_bounds(self):
        window = period_window(7, NOW)
        assert window.start == NOW - timedelta(days=7)
        assert window.contains(NOW)
        assert window.contains(window.start)
        assert not window.contains_previous(window.start)
        assert window.contains_previous(window.start - timedelta(seconds=1))
        assert not window.contains_previous(window.previous_start - timedelta(seconds=1))

    def test_rejects_empty_period(self):
        with pytest.raises(ValueError):
            period_window(0, NOW)


class TestTotals:

    def test_refunds_excluded_from_sales(self):
        totals = net_totals([
            _txn(1, 10000),
            _txn(2, 5000),
            _txn(3, 2500, status="refunded"),
        ])
        assert totals["total_sales"] == 150.0
        assert totals["total_transactions"] == 2
        assert totals["average_transaction_value"] == 75.0
        assert totals["refunded_count"] == 1
        assert totals["refunded_amount"] == 25.0

    def test_empty(self):
        totals = net_totals([])
        assert totals["total_sales"] == 0.0
        assert totals["average_transaction_value"] == 0.0


class TestBreakdowns:

    def test_sales_by_category(self):
        txns = [
            _txn(1, 3000, lines=[
                LineRecord(product_id=1, quantity=2, total_price_cents=2000, final_price_cents=2000),
                LineRecord(product_id=2, quantity=1, total_price_cents=1000, final_price_cents=1000),
            ]),
            _txn(2, 5000, status="refunded", lines=[
                LineRecord(product_id=1, quantity=5, total_price_cents=5000, final_price_cents=5000),
            ]),
        ]
        result = sales_by_category(txns, {1: "Beverages"})
        assert result == [
            {"category": "Beverages", "amount": 20.0, "count": 2},
            {"category": "Uncategorized", "amount": 10.0, "count": 1},
        ]

    def test_hourly_sales(self):
        buckets = hourly_sales([_txn(1, 1000), _txn(2, 500, days_ago=0.5)])
        assert len(buckets) == 24
        assert buckets[12] == {"hour": 12, "amount": 10.0, "count": 1}
        assert buckets[0]["count"] == 1

    def test_top_performer_tie_breaks_on_id(self):
        txns = [_txn(1, 1000, cashier="c2"), _txn(2, 1000, cashier="c1")]
        assert top_performer(txns)["cashier_id"] == "c1"
        assert top_performer([]) is None

    def test_weekly_trend(self):
        trend = weekly_trend([_txn(1, 1000), _txn(2, 700, days_ago=6), _txn(3, 900, days_ago=8)], NOW)
        assert len(trend) == 7
        assert trend[-1]["date"] == "2026-10-19"
        assert trend[-1]["sales"] == 10.0
        assert trend[0]["sales"] == 7.0
        assert sum(day["transactions"] for day in trend) == 2


class TestReports:

    def test_dashboard_compares_windows(self):
        txns = [
            _txn(1, 10000, days_ago=1),
            _txn(2, 5000, days_ago=2),
            _txn(3, 10000, days_ago=10),
            _txn(4, 2000, days_ago=3, status="refunded"),
        ]
        report = dashboard_analytics(txns, 7, NOW, {})

        assert report["period"] == "Last 7 days"
        assert report["metrics"]["total_sales"] == 150.0
        assert report["previous_metrics"]["total_sales"] == 100.0
        assert report["growth_delta"] == {"sales": 50.0, "transactions": 100.0, "average_transaction": -25.0}
        assert report["normalized"] == {
            "sales": 150.0,
            "transactions": 2,
            "average_transaction": 75.0,
            "refunded_transactions": 1,
        }
        assert report["formatted_metrics"]["total_sales"]["formatted"] == "₱150.00"
        assert report["formatted_metrics"]["total_sales"]["trend_formatted"] == "+50.0%"
        assert report["formatted_metrics"]["average_transaction_value"]["trend_formatted"] == "-25.0%"
        assert report["generated_at"] == "2026-10-19T12:00:00Z"

    def test_cashier_report_only_sees_own(self):
        txns = [_txn(1, 1000, cashier="c1"), _txn(2, 9000, cashier="c2")]
        report = cashier_analytics(txns, "c1", 30, NOW)
        assert report["cashier_id"] == "c1"
        assert report["metrics"]["total_sales"] == 10.0
