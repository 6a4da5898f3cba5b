"""
Transaction lifecycle tests.

Verifies:
- A sale reserves stock, prices the cart and persists one row per line
- A failing cart leaves no reservation behind
- Refund / cancel restore stock exactly once
- Listing filters, cashier scoping and reporting reads
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from storepos.decorators import Identity
from storepos.models import Transaction
from storepos.services import numbering_service, settings_service, stock_service, transaction_service
from storepos.time_utils import utcnow
from storepos.validation import (
    AccessDeniedError,
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    ProductUnavailableError,
    ValidationError,
)


def _sell(product, quantity=1, cashier_id="c1", customer_type="regular", **kwargs):
    return transaction_service.create_transaction(
        [{"product_id": product.id, "quantity": quantity}],
        "cash",
        customer_type,
        cashier_id,
        cashier_id.upper(),
        **kwargs,
    )


# =============================================================================
# CREATE
# =============================================================================


class TestCreateTransaction:

    def test_completed_sale(self, make_product):
        product = make_product(price="10.00", stock=5)
        txn = _sell(product, quantity=2)

        assert txn.status == "completed"
        assert txn.transaction_number.startswith("TXN" + utcnow().strftime("%Y%m%d"))
        assert txn.total_cents == 2000
        assert txn.vat_amount_cents == 214
        assert txn.net_sales_cents == 1786
        assert txn.vat_rate_bps == 1200
        assert len(txn.lines) == 1
        assert txn.lines[0].product_name == product.name
        assert stock_service.get_stock(product.id) == 3

    def test_senior_sale(self, make_product):
        product = make_product(price="100.00", stock=5, is_discountable=True, is_vat_exemptable=True)
        txn = _sell(product, customer_type="senior")

        assert txn.customer_type == "senior"
        assert txn.subtotal_cents == 10000
        assert txn.total_cents == 7143
        assert txn.discount_cents == 1786
        assert txn.vat_exempt_cents == 1071
        assert txn.vat_amount_cents == 0
        assert txn.lines[0].vat_exempt is True

    def test_uses_store_vat_rate(self, make_product):
        settings_service.update_settings(tax_rate=0)
        product = make_product(price="20.00", stock=5)
        txn = _sell(product)
        assert txn.vat_rate_bps == 0
        assert txn.vat_amount_cents == 0

    def test_repeated_product_checked_against_sum(self, make_product):
        product = make_product(stock=3)
        with pytest.raises(InsufficientStockError):
            transaction_service.create_transaction(
                [{"product_id": product.id, "quantity": 2}, {"product_id": product.id, "quantity": 2}],
                "cash", "regular", "c1", "Cashier One",
            )
        assert stock_service.get_stock(product.id) == 3

    def test_later_item_shortage_reserves_nothing(self, make_product):
        first = make_product(stock=10)
        second = make_product(stock=1)
        with pytest.raises(InsufficientStockError):
            transaction_service.create_transaction(
                [{"product_id": first.id, "quantity": 2}, {"product_id": second.id, "quantity": 5}],
                "cash", "regular", "c1", "Cashier One",
            )
        assert stock_service.get_stock(first.id) == 10
        assert stock_service.get_stock(second.id) == 1

    def test_pricing_failure_rolls_back_reservations(self, make_product, db_session):
        product = make_product(price="5.00", stock=10)
        with pytest.raises(ValidationError):
            transaction_service.create_transaction(
                [{"product_id": product.id, "quantity": 1, "discount": "6.00"}],
                "cash", "regular", "c1", "Cashier One",
            )
        assert stock_service.get_stock(product.id) == 10
        assert db_session.query(Transaction).count() == 0

    def test_inactive_product(self, make_product):
        product = make_product(status="inactive")
        with pytest.raises(ProductUnavailableError):
            _sell(product)

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            transaction_service.create_transaction(
                [{"product_id": 424242, "quantity": 1}], "cash", "regular", "c1", "Cashier One",
            )

    @pytest.mark.parametrize(
        "items,payment,customer,cashier",
        [
            ([], "cash", "regular", "c1"),
            ([{"product_id": 1, "quantity": 0}], "cash", "regular", "c1"),
            ([{"product_id": 1, "quantity": "1.5"}], "cash", "regular", "c1"),
            ([{"quantity": 1}], "cash", "regular", "c1"),
            ([{"product_id": 1, "quantity": 1}], "bitcoin", "regular", "c1"),
            ([{"product_id": 1, "quantity": 1}], "cash", "student", "c1"),
            ([{"product_id": 1, "quantity": 1}], "cash", "regular", ""),
        ],
    )
    def test_input_validation(self, db_session, items, payment, customer, cashier):
        with pytest.raises(ValidationError):
            transaction_service.create_transaction(items, payment, customer, cashier, "Name")

    def test_numbers_are_sequential(self, make_product):
        product = make_product(stock=10)
        first = _sell(product)
        second = _sell(product)
        assert int(second.transaction_number[-6:]) == int(first.transaction_number[-6:]) + 1

    def test_number_collision_retries_with_next_sequence(self, make_product, db_session, monkeypatch):
        product = make_product(stock=10)
        first = _sell(product)
        assert first.transaction_number.endswith("000001")

        # Stale read: every lookup misses the sale above, so the insert hits the unique index
        monkeypatch.setattr(numbering_service, "_highest_sequence", lambda day: 0)
        second = _sell(product, quantity=2)

        assert second.transaction_number == first.transaction_number[:-6] + "000002"
        assert db_session.query(Transaction).count() == 2
        assert stock_service.get_stock(product.id) == 7


# =============================================================================
# REFUND / CANCEL
# =============================================================================


class TestRefund:

    def test_refund_restores_stock(self, make_product):
        product = make_product(stock=5)
        txn = _sell(product, quantity=3)
        refunded = transaction_service.refund_transaction(txn.id, "Damaged")

        assert refunded.status == "refunded"
        assert refunded.refunded_at is not None
        assert refunded.notes == "Refund reason: Damaged"
        assert stock_service.get_stock(product.id) == 5

    def test_refund_twice(self, make_product):
        product = make_product(stock=5)
        txn = _sell(product, quantity=2)
        transaction_service.refund_transaction(txn.id)

        with pytest.raises(InvalidStateError):
            transaction_service.refund_transaction(txn.id)
        assert stock_service.get_stock(product.id) == 5

    def test_cancel_note_appended(self, make_product):
        product = make_product(stock=5)
        txn = _sell(product, notes="Walk-in")
        cancelled = transaction_service.cancel_transaction(txn.id, "Customer changed mind")

        assert cancelled.status == "refunded"
        assert cancelled.notes == "Walk-in\nCancellation reason: Customer changed mind"

    def test_cancel_after_refund(self, make_product):
        product = make_product(stock=5)
        txn = _sell(product)
        transaction_service.refund_transaction(txn.id)
        with pytest.raises(InvalidStateError):
            transaction_service.cancel_transaction(txn.id)

    def test_refund_unknown(self, db_session):
        with pytest.raises(NotFoundError):
            transaction_service.refund_transaction(987654)

    def test_bulk_refund_stops_at_first_failure(self, make_product):
        product = make_product(stock=10)
        first = _sell(product)
        second = _sell(product)
        transaction_service.refund_transaction(second.id)

        with pytest.raises(InvalidStateError):
            transaction_service.bulk_refund([first.id, second.id])
        # First refund already committed
        assert transaction_service.get_transaction(first.id).status == "refunded"
        assert stock_service.get_stock(product.id) == 10

    def test_bulk_refund_requires_ids(self, db_session):
        with pytest.raises(ValidationError):
            transaction_service.bulk_refund([])


# =============================================================================
# READS
# =============================================================================


class TestReads:

    def test_cashier_cannot_read_others(self, make_product):
        product = make_product(stock=5)
        txn = _sell(product, cashier_id="c1")
        with pytest.raises(AccessDeniedError):
            transaction_service.get_transaction(txn.id, Identity("c2", "Two", "cashier"))
        assert transaction_service.get_transaction(txn.id, Identity("m1", "Manager", "manager")).id == txn.id

    def test_list_scopes_cashiers(self, make_product):
        product = make_product(stock=10)
        _sell(product, cashier_id="c1")
        _sell(product, cashier_id="c2")
        filters = transaction_service.parse_transaction_filters({})

        own = transaction_service.list_transactions(filters, Identity("c1", "One", "cashier"))
        assert [t["cashier_id"] for t in own["transactions"]] == ["c1"]

        everyone = transaction_service.list_transactions(filters, Identity("m1", "Manager", "manager"))
        assert everyone["pagination"]["total"] == 2

    def test_list_defaults_to_completed(self, make_product):
        product = make_product(stock=10)
        kept = _sell(product)
        refunded = _sell(product)
        transaction_service.refund_transaction(refunded.id)

        result = transaction_service.list_transactions(transaction_service.parse_transaction_filters({}))
        assert [t["id"] for t in result["transactions"]] == [kept.id]

        result = transaction_service.list_transactions(
            transaction_service.parse_transaction_filters({"status": "all"})
        )
        assert result["pagination"]["total"] == 2

    def test_pagination(self, make_product):
        product = make_product(stock=10)
        for _ in range(3):
            _sell(product)
        result = transaction_service.list_transactions(
            transaction_service.parse_transaction_filters({"page": "2", "limit": "2"})
        )
        assert len(result["transactions"]) == 1
        assert result["pagination"] == {"page": 2, "limit": 2, "total": 3, "pages": 2}

    @pytest.mark.parametrize(
        "args",
        [
            {"limit": "101"},
            {"page": "0"},
            {"sort_by": "cashier_name"},
            {"status": "pending"},
            {"min_amount": "10", "max_amount": "5"},
            {"start_date": "2026-10-10", "end_date": "2026-10-01"},
            {"start_date": "not-a-date"},
        ],
    )
    def test_invalid_filters(self, args):
        with pytest.raises(ValidationError):
            transaction_service.parse_transaction_filters(args)

    def test_date_only_end_covers_whole_day(self):
        filters = transaction_service.parse_transaction_filters({"end_date": "2026-10-01"})
        assert filters.end.hour == 23
        assert filters.end.minute == 59

    def test_amount_filters(self, make_product):
        cheap = make_product(price="5.00", stock=10)
        pricey = make_product(price="50.00", stock=10)
        _sell(cheap)
        _sell(pricey)
        filters = transaction_service.parse_transaction_filters({"min_amount": "10"})
        result = transaction_service.list_transactions(filters)
        assert [t["total"] for t in result["transactions"]] == [50.0]

    def test_daily_sales(self, make_product):
        product = make_product(price="10.00", stock=10)
        _sell(product, quantity=2)
        _sell(product, quantity=1)

        summary = transaction_service.daily_sales()
        assert summary["total_sales"] == 30.0
        assert summary["total_transactions"] == 2
        assert summary["average_transaction_value"] == 15.0
        assert summary["payment_methods"]["cash"] == {"count": 2, "amount": 30.0}
        assert summary["payment_methods"]["card"]["count"] == 0

    def test_sales_by_cashier_and_top_products(self, make_product):
        water = make_product(price="10.00", stock=20, name="Water")
        bread = make_product(price="40.00", stock=20, name="Bread")
        _sell(water, quantity=5, cashier_id="c1")
        _sell(bread, quantity=1, cashier_id="c2")

        cashiers = transaction_service.sales_by_cashier()
        assert [row["cashier_id"] for row in cashiers] == ["c1", "c2"]
        assert cashiers[0]["total_sales"] == 50.0

        top = transaction_service.top_products(limit=5)
        assert top[0]["product_name"] == "Water"
        assert top[0]["quantity_sold"] == 5

    def test_created_at_in_date_range(self, make_product):
        product = make_product(stock=5)
        txn = _sell(product)
        filters = transaction_service.parse_transaction_filters({
            "start_date": (utcnow() - timedelta(hours=1)).isoformat(),
        })
        result = transaction_service.list_transactions(filters)
        assert [t["id"] for t in result["transactions"]] == [txn.id]


def test_manual_discount_on_sale(make_product):
    product = make_product(price="100.00", stock=5)
    txn = _sell(product, discount=Decimal("10.00"))
    assert txn.discount_cents == 1000
    assert txn.total_cents == 9000
