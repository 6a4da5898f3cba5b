"""
Stock ledger tests.

Verifies:
- Reservations decrement atomically and never go negative
- Parallel reservations on one product never oversell
- Inactive products cannot be reserved
- Restores are unconditional
"""

import threading

import pytest

from storepos import create_app
from storepos.extensions import db
from storepos.models import Product
from storepos.services import stock_service
from storepos.services.concurrency import run_with_retry
from storepos.validation import (
    InsufficientStockError,
    NotFoundError,
    ProductUnavailableError,
    ValidationError,
)


class TestReserveStock:

    def test_reserve_decrements(self, make_product):
        product = make_product(stock=10)
        reserved = stock_service.reserve_stock(product.id, 3)
        assert reserved.stock == 7
        assert stock_service.get_stock(product.id) == 7

    def test_reserve_exact_remaining(self, make_product):
        product = make_product(stock=2)
        assert stock_service.reserve_stock(product.id, 2).stock == 0

    def test_insufficient_stock_leaves_row_untouched(self, make_product):
        product = make_product(stock=2)
        with pytest.raises(InsufficientStockError) as excinfo:
            stock_service.reserve_stock(product.id, 3)
        assert excinfo.value.details["available"] == 2
        assert stock_service.get_stock(product.id) == 2

    def test_inactive_product(self, make_product):
        product = make_product(stock=5, status="inactive")
        with pytest.raises(ProductUnavailableError):
            stock_service.reserve_stock(product.id, 1)
        assert stock_service.get_stock(product.id) == 5

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            stock_service.reserve_stock(999999, 1)

    @pytest.mark.parametrize("quantity", [0, -2, True])
    def test_invalid_quantity(self, make_product, quantity):
        product = make_product(stock=5)
        with pytest.raises(ValidationError):
            stock_service.reserve_stock(product.id, quantity)

    def test_sequential_reservations_never_oversell(self, make_product):
        product = make_product(stock=5)
        outcomes = []
        for _ in range(4):
            try:
                stock_service.reserve_stock(product.id, 2)
                outcomes.append(True)
            except InsufficientStockError:
                outcomes.append(False)
        assert outcomes == [True, True, False, False]
        assert stock_service.get_stock(product.id) == 1


class TestRestoreStock:

    def test_round_trip(self, make_product, db_session):
        product = make_product(stock=10)
        stock_service.reserve_stock(product.id, 4)
        stock_service.restore_stock(product.id, 4)
        db_session.commit()
        assert stock_service.get_stock(product.id) == 10

    def test_restore_ignores_status(self, make_product):
        product = make_product(stock=0, status="discontinued")
        assert stock_service.restore_stock(product.id, 3).stock == 3

    def test_restore_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            stock_service.restore_stock(999999, 1)


class TestCheckAvailability:

    def test_check_does_not_mutate(self, make_product):
        product = make_product(stock=3)
        stock_service.check_availability(product.id, 3)
        assert stock_service.get_stock(product.id) == 3

    def test_check_reports_shortage(self, make_product):
        product = make_product(stock=3)
        with pytest.raises(InsufficientStockError):
            stock_service.check_availability(product.id, 4)


class TestConcurrentReservations:

    THREADS = 8

    @pytest.fixture
    def file_app(self, tmp_path):
        """Separate app on a file database so each thread gets its own connection."""
        app = create_app({
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'stock.db'}",
            'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'check_same_thread': False, 'timeout': 30}},
            'ANALYTICS_ASYNC_REFRESH': False,
            'ANALYTICS_BACKGROUND_REFRESH': False,
        })
        with app.app_context():
            db.create_all()
        yield app
        with app.app_context():
            db.session.remove()
            db.drop_all()
            db.engine.dispose()

    def test_parallel_reservations_never_oversell(self, file_app):
        with file_app.app_context():
            product = Product(sku="RACE-1", name="Race", price_cents=1000, stock=5, status="active")
            db.session.add(product)
            db.session.commit()
            product_id = product.id

        barrier = threading.Barrier(self.THREADS)
        outcomes = []
        errors = []
        outcomes_lock = threading.Lock()

        def _reserve_one():
            stock_service.reserve_stock(product_id, 1)
            db.session.commit()

        def worker():
            with file_app.app_context():
                barrier.wait()
                try:
                    run_with_retry(_reserve_one, attempts=10, backoff_base=0.02)
                    result = True
                except InsufficientStockError:
                    db.session.rollback()
                    result = False
                except Exception as exc:
                    errors.append(exc)
                    return
                with outcomes_lock:
                    outcomes.append(result)

        threads = [threading.Thread(target=worker) for _ in range(self.THREADS)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        assert errors == []
        assert outcomes.count(True) == 5
        assert outcomes.count(False) == self.THREADS - 5
        with file_app.app_context():
            assert stock_service.get_stock(product_id) == 0
