"""
Analytics dispatcher and push broker tests.

Verifies:
- Transaction events refresh the cache and push to live rooms only
- A full refresh arriving while one runs is dropped
- A full refresh never overwrites snapshots from a later sale
- Repeated reads with no sale in between come from the cache
- Bounded subscriber queues drop instead of blocking
"""

import pytest

from storepos.services import broadcast_service, transaction_service
from storepos.services.analytics_cache import CacheKey
from storepos.services.broadcast_service import (
    ANALYTICS_UPDATE_EVENT,
    CASHIER_UPDATE_EVENT,
    CASHIER,
    DASHBOARD,
    REFRESH_PERIODS,
)
from storepos.services.push_service import PushBroker, role_room, user_room


def _sell(product, cashier_id="c1"):
    return transaction_service.create_transaction(
        [{"product_id": product.id, "quantity": 1}], "card", "regular", cashier_id, "Cashier",
    )


class TestCachedReads:

    def test_repeated_dashboard_read_is_a_cache_hit(self, dispatcher, cache, make_product):
        _sell(make_product(price="40.00"))
        cache.clear()

        first = dispatcher.get_dashboard_analytics(30)
        hits = cache.stats()["hits"]
        second = dispatcher.get_dashboard_analytics(30)

        assert second == first
        assert second["metrics"]["total_sales"] == 40.0
        assert cache.stats()["hits"] == hits + 1


class TestEventRefresh:

    def test_no_subscribers_skips_push(self, dispatcher, make_product):
        product = make_product(price="25.00")
        txn = _sell(product)
        result = dispatcher.refresh_for_event("create", cashier_id="c1", transaction_id=txn.id)
        assert result == {"event": "create", "cashier_id": "c1", "pushed": False}

    def test_create_refreshes_cache(self, dispatcher, cache, make_product):
        product = make_product(price="25.00")
        _sell(product)

        for days in REFRESH_PERIODS:
            snapshot = cache.get(CacheKey(DASHBOARD, days))
            assert snapshot["metrics"]["total_sales"] == 25.0
            assert cache.get(CacheKey(CASHIER, days, "c1"))["metrics"]["total_transactions"] == 1

    def test_refund_invalidates_stale_snapshot(self, dispatcher, cache, make_product):
        product = make_product(price="25.00")
        txn = _sell(product)
        assert dispatcher.get_dashboard_analytics(30)["metrics"]["total_sales"] == 25.0

        transaction_service.refund_transaction(txn.id)
        snapshot = dispatcher.get_dashboard_analytics(30)
        assert snapshot["metrics"]["total_sales"] == 0.0
        assert snapshot["metrics"]["refunded_count"] == 1

    def test_pushes_to_manager_and_cashier_rooms(self, broker, make_product):
        product = make_product(price="10.00")
        with broker.subscribe([role_room("manager")]) as manager, broker.subscribe([user_room("c1")]) as cashier:
            txn = _sell(product, cashier_id="c1")

            store_msg = manager.get(timeout=1)
            assert store_msg.event == ANALYTICS_UPDATE_EVENT
            assert store_msg.payload["transaction_id"] == txn.id
            assert store_msg.payload["metrics"]["total_sales"] == 10.0
            assert manager.get(timeout=1).event == CASHIER_UPDATE_EVENT

            own = cashier.get(timeout=1)
            assert own.event == ANALYTICS_UPDATE_EVENT
            assert own.payload["metrics"]["total_transactions"] == 1
            assert cashier.get(timeout=0.01) is None

        assert broker.subscriber_count() == 0

    def test_refresh_failure_does_not_fail_sale(self, dispatcher, make_product, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("aggregation exploded")

        monkeypatch.setattr(broadcast_service, "load_transaction_records", boom)
        product = make_product(stock=3)
        txn = _sell(product)
        assert txn.status == "completed"


class TestFullRefresh:

    def test_refresh_all(self, dispatcher, cache, make_product):
        product = make_product(price="12.00")
        _sell(product)
        cache.clear()
        dispatcher.get_cashier_analytics("c1", 7)

        assert dispatcher.refresh_all() is True
        assert cache.get(CacheKey(DASHBOARD, 30))["metrics"]["total_sales"] == 12.0
        assert cache.get(CacheKey(CASHIER, 7, "c1")) is not None

    def test_reentrant_refresh_is_dropped(self, dispatcher, db_session, monkeypatch):
        inner = []
        original = broadcast_service.load_transaction_records

        def reentrant_loader(*args, **kwargs):
            if not inner:
                inner.append(dispatcher.refresh_all())
            return original(*args, **kwargs)

        monkeypatch.setattr(broadcast_service, "load_transaction_records", reentrant_loader)
        assert dispatcher.refresh_all() is True
        assert inner == [False]
        assert not dispatcher.is_refreshing

    def test_sale_during_full_refresh_keeps_newer_snapshot(self, dispatcher, cache, make_product, monkeypatch):
        product = make_product(price="10.00")
        original = broadcast_service.load_transaction_records
        sold = []

        def racing_loader(*args, **kwargs):
            records = original(*args, **kwargs)
            if not sold:
                # Sale commits after the full refresh read its records
                sold.append(True)
                _sell(product)
            return records

        monkeypatch.setattr(broadcast_service, "load_transaction_records", racing_loader)
        assert dispatcher.refresh_all() is True

        for days in REFRESH_PERIODS:
            assert cache.get(CacheKey(DASHBOARD, days))["metrics"]["total_sales"] == 10.0
        assert cache.get(CacheKey(CASHIER, 30, "c1"))["metrics"]["total_transactions"] == 1

    def test_failed_refresh_returns_false(self, dispatcher, db_session, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("db down")

        monkeypatch.setattr(broadcast_service, "load_transaction_records", boom)
        assert dispatcher.refresh_all() is False
        assert not dispatcher.is_refreshing


class TestPushBroker:

    def test_publish_without_room_members(self):
        broker = PushBroker()
        with broker.subscribe([role_room("cashier")]):
            assert broker.publish(role_room("manager"), "x", {}) == 0
            assert broker.has_subscribers()
            assert not broker.has_subscribers(role_room("manager"))

    def test_full_queue_drops(self):
        broker = PushBroker(max_queue=1)
        sub = broker.subscribe([user_room("c1")])
        assert broker.publish(user_room("c1"), "first", {"n": 1}) == 1
        assert broker.publish(user_room("c1"), "second", {"n": 2}) == 0
        assert sub.dropped == 1
        assert sub.get(timeout=0).event == "first"
        sub.close()
        assert broker.subscriber_count() == 0

    def test_subscribe_requires_room(self):
        with pytest.raises(ValueError):
            PushBroker().subscribe([])

    def test_sse_frame(self):
        broker = PushBroker()
        with broker.subscribe([role_room("admin")]) as sub:
            broker.publish(role_room("admin"), "analytics:update", {"total": 1})
            assert sub.get(timeout=0).to_sse() == 'event: analytics:update\ndata: {"total":1}\n\n'
