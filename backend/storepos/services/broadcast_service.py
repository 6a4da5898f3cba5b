"""
Analytics dispatcher: cached reads, event-driven recompute, push fan-out.

The cache, the push broker and the worker thread belong to the Flask app
(created in create_app, stopped at exit) and are injected here.

Threading model:
- notify_transaction_event() runs on a single worker thread when
  ANALYTICS_ASYNC_REFRESH is on, so the request that committed the sale
  never waits for aggregation. Inline otherwise (tests, CLI).
- refresh_all() is guarded by a non-blocking lock. A call that arrives
  while a full refresh is running is dropped, not queued.
- Every event refresh bumps a generation counter. A full refresh that
  started before the bump leaves the newer snapshots in place.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Callable

from flask import has_app_context

from ..time_utils import utcnow
from ..validation import MANAGER_ROLES
from .analytics_cache import AnalyticsCache, CacheKey
from .analytics_service import (
    TransactionRecord,
    cashier_analytics,
    dashboard_analytics,
    load_transaction_records,
)
from .catalog_service import category_map
from .push_service import PushBroker, role_room, user_room

logger = logging.getLogger(__name__)

DASHBOARD = "dashboard"
CASHIER = "cashier"
# Windows recomputed after every event and on each background tick
REFRESH_PERIODS = (30, 7, 1)

ANALYTICS_UPDATE_EVENT = "analytics:update"
CASHIER_UPDATE_EVENT = "cashier:analytics:update"


class AnalyticsDispatcher:
    def __init__(
        self,
        app,
        cache: AnalyticsCache,
        broker: PushBroker,
        *,
        async_refresh: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.app = app
        self.cache = cache
        self.broker = broker
        self.async_refresh = async_refresh
        self._clock = clock
        self._refresh_lock = threading.Lock()
        self._generation = 0
        self._generation_lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._timer: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Cached reads
    # ------------------------------------------------------------------

    def get_dashboard_analytics(self, period_days: int = 30) -> dict:
        key = CacheKey(DASHBOARD, period_days)
        return self.cache.get_or_compute(key, lambda: self._compute_dashboard(period_days))

    def get_cashier_analytics(self, cashier_id: str, period_days: int = 30) -> dict:
        key = CacheKey(CASHIER, period_days, cashier_id)
        return self.cache.get_or_compute(key, lambda: self._compute_cashier(cashier_id, period_days))

    def _load(self, now: datetime, periods, cashier_id: str | None = None) -> list[TransactionRecord]:
        # Both comparison windows and the trailing week must be covered
        horizon = max(max(periods) * 2, 7)
        return load_transaction_records(since=now - timedelta(days=horizon), cashier_id=cashier_id)

    @staticmethod
    def _categories(records: list[TransactionRecord]) -> dict[int, str]:
        product_ids = {line.product_id for record in records for line in record.lines}
        return category_map(product_ids)

    def _compute_dashboard(self, period_days: int) -> dict:
        now = self._clock()
        records = self._load(now, (period_days,))
        return dashboard_analytics(records, period_days, now, self._categories(records))

    def _compute_cashier(self, cashier_id: str, period_days: int) -> dict:
        now = self._clock()
        records = self._load(now, (period_days,), cashier_id=cashier_id)
        return cashier_analytics(records, cashier_id, period_days, now)

    # ------------------------------------------------------------------
    # Event-driven refresh
    # ------------------------------------------------------------------

    def notify_transaction_event(self, event: str, cashier_id: str | None = None, transaction_id: int | None = None):
        """
        Recompute the store-wide and cashier scopes after a create/refund/cancel.

        Never raises: analytics is a derived side channel and must not fail
        the operation that triggered it.
        """
        if self.async_refresh:
            try:
                self._get_executor().submit(
                    self._run_in_context, self.refresh_for_event, event, cashier_id, transaction_id
                )
            except RuntimeError:
                logger.warning("Analytics worker unavailable; dropping %s refresh", event)
            return None
        return self._run_in_context(self.refresh_for_event, event, cashier_id, transaction_id)

    def refresh_for_event(self, event: str, cashier_id: str | None = None, transaction_id: int | None = None) -> dict:
        with self._generation_lock:
            self._generation += 1
        now = self._clock()
        records = self._load(now, REFRESH_PERIODS)
        categories = self._categories(records)

        # Snapshots for windows outside REFRESH_PERIODS are stale now
        self.cache.invalidate(DASHBOARD)
        store = {}
        for days in REFRESH_PERIODS:
            store[days] = dashboard_analytics(records, days, now, categories)
            self.cache.set(CacheKey(DASHBOARD, days), store[days])

        cashier = {}
        if cashier_id:
            self.cache.invalidate(CASHIER, cashier_id)
            for days in REFRESH_PERIODS:
                cashier[days] = cashier_analytics(records, cashier_id, days, now)
                self.cache.set(CacheKey(CASHIER, days, cashier_id), cashier[days])

        pushed = self._push(event, transaction_id, store, cashier_id, cashier)
        logger.info("Analytics refreshed after %s (transaction=%s, pushed=%s)", event, transaction_id, pushed)
        return {"event": event, "cashier_id": cashier_id, "pushed": pushed}

    def _push(self, event, transaction_id, store: dict, cashier_id, cashier: dict) -> bool:
        if not self.broker.has_subscribers():
            logger.debug("No live subscribers; skipping analytics push")
            return False

        store_payload = {
            "event": event,
            "transaction_id": transaction_id,
            "period": "30d",
            "metrics": store[30]["metrics"],
            "summary": store[30]["summary"],
            "normalized": store[30]["normalized"],
            "growth_delta": store[30]["growth_delta"],
            "sales_by_category": store[30]["sales_by_category"],
            "hourly_sales": store[30]["hourly_sales"],
            "top_performer": store[30]["top_performer"],
            "weekly_trend": store[30]["weekly_trend"],
            "weekly": store[7]["summary"],
            "daily": store[1]["summary"],
        }
        for role in MANAGER_ROLES:
            self.broker.publish(role_room(role), ANALYTICS_UPDATE_EVENT, store_payload)

        if cashier_id and cashier:
            cashier_payload = {
                "event": event,
                "transaction_id": transaction_id,
                "period": "30d",
                "metrics": cashier[30]["metrics"],
                "summary": cashier[30]["summary"],
                "normalized": cashier[30]["normalized"],
                "weekly": cashier[7]["summary"],
                "daily": cashier[1]["summary"],
            }
            self.broker.publish(user_room(cashier_id), ANALYTICS_UPDATE_EVENT, cashier_payload)
            for role in MANAGER_ROLES:
                self.broker.publish(
                    role_room(role),
                    CASHIER_UPDATE_EVENT,
                    {"cashier_id": cashier_id, "analytics": cashier_payload},
                )
        return True

    # ------------------------------------------------------------------
    # Full refresh
    # ------------------------------------------------------------------

    @property
    def is_refreshing(self) -> bool:
        return self._refresh_lock.locked()

    def refresh_all(self) -> bool:
        """
        Recompute the common store windows and every cached cashier scope.

        Returns False when the call was dropped because another full
        refresh is in flight (or when it failed; the failure is logged).
        Snapshots written by an event refresh after this call started are
        newer than anything it computed and are kept.
        """
        if not self._refresh_lock.acquire(blocking=False):
            logger.info("Analytics refresh already in progress; skipping")
            return False
        try:
            with self._generation_lock:
                generation = self._generation
            now = self._clock()
            records = self._load(now, REFRESH_PERIODS)
            categories = self._categories(records)

            superseded = 0
            for days in REFRESH_PERIODS:
                snapshot = dashboard_analytics(records, days, now, categories)
                if not self._set_if_current(CacheKey(DASHBOARD, days), snapshot, generation):
                    superseded += 1

            cashier_keys = [key for key in self.cache.keys() if key.report_kind == CASHIER]
            for key in cashier_keys:
                if key.period_days in REFRESH_PERIODS:
                    snapshot = cashier_analytics(records, key.cashier_id, key.period_days, now)
                    if not self._set_if_current(key, snapshot, generation):
                        superseded += 1
                else:
                    # Outside the loaded horizon; recomputed lazily on next read
                    self.cache.invalidate(CASHIER, key.cashier_id)

            purged = self.cache.purge_expired()
            if superseded:
                logger.info("Kept %d snapshots written by newer event refreshes", superseded)
            logger.info("Full analytics refresh done (%d records, %d expired purged)", len(records), purged)
            return True
        except Exception:
            logger.exception("Full analytics refresh failed")
            return False
        finally:
            self._refresh_lock.release()

    def _set_if_current(self, key: CacheKey, data: dict, generation: int) -> bool:
        with self._generation_lock:
            if self._generation != generation:
                return False
            self.cache.set(key, data)
            return True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="analytics-refresh")
            return self._executor

    def _run_in_context(self, func, *args):
        try:
            if has_app_context():
                return func(*args)
            with self.app.app_context():
                return func(*args)
        except Exception:
            logger.exception("Analytics refresh failed (%s)", getattr(func, "__name__", func))
            return None

    def start_background_refresh(self, interval_seconds: float) -> threading.Thread:
        """Daemon thread that keeps the common windows warm."""
        if self._timer is not None and self._timer.is_alive():
            return self._timer
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._stop_event.clear()

        def _loop():
            while not self._stop_event.wait(interval_seconds):
                self._run_in_context(self.refresh_all)

        self._timer = threading.Thread(target=_loop, name="analytics-timer", daemon=True)
        self._timer.start()
        logger.info("Background analytics refresh every %ss", interval_seconds)
        return self._timer

    def stop(self, wait: bool = True) -> None:
        self._stop_event.set()
        if self._timer is not None:
            self._timer.join(timeout=5 if wait else 0)
            self._timer = None
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=wait)
                self._executor = None
