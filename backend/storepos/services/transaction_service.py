"""
Transaction lifecycle: create, refund, cancel, and the read/reporting side.

A sale is one DB transaction: stock reservations, pricing and the
transaction row commit together or not at all. An up-front availability
pass rejects most failing carts before any UPDATE is issued.

States: pending (in-flight, never persisted) -> completed -> refunded.
Cancel is a refund with a different note prefix; there is no separate
cancelled state.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import DISPATCHER_KEY, db
from ..models import Transaction, TransactionLine
from ..money_utils import cents_to_amount, from_cents, rate_to_bps, to_cents
from ..time_utils import day_bounds, to_utc_z, utcnow
from ..validation import (
    AccessDeniedError,
    CartItemInput,
    InvalidStateError,
    NotFoundError,
    PAYMENT_METHODS,
    PersistenceError,
    PosError,
    ValidationError,
    coerce_amount,
    coerce_int,
    parse_cart_items,
    parse_date_param,
    validate_amount_range,
    validate_cashier,
    validate_customer_type,
    validate_date_range,
    validate_notes,
    validate_payment_method,
    validate_status,
)
from .concurrency import lock_for_update, run_with_retry
from .numbering_service import allocate_transaction_number
from .pricing_service import PricingInput, price_cart
from .settings_service import get_discount_rate, get_vat_rate
from .stock_service import check_availability, reserve_stock, restore_stock

REFUND_NOTE_PREFIX = "Refund reason:"
CANCEL_NOTE_PREFIX = "Cancellation reason:"

MAX_PAGE_LIMIT = 100
SORT_FIELDS = {
    "created_at": Transaction.created_at,
    "total": Transaction.total_cents,
    "transaction_number": Transaction.transaction_number,
}


# =============================================================================
# Create
# =============================================================================

def _coerce_cart(items) -> list[CartItemInput]:
    if isinstance(items, list) and items and all(isinstance(i, CartItemInput) for i in items):
        return items
    return parse_cart_items(items)


def _check_cart_availability(cart: list[CartItemInput]) -> None:
    """Up-front pass: repeated products are checked against their summed quantity."""
    requested: dict[int, int] = {}
    for item in cart:
        requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity
    for product_id, quantity in requested.items():
        check_availability(product_id, quantity)


def _build_transaction(number: str, priced, *, vat_rate: Decimal, payment_method: str,
                       cashier_id: str, cashier_name: str, customer_id, customer_name, notes) -> Transaction:
    txn = Transaction(
        transaction_number=number,
        subtotal_cents=to_cents(priced.subtotal),
        tax_cents=to_cents(priced.tax),
        discount_cents=to_cents(priced.discount),
        total_cents=to_cents(priced.total),
        vat_amount_cents=to_cents(priced.vat.vat_amount),
        net_sales_cents=to_cents(priced.vat.net_sales),
        vat_rate_bps=rate_to_bps(vat_rate),
        vat_exempt_cents=to_cents(priced.total_vat_exempt),
        customer_type=priced.customer_type,
        payment_method=payment_method,
        customer_id=customer_id,
        customer_name=customer_name,
        cashier_id=cashier_id,
        cashier_name=cashier_name,
        status="completed",
        notes=notes,
        created_at=utcnow(),
    )
    for line_number, item in enumerate(priced.items, start=1):
        txn.lines.append(TransactionLine(
            line_number=line_number,
            product_id=item.product_id,
            product_name=item.product_name,
            quantity=item.quantity,
            unit_price_cents=to_cents(item.unit_price),
            total_price_cents=to_cents(item.total_price),
            discount_cents=to_cents(item.discount),
            vat_exempt=item.vat_exempt,
            discount_applied=item.discount_applied,
            discount_amount_cents=to_cents(item.discount_amount),
            final_price_cents=to_cents(item.final_price),
        ))
    return txn


def create_transaction(
    items,
    payment_method,
    customer_type,
    cashier_id,
    cashier_name,
    *,
    customer_id=None,
    customer_name=None,
    notes=None,
    discount=None,
    tax=None,
) -> Transaction:
    """
    Validate, reserve stock, price, number and persist a completed sale.

    Raises ValidationError, NotFoundError, ProductUnavailableError,
    InsufficientStockError (nothing is reserved in any of these cases) or
    PersistenceError.
    """
    cart = _coerce_cart(items)
    payment_method = validate_payment_method(payment_method)
    customer_type = validate_customer_type(customer_type)
    cashier_id, cashier_name = validate_cashier(cashier_id, cashier_name)
    notes = validate_notes(notes)
    manual_discount = coerce_amount(discount, "discount") if discount is not None else Decimal("0")
    extra_tax = coerce_amount(tax, "tax") if tax is not None else Decimal("0")
    customer_id = str(customer_id).strip() if customer_id not in (None, "") else None
    customer_name = str(customer_name).strip() if customer_name not in (None, "") else None

    max_attempts = current_app.config.get("TXN_NUMBER_MAX_ATTEMPTS", 5)

    def _op() -> Transaction:
        _check_cart_availability(cart)

        # Sequential, in submission order, all inside the current DB transaction
        products = {}
        for item in cart:
            products[item.product_id] = reserve_stock(item.product_id, item.quantity)

        vat_rate = get_vat_rate()
        pricing_inputs = []
        for item in cart:
            product = products[item.product_id]
            unit_price = item.unit_price if item.unit_price is not None else from_cents(product.price_cents)
            pricing_inputs.append(PricingInput(
                product_id=product.id,
                product_name=product.name,
                unit_price=unit_price,
                quantity=item.quantity,
                is_discountable=product.is_discountable,
                is_vat_exemptable=product.is_vat_exemptable,
                discount=item.discount,
            ))
        priced = price_cart(
            pricing_inputs,
            customer_type,
            vat_rate=vat_rate,
            discount_rate=get_discount_rate(),
            discount=manual_discount,
            tax=extra_tax,
        )

        created: dict[str, Transaction] = {}

        def _persist(number: str) -> None:
            txn = _build_transaction(
                number,
                priced,
                vat_rate=vat_rate,
                payment_method=payment_method,
                cashier_id=cashier_id,
                cashier_name=cashier_name,
                customer_id=customer_id,
                customer_name=customer_name,
                notes=notes,
            )
            db.session.add(txn)
            created["txn"] = txn

        allocate_transaction_number(_persist, max_attempts=max_attempts)
        db.session.commit()
        return created["txn"]

    try:
        txn = run_with_retry(_op)
    except PosError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to persist transaction for cashier %s", cashier_id)
        raise PersistenceError("Failed to save transaction") from exc

    current_app.logger.info(
        "Transaction %s created by cashier %s: total=%s items=%d",
        txn.transaction_number, txn.cashier_id, from_cents(txn.total_cents), len(txn.lines),
    )
    _notify_analytics("create", txn)
    return txn


# =============================================================================
# Refund / cancel
# =============================================================================

def _append_note(existing: str | None, note: str) -> str:
    if existing:
        return f"{existing}\n{note}"
    return note


def _reverse_transaction(transaction_id, reason, *, note_prefix: str, event: str) -> Transaction:
    transaction_id = coerce_int(transaction_id, "transaction_id")
    reason = validate_notes(reason)

    def _op() -> Transaction:
        txn = lock_for_update(db.session.query(Transaction).filter_by(id=transaction_id)).first()
        if txn is None:
            raise NotFoundError("Transaction not found", details={"transaction_id": transaction_id})
        if txn.status != "completed":
            raise InvalidStateError(
                f"Cannot {event} transaction with status {txn.status}",
                details={"transaction_id": transaction_id, "status": txn.status},
            )

        for line in txn.lines:
            try:
                restore_stock(line.product_id, line.quantity)
            except NotFoundError:
                # Product row is gone; the refund itself must still go through
                current_app.logger.warning(
                    "Product %s missing while reversing transaction %s; stock not restored",
                    line.product_id, txn.transaction_number,
                )

        txn.status = "refunded"
        txn.refunded_at = utcnow()
        if reason:
            txn.notes = _append_note(txn.notes, f"{note_prefix} {reason}")

        db.session.commit()
        return txn

    try:
        txn = run_with_retry(_op)
    except PosError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to %s transaction %s", event, transaction_id)
        raise PersistenceError(f"Failed to {event} transaction") from exc

    current_app.logger.info("Transaction %s %s", txn.transaction_number, "cancelled" if event == "cancel" else "refunded")
    _notify_analytics(event, txn)
    return txn


def refund_transaction(transaction_id, reason=None) -> Transaction:
    """completed -> refunded; restores stock for every line."""
    return _reverse_transaction(transaction_id, reason, note_prefix=REFUND_NOTE_PREFIX, event="refund")


def cancel_transaction(transaction_id, reason=None) -> Transaction:
    """Same transition as refund, annotated as a cancellation."""
    return _reverse_transaction(transaction_id, reason, note_prefix=CANCEL_NOTE_PREFIX, event="cancel")


def bulk_refund(transaction_ids, reason=None) -> list[Transaction]:
    """
    Refund in order, stopping at the first failure.

    Refunds that already went through stay committed.
    """
    if not transaction_ids or not isinstance(transaction_ids, list):
        raise ValidationError("Transaction IDs array is required")
    ids = [coerce_int(value, "transaction_ids") for value in transaction_ids]
    return [refund_transaction(txn_id, reason) for txn_id in ids]


def _notify_analytics(event: str, txn: Transaction) -> None:
    dispatcher = current_app.extensions.get(DISPATCHER_KEY)
    if dispatcher is None:
        return
    try:
        dispatcher.notify_transaction_event(event, cashier_id=txn.cashier_id, transaction_id=txn.id)
    except Exception:
        current_app.logger.exception("Analytics refresh trigger failed for transaction %s", txn.transaction_number)


# =============================================================================
# Reads
# =============================================================================

def _is_restricted(identity) -> bool:
    return identity is not None and identity.role == "cashier"


def get_transaction(transaction_id, identity=None) -> Transaction:
    transaction_id = coerce_int(transaction_id, "transaction_id")
    txn = db.session.get(Transaction, transaction_id)
    if txn is None:
        raise NotFoundError("Transaction not found", details={"transaction_id": transaction_id})
    if _is_restricted(identity) and txn.cashier_id != identity.user_id:
        raise AccessDeniedError("You can only view your own transactions")
    return txn


@dataclass(frozen=True)
class TransactionFilters:
    page: int = 1
    limit: int = 20
    start: datetime | None = None
    end: datetime | None = None
    cashier_id: str | None = None
    payment_method: str | None = None
    customer_type: str | None = None
    # None means every status
    status: str | None = "completed"
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    sort_by: str = "created_at"
    sort_order: str = "desc"


def _parse_end(value: str | None) -> datetime | None:
    end = parse_date_param(value, "end_date")
    # A bare date means the whole day
    if end is not None and value and len(value.strip()) == 10:
        end = end + timedelta(days=1) - timedelta(microseconds=1)
    return end


def parse_transaction_filters(args: Mapping) -> TransactionFilters:
    """Build filters from query-string style arguments."""
    page = coerce_int(args.get("page") or 1, "page")
    limit = coerce_int(args.get("limit") or 20, "limit")
    if page < 1:
        raise ValidationError("page must be at least 1")
    if limit < 1 or limit > MAX_PAGE_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_LIMIT}")

    start = parse_date_param(args.get("start_date"), "start_date")
    end = _parse_end(args.get("end_date"))
    validate_date_range(start, end, now=utcnow())

    payment_method = None
    if args.get("payment_method"):
        payment_method = validate_payment_method(args.get("payment_method"))

    customer_type = None
    if args.get("customer_type"):
        customer_type = validate_customer_type(args.get("customer_type"))

    raw_status = (args.get("status") or "completed").strip().lower()
    status = None if raw_status == "all" else validate_status(raw_status)

    min_amount = coerce_amount(args["min_amount"], "min_amount") if args.get("min_amount") not in (None, "") else None
    max_amount = coerce_amount(args["max_amount"], "max_amount") if args.get("max_amount") not in (None, "") else None
    validate_amount_range(min_amount, max_amount)

    sort_by = args.get("sort_by") or "created_at"
    if sort_by not in SORT_FIELDS:
        raise ValidationError("Invalid sort field", details={"allowed": sorted(SORT_FIELDS)})
    sort_order = (args.get("sort_order") or "desc").lower()
    if sort_order not in ("asc", "desc"):
        raise ValidationError("sort_order must be asc or desc")

    cashier_id = (args.get("cashier_id") or "").strip() or None

    return TransactionFilters(
        page=page,
        limit=limit,
        start=start,
        end=end,
        cashier_id=cashier_id,
        payment_method=payment_method,
        customer_type=customer_type,
        status=status,
        min_amount=min_amount,
        max_amount=max_amount,
        sort_by=sort_by,
        sort_order=sort_order,
    )


def scope_filters(filters: TransactionFilters, identity=None) -> TransactionFilters:
    """Cashiers only ever see their own transactions."""
    if _is_restricted(identity):
        return replace(filters, cashier_id=identity.user_id)
    return filters


def filtered_query(filters: TransactionFilters):
    query = db.session.query(Transaction)
    if filters.status:
        query = query.filter(Transaction.status == filters.status)
    if filters.start:
        query = query.filter(Transaction.created_at >= filters.start)
    if filters.end:
        query = query.filter(Transaction.created_at <= filters.end)
    if filters.cashier_id:
        query = query.filter(Transaction.cashier_id == filters.cashier_id)
    if filters.payment_method:
        query = query.filter(Transaction.payment_method == filters.payment_method)
    if filters.customer_type:
        query = query.filter(Transaction.customer_type == filters.customer_type)
    if filters.min_amount is not None:
        query = query.filter(Transaction.total_cents >= to_cents(filters.min_amount))
    if filters.max_amount is not None:
        query = query.filter(Transaction.total_cents <= to_cents(filters.max_amount))
    return query


def list_transactions(filters: TransactionFilters, identity=None) -> dict:
    filters = scope_filters(filters, identity)
    query = filtered_query(filters)

    total = query.count()
    column = SORT_FIELDS[filters.sort_by]
    ordering = column.asc() if filters.sort_order == "asc" else column.desc()
    rows = (
        query.order_by(ordering, Transaction.id.desc())
        .offset((filters.page - 1) * filters.limit)
        .limit(filters.limit)
        .all()
    )

    return {
        "transactions": [txn.to_dict() for txn in rows],
        "pagination": {
            "page": filters.page,
            "limit": filters.limit,
            "total": total,
            "pages": (total + filters.limit - 1) // filters.limit,
        },
    }


def daily_sales(day: date | None = None) -> dict:
    """Completed sales for one UTC calendar day, with a payment method breakdown."""
    day = day or utcnow().date()
    start, end = day_bounds(day)

    rows = (
        db.session.query(
            Transaction.payment_method,
            func.count(Transaction.id),
            func.coalesce(func.sum(Transaction.total_cents), 0),
        )
        .filter(
            Transaction.status == "completed",
            Transaction.created_at >= start,
            Transaction.created_at < end,
        )
        .group_by(Transaction.payment_method)
        .all()
    )

    breakdown = {method: {"count": 0, "amount": 0.0} for method in PAYMENT_METHODS}
    count = 0
    total_cents = 0
    for method, method_count, method_cents in rows:
        breakdown[method] = {"count": int(method_count), "amount": cents_to_amount(int(method_cents))}
        count += int(method_count)
        total_cents += int(method_cents)

    return {
        "date": day.isoformat(),
        "total_sales": cents_to_amount(total_cents),
        "total_transactions": count,
        "average_transaction_value": cents_to_amount(round(total_cents / count)) if count else 0.0,
        "payment_methods": breakdown,
    }


def sales_by_cashier(start: datetime | None = None, end: datetime | None = None) -> list[dict]:
    validate_date_range(start, end)
    query = db.session.query(
        Transaction.cashier_id,
        func.max(Transaction.cashier_name),
        func.count(Transaction.id),
        func.coalesce(func.sum(Transaction.total_cents), 0),
    ).filter(Transaction.status == "completed")
    if start:
        query = query.filter(Transaction.created_at >= start)
    if end:
        query = query.filter(Transaction.created_at <= end)

    rows = query.group_by(Transaction.cashier_id).all()
    result = [
        {
            "cashier_id": cashier_id,
            "cashier_name": cashier_name,
            "transaction_count": int(count),
            "total_sales": cents_to_amount(int(total)),
            "average_transaction_value": cents_to_amount(round(int(total) / int(count))) if count else 0.0,
        }
        for cashier_id, cashier_name, count, total in rows
    ]
    result.sort(key=lambda row: row["total_sales"], reverse=True)
    return result


def top_products(start: datetime | None = None, end: datetime | None = None, limit: int = 10) -> list[dict]:
    validate_date_range(start, end)
    if limit < 1 or limit > MAX_PAGE_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_LIMIT}")

    quantity = func.sum(TransactionLine.quantity)
    revenue = func.sum(TransactionLine.final_price_cents)
    query = (
        db.session.query(
            TransactionLine.product_id,
            func.max(TransactionLine.product_name),
            quantity.label("quantity"),
            revenue.label("revenue"),
            func.count(func.distinct(Transaction.id)),
        )
        .join(Transaction, Transaction.id == TransactionLine.transaction_id)
        .filter(Transaction.status == "completed")
    )
    if start:
        query = query.filter(Transaction.created_at >= start)
    if end:
        query = query.filter(Transaction.created_at <= end)

    rows = (
        query.group_by(TransactionLine.product_id)
        .order_by(quantity.desc(), revenue.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "product_id": product_id,
            "product_name": name,
            "quantity_sold": int(qty or 0),
            "revenue": cents_to_amount(int(rev or 0)),
            "transaction_count": int(txn_count),
        }
        for product_id, name, qty, rev, txn_count in rows
    ]


def range_summary(start: datetime | None, end: datetime | None) -> dict:
    return {
        "start": to_utc_z(start) if start else None,
        "end": to_utc_z(end) if end else None,
    }
