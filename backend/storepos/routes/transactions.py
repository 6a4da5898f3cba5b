# Overview: Flask API routes for transactions; parses input and returns JSON responses.

from flask import Blueprint, Response, g, jsonify, request

from ..decorators import require_auth, require_role
from ..services import export_service, transaction_service
from ..time_utils import utcnow
from ..validation import (
    ADMIN_ROLES,
    MANAGER_ROLES,
    PosError,
    ValidationError,
    coerce_int,
    parse_date_param,
)
from .common import error_response, internal_error, json_body


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


@transactions_bp.post("")
@require_auth
def create_transaction_route():
    """
    Create a completed sale.

    The cashier is always the authenticated caller, never the request body.
    """
    data = json_body()
    try:
        txn = transaction_service.create_transaction(
            data.get("items"),
            data.get("payment_method"),
            data.get("customer_type"),
            g.identity.user_id,
            g.identity.name,
            customer_id=data.get("customer_id"),
            customer_name=data.get("customer_name"),
            notes=data.get("notes"),
            discount=data.get("discount"),
            tax=data.get("tax"),
        )
        return jsonify({"transaction": txn.to_dict()}), 201
    except PosError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create transaction")


@transactions_bp.get("")
@require_auth
def list_transactions_route():
    try:
        filters = transaction_service.parse_transaction_filters(request.args)
        return jsonify(transaction_service.list_transactions(filters, identity=g.identity))
    except PosError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to list transactions")


@transactions_bp.get("/<int:transaction_id>")
@require_auth
def get_transaction_route(transaction_id: int):
    try:
        txn = transaction_service.get_transaction(transaction_id, identity=g.identity)
        return jsonify({"transaction": txn.to_dict()})
    except PosError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to load transaction")


@transactions_bp.post("/<int:transaction_id>/refund")
@require_auth
@require_role(*MANAGER_ROLES)
def refund_transaction_route(transaction_id: int):
    data = json_body()
    try:
        txn = transaction_service.refund_transaction(transaction_id, data.get("reason"))
        return jsonify({"transaction": txn.to_dict(), "message": "Transaction refunded successfully"})
    except PosError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to refund transaction")


@transactions_bp.post("/<int:transaction_id>/cancel")
@require_auth
@require_role(*MANAGER_ROLES)
def cancel_transaction_route(transaction_id: int):
    data = json_body()
    try:
        txn = transaction_service.cancel_transaction(transaction_id, data.get("reason"))
        return jsonify({"transaction": txn.to_dict(), "message": "Transaction cancelled successfully"})
    except PosError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to cancel transaction")


@transactions_bp.post("/bulk-refund")
@require_auth
@require_role(*ADMIN_ROLES)
def bulk_refund_route():
    data = json_body()
    try:
        refunded = transaction_service.bulk_refund(data.get("transaction_ids"), data.get("reason"))
        return jsonify({
            "transactions": [txn.to_dict(include_lines=False) for txn in refunded],
            "count": len(refunded),
        })
    except PosError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to bulk refund transactions")


@transactions_bp.get("/export")
@require_auth
@require_role(*MANAGER_ROLES)
def export_transactions_route():
    """
    CSV export, one row per (transaction, line).

    Filters match the list endpoint; pagination is ignored and status
    defaults to "all" here.
    """
    try:
        args = request.args.to_dict()
        args.setdefault("status", "all")
        filters = transaction_service.parse_transaction_filters(args)
        delimiter = args.get("delimiter") or ","
        if len(delimiter) != 1 or delimiter in ('"', "\n", "\r"):
            raise ValidationError("delimiter must be a single character")
        body = export_service.rows_to_csv(export_service.get_export_rows(filters), delimiter=delimiter)
        filename = f"transactions_{utcnow():%Y%m%d_%H%M%S}.csv"
        return Response(
            body,
            mimetype="text/csv",
            headers={"Content-Disposition": f"attachment; filename={filename}"},
        )
    except PosError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to export transactions")


@transactions_bp.get("/export/stats")
@require_auth
@require_role(*MANAGER_ROLES)
def export_statistics_route():
    try:
        args = request.args.to_dict()
        args.setdefault("status", "all")
        filters = transaction_service.parse_transaction_filters(args)
        return jsonify(export_service.export_statistics(filters))
    except PosError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to compute export statistics")


@transactions_bp.get("/sales/daily")
@require_auth
@require_role(*MANAGER_ROLES)
def daily_sales_route():
    try:
        day = parse_date_param(request.args.get("date"), "date")
        return jsonify(transaction_service.daily_sales(day.date() if day else None))
    except PosError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to compute daily sales")


@transactions_bp.get("/sales/by-cashier")
@require_auth
@require_role(*MANAGER_ROLES)
def sales_by_cashier_route():
    try:
        start = parse_date_param(request.args.get("start_date"), "start_date")
        end = parse_date_param(request.args.get("end_date"), "end_date")
        return jsonify({
            "cashiers": transaction_service.sales_by_cashier(start, end),
            "range": transaction_service.range_summary(start, end),
        })
    except PosError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to compute sales by cashier")


@transactions_bp.get("/sales/top-products")
@require_auth
@require_role(*MANAGER_ROLES)
def top_products_route():
    try:
        start = parse_date_param(request.args.get("start_date"), "start_date")
        end = parse_date_param(request.args.get("end_date"), "end_date")
        limit = coerce_int(request.args.get("limit") or 10, "limit")
        return jsonify({
            "products": transaction_service.top_products(start, end, limit=limit),
            "range": transaction_service.range_summary(start, end),
        })
    except PosError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to compute top products")
