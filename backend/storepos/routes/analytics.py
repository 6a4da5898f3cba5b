# Overview: Flask API routes for analytics; cached dashboard reads and the live update stream.

"""
Analytics Routes

Dashboard and cashier snapshots are served from the analytics cache.
/stream is a server-sent events feed of the pushes made after each
transaction event; subscribers join their role room and their user room.
"""

import json

from flask import Blueprint, Response, current_app, g, jsonify, request, stream_with_context

from ..decorators import require_auth, require_role
from ..extensions import DISPATCHER_KEY, PUSH_BROKER_KEY
from ..services.push_service import role_room, user_room
from ..validation import ADMIN_ROLES, MANAGER_ROLES, AccessDeniedError, PosError, validate_period
from .common import error_response, internal_error


analytics_bp = Blueprint("analytics", __name__, url_prefix="/api/analytics")


def _dispatcher():
    return current_app.extensions[DISPATCHER_KEY]


@analytics_bp.get("/dashboard")
@require_auth
@require_role(*MANAGER_ROLES)
def dashboard_route():
    try:
        period = validate_period(request.args.get("period"))
        return jsonify(_dispatcher().get_dashboard_analytics(period))
    except PosError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to load dashboard analytics")


@analytics_bp.get("/cashier")
@require_auth
def cashier_route():
    """Cashiers get their own numbers; managers may ask for any cashier_id."""
    try:
        period = validate_period(request.args.get("period"))
        cashier_id = (request.args.get("cashier_id") or "").strip() or g.identity.user_id
        if cashier_id != g.identity.user_id and not g.identity.is_manager:
            raise AccessDeniedError("You can only view your own analytics")
        return jsonify(_dispatcher().get_cashier_analytics(cashier_id, period))
    except PosError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to load cashier analytics")


@analytics_bp.post("/refresh")
@require_auth
@require_role(*ADMIN_ROLES)
def refresh_route():
    try:
        refreshed = _dispatcher().refresh_all()
        return jsonify({
            "refreshed": refreshed,
            "message": "Analytics refreshed" if refreshed else "Refresh skipped (already running or failed)",
        })
    except Exception:
        return internal_error("Failed to refresh analytics")


@analytics_bp.get("/cache/stats")
@require_auth
@require_role(*ADMIN_ROLES)
def cache_stats_route():
    dispatcher = _dispatcher()
    return jsonify({
        "cache": dispatcher.cache.stats(),
        "subscribers": dispatcher.broker.subscriber_count(),
        "refreshing": dispatcher.is_refreshing,
    })


@analytics_bp.get("/stream")
@require_auth
def stream_route():
    identity = g.identity
    broker = current_app.extensions[PUSH_BROKER_KEY]
    keepalive = current_app.config.get("STREAM_KEEPALIVE_SECONDS", 15)
    subscription = broker.subscribe([role_room(identity.role), user_room(identity.user_id)])
    current_app.logger.info("Analytics stream opened for %s (%s)", identity.user_id, identity.role)

    def generate():
        # Client disconnect closes the generator, which unsubscribes
        with subscription:
            hello = json.dumps({"user_id": identity.user_id, "rooms": sorted(subscription.rooms)})
            yield f"event: connected\ndata: {hello}\n\n"
            while True:
                message = subscription.get(timeout=keepalive)
                if message is None:
                    yield ": keepalive\n\n"
                    continue
                yield message.to_sse()

    return Response(
        stream_with_context(generate()),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
