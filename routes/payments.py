from flask import Blueprint, request, jsonify, current_app

from security.auth import require_api_key
from extensions import limiter
from config import Config
from exceptions.store_exceptions import PaymentNotFound

payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


def _payment_store():
    return current_app.extensions["payment_store"]


def _float_arg(name):
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _int_arg(name, default):
    try:
        value = int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default
    return value if value >= 1 else default


@payments_bp.route("", methods=["POST"])
@require_api_key
def create_payment():
    data = request.get_json(silent=True)

    if not isinstance(data, dict):
        return jsonify({"error": "Invalid JSON payload"}), 400

    amount = data.get("amount")
    if not isinstance(amount, (int, float)) or isinstance(amount, bool) or amount <= 0:
        return jsonify({
            "error": "Valid amount is required",
            "message": "Amount must be greater than 0",
        }), 400

    created_at = data.get("created_at")
    if created_at is not None and (not isinstance(created_at, int) or isinstance(created_at, bool)):
        return jsonify({
            "error": "Invalid created_at",
            "message": "created_at must be epoch milliseconds",
        }), 400

    result = _payment_store().save_payment(data)
    if not result["success"]:
        return jsonify({"error": "Payment could not be saved", "message": result["error"]}), 500

    return jsonify({"id": result["payment_id"]}), 201


@payments_bp.route("", methods=["GET"])
@require_api_key
def list_recent_payments():
    limit = _int_arg("limit", 20)
    result = _payment_store().get_recent_payments(limit)

    return jsonify({
        "payments": result["payments"],
        "total": result["total"],
        "limit": limit,
    })


@payments_bp.route("/search", methods=["GET"])
@require_api_key
@limiter.limit(lambda: Config.RATE_LIMIT_SEARCH)
def search_payments():
    criteria = {
        "status": request.args.get("status"),
        "processor": request.args.get("processor"),
        "amount_min": _float_arg("amount_min"),
        "amount_max": _float_arg("amount_max"),
        "limit": _int_arg("limit", 50),
    }

    result = _payment_store().search_payments(criteria)

    return jsonify({
        "payments": result["payments"],
        "criteria": criteria,
        "count": len(result["payments"]),
    })


@payments_bp.route("/<payment_id>", methods=["GET"])
@require_api_key
def get_payment(payment_id):
    result = _payment_store().get_payment(payment_id)

    if not result["success"]:
        raise PaymentNotFound(result["error"])

    payment = result["payment"]
    return jsonify({
        "id": payment["id"],
        "status": payment.get("status"),
        "amount": payment.get("amount"),
        "currency": payment.get("currency"),
        "created_at": payment.get("created_at"),
        "processor": payment.get("processor"),
        "metadata": payment.get("metadata"),
    })


@payments_bp.route("/<payment_id>/intent", methods=["POST"])
@require_api_key
def cache_payment_intent(payment_id):
    data = request.get_json(silent=True)

    if not isinstance(data, dict):
        return jsonify({"error": "Invalid JSON payload"}), 400

    result = _payment_store().cache_payment_intent(payment_id, data)
    if not result["success"]:
        return jsonify({"error": result["error"]}), 500

    return jsonify({"intent_id": payment_id, "cached": True}), 201


@payments_bp.route("/<payment_id>/intent", methods=["GET"])
@require_api_key
def get_cached_payment_intent(payment_id):
    result = _payment_store().get_cached_payment_intent(payment_id)

    if not result["success"]:
        return jsonify({"error": result["error"]}), 404

    return jsonify(result["intent"])
