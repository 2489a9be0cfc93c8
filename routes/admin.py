from flask import Blueprint, request, jsonify, current_app

from security.auth import require_api_key

admin_bp = Blueprint("admin", __name__)


@admin_bp.route("/health", methods=["GET"])
def health():
    # Fallback mode still serves every request, so it is degraded, not down
    status = current_app.extensions["payment_store"].get_store_status()

    return jsonify({
        "status": "healthy" if status["redis_connected"] else "degraded",
        "services": {
            "redis": {
                "status": "connected" if status["redis_connected"] else "fallback",
                "message": "Redis connected" if status["redis_connected"] else "Using memory fallback",
                "details": status,
            }
        },
    })


@admin_bp.route("/api/stats", methods=["GET"])
@require_api_key
def stats():
    payment_store = current_app.extensions["payment_store"]
    payment_stats = payment_store.get_payment_stats()

    return jsonify({
        "webhookRetries": current_app.extensions["retry_queue"].get_retry_stats(),
        "payments": payment_stats["stats"] if payment_stats["success"] else None,
        "storage": payment_store.get_store_status(),
    })


@admin_bp.route("/api/admin/keys", methods=["GET"])
@require_api_key
def list_api_keys():
    keys = current_app.extensions["api_keys"].all()
    return jsonify({"api_keys": keys, "count": len(keys)})


@admin_bp.route("/api/admin/keys", methods=["POST"])
@require_api_key
def add_api_key():
    data = request.get_json(silent=True) or {}
    api_key = data.get("api_key")

    if not api_key or not isinstance(api_key, str):
        return jsonify({
            "error": "API key required",
            "message": "Please provide an api_key in the request body",
        }), 400

    if not current_app.extensions["api_keys"].add(api_key):
        return jsonify({"error": "Failed to add API key"}), 500

    return jsonify({"success": True, "message": f"API key '{api_key}' added successfully"}), 201


@admin_bp.route("/api/admin/keys/<key>", methods=["DELETE"])
@require_api_key
def remove_api_key(key):
    if not current_app.extensions["api_keys"].remove(key):
        return jsonify({"error": "Failed to remove API key"}), 500

    return jsonify({"success": True, "message": f"API key '{key}' removed successfully"})
