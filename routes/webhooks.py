import json

from flask import Blueprint, request, jsonify, current_app

from audit.logger import logger
from security.webhook_signature import require_webhook_signature

# Blueprint responsible for handling incoming payment processor events
webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")


@webhooks_bp.route("/stripe", methods=["POST"])
@require_webhook_signature
def stripe_webhook():
    """
    Payment processor event endpoint.

    - Signature and freshness are checked before the body is parsed
    - The event is processed through the same path the retry queue uses
    - A processing failure is queued for redelivery and answered with 500
      so the sender also knows delivery failed
    """
    try:
        event = json.loads(request.get_data())
    except ValueError:
        return jsonify({"error": "Invalid JSON payload"}), 400

    if not isinstance(event, dict) or not event.get("type"):
        return jsonify({"error": "Invalid event"}), 400

    processor = current_app.extensions["webhook_processor"]
    retry_queue = current_app.extensions["retry_queue"]

    logger.info(f"Webhook received | event_type={event['type']} | event_id={event.get('id')}")

    try:
        processor(event)
    except Exception as e:
        logger.exception(f"Webhook processing failed | event_type={event['type']} | event_id={event.get('id')}")
        retry_queue.add_failed_webhook(event, e)
        return jsonify({
            "error": "Webhook processing failed",
            "message": str(e),
        }), 500

    return jsonify({"received": True, "type": event["type"]}), 200
