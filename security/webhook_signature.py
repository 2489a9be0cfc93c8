import hmac
import hashlib
import time
from flask import request, current_app, jsonify
from functools import wraps

SIGNATURE_HEADER = "Stripe-Signature"


def _parse_signature_header(header):
    """
    Split "t=<timestamp>,v1=<sig>,v1=<sig>" into (timestamp, [signatures]).
    """
    timestamp = None
    signatures = []
    for item in header.split(","):
        name, _, value = item.strip().partition("=")
        if name == "t":
            timestamp = value
        elif name == "v1":
            signatures.append(value)
    return timestamp, signatures


def compute_signature(secret, timestamp, payload):
    signed_payload = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()


def verify_webhook_signature():
    """
    Verifies the authenticity and freshness of a payment event.

    - The signature header must carry a timestamp and at least one v1 signature
    - The timestamp must fall inside the configured tolerance window
    - One v1 signature must match the HMAC of "<timestamp>.<raw body>"
    """
    header = request.headers.get(SIGNATURE_HEADER)
    if not header:
        return False

    timestamp, signatures = _parse_signature_header(header)
    if not timestamp or not signatures:
        return False

    try:
        ts = int(timestamp)
    except ValueError:
        return False

    tolerance = current_app.config.get("WEBHOOK_TOLERANCE_SECONDS", 300)
    if abs(int(time.time()) - ts) > tolerance:
        return False

    expected = compute_signature(
        current_app.config["WEBHOOK_SECRET"],
        timestamp,
        request.get_data(),
    )

    # Constant-time comparison to prevent timing attacks
    return any(hmac.compare_digest(sig, expected) for sig in signatures)


def require_webhook_signature(f):
    """
    Rejects the request with 400 if the signature is missing or invalid,
    and with 500 if no webhook secret is configured.
    """

    @wraps(f)
    def decorated(*args, **kwargs):
        if not current_app.config.get("WEBHOOK_SECRET"):
            return jsonify({"error": "Webhook secret not configured"}), 500
        if not verify_webhook_signature():
            return jsonify({"error": "Invalid signature"}), 400
        return f(*args, **kwargs)

    return decorated
