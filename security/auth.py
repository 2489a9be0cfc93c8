from flask import request, jsonify, current_app
from functools import wraps


def require_api_key(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        api_key = request.headers.get("x-api-key")

        if not api_key:
            return jsonify({
                "error": "API key required",
                "message": "Please provide an API key in the x-api-key header",
            }), 401

        registry = current_app.extensions["api_keys"]
        if not registry.is_valid(api_key):
            return jsonify({
                "error": "Invalid API key",
                "message": "The provided API key is not valid",
            }), 403

        return f(*args, **kwargs)
    return decorated
