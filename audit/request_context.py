import uuid
from flask import g, has_request_context, request

REQUEST_ID_HEADER = "X-Request-Id"


def get_request_id() -> str:
    # Maintenance ticks log from a background thread with no request bound
    if not has_request_context():
        return "unknown"
    return getattr(g, "request_id", None) or "unknown"


def init_request_id():
    rid = request.headers.get(REQUEST_ID_HEADER)
    if not rid:
        rid = str(uuid.uuid4())
    g.request_id = rid
    return rid
