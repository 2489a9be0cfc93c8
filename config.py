import os

from dotenv import load_dotenv

# Load environment variables from .env for local development
load_dotenv()


def _csv(value):
    return [item.strip() for item in value.split(",") if item.strip()]


class Config:
    # Remote key-value backend.
    # Leave REDIS_URL unset to run the state layer entirely in memory.
    REDIS_URL = os.getenv("REDIS_URL")

    # Call-level timeouts enforced by the redis client. A call that times out
    # is served from the in-process tier instead.
    REDIS_SOCKET_TIMEOUT = float(os.getenv("REDIS_SOCKET_TIMEOUT", "2"))
    REDIS_CONNECT_TIMEOUT = float(os.getenv("REDIS_CONNECT_TIMEOUT", "2"))

    # Shared secret used to verify Stripe-Signature headers on incoming events.
    WEBHOOK_SECRET = os.getenv("WEBHOOK_SECRET")
    WEBHOOK_TOLERANCE_SECONDS = int(os.getenv("WEBHOOK_TOLERANCE_SECONDS", "300"))

    # Failed webhook retry queue.
    # "memory" keeps the queue in-process, "file" rewrites a JSON file on every change.
    RETRY_QUEUE_BACKEND = os.getenv("RETRY_QUEUE_BACKEND", "memory")
    RETRY_QUEUE_FILE = os.getenv(
        "RETRY_QUEUE_FILE",
        os.path.join(os.getcwd(), "data", "failed-webhooks.json"),
    )

    # Maintenance tick intervals (seconds). 0 disables the in-process runner.
    RETRY_TICK_SECONDS = int(os.getenv("RETRY_TICK_SECONDS", "300"))
    CLEANUP_TICK_SECONDS = int(os.getenv("CLEANUP_TICK_SECONDS", "300"))

    # Seeded into the api_keys set when it is empty.
    DEFAULT_API_KEYS = _csv(
        os.getenv(
            "DEFAULT_API_KEYS",
            "vpio-test-key-1,vpio-test-key-2,vpio-test-key-3,vpio-demo-key",
        )
    )

    RATE_LIMIT_SEARCH = os.getenv("RATE_LIMIT_SEARCH", "30 per minute")
