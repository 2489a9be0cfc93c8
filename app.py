from flask import Flask, jsonify, g

from config import Config
from extensions import limiter
from audit.logger import logger
from audit.request_context import init_request_id, REQUEST_ID_HEADER
from exceptions.store_exceptions import PaymentNotFound
from infrastructure.data_store import DataStore
from infrastructure.redis_client import build_redis_client
from jobs.maintenance import MaintenanceRunner, run_cleanup_tick, run_retry_tick
from routes.admin import admin_bp
from routes.payments import payments_bp
from routes.webhooks import webhooks_bp
from security.api_keys import ApiKeyRegistry
from services.payment_store import PaymentStore
from services.webhook_events import WebhookEventProcessor
from services.webhook_retry import DurableQueueStore, VolatileQueueStore, WebhookRetryQueue


def build_queue_store(config):
    backend = config.get("RETRY_QUEUE_BACKEND", "memory")
    if backend == "file":
        return DurableQueueStore(config["RETRY_QUEUE_FILE"])
    if backend != "memory":
        raise RuntimeError(f"Unknown RETRY_QUEUE_BACKEND: {backend}")
    return VolatileQueueStore()


def create_app(config=None, data_store=None, start_maintenance=False):
    """
    Build the app and its state layer.

    The DataStore is built once here (or injected) and handed to every
    service; nothing else constructs one.
    """
    app = Flask(__name__)
    app.config.from_object(Config)
    if config:
        app.config.update(config)

    # STATE LAYER
    if data_store is None:
        data_store = DataStore(build_redis_client(app.config.get("REDIS_URL")))

    payment_store = PaymentStore(data_store)
    processor = WebhookEventProcessor(payment_store)
    retry_queue = WebhookRetryQueue(build_queue_store(app.config), deliver=processor)
    api_keys = ApiKeyRegistry(data_store, app.config.get("DEFAULT_API_KEYS"))
    api_keys.seed_defaults()

    app.extensions["data_store"] = data_store
    app.extensions["payment_store"] = payment_store
    app.extensions["webhook_processor"] = processor
    app.extensions["retry_queue"] = retry_queue
    app.extensions["api_keys"] = api_keys

    # MIDDLEWARES (OBSERVABILITY)
    # Initialize request correlation ID at the beginning of each request
    @app.before_request
    def _before_request():
        init_request_id()

    # Propagate request_id back to the caller for cross-service tracing
    @app.after_request
    def _after_request(response):
        response.headers[REQUEST_ID_HEADER] = g.request_id
        return response

    # INIT EXTENSIONS
    limiter.init_app(app)

    # REGISTER BLUEPRINTS
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(admin_bp)

    # ERROR HANDLERS
    @app.errorhandler(PaymentNotFound)
    def handle_payment_not_found(e):
        return jsonify({"error": "Payment not found", "message": str(e)}), 404

    @app.errorhandler(404)
    def handle_not_found(e):
        return jsonify({
            "error": "Not found",
            "message": "The requested endpoint was not found",
        }), 404

    # MAINTENANCE (external cron can use the CLI commands instead)
    @app.cli.command("retry-webhooks")
    def retry_webhooks_command():
        """Run one webhook retry tick."""
        summary = run_retry_tick(retry_queue)
        print(summary)

    @app.cli.command("cleanup-store")
    def cleanup_store_command():
        """Sweep expired entries from the memory tier."""
        print(f"removed={run_cleanup_tick(data_store)}")

    if start_maintenance:
        runner = MaintenanceRunner(
            retry_queue,
            data_store,
            retry_interval=app.config["RETRY_TICK_SECONDS"],
            cleanup_interval=app.config["CLEANUP_TICK_SECONDS"],
        )
        runner.start()
        app.extensions["maintenance"] = runner

    logger.info(f"App initialized | store_mode={data_store.mode} | retry_queue={app.config['RETRY_QUEUE_BACKEND']}")
    return app


# ENTRYPOINT
if __name__ == "__main__":
    create_app(start_maintenance=True).run(host="0.0.0.0", port=3000, debug=True)
