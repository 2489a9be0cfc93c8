from audit.logger import logger
from exceptions.store_exceptions import RedeliveryFailure

# Stripe event type -> payment record status
PAYMENT_INTENT_STATUSES = {
    "payment_intent.succeeded": "succeeded",
    "payment_intent.payment_failed": "failed",
}


class WebhookEventProcessor:
    """
    Processing path for incoming payment events.

    Used both on first receipt and as the retry queue's redelivery function,
    so a retried event goes through exactly the same code.
    """

    def __init__(self, payment_store):
        self.payment_store = payment_store

    def __call__(self, event):
        return self.process(event)

    def process(self, event):
        if not isinstance(event, dict) or not event.get("type"):
            raise RedeliveryFailure("Malformed event: missing type")

        event_type = event["type"]
        status = PAYMENT_INTENT_STATUSES.get(event_type)

        if status is None:
            logger.info(f"Processing webhook | event_type={event_type} | event_id={event.get('id')}")
            return True

        intent = (event.get("data") or {}).get("object") or {}
        intent_id = intent.get("id")
        if not intent_id:
            raise RedeliveryFailure(f"Malformed event: {event_type} without payment intent id")

        logger.info(f"Processing payment event | event_type={event_type} | payment_id={intent_id}")

        existing = self.payment_store.get_payment(intent_id)
        if existing["success"]:
            # Records are only ever overwritten wholesale
            record = {**existing["payment"], "status": status}
        else:
            record = {
                "id": intent_id,
                "payment_intent_id": intent_id,
                # Stripe amounts are in the smallest currency unit
                "amount": (intent.get("amount") or 0) / 100,
                "currency": intent.get("currency"),
                "status": status,
                "processor": (intent.get("metadata") or {}).get("processor") or "stripe",
                "metadata": intent.get("metadata") or {},
            }
            if intent.get("created"):
                record["created_at"] = intent["created"] * 1000

        result = self.payment_store.save_payment(record)
        if not result["success"]:
            raise RedeliveryFailure(result["error"])

        return True
