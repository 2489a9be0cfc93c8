import threading
import time
from datetime import datetime, timedelta, timezone

from audit.logger import logger

PAYMENT_PREFIX = "payment:"
PAYMENT_INTENT_PREFIX = "payment_intent:"
RECENT_PAYMENTS_KEY = "recent_payments"

RECENT_PAYMENTS_MAX = 100
PAYMENT_INTENT_EXPIRY = 24 * 60 * 60  # seconds
DEFAULT_SEARCH_LIMIT = 50

DAY_MS = 24 * 60 * 60 * 1000
WEEK_MS = 7 * DAY_MS


def _now_iso():
    return datetime.now(timezone.utc).isoformat()


def _now_ms():
    return int(time.time() * 1000)


def _positive_int(value, default):
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        return default
    return value


def _epoch_ms(value):
    # Non-numeric created_at counts as the epoch
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return value


def _timestamp_sort_key(payment):
    raw = payment.get("timestamp")
    try:
        parsed = datetime.fromisoformat(raw)
    except (TypeError, ValueError):
        return datetime.min.replace(tzinfo=timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class PaymentStore:
    """
    Payment records, the recency index and the payment intent cache.

    Everything goes through the injected DataStore. Operations return
    outcome dicts ({"success": bool, ...}) instead of raising.
    """

    def __init__(self, data_store):
        self.data_store = data_store
        # Guards the recent_payments read-modify-write
        self._recent_lock = threading.Lock()

    def save_payment(self, payment_data):
        payment_id = (
            payment_data.get("id")
            or payment_data.get("payment_intent_id")
            or str(_now_ms())
        )
        now_iso = _now_iso()

        enriched = {
            **payment_data,
            "id": payment_id,
            "timestamp": now_iso,
            "created_at": payment_data.get("created_at") or _now_ms(),
            "status": payment_data.get("status") or "pending",
            "amount": payment_data.get("amount"),
            "currency": payment_data.get("currency") or "usd",
            "processor": payment_data.get("processor") or "auto",
            "metadata": {
                **(payment_data.get("metadata") or {}),
                "saved_at": now_iso,
                "source": "gateway_api",
            },
        }

        # Payment records never expire
        if not self.data_store.set(f"{PAYMENT_PREFIX}{payment_id}", enriched):
            logger.error(f"Payment not saved | payment_id={payment_id}")
            return {"success": False, "error": "Payment could not be stored"}

        self.add_to_recent_payments(payment_id, enriched)

        logger.info(
            f"Payment saved | payment_id={payment_id} | status={enriched['status']} | amount={enriched['amount']}"
        )
        return {"success": True, "payment_id": payment_id}

    def add_to_recent_payments(self, payment_id, payment_data):
        entry = {
            "id": payment_id,
            "amount": payment_data.get("amount"),
            "status": payment_data.get("status"),
            "timestamp": payment_data.get("timestamp"),
            "processor": payment_data.get("processor"),
        }

        with self._recent_lock:
            recent = self.data_store.get(RECENT_PAYMENTS_KEY)
            if not isinstance(recent, list):
                recent = []
            recent.insert(0, entry)
            return self.data_store.set(RECENT_PAYMENTS_KEY, recent[:RECENT_PAYMENTS_MAX])

    def get_payment(self, payment_id):
        payment = self.data_store.get(f"{PAYMENT_PREFIX}{payment_id}")

        if payment is None:
            logger.info(f"Payment not found | payment_id={payment_id}")
            return {"success": False, "error": "Payment not found"}

        return {"success": True, "payment": payment}

    def get_recent_payments(self, limit=20):
        """
        Resolve the newest `limit` entries of the recency index.

        Entries whose record can no longer be read are skipped. `total` is
        the length of the index itself, not the number of resolved records.
        """
        limit = _positive_int(limit, 20)
        recent = self.data_store.get(RECENT_PAYMENTS_KEY)
        if not isinstance(recent, list):
            recent = []

        payments = []
        for info in recent[:limit]:
            result = self.get_payment(info.get("id"))
            if result["success"]:
                payments.append(result["payment"])

        return {"success": True, "payments": payments, "total": len(recent)}

    def cache_payment_intent(self, intent_id, intent_data):
        now = datetime.now(timezone.utc)
        enriched = {
            **intent_data,
            "cached_at": now.isoformat(),
            "expires_at": (now + timedelta(seconds=PAYMENT_INTENT_EXPIRY)).isoformat(),
        }

        key = f"{PAYMENT_INTENT_PREFIX}{intent_id}"
        if not self.data_store.set(key, enriched, PAYMENT_INTENT_EXPIRY):
            return {"success": False, "error": "Payment intent could not be cached"}

        logger.info(f"Payment intent cached | intent_id={intent_id} | ttl={PAYMENT_INTENT_EXPIRY}")
        return {"success": True, "intent_id": intent_id}

    def get_cached_payment_intent(self, intent_id):
        intent = self.data_store.get(f"{PAYMENT_INTENT_PREFIX}{intent_id}")

        if intent is None:
            return {"success": False, "error": "Payment intent not found or expired"}

        return {"success": True, "intent": intent}

    def search_payments(self, criteria=None):
        """
        Scan every payment record and filter it.

        The scan stops as soon as `limit` matches are found, so the result is
        the first matches in key enumeration order, sorted newest first.
        Amount bounds are inclusive.
        """
        criteria = criteria or {}
        status = criteria.get("status")
        processor = criteria.get("processor")
        amount_min = criteria.get("amount_min")
        amount_max = criteria.get("amount_max")
        limit = _positive_int(criteria.get("limit"), DEFAULT_SEARCH_LIMIT)

        matches = []
        for key in self.data_store.keys(f"{PAYMENT_PREFIX}*"):
            if len(matches) >= limit:
                break

            payment = self.data_store.get(key)
            if not isinstance(payment, dict):
                continue

            if status and payment.get("status") != status:
                continue
            if processor and payment.get("processor") != processor:
                continue

            amount = payment.get("amount")
            if amount_min is not None and (amount is None or amount < amount_min):
                continue
            if amount_max is not None and (amount is None or amount > amount_max):
                continue

            matches.append(payment)

        matches.sort(key=_timestamp_sort_key, reverse=True)

        logger.info(f"Payment search | matches={len(matches)} | limit={limit}")
        return {"success": True, "payments": matches}

    def get_payment_stats(self, now_ms=None):
        # Computed over the recency index only (last 100 records), not the full history
        recent = self.get_recent_payments(RECENT_PAYMENTS_MAX)
        if not recent["success"]:
            return {"success": False, "error": recent.get("error")}

        payments = recent["payments"]
        now_ms = _now_ms() if now_ms is None else now_ms

        stats = {
            "total_payments": len(payments),
            "successful_payments": sum(1 for p in payments if p.get("status") == "succeeded"),
            "failed_payments": sum(1 for p in payments if p.get("status") == "failed"),
            "pending_payments": sum(1 for p in payments if p.get("status") == "pending"),
            "total_amount": sum(p.get("amount") or 0 for p in payments),
            "processors": {},
            "last_24h": 0,
            "last_7d": 0,
        }

        for payment in payments:
            processor = payment.get("processor") or "unknown"
            stats["processors"][processor] = stats["processors"].get(processor, 0) + 1

            age = now_ms - _epoch_ms(payment.get("created_at"))
            if age < DAY_MS:
                stats["last_24h"] += 1
            if age < WEEK_MS:
                stats["last_7d"] += 1

        return {"success": True, "stats": stats}

    def get_store_status(self):
        recent = self.get_recent_payments(1)
        payments = recent.get("payments") or []

        return {
            **self.data_store.get_status(),
            "mode": self.data_store.mode,
            "payments_stored": recent.get("total", 0),
            "last_payment": payments[0].get("timestamp") if payments else None,
            "store_healthy": recent["success"],
        }
