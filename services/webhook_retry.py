import json
import os
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from audit.logger import logger
from exceptions.store_exceptions import RedeliveryFailure, RetryExhausted

MAX_RETRIES = 3
INITIAL_DELAY_MINUTES = 5


def backoff_minutes(retry_count: int) -> int:
    # 10m, 20m, 40m after the 1st, 2nd and 3rd failed redelivery
    return INITIAL_DELAY_MINUTES * (2 ** retry_count)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse(ts: str) -> datetime:
    parsed = datetime.fromisoformat(ts)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class QueueStore(ABC):
    """Persistence strategy for the failed webhook collection."""

    @abstractmethod
    def load(self) -> List[Dict]:
        ...

    @abstractmethod
    def save(self, webhooks: List[Dict]) -> None:
        ...


class VolatileQueueStore(QueueStore):
    """In-process list. Lost on restart."""

    def __init__(self):
        self._webhooks: List[Dict] = []

    def load(self) -> List[Dict]:
        return [dict(w) for w in self._webhooks]

    def save(self, webhooks: List[Dict]) -> None:
        self._webhooks = [dict(w) for w in webhooks]


class DurableQueueStore(QueueStore):
    """
    JSON file rewritten on every mutation and read back on every load.

    A missing or unreadable file loads as an empty queue, so a corrupt file
    never blocks new failures from being recorded.
    """

    def __init__(self, path: str):
        self.path = path

    def _ensure_dir(self):
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)

    def load(self) -> List[Dict]:
        if not os.path.exists(self.path):
            return []

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Retry queue file unreadable, starting empty | path={self.path} | error={e}")
            return []

        return data if isinstance(data, list) else []

    def save(self, webhooks: List[Dict]) -> None:
        self._ensure_dir()
        tmp_path = f"{self.path}.tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(webhooks, f, ensure_ascii=False, indent=2)
            # Replace in one step so a crash mid-write keeps the previous file
            os.replace(tmp_path, self.path)
        except OSError:
            logger.exception(f"Failed to save retry queue | path={self.path}")


class WebhookRetryQueue:
    """
    Failed webhook deliveries awaiting redelivery.

    Each tick walks the whole collection once: entries past the retry cap are
    dropped, entries not yet due are kept, due entries are redelivered.
    A failed redelivery bumps retryCount and reschedules with exponential
    backoff. The collection is replaced wholesale at the end of the tick.

    `deliver(payload)` fails by raising or by returning a falsy value.
    """

    def __init__(
        self,
        queue_store: QueueStore,
        deliver: Callable[[Dict], object],
        max_retries: int = MAX_RETRIES,
    ):
        self.queue_store = queue_store
        self.deliver = deliver
        self.max_retries = max_retries
        # One lock over the whole collection: load -> compute -> save
        self._lock = threading.RLock()

    def add_failed_webhook(self, event: Dict, error, now: Optional[datetime] = None) -> Dict:
        now = now or _utcnow()
        webhook = {
            "id": str(uuid.uuid4()),
            "eventType": event.get("type"),
            "eventId": event.get("id"),
            "payload": event,
            "error": str(error),
            "retryCount": 0,
            "firstAttempt": now.isoformat(),
            "lastAttempt": now.isoformat(),
            "nextRetry": (now + timedelta(minutes=INITIAL_DELAY_MINUTES)).isoformat(),
        }

        with self._lock:
            webhooks = self.queue_store.load()
            webhooks.append(webhook)
            self.queue_store.save(webhooks)

            logger.warning(
                f"Webhook added to retry queue | id={webhook['id']} | event_type={webhook['eventType']} "
                f"| event_id={webhook['eventId']} | queued={len(webhooks)}"
            )
        return webhook

    def _redeliver(self, payload: Dict) -> None:
        try:
            delivered = self.deliver(payload)
        except Exception as e:
            raise RedeliveryFailure(str(e) or e.__class__.__name__) from e
        if not delivered:
            raise RedeliveryFailure("Redelivery reported failure")

    def retry_failed_webhooks(self, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or _utcnow()
        summary = {"delivered": 0, "rescheduled": 0, "expired": 0, "waiting": 0}

        with self._lock:
            carried = []

            for webhook in self.queue_store.load():
                if webhook.get("retryCount", 0) >= self.max_retries:
                    exhausted = RetryExhausted(
                        f"id={webhook.get('id')} | event_id={webhook.get('eventId')} "
                        f"| retries={webhook.get('retryCount')}"
                    )
                    logger.warning(f"Webhook exceeded max retries, removing | {exhausted}")
                    summary["expired"] += 1
                    continue

                if _parse(webhook["nextRetry"]) > now:
                    carried.append(webhook)
                    summary["waiting"] += 1
                    continue

                try:
                    self._redeliver(webhook["payload"])
                except RedeliveryFailure as e:
                    webhook["retryCount"] = webhook.get("retryCount", 0) + 1
                    webhook["lastAttempt"] = now.isoformat()
                    webhook["error"] = str(e)

                    delay = backoff_minutes(webhook["retryCount"])
                    webhook["nextRetry"] = (now + timedelta(minutes=delay)).isoformat()

                    carried.append(webhook)
                    summary["rescheduled"] += 1
                    logger.warning(
                        f"Retry {webhook['retryCount']} failed | id={webhook['id']} "
                        f"| next_retry_in={delay}m | error={e}"
                    )
                    continue

                summary["delivered"] += 1
                logger.info(f"Webhook redelivered | id={webhook['id']} | event_id={webhook.get('eventId')}")

            self.queue_store.save(carried)

        return summary

    def get_retry_stats(self) -> Dict:
        with self._lock:
            webhooks = self.queue_store.load()

        by_retry_count: Dict[str, int] = {}
        for webhook in webhooks:
            count = str(webhook.get("retryCount", 0))
            by_retry_count[count] = by_retry_count.get(count, 0) + 1

        return {
            "total": len(webhooks),
            "byRetryCount": by_retry_count,
            "oldestFailure": (
                min(webhooks, key=lambda w: _parse(w["firstAttempt"]))["firstAttempt"]
                if webhooks else None
            ),
        }

    def __len__(self):
        return len(self.queue_store.load())
