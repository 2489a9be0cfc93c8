import itertools
from datetime import datetime, timedelta, timezone

import pytest

from infrastructure.data_store import DataStore
from services.payment_store import (
    PAYMENT_INTENT_EXPIRY,
    RECENT_PAYMENTS_KEY,
    PaymentStore,
)


@pytest.fixture
def ordered_timestamps(monkeypatch):
    """Make every save get a strictly later timestamp."""
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    counter = itertools.count()
    monkeypatch.setattr(
        "services.payment_store._now_iso",
        lambda: (base + timedelta(seconds=next(counter))).isoformat(),
    )


def test_save_then_get_payment(payment_store):
    result = payment_store.save_payment(
        {"id": "pi_1", "amount": 10, "currency": "usd", "status": "succeeded"}
    )
    assert result == {"success": True, "payment_id": "pi_1"}

    fetched = payment_store.get_payment("pi_1")
    assert fetched["success"] is True
    payment = fetched["payment"]
    assert payment["status"] == "succeeded"
    assert payment["amount"] == 10
    assert payment["currency"] == "usd"


def test_save_fills_defaults_and_metadata(payment_store):
    payment_store.save_payment({"payment_intent_id": "pi_2", "amount": 3, "metadata": {"order": "A1"}})

    payment = payment_store.get_payment("pi_2")["payment"]
    assert payment["id"] == "pi_2"
    assert payment["status"] == "pending"
    assert payment["currency"] == "usd"
    assert payment["processor"] == "auto"
    assert isinstance(payment["created_at"], int)
    assert payment["metadata"]["order"] == "A1"
    assert payment["metadata"]["source"] == "gateway_api"
    assert "saved_at" in payment["metadata"]


def test_save_generates_id_when_missing(payment_store):
    result = payment_store.save_payment({"amount": 1})
    assert result["success"] is True
    assert result["payment_id"].isdigit()


def test_save_keeps_supplied_created_at(payment_store):
    payment_store.save_payment({"id": "p", "amount": 1, "created_at": 1234})
    assert payment_store.get_payment("p")["payment"]["created_at"] == 1234


def test_get_unknown_payment_is_not_found(payment_store):
    assert payment_store.get_payment("nope") == {"success": False, "error": "Payment not found"}


def test_unserializable_payment_is_not_indexed(payment_store, memory_store):
    result = payment_store.save_payment({"id": "bad", "amount": object()})

    assert result["success"] is False
    assert memory_store.get(RECENT_PAYMENTS_KEY) is None


def test_recency_index_is_capped_newest_first(payment_store, memory_store):
    for i in range(105):
        payment_store.save_payment({"id": f"p{i}", "amount": i})

    recent = memory_store.get(RECENT_PAYMENTS_KEY)
    assert len(recent) == 100
    assert recent[0]["id"] == "p104"
    assert recent[-1]["id"] == "p5"
    assert set(recent[0]) == {"id", "amount", "status", "timestamp", "processor"}


def test_recent_payments_skip_unresolvable_entries(payment_store, memory_store):
    for i in range(3):
        payment_store.save_payment({"id": f"p{i}", "amount": i})
    memory_store.delete("payment:p1")

    result = payment_store.get_recent_payments(10)

    assert [p["id"] for p in result["payments"]] == ["p2", "p0"]
    # total counts index entries, not resolved records
    assert result["total"] == 3


def test_recent_payments_limit(payment_store):
    for i in range(5):
        payment_store.save_payment({"id": f"p{i}", "amount": i})

    result = payment_store.get_recent_payments(2)
    assert [p["id"] for p in result["payments"]] == ["p4", "p3"]
    assert result["total"] == 5


def test_recent_payments_empty_store(payment_store):
    assert payment_store.get_recent_payments() == {"success": True, "payments": [], "total": 0}


def test_payment_intent_cache_expires_after_24h(clock):
    store = PaymentStore(DataStore(clock=clock))

    assert store.cache_payment_intent("pi_9", {"client_secret": "cs"})["success"] is True
    cached = store.get_cached_payment_intent("pi_9")
    assert cached["success"] is True
    assert cached["intent"]["client_secret"] == "cs"
    assert "expires_at" in cached["intent"]

    clock.advance(PAYMENT_INTENT_EXPIRY)
    assert store.get_cached_payment_intent("pi_9")["success"] is False
    # The payment record namespace is untouched by the intent cache
    assert store.get_payment("pi_9")["success"] is False


def test_search_amount_bounds_inclusive_and_sorted(payment_store, ordered_timestamps):
    for i, amount in enumerate([5, 10, 15, 20, 25]):
        payment_store.save_payment({"id": f"p{i}", "amount": amount})

    result = payment_store.search_payments({"amount_min": 10, "amount_max": 20})

    payments = result["payments"]
    assert sorted(p["amount"] for p in payments) == [10, 15, 20]
    timestamps = [p["timestamp"] for p in payments]
    assert timestamps == sorted(timestamps, reverse=True)
    assert [p["id"] for p in payments] == ["p3", "p2", "p1"]


def test_search_zero_lower_bound_is_applied(payment_store):
    payment_store.save_payment({"id": "neg", "amount": -5})
    payment_store.save_payment({"id": "zero", "amount": 0})

    ids = {p["id"] for p in payment_store.search_payments({"amount_min": 0})["payments"]}
    assert ids == {"zero"}


def test_search_filters_status_and_processor(payment_store):
    payment_store.save_payment({"id": "a", "amount": 1, "status": "succeeded", "processor": "stripe"})
    payment_store.save_payment({"id": "b", "amount": 1, "status": "failed", "processor": "stripe"})
    payment_store.save_payment({"id": "c", "amount": 1, "status": "succeeded", "processor": "auto"})

    result = payment_store.search_payments({"status": "succeeded", "processor": "stripe"})
    assert [p["id"] for p in result["payments"]] == ["a"]


def test_search_stops_at_limit(payment_store):
    for i in range(10):
        payment_store.save_payment({"id": f"p{i}", "amount": 1})

    assert len(payment_store.search_payments({"limit": 3})["payments"]) == 3
    assert len(payment_store.search_payments()["payments"]) == 10


def test_search_ignores_intent_cache_entries(payment_store):
    payment_store.save_payment({"id": "p", "amount": 1})
    payment_store.cache_payment_intent("p", {"amount": 100})

    assert [p["id"] for p in payment_store.search_payments()["payments"]] == ["p"]


def test_payment_stats_over_recent_records(payment_store):
    now_ms = 1_700_000_000_000
    hour = 60 * 60 * 1000
    payment_store.save_payment({"id": "a", "amount": 10, "status": "succeeded", "processor": "stripe", "created_at": now_ms - hour})
    payment_store.save_payment({"id": "b", "amount": 5, "status": "failed", "processor": "stripe", "created_at": now_ms - 3 * 24 * hour})
    payment_store.save_payment({"id": "c", "amount": 2.5, "created_at": now_ms - 30 * 24 * hour})

    result = payment_store.get_payment_stats(now_ms=now_ms)

    assert result["success"] is True
    stats = result["stats"]
    assert stats["total_payments"] == 3
    assert stats["successful_payments"] == 1
    assert stats["failed_payments"] == 1
    assert stats["pending_payments"] == 1
    assert stats["total_amount"] == 17.5
    assert stats["processors"] == {"stripe": 2, "auto": 1}
    assert stats["last_24h"] == 1
    assert stats["last_7d"] == 2


def test_payment_stats_only_cover_last_hundred(payment_store):
    for i in range(120):
        payment_store.save_payment({"id": f"p{i}", "amount": 1})

    assert payment_store.get_payment_stats()["stats"]["total_payments"] == 100


def test_store_status(payment_store):
    status = payment_store.get_store_status()
    assert status["payments_stored"] == 0
    assert status["last_payment"] is None
    assert status["fallback_mode"] is True
    assert status["mode"] == "fallback"
    assert status["store_healthy"] is True

    payment_store.save_payment({"id": "p", "amount": 1})
    status = payment_store.get_store_status()
    assert status["payments_stored"] == 1
    assert status["last_payment"] == payment_store.get_payment("p")["payment"]["timestamp"]


def test_payment_store_works_over_redis(redis_store, fake_redis):
    store = PaymentStore(redis_store)
    store.save_payment({"id": "pi_r", "amount": 7, "status": "succeeded"})

    assert "payment:pi_r" in fake_redis.store
    assert "recent_payments" in fake_redis.store
    assert [p["id"] for p in store.search_payments({"status": "succeeded"})["payments"]] == ["pi_r"]


def test_payment_stats_ignore_non_numeric_created_at(payment_store):
    payment_store.save_payment({"id": "p1", "amount": 10, "created_at": "2024-01-01T00:00:00Z"})

    result = payment_store.get_payment_stats()

    assert result["success"] is True
    assert result["stats"]["total_payments"] == 1
    assert result["stats"]["last_7d"] == 0


@pytest.mark.parametrize("limit", [0, -3])
def test_recent_payments_non_positive_limit_uses_default(payment_store, limit):
    for i in range(25):
        payment_store.save_payment({"id": f"p{i}", "amount": 1})

    result = payment_store.get_recent_payments(limit)

    assert len(result["payments"]) == 20
    assert result["payments"][0]["id"] == "p24"


@pytest.mark.parametrize("limit", [0, -3])
def test_search_non_positive_limit_uses_default(payment_store, limit):
    for i in range(5):
        payment_store.save_payment({"id": f"p{i}", "amount": 1})

    assert len(payment_store.search_payments({"limit": limit})["payments"]) == 5
