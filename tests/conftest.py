import fnmatch
import hashlib
import hmac
import json
import time

import pytest
import redis

from app import create_app
from infrastructure.data_store import DataStore
from services.payment_store import PaymentStore

WEBHOOK_SECRET = "test-webhook-secret"
API_KEY = "test-key"


class FakeClock:
    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeRedis:
    """
    In-process stand-in for redis-py with TTLs and an outage switch.

    Setting `down = True` makes every call raise ConnectionError.
    """

    def __init__(self, clock=time.time):
        self.store = {}
        self.expiry = {}
        self.sets = {}
        self.clock = clock
        self.down = False
        self.calls = []

    def _call(self, name):
        self.calls.append(name)
        if self.down:
            raise redis.exceptions.ConnectionError("Connection refused")

    def _expire(self, key):
        if key in self.expiry and self.clock() >= self.expiry[key]:
            self.store.pop(key, None)
            self.expiry.pop(key, None)

    def ping(self):
        self._call("ping")
        return True

    def get(self, key):
        self._call("get")
        self._expire(key)
        return self.store.get(key)

    def set(self, key, value):
        self._call("set")
        self.store[key] = value
        self.expiry.pop(key, None)
        return True

    def setex(self, key, ttl, value):
        self._call("setex")
        self.store[key] = value
        self.expiry[key] = self.clock() + ttl
        return True

    def delete(self, key):
        self._call("delete")
        removed = key in self.store or key in self.sets
        self.store.pop(key, None)
        self.expiry.pop(key, None)
        self.sets.pop(key, None)
        return 1 if removed else 0

    def exists(self, key):
        self._call("exists")
        self._expire(key)
        return 1 if key in self.store or key in self.sets else 0

    def keys(self, pattern):
        self._call("keys")
        for key in list(self.store):
            self._expire(key)
        return [key for key in list(self.store) + list(self.sets) if fnmatch.fnmatchcase(key, pattern)]

    def sadd(self, key, member):
        self._call("sadd")
        members = self.sets.setdefault(key, set())
        added = member not in members
        members.add(member)
        return 1 if added else 0

    def srem(self, key, member):
        self._call("srem")
        members = self.sets.get(key, set())
        if member not in members:
            return 0
        members.discard(member)
        if not members:
            self.sets.pop(key, None)
        return 1

    def sismember(self, key, member):
        self._call("sismember")
        return member in self.sets.get(key, set())

    def smembers(self, key):
        self._call("smembers")
        return set(self.sets.get(key, set()))


def sign_event(payload_bytes, secret=WEBHOOK_SECRET, timestamp=None):
    timestamp = str(int(time.time()) if timestamp is None else timestamp)
    digest = hmac.new(secret.encode(), f"{timestamp}.".encode() + payload_bytes, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def event_bytes(event):
    return json.dumps(event, separators=(",", ":")).encode()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis(clock):
    return FakeRedis(clock=clock)


@pytest.fixture
def memory_store(clock):
    return DataStore(clock=clock)


@pytest.fixture
def redis_store(fake_redis, clock):
    return DataStore(fake_redis, clock=clock)


@pytest.fixture
def payment_store(memory_store):
    return PaymentStore(memory_store)


@pytest.fixture
def app(tmp_path):
    app = create_app(
        config={
            "TESTING": True,
            "WEBHOOK_SECRET": WEBHOOK_SECRET,
            "RATELIMIT_ENABLED": False,
            "DEFAULT_API_KEYS": [API_KEY],
            "RETRY_QUEUE_BACKEND": "memory",
        },
        data_store=DataStore(),
    )
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers():
    return {"x-api-key": API_KEY}
