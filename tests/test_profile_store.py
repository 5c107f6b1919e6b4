import fnmatch
import json
from datetime import date

import pytest
import redis

from backend.errors import ProfileNotFound, ValidationFailure
from backend.profile_store import (
    MemoryProfileStore, RedisProfileStore, FREE_MONTHLY_GENERATIONS,
    is_premium, month_start, new_profile, normalize_profile,
)


class FakePipeline:
    """Enough of redis-py's Pipeline for WATCH/MULTI/EXEC and queued commands."""

    def __init__(self, client):
        self.client = client
        self.watched = None
        self.version = None
        self.queue = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def watch(self, key):
        self.watched = key
        self.version = self.client.versions.get(key, 0)

    def unwatch(self):
        self.watched = None

    def get(self, key):
        return self.client.get(key)

    def multi(self):
        pass

    def set(self, key, value):
        self.queue.append(("set", key, value))

    def delete(self, *keys):
        self.queue.append(("delete", *keys))

    def incr(self, key):
        self.queue.append(("incr", key))

    def expire(self, key, ttl):
        self.queue.append(("expire", key, ttl))

    def execute(self):
        if self.client.interleave:
            self.client.interleave.pop(0)(self.client)
        if self.watched and self.client.versions.get(self.watched, 0) != self.version:
            self.queue = []
            raise redis.WatchError("watched key changed")
        results = [getattr(self.client, op)(*args) for op, *args in self.queue]
        self.queue = []
        return results


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.versions = {}
        self.ttls = {}
        self.interleave = []  # callables run inside the next execute(), before the WATCH check

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = value
        self.versions[key] = self.versions.get(key, 0) + 1
        return True

    def incr(self, key):
        self.set(key, str(int(self.data.get(key) or 0) + 1))
        return int(self.data[key])

    def expire(self, key, ttl):
        self.ttls[key] = ttl
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if key in self.data:
                del self.data[key]
                self.versions[key] = self.versions.get(key, 0) + 1
                removed += 1
        return removed

    def scan_iter(self, match="*"):
        return iter([key for key in list(self.data) if fnmatch.fnmatchcase(key, match)])

    def pipeline(self):
        return FakePipeline(self)


@pytest.fixture(params=["memory", "redis"])
def any_store(request, anna_profile):
    if request.param == "memory":
        return MemoryProfileStore([anna_profile])
    client = FakeRedis()
    client.set("workblix:profile:u1", json.dumps(anna_profile))
    return RedisProfileStore(client)


def test_month_start():
    assert month_start(date(2026, 2, 17)) == "2026-02-01"


def test_normalize_profile_coerces_plan_and_lists():
    profile = normalize_profile({"user_id": "x", "plan": "gold", "skills": None})
    assert profile["plan"] == "free"
    assert profile["skills"] == []


def test_is_premium():
    assert is_premium({"plan": "pro", "plan_status": "active"})
    assert is_premium({"plan": "premium", "plan_status": "active"})
    assert not is_premium({"plan": "pro", "plan_status": "past_due"})
    assert not is_premium({"plan": "free", "plan_status": "active"})
    assert not is_premium(None)


def test_ensure_profile_creates_once(any_store):
    created = any_store.ensure_profile("u9", "new@example.com")
    assert created["plan"] == "free"
    assert created["email"] == "new@example.com"
    again = any_store.ensure_profile("u9", "other@example.com")
    assert again["email"] == "new@example.com"


def test_update_profile_ignores_billing_fields(any_store):
    updated = any_store.update_profile("u1", {
        "summary": "Neu",
        "skills": [{"name": "Go"}],
        "plan": "premium",
        "plan_status": "active",
        "stripe_customer_id": "cus_evil",
    })
    assert updated["summary"] == "Neu"
    assert updated["skills"] == [{"name": "Go"}]
    assert updated["plan"] == "free"
    assert updated["stripe_customer_id"] is None
    assert any_store.get_profile("u1")["summary"] == "Neu"


def test_update_profile_validation(any_store):
    with pytest.raises(ValidationFailure):
        any_store.update_profile("u1", {"experience": "not a list"})
    with pytest.raises(ProfileNotFound):
        any_store.update_profile("ghost", {"summary": "x"})


def test_returned_profiles_are_copies():
    store = MemoryProfileStore([new_profile("u1")])
    store.get_profile("u1")["skills"].append({"name": "leak"})
    assert store.get_profile("u1")["skills"] == []


def test_billing_update_applies_and_versions(any_store):
    outcome = any_store.apply_billing_update(
        "u1", {"plan": "pro", "plan_status": "active", "stripe_customer_id": "cus_1"},
        event_id="evt_1", event_created=100,
    )
    assert outcome == "applied"
    profile = any_store.get_profile("u1")
    assert profile["plan"] == "pro"
    assert profile["billing_version"] == 1
    assert profile["last_billing_event_id"] == "evt_1"
    assert profile["last_billing_event_at"] == 100
    assert any_store.find_user_by_customer("cus_1") == "u1"


def test_billing_update_refuses_duplicates_and_stale_events(any_store):
    any_store.apply_billing_update("u1", {"plan_status": "active"}, "evt_2", 200)
    before = any_store.get_profile("u1")

    assert any_store.apply_billing_update("u1", {"plan_status": "active"}, "evt_2", 200) == "duplicate"
    assert any_store.apply_billing_update("u1", {"plan_status": "past_due"}, "evt_1", 100) == "stale"
    assert any_store.get_profile("u1") == before

    assert any_store.apply_billing_update("u1", {"plan_status": "past_due"}, "evt_3", 200) == "applied"
    assert any_store.get_profile("u1")["billing_version"] == 2


def test_billing_update_for_unknown_user(any_store):
    assert any_store.apply_billing_update("ghost", {"plan": "pro"}, "evt_1", 1) == "missing"
    assert any_store.get_profile("ghost") is None


def test_billing_update_rejects_non_billing_fields(any_store):
    with pytest.raises(ValueError):
        any_store.apply_billing_update("u1", {"summary": "x"}, "evt_1", 1)


def test_usage_counts_per_month(any_store):
    january = date(2026, 1, 20)
    february = date(2026, 2, 1)
    assert any_store.get_usage("u1", january) == {"scans_used": 0, "month_start": "2026-01-01"}
    any_store.increment_usage("u1", january)
    assert any_store.increment_usage("u1", january)["scans_used"] == 2
    assert any_store.get_usage("u1", february)["scans_used"] == 0


def test_usage_summary_limits_free_users(any_store):
    profile = any_store.get_profile("u1")
    summary = any_store.usage_summary(profile)
    assert summary["limit"] == FREE_MONTHLY_GENERATIONS
    assert summary["remaining"] == FREE_MONTHLY_GENERATIONS

    profile.update({"plan": "pro", "plan_status": "active"})
    assert any_store.usage_summary(profile)["limit"] is None


def test_redis_retries_after_concurrent_write(anna_profile):
    client = FakeRedis()
    client.set("workblix:profile:u1", json.dumps(anna_profile))
    store = RedisProfileStore(client)

    def concurrent_edit(c):
        row = json.loads(c.get("workblix:profile:u1"))
        row["summary"] = "edited meanwhile"
        c.set("workblix:profile:u1", json.dumps(row))

    client.interleave.append(concurrent_edit)
    assert store.apply_billing_update("u1", {"plan": "pro", "plan_status": "active"}, "evt_1", 1) == "applied"

    profile = store.get_profile("u1")
    assert profile["summary"] == "edited meanwhile"
    assert profile["plan"] == "pro"
    assert profile["billing_version"] == 1


def test_redis_usage_keys_expire():
    client = FakeRedis()
    store = RedisProfileStore(client)
    store.increment_usage("u1", date(2026, 3, 5))
    assert client.get("workblix:usage:u1:2026-03-01") == "1"
    assert client.ttls["workblix:usage:u1:2026-03-01"] == RedisProfileStore.USAGE_TTL


def test_delete_profile_removes_usage_and_customer_index(any_store):
    any_store.apply_billing_update("u1", {"plan": "pro", "stripe_customer_id": "cus_1"}, "evt_1", 1)
    any_store.increment_usage("u1", date(2026, 1, 5))
    any_store.increment_usage("u1", date(2026, 2, 5))
    any_store.ensure_profile("u2")
    any_store.increment_usage("u2", date(2026, 1, 5))

    removed = any_store.delete_profile("u1")

    assert removed["stripe_customer_id"] == "cus_1"
    assert any_store.get_profile("u1") is None
    assert any_store.find_user_by_customer("cus_1") is None
    assert any_store.get_usage("u1", date(2026, 1, 5))["scans_used"] == 0
    assert any_store.get_usage("u1", date(2026, 2, 5))["scans_used"] == 0
    assert any_store.get_usage("u2", date(2026, 1, 5))["scans_used"] == 1
    assert any_store.get_profile("u2") is not None


def test_delete_unknown_profile(any_store):
    assert any_store.delete_profile("ghost") is None


def test_redis_delete_retries_after_concurrent_write(anna_profile):
    client = FakeRedis()
    client.set("workblix:profile:u1", json.dumps(anna_profile))
    store = RedisProfileStore(client)

    def concurrent_edit(c):
        row = json.loads(c.get("workblix:profile:u1"))
        row["stripe_customer_id"] = "cus_late"
        c.set("workblix:profile:u1", json.dumps(row))
        c.set("workblix:customer:cus_late", "u1")

    client.interleave.append(concurrent_edit)
    assert store.delete_profile("u1")["stripe_customer_id"] == "cus_late"
    assert client.get("workblix:profile:u1") is None
    assert client.get("workblix:customer:cus_late") is None
