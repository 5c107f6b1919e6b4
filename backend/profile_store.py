"""
Workblix -- Profile Data Accessor
Reads and writes a user's profile row and monthly usage counters.

Two backends share one contract:
- RedisProfileStore for deployments (REDIS_URL set), using WATCH/MULTI so
  every write is an atomic read-modify-write
- MemoryProfileStore when Redis is not configured or unreachable, guarded by
  a lock

Billing fields are only ever written through apply_billing_update(), which
refuses redelivered and out-of-order webhook events.
"""

import copy
import json
import threading
from datetime import date, datetime, timezone

import redis

from backend.errors import ExternalServiceFailure, ProfileNotFound, ValidationFailure
from backend.logger import get_logger


logger = get_logger("store")

PLANS = ("free", "pro", "premium")
FREE_MONTHLY_GENERATIONS = 1

EDITABLE_FIELDS = (
    "email", "first_name", "last_name", "professional_title", "phone", "address",
    "city", "postal_code", "country", "linkedin", "github", "website", "summary",
    "include_photo_placeholder", "experience", "education", "skills", "languages",
)
LIST_FIELDS = ("experience", "education", "skills", "languages")
BILLING_FIELDS = (
    "plan", "plan_status", "stripe_customer_id", "stripe_subscription_id", "current_period_end",
)

APPLIED = "applied"
DUPLICATE = "duplicate"
STALE = "stale"
MISSING = "missing"

_KEY_PREFIX = "workblix"


def _now_iso():
    return datetime.now(timezone.utc).isoformat()


def month_start(today=None):
    """First day of the current calendar month as YYYY-MM-01."""
    today = today or date.today()
    return f"{today.year:04d}-{today.month:02d}-01"


# ============================================================
# ROW HELPERS
# ============================================================

def new_profile(user_id, email=""):
    now = _now_iso()
    profile = {field: "" for field in EDITABLE_FIELDS}
    profile.update({
        "user_id": user_id,
        "email": email or "",
        "include_photo_placeholder": False,
        "experience": [], "education": [], "skills": [], "languages": [],
        "plan": "free",
        "plan_status": None,
        "stripe_customer_id": None,
        "stripe_subscription_id": None,
        "current_period_end": None,
        "billing_version": 0,
        "last_billing_event_id": None,
        "last_billing_event_at": None,
        "created_at": now,
        "updated_at": now,
    })
    return profile


def normalize_profile(row):
    """Coerce JSON list columns to lists and unknown plans to free."""
    profile = dict(row)
    for field in LIST_FIELDS:
        if not isinstance(profile.get(field), list):
            profile[field] = []
    if profile.get("plan") not in PLANS:
        profile["plan"] = "free"
    profile.setdefault("billing_version", 0)
    return profile


def is_premium(profile):
    return bool(profile) and profile.get("plan") in ("pro", "premium") and profile.get("plan_status") == "active"


def _edited(profile, updates):
    if not isinstance(updates, dict):
        raise ValidationFailure("Profile update must be an object.")
    for field in LIST_FIELDS:
        if field in updates and not isinstance(updates[field], list):
            raise ValidationFailure(f"'{field}' must be a list.")
    changed = dict(profile)
    # Only editable columns are copied; billing columns go through apply_billing_update()
    for field in EDITABLE_FIELDS:
        if field in updates:
            changed[field] = copy.deepcopy(updates[field])
    changed["updated_at"] = _now_iso()
    return normalize_profile(changed)


def _billing_skip_reason(profile, event_id, event_created):
    if event_id and event_id == profile.get("last_billing_event_id"):
        return DUPLICATE
    last_at = profile.get("last_billing_event_at")
    if event_created is not None and last_at is not None and event_created < last_at:
        return STALE
    return None


def _billed(profile, fields, event_id, event_created):
    unknown = set(fields) - set(BILLING_FIELDS)
    if unknown:
        raise ValueError(f"Not billing fields: {sorted(unknown)}")
    if "plan" in fields and fields["plan"] not in PLANS:
        raise ValueError(f"Unknown plan: {fields['plan']}")
    changed = dict(profile)
    changed.update(fields)
    changed["billing_version"] = int(profile.get("billing_version") or 0) + 1
    if event_id:
        changed["last_billing_event_id"] = event_id
    if event_created is not None:
        changed["last_billing_event_at"] = event_created
    changed["updated_at"] = _now_iso()
    return changed


# ============================================================
# STORE CONTRACT
# ============================================================

class ProfileStore:
    """Base class: concrete stores implement _read, _transact, _delete,
    _find_customer and usage storage."""

    def get_profile(self, user_id):
        row = self._read(user_id)
        return normalize_profile(row) if row is not None else None

    def require_profile(self, user_id):
        profile = self.get_profile(user_id)
        if profile is None:
            raise ProfileNotFound()
        return profile

    def ensure_profile(self, user_id, email=""):
        """Return the profile, creating an empty free one on first access."""
        def mutate(row):
            if row is not None:
                return None, normalize_profile(row)
            created = new_profile(user_id, email)
            return created, created
        return self._transact(user_id, mutate)

    def update_profile(self, user_id, updates):
        """Replace editable fields (lists are replaced wholesale). Returns the new profile."""
        def mutate(row):
            if row is None:
                raise ProfileNotFound()
            updated = _edited(normalize_profile(row), updates)
            return updated, updated
        return self._transact(user_id, mutate)

    def apply_billing_update(self, user_id, fields, event_id=None, event_created=None):
        """
        Atomically write billing fields unless the event was already applied
        or is older than the last applied one.

        Returns:
            "applied", "duplicate", "stale" or "missing"
        """
        def mutate(row):
            if row is None:
                return None, MISSING
            reason = _billing_skip_reason(row, event_id, event_created)
            if reason:
                return None, reason
            return _billed(normalize_profile(row), fields, event_id, event_created), APPLIED
        return self._transact(user_id, mutate)

    def delete_profile(self, user_id):
        """
        Remove the profile together with its usage counters and customer index
        entry. Returns the removed profile, or None if there was none.
        """
        row = self._delete(user_id)
        if row is None:
            return None
        logger.info("Profile %s deleted", user_id)
        return normalize_profile(row)

    def find_user_by_customer(self, customer_id):
        if not customer_id:
            return None
        return self._find_customer(customer_id)

    def get_usage(self, user_id, today=None):
        start = month_start(today)
        return {"scans_used": self._read_usage(user_id, start), "month_start": start}

    def increment_usage(self, user_id, today=None):
        start = month_start(today)
        return {"scans_used": self._incr_usage(user_id, start), "month_start": start}

    def usage_summary(self, profile, today=None):
        usage = self.get_usage(profile["user_id"], today)
        if is_premium(profile):
            usage.update({"limit": None, "remaining": None})
        else:
            usage["limit"] = FREE_MONTHLY_GENERATIONS
            usage["remaining"] = max(0, FREE_MONTHLY_GENERATIONS - usage["scans_used"])
        return usage


class MemoryProfileStore(ProfileStore):
    """In-process store. Used when Redis is unavailable and in tests."""

    backend = "memory"

    def __init__(self, profiles=None):
        self._lock = threading.Lock()
        self._profiles = {}
        self._usage = {}
        for profile in profiles or []:
            self._profiles[profile["user_id"]] = normalize_profile(copy.deepcopy(profile))

    def _read(self, user_id):
        with self._lock:
            row = self._profiles.get(user_id)
            return copy.deepcopy(row) if row is not None else None

    def _transact(self, user_id, mutate):
        with self._lock:
            row = copy.deepcopy(self._profiles.get(user_id))
            new_row, result = mutate(row)
            if new_row is not None:
                self._profiles[user_id] = copy.deepcopy(new_row)
            return copy.deepcopy(result)

    def _delete(self, user_id):
        with self._lock:
            row = self._profiles.pop(user_id, None)
            for key in [k for k in self._usage if k[0] == user_id]:
                del self._usage[key]
            return row

    def _find_customer(self, customer_id):
        with self._lock:
            for user_id, row in self._profiles.items():
                if row.get("stripe_customer_id") == customer_id:
                    return user_id
        return None

    def _read_usage(self, user_id, start):
        with self._lock:
            return self._usage.get((user_id, start), 0)

    def _incr_usage(self, user_id, start):
        with self._lock:
            self._usage[(user_id, start)] = self._usage.get((user_id, start), 0) + 1
            return self._usage[(user_id, start)]


class RedisProfileStore(ProfileStore):
    """Profiles as JSON strings, usage as INCR counters keyed by month."""

    backend = "redis"
    MAX_RETRIES = 5
    USAGE_TTL = 40 * 24 * 3600  # a usage key outlives its month, then expires

    def __init__(self, client):
        self.redis = client

    def _profile_key(self, user_id):
        return f"{_KEY_PREFIX}:profile:{user_id}"

    def _customer_key(self, customer_id):
        return f"{_KEY_PREFIX}:customer:{customer_id}"

    def _usage_key(self, user_id, start):
        return f"{_KEY_PREFIX}:usage:{user_id}:{start}"

    def _read(self, user_id):
        raw = self.redis.get(self._profile_key(user_id))
        return json.loads(raw) if raw else None

    def _transact(self, user_id, mutate):
        key = self._profile_key(user_id)
        for _ in range(self.MAX_RETRIES):
            with self.redis.pipeline() as pipe:
                try:
                    pipe.watch(key)
                    raw = pipe.get(key)
                    new_row, result = mutate(json.loads(raw) if raw else None)
                    if new_row is None:
                        pipe.unwatch()
                        return result
                    pipe.multi()
                    pipe.set(key, json.dumps(new_row))
                    if new_row.get("stripe_customer_id"):
                        pipe.set(self._customer_key(new_row["stripe_customer_id"]), user_id)
                    pipe.execute()
                    return result
                except redis.WatchError:
                    logger.info("Concurrent write on %s, retrying", key)
                    continue
        raise ExternalServiceFailure("Profile is being modified concurrently. Please try again.")

    def _delete(self, user_id):
        key = self._profile_key(user_id)
        usage_keys = list(self.redis.scan_iter(match=self._usage_key(user_id, "*")))
        for _ in range(self.MAX_RETRIES):
            with self.redis.pipeline() as pipe:
                try:
                    pipe.watch(key)
                    raw = pipe.get(key)
                    row = json.loads(raw) if raw else None
                    pipe.multi()
                    pipe.delete(key, *usage_keys)
                    if row and row.get("stripe_customer_id"):
                        pipe.delete(self._customer_key(row["stripe_customer_id"]))
                    pipe.execute()
                    return row
                except redis.WatchError:
                    logger.info("Concurrent write on %s, retrying delete", key)
                    continue
        raise ExternalServiceFailure("Profile is being modified concurrently. Please try again.")

    def _find_customer(self, customer_id):
        return self.redis.get(self._customer_key(customer_id))

    def _read_usage(self, user_id, start):
        return int(self.redis.get(self._usage_key(user_id, start)) or 0)

    def _incr_usage(self, user_id, start):
        key = self._usage_key(user_id, start)
        with self.redis.pipeline() as pipe:
            pipe.incr(key)
            pipe.expire(key, self.USAGE_TTL)
            count, _ = pipe.execute()
        return int(count)


def create_profile_store(settings):
    """Redis-backed store when REDIS_URL is set and reachable, else in-memory."""
    if settings.redis_url:
        try:
            client = redis.from_url(settings.redis_url, decode_responses=True)
            client.ping()
            logger.info("Profile store: Redis connected (persistent)")
            return RedisProfileStore(client)
        except redis.RedisError as e:
            logger.warning("Profile store: in-memory fallback (Redis error: %s)", e)
    else:
        logger.info("Profile store: in-memory fallback (no REDIS_URL)")
    return MemoryProfileStore()
