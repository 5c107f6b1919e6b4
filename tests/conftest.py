import hashlib
import hmac
import json
import time

import pytest

from app import create_app
from backend.config import Settings
from backend.errors import Unauthorized
from backend.profile_store import MemoryProfileStore, new_profile
from backend.template_loader import TemplateLoader


WEBHOOK_SECRET = "whsec_test_secret"

TOKENS = {
    "token-u1": {"id": "u1", "email": "anna@example.com"},
    "token-u2": {"id": "u2", "email": "ben@example.com"},
}


def fake_auth(token):
    user = TOKENS.get(token)
    if user is None:
        raise Unauthorized()
    return dict(user)


def auth_header(token="token-u1"):
    return {"Authorization": f"Bearer {token}"}


def sign_payload(payload, secret=WEBHOOK_SECRET, timestamp=None):
    """Stripe-Signature header value for payload (v1 scheme)."""
    timestamp = int(timestamp if timestamp is not None else time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event(event_type, obj, event_id="evt_1", created=1700000000):
    return {"id": event_id, "type": event_type, "created": created, "data": {"object": obj}}


@pytest.fixture
def anna_profile():
    profile = new_profile("u1", "anna@example.com")
    profile.update({
        "first_name": "Anna",
        "last_name": "Muster",
        "city": "Zürich",
        "phone": "+41 79 123 45 67",
        "summary": "Erfahrene Entwicklerin.",
        "experience": [
            {"company": "Acme AG", "position": "Senior Developer", "startDate": "2020-03",
             "current": True, "description": "Led team\nShipped product"},
            {"company": "Beta GmbH", "position": "Developer", "startDate": "2017-01",
             "endDate": "2020-02", "description": "Built APIs"},
        ],
        "education": [
            {"institution": "ETH Zürich", "degree": "MSc", "field": "Informatik",
             "startDate": "2015-09", "endDate": "2017-06"},
        ],
        "skills": [{"name": "Python", "level": "Experte"}, "SQL"],
        "languages": [{"name": "Deutsch", "level": "C2", "native": True},
                      {"name": "Englisch", "level": "C1"}],
    })
    return profile


@pytest.fixture
def settings(tmp_path):
    return Settings(
        secret_key="test",
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret=WEBHOOK_SECRET,
        supabase_url="https://auth.example.test",
        supabase_anon_key="anon",
        app_base_url="https://app.example.test",
    )


@pytest.fixture
def store(anna_profile):
    return MemoryProfileStore([anna_profile])


@pytest.fixture
def subscriptions():
    """Subscription id -> subscription dict served to the webhook handler."""
    return {}


@pytest.fixture
def app(settings, store, subscriptions):
    loader = TemplateLoader(template_dir=settings.template_dir)
    flask_app = create_app(
        settings=settings,
        store=store,
        template_loader=loader,
        auth=fake_auth,
        retrieve_subscription=lambda sub_id: subscriptions[sub_id],
        config={"TESTING": True, "RATELIMIT_ENABLED": False},
    )
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def post_webhook(client):
    def post(event, secret=WEBHOOK_SECRET, signature=None):
        payload = json.dumps(event)
        headers = {"Content-Type": "application/json"}
        if signature is None:
            signature = sign_payload(payload, secret)
        if signature:
            headers["Stripe-Signature"] = signature
        return client.post("/api/billing/webhook", data=payload, headers=headers)
    return post
