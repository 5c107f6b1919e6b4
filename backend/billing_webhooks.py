"""
Workblix -- Billing Webhook Handler
Reconciles a verified Stripe event onto the user's profile.

One event causes at most one profile write, and every write goes through
store.apply_billing_update() so redelivered or out-of-order events are
refused atomically.
"""

from backend.logger import get_logger
from backend.profile_store import APPLIED
from backend.stripe_utils import map_subscription_status, period_end_iso


logger = get_logger("webhooks")

IGNORED = "ignored"

USER_METADATA_KEY = "supabase_user_id"


def _metadata_user(obj):
    return ((obj or {}).get("metadata") or {}).get(USER_METADATA_KEY)


def _invoice_subscription_id(invoice):
    """Subscription id of an invoice; newer API versions nest it under parent."""
    subscription = invoice.get("subscription")
    if not subscription:
        details = (invoice.get("parent") or {}).get("subscription_details") or {}
        subscription = details.get("subscription")
    if isinstance(subscription, dict):
        subscription = subscription.get("id")
    return subscription


def _id_of(value):
    """Stripe expands some references into objects; reduce them to their id."""
    if isinstance(value, dict):
        return value.get("id")
    return value


# ============================================================
# EVENT HANDLERS
# Each returns (user_id, fields) or (None, None) when the event
# does not map to a profile.
# ============================================================

def _checkout_completed(session, store, retrieve_subscription):
    user_id = _metadata_user(session)
    if not user_id:
        return None, None
    fields = {
        "plan": "pro",
        "plan_status": "active",
        "stripe_customer_id": _id_of(session.get("customer")),
    }
    subscription_id = _id_of(session.get("subscription"))
    if subscription_id:
        subscription = retrieve_subscription(subscription_id)
        fields["stripe_subscription_id"] = subscription_id
        fields["current_period_end"] = period_end_iso(subscription)
    return user_id, fields


def _invoice_user(invoice, store, retrieve_subscription):
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        return None, None
    subscription = retrieve_subscription(subscription_id)
    user_id = _metadata_user(subscription) or store.find_user_by_customer(_id_of(invoice.get("customer")))
    return user_id, subscription


def _payment_succeeded(invoice, store, retrieve_subscription):
    user_id, subscription = _invoice_user(invoice, store, retrieve_subscription)
    if not user_id:
        return None, None
    return user_id, {
        "plan_status": "active",
        "current_period_end": period_end_iso(subscription),
    }


def _payment_failed(invoice, store, retrieve_subscription):
    user_id, _ = _invoice_user(invoice, store, retrieve_subscription)
    if not user_id:
        return None, None
    return user_id, {"plan_status": "past_due"}


def _subscription_deleted(subscription, store, retrieve_subscription):
    user_id = _metadata_user(subscription)
    if not user_id:
        return None, None
    return user_id, {
        "plan": "free",
        "plan_status": "cancelled",
        "stripe_subscription_id": None,
        "current_period_end": None,
    }


def _subscription_updated(subscription, store, retrieve_subscription):
    user_id = _metadata_user(subscription)
    if not user_id:
        return None, None
    return user_id, {
        "plan_status": map_subscription_status(subscription.get("status")),
        "current_period_end": period_end_iso(subscription),
        "stripe_subscription_id": subscription.get("id"),
    }


def _subscription_created(subscription, store, retrieve_subscription):
    user_id = _metadata_user(subscription)
    if not user_id:
        return None, None
    return user_id, {
        "plan": "pro",
        "plan_status": map_subscription_status(subscription.get("status")),
        "stripe_subscription_id": subscription.get("id"),
        "stripe_customer_id": _id_of(subscription.get("customer")),
        "current_period_end": period_end_iso(subscription),
    }


HANDLERS = {
    "checkout.session.completed": _checkout_completed,
    "invoice.payment_succeeded": _payment_succeeded,
    "invoice.payment_failed": _payment_failed,
    "customer.subscription.deleted": _subscription_deleted,
    "customer.subscription.updated": _subscription_updated,
    "customer.subscription.created": _subscription_created,
}


def handle_event(event, store, retrieve_subscription):
    """
    Apply one verified Stripe event.

    Args:
        event: parsed event dict (id, type, created, data.object)
        store: ProfileStore
        retrieve_subscription: callable(subscription_id) -> subscription dict

    Returns:
        str: "applied", "duplicate", "stale", "missing" or "ignored"

    Errors from Stripe or the store propagate; the route turns them into a 500
    so Stripe redelivers the event.
    """
    event_type = event.get("type")
    event_id = event.get("id")
    logger.info("Processing webhook event %s (%s)", event_type, event_id)

    handler = HANDLERS.get(event_type)
    if handler is None:
        logger.info("Unhandled event type: %s", event_type)
        return IGNORED

    obj = (event.get("data") or {}).get("object") or {}
    user_id, fields = handler(obj, store, retrieve_subscription)
    if not user_id:
        logger.info("Event %s (%s) carries no user reference; nothing to update", event_type, event_id)
        return IGNORED

    outcome = store.apply_billing_update(user_id, fields, event_id=event_id, event_created=event.get("created"))
    if outcome == APPLIED:
        logger.info("Billing update applied for user %s from %s", user_id, event_type)
    else:
        logger.warning("Billing update for user %s from %s skipped: %s", user_id, event_type, outcome)
    return outcome
