"""
Workblix -- Stripe Billing Utilities
Creates subscription checkout and customer-portal sessions, verifies webhook
signatures and looks up subscriptions for the webhook handler.

Every call passes the secret key explicitly; nothing here touches the global
stripe.api_key.
"""

from datetime import datetime, timezone

import stripe

from backend.errors import ConfigurationError, SignatureVerificationFailure
from backend.logger import get_logger


logger = get_logger("stripe")

PRO_PRICE_DATA = {
    "currency": "chf",
    "product_data": {
        "name": "Workblix Pro",
        "description": "Monatliches Abonnement für Workblix Pro mit allen Premium-Features",
    },
    "unit_amount": 999,  # 9.99 CHF in Rappen
    "recurring": {"interval": "month"},
}

STATUS_MAP = {
    "active": "active",
    "past_due": "past_due",
    "canceled": "cancelled",
    "cancelled": "cancelled",
    "unpaid": "unpaid",
    "trialing": "trialing",
}


def map_subscription_status(status):
    """Stripe subscription status -> stored plan_status. Unknown values pass through."""
    return STATUS_MAP.get(status, status)


def to_plain(obj):
    """StripeObject (or anything dict-like) -> plain dict."""
    if obj is None:
        return None
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


def period_end_iso(subscription):
    """
    current_period_end of a subscription as an ISO-8601 UTC string.

    Newer API versions only carry it on the subscription items, so the first
    item is checked when the top-level field is absent.
    """
    if not subscription:
        return None
    timestamp = subscription.get("current_period_end")
    if timestamp is None:
        items = (subscription.get("items") or {}).get("data") or []
        if items:
            timestamp = items[0].get("current_period_end")
    if timestamp is None:
        return None
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc).isoformat()


def create_checkout_session(user_id, email, success_url, cancel_url, settings):
    """
    Create a Stripe Checkout session for the monthly Pro subscription.

    The customer is reused by email or created with the user id in its
    metadata, so later subscription events can be traced back to the profile.

    Returns:
        dict with url and session_id, or error
    """
    if not settings.stripe_secret_key:
        return {"error": "Payment service not configured."}

    api_key = settings.stripe_secret_key
    try:
        existing = stripe.Customer.list(email=email, limit=1, api_key=api_key)
        if existing.data:
            customer_id = existing.data[0].id
        else:
            customer = stripe.Customer.create(
                email=email,
                metadata={"supabase_user_id": user_id},
                api_key=api_key,
            )
            customer_id = customer.id

        if settings.stripe_price_id:
            line_item = {"price": settings.stripe_price_id, "quantity": 1}
        else:
            line_item = {"price_data": PRO_PRICE_DATA, "quantity": 1}

        session = stripe.checkout.Session.create(
            customer=customer_id,
            payment_method_types=["card"],
            line_items=[line_item],
            mode="subscription",
            success_url=success_url,
            cancel_url=cancel_url,
            metadata={"supabase_user_id": user_id},
            subscription_data={"metadata": {"supabase_user_id": user_id}},
            api_key=api_key,
        )
        logger.info("Checkout session %s created for user %s", session.id, user_id)
        return {
            "url": session.url,
            "session_id": session.id,
        }
    except stripe.StripeError as e:
        logger.error("Stripe checkout error: %s", e)
        return {"error": "Could not create payment session. Please try again."}


def create_portal_session(customer_id, return_url, settings):
    """
    Create a Stripe customer-portal session for managing the subscription.

    Returns:
        dict with url, or error
    """
    if not settings.stripe_secret_key:
        return {"error": "Payment service not configured."}
    try:
        session = stripe.billing_portal.Session.create(
            customer=customer_id,
            return_url=return_url,
            api_key=settings.stripe_secret_key,
        )
        return {"url": session.url}
    except stripe.StripeError as e:
        logger.error("Stripe portal error: %s", e)
        return {"error": "Could not open the billing portal. Please try again."}


def verify_webhook_signature(payload, sig_header, webhook_secret):
    """
    Validate a Stripe webhook signature, then parse the body.

    The signature is checked against the raw bytes before any JSON parsing.

    Args:
        payload: raw request body bytes
        sig_header: Stripe-Signature header value
        webhook_secret: endpoint signing secret

    Returns:
        dict: the parsed event

    Raises:
        ConfigurationError: no webhook secret configured
        SignatureVerificationFailure: header missing, invalid, or body not JSON
    """
    if not webhook_secret:
        logger.error("STRIPE_WEBHOOK_SECRET is not configured")
        raise ConfigurationError("Webhook configuration error")
    if not sig_header:
        logger.warning("Webhook rejected: missing Stripe-Signature header")
        raise SignatureVerificationFailure()

    try:
        event = stripe.Webhook.construct_event(payload, sig_header, webhook_secret)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning("Stripe webhook verification failed: %s", e)
        raise SignatureVerificationFailure() from e

    event = to_plain(event)
    if "type" not in event:
        raise SignatureVerificationFailure("Malformed webhook event")
    return event


def make_subscription_retriever(settings):
    """Bind retrieve_subscription to settings for the webhook handler."""
    def retrieve(subscription_id):
        return retrieve_subscription(subscription_id, settings)
    return retrieve


def retrieve_subscription(subscription_id, settings):
    """Fetch a subscription as a plain dict. StripeError propagates to the webhook route."""
    if not settings.stripe_secret_key:
        raise ConfigurationError("Payment service not configured.")
    subscription = stripe.Subscription.retrieve(subscription_id, api_key=settings.stripe_secret_key)
    return to_plain(subscription)


def cancel_subscription(subscription_id, settings):
    """
    Cancel a subscription immediately (account deletion).

    Returns:
        bool: True when Stripe confirmed the cancellation. Failures are
        logged and reported as False so the deletion can continue.
    """
    if not subscription_id or not settings.stripe_secret_key:
        return False
    try:
        stripe.Subscription.cancel(subscription_id, api_key=settings.stripe_secret_key)
        logger.info("Cancelled Stripe subscription %s", subscription_id)
        return True
    except stripe.StripeError as e:
        logger.error("Error cancelling Stripe subscription %s: %s", subscription_id, e)
        return False
