"""
Workblix -- Billing Client
Thin HTTP proxy to the billing endpoints, for scripts and other services that
act on behalf of a signed-in user. Never raises: every failure comes back as
{"error": message}.
"""

import requests

from backend.logger import get_logger


logger = get_logger("billing_client")


def _post(url, token, payload, timeout, failure_message):
    try:
        response = requests.post(
            url,
            json=payload,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {token}",
            },
            timeout=timeout,
        )
    except requests.RequestException as e:
        logger.error("Billing request to %s failed: %s", url, e)
        return {"error": str(e) or failure_message}

    if not response.ok:
        message = response.text or failure_message
        try:
            body = response.json()
            if isinstance(body, dict) and body.get("error"):
                message = body["error"]
        except ValueError:
            pass
        logger.warning("Billing request to %s returned %s: %s", url, response.status_code, message)
        return {"error": message}

    try:
        return response.json()
    except ValueError:
        return {"error": failure_message}


def create_checkout_session(user_id, email, token, success_url, cancel_url, base_url, timeout=10):
    """
    Ask the billing API for a subscription checkout URL.

    Returns:
        {"url": ...} or {"error": ...}
    """
    return _post(
        f"{base_url.rstrip('/')}/api/billing/create-checkout-session",
        token,
        {"userId": user_id, "email": email, "successUrl": success_url, "cancelUrl": cancel_url},
        timeout,
        "Failed to create checkout session",
    )


def create_portal_session(customer_id, token, return_url, base_url, timeout=10):
    """
    Ask the billing API for a customer-portal URL.

    Returns:
        {"url": ...} or {"error": ...}
    """
    return _post(
        f"{base_url.rstrip('/')}/api/billing/create-portal-session",
        token,
        {"customerId": customer_id, "returnUrl": return_url},
        timeout,
        "Failed to create portal session",
    )


class BillingClient:
    """The two proxy calls bound to one billing API base URL."""

    def __init__(self, base_url, timeout=10, app_url=None):
        self.base_url = base_url
        self.timeout = timeout
        self.app_url = (app_url or base_url).rstrip("/")

    @classmethod
    def from_settings(cls, settings):
        return cls(settings.billing_api_url or settings.app_base_url, settings.http_timeout, settings.app_base_url)

    def create_checkout_session(self, user_id, email, token, success_url=None, cancel_url=None):
        return create_checkout_session(
            user_id, email, token,
            success_url or f"{self.app_url}/pro-success",
            cancel_url or f"{self.app_url}/pro-upgrade",
            self.base_url, self.timeout,
        )

    def create_portal_session(self, customer_id, token, return_url):
        return create_portal_session(customer_id, token, return_url, self.base_url, self.timeout)
