"""
Workblix -- Authentication
Resolves a bearer token to a user through the hosted auth provider
(GET {SUPABASE_URL}/auth/v1/user).
"""

import requests

from backend.errors import ConfigurationError, Unauthorized
from backend.logger import get_logger


logger = get_logger("auth")


def bearer_token(request):
    """Token from 'Authorization: Bearer <token>', or None."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_user_from_token(token, settings):
    """
    Validate a token with the auth provider.

    Returns:
        dict with at least id and email

    Raises:
        Unauthorized: token missing, rejected, or provider unreachable
        ConfigurationError: auth provider not configured
    """
    if not token:
        raise Unauthorized()
    if not settings.auth_enabled:
        raise ConfigurationError("Authentication is not configured.")

    try:
        response = requests.get(
            f"{settings.supabase_url}/auth/v1/user",
            headers={
                "apikey": settings.supabase_anon_key,
                "Authorization": f"Bearer {token}",
            },
            timeout=settings.http_timeout,
        )
    except requests.RequestException as e:
        logger.error("Auth provider unreachable: %s", e)
        raise Unauthorized() from e

    if response.status_code != 200:
        raise Unauthorized()
    try:
        user = response.json()
    except ValueError as e:
        raise Unauthorized() from e
    if not isinstance(user, dict) or not user.get("id"):
        raise Unauthorized()
    return {"id": user["id"], "email": user.get("email", "")}
