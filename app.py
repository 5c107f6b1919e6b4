"""
Workblix -- Main Application
CV builder service: profile storage, CV generation from HTML templates and
layout components, PDF export, and Stripe subscription billing.
"""

import os

from email_validator import validate_email, EmailNotValidError
from flask import Flask, Blueprint, current_app, request, jsonify, Response
from flask_cors import CORS
from flask_limiter import Limiter

from backend.auth import bearer_token, get_user_from_token
from backend.billing_webhooks import handle_event
from backend.config import Settings
from backend.cv_layouts import LAYOUTS, render_layout
from backend.cv_pdf_generator import MAX_SCALE, MIN_SCALE, ExportOptions, check_scale, generate_cv_pdf
from backend.cv_populator import BROWSER_CONTEXT, SERVER_CONTEXT, populate, download_filename
from backend.document import to_html
from backend.errors import (
    WorkblixError, Unauthorized, ValidationFailure, ExternalServiceFailure,
    ConfigurationError, UsageLimitReached,
)
from backend.logger import get_logger, configure_logging
from backend.profile_store import create_profile_store, is_premium
from backend.stripe_utils import (
    cancel_subscription, create_checkout_session, create_portal_session, verify_webhook_signature,
    make_subscription_retriever,
)
from backend.template_loader import TemplateLoader


logger = get_logger("app")

MAX_CONTENT_LENGTH = 2 * 1024 * 1024  # 2MB max request body


def client_ip():
    """Rate-limit key: first X-Forwarded-For hop (set by the hosting proxy), else the peer."""
    route = request.access_route
    return route[0].strip() if route else (request.remote_addr or '127.0.0.1')


limiter = Limiter(
    client_ip,
    default_limits=["2000 per day", "500 per hour"],
)

bp = Blueprint('workblix', __name__)


# ============================================================
# REQUEST HELPERS
# ============================================================

def _services():
    return current_app.extensions['workblix']


def _current_user():
    """The authenticated user for this request; raises Unauthorized."""
    token = bearer_token(request)
    if not token:
        raise Unauthorized()
    return _services()['auth'](token)


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationFailure("No data provided.")
    return data


def _current_profile(user):
    return _services()['store'].ensure_profile(user['id'], user.get('email', ''))


def _attachment(body, mimetype, filename):
    return Response(
        body,
        mimetype=mimetype,
        headers={
            'Content-Disposition': f'attachment; filename={filename}',
            'Content-Length': str(len(body)),
        },
    )


# ============================================================
# CV GENERATION ROUTES
# ============================================================

@bp.route('/api/cv/generate-html', methods=['POST'])
@limiter.limit("30 per hour")
def generate_cv_html():
    """
    Populate an HTML template with CV data.

    Accepts:
        JSON with templateId and cvData.

    Returns:
        JSON with success and html.
    """
    data = request.get_json(silent=True) or {}
    template_id = data.get('templateId')
    cv_data = data.get('cvData')
    if not template_id or not isinstance(cv_data, dict):
        return jsonify({"error": "Template ID and CV data are required"}), 400

    try:
        html = populate(template_id, cv_data, _services()['templates'], SERVER_CONTEXT, fallback=True)
        return jsonify({"success": True, "html": html})
    except Exception as e:
        logger.exception("Error generating CV HTML")
        return jsonify({"error": "Failed to generate CV", "details": str(e)}), 500


@bp.route('/api/cv/export/html', methods=['POST'])
@limiter.limit("30 per hour")
def export_cv_html():
    """Download the signed-in user's CV as a standalone HTML file."""
    user = _current_user()
    data = _json_body()
    template_id = (data.get('templateId') or '').strip()
    if not template_id:
        raise ValidationFailure("Template ID is required")

    profile = _current_profile(user)
    html = populate(template_id, profile, _services()['templates'], BROWSER_CONTEXT)
    filename = download_filename(profile, template_id, 'html')
    return _attachment(html.encode('utf-8'), 'text/html', filename)


def _export_options(data, profile, filename):
    try:
        scale = float(data.get('scale', 2))
    except (TypeError, ValueError):
        raise ValidationFailure(f"Scale must be between {MIN_SCALE} and {MAX_SCALE}")
    check_scale(scale)
    return ExportOptions(
        filename=filename,
        page_format=str(data.get('format', 'a4')).lower(),
        orientation=str(data.get('orientation', 'portrait')).lower(),
        scale=scale,
        watermark=bool(data.get('watermark', False)),
        plan='pro' if is_premium(profile) else 'free',
    )


@bp.route('/api/cv/export/pdf', methods=['POST'])
@limiter.limit("20 per hour")
def export_cv_pdf():
    """
    Render the signed-in user's CV with a layout and return it as a PDF.

    Accepts:
        JSON with layoutId and optional format, orientation, scale, watermark.
    """
    user = _current_user()
    data = _json_body()
    layout_id = (data.get('layoutId') or '').strip()
    if not layout_id:
        raise ValidationFailure("Layout ID is required")

    profile = _current_profile(user)
    filename = download_filename(profile, layout_id, 'pdf')
    options = _export_options(data, profile, filename)
    pdf_bytes = generate_cv_pdf(profile, layout_id, options)
    logger.info("PDF export %s for user %s (watermark plan: %s)", layout_id, user['id'], options.plan)
    return _attachment(pdf_bytes, 'application/pdf', filename)


@bp.route('/api/cv/preview/<layout_id>', methods=['GET'])
@limiter.limit("120 per hour")
def preview_cv(layout_id):
    """The signed-in user's CV in a layout, as HTML for in-app preview."""
    user = _current_user()
    profile = _current_profile(user)
    document = render_layout(layout_id, profile)
    return Response(to_html(document), mimetype='text/html')


@bp.route('/api/templates', methods=['GET'])
@limiter.exempt
def list_templates():
    """Packaged HTML templates and available layouts."""
    return jsonify({
        "templates": _services()['templates'].available(),
        "layouts": sorted(LAYOUTS),
    })


# ============================================================
# PROFILE & USAGE ROUTES
# ============================================================

@bp.route('/api/profile', methods=['GET'])
def get_profile():
    user = _current_user()
    return jsonify(_current_profile(user))


@bp.route('/api/profile', methods=['PUT'])
@limiter.limit("120 per hour")
def update_profile():
    """Replace editable profile fields. Billing fields in the payload are ignored."""
    user = _current_user()
    data = _json_body()
    _current_profile(user)
    return jsonify(_services()['store'].update_profile(user['id'], data))


@bp.route('/api/profile', methods=['DELETE'])
@limiter.limit("5 per hour")
def delete_account():
    """
    Delete the caller's account data: cancel any Stripe subscription, then
    remove the profile and its usage counters.

    Accepts:
        JSON with userId (must be the caller) and confirmDelete: true.
    """
    user = _current_user()
    data = _json_body()
    if data.get('userId') != user['id']:
        raise Unauthorized("Cannot delete another user's account")
    if data.get('confirmDelete') is not True:
        raise ValidationFailure("Delete confirmation required")

    services = _services()
    store = services['store']
    profile = store.get_profile(user['id'])
    subscription_id = (profile or {}).get('stripe_subscription_id')
    cancelled = False
    if subscription_id:
        # Deletion goes ahead even when Stripe refuses the cancellation
        cancelled = cancel_subscription(subscription_id, services['settings'])

    store.delete_profile(user['id'])
    logger.info("Account data deleted for user %s", user['id'])
    return jsonify({
        "success": True,
        "message": "Account deleted successfully",
        "subscription_cancelled": cancelled,
    })


@bp.route('/api/usage', methods=['GET'])
def get_usage():
    user = _current_user()
    profile = _current_profile(user)
    return jsonify(_services()['store'].usage_summary(profile))


@bp.route('/api/usage/scan', methods=['POST'])
@limiter.limit("60 per hour")
def record_generation():
    """Count one generation against this month's allowance."""
    user = _current_user()
    store = _services()['store']
    profile = _current_profile(user)
    usage = store.usage_summary(profile)
    if usage['limit'] is not None and usage['remaining'] <= 0:
        raise UsageLimitReached()
    store.increment_usage(user['id'])
    return jsonify(store.usage_summary(profile))


# ============================================================
# BILLING ROUTES
# ============================================================

@bp.route('/api/billing/create-checkout-session', methods=['POST'])
@limiter.limit("10 per hour")
def billing_create_checkout():
    """
    Create a Stripe Checkout session for the Pro subscription.

    Accepts:
        JSON with userId, email, successUrl, cancelUrl.

    Returns:
        JSON with url to redirect to.
    """
    user = _current_user()
    data = _json_body()
    settings = _services()['settings']

    user_id = (data.get('userId') or '').strip()
    email = (data.get('email') or '').strip()
    if not user_id or not email:
        raise ValidationFailure("userId and email are required.")
    if user_id != user['id']:
        raise Unauthorized()

    try:
        email = validate_email(email, check_deliverability=False).normalized
    except EmailNotValidError:
        raise ValidationFailure("Please enter a valid email address.")
    # Stripe customers are looked up by email, so it must be the caller's own
    if email.casefold() != (user.get('email') or '').strip().casefold():
        raise Unauthorized()

    if not settings.stripe_enabled:
        raise ConfigurationError("Payment service not configured.")

    success_url = data.get('successUrl') or f"{settings.app_base_url}/pro-success"
    cancel_url = data.get('cancelUrl') or f"{settings.app_base_url}/pro-upgrade"

    result = create_checkout_session(user_id, email, success_url, cancel_url, settings)
    if result.get("error"):
        raise ExternalServiceFailure(result["error"])
    return jsonify({"url": result["url"]})


@bp.route('/api/billing/create-portal-session', methods=['POST'])
@limiter.limit("20 per hour")
def billing_create_portal():
    """Open the Stripe customer portal for the caller's own customer record."""
    user = _current_user()
    data = _json_body()
    settings = _services()['settings']

    customer_id = (data.get('customerId') or '').strip()
    if not customer_id:
        raise ValidationFailure("customerId is required.")
    profile = _services()['store'].get_profile(user['id'])
    if not profile or profile.get('stripe_customer_id') != customer_id:
        raise Unauthorized()

    if not settings.stripe_enabled:
        raise ConfigurationError("Payment service not configured.")

    return_url = data.get('returnUrl') or f"{settings.app_base_url}/subscription"
    result = create_portal_session(customer_id, return_url, settings)
    if result.get("error"):
        raise ExternalServiceFailure(result["error"])
    return jsonify({"url": result["url"]})


@bp.route('/api/billing/webhook', methods=['POST'])
@limiter.exempt
def billing_webhook():
    """
    Stripe webhook endpoint. Syncs plan and status fields onto the profile.
    """
    services = _services()
    event = verify_webhook_signature(
        request.get_data(),
        request.headers.get('Stripe-Signature', ''),
        services['settings'].stripe_webhook_secret,
    )

    try:
        outcome = handle_event(event, services['store'], services['retrieve_subscription'])
    except Exception:
        logger.exception("Error processing webhook %s", event.get('id'))
        return jsonify({"error": "Webhook processing failed."}), 500

    return jsonify({"received": True, "outcome": outcome}), 200


@bp.route('/api/health', methods=['GET'])
@limiter.exempt
def health_check():
    """Health check endpoint."""
    services = _services()
    settings = services['settings']
    return jsonify({
        "status": "healthy",
        "stripe_enabled": settings.stripe_enabled,
        "webhook_configured": bool(settings.stripe_webhook_secret),
        "auth_enabled": settings.auth_enabled,
        "store": services['store'].backend,
        "remote_templates": bool(settings.template_primary_url or settings.template_fallback_url),
    })


# ============================================================
# SECURITY HEADERS
# ============================================================

SECURITY_HEADERS = {
    'X-Content-Type-Options': 'nosniff',
    'X-Frame-Options': 'SAMEORIGIN',
    'Referrer-Policy': 'strict-origin-when-cross-origin',
    'Permissions-Policy': 'camera=(), microphone=(), geolocation=()',
}

# Populated CVs are user-controlled HTML: no scripts, styles and images only
CV_DOCUMENT_POLICY = "default-src 'none'; style-src 'unsafe-inline' https:; img-src data: https:; font-src data: https:"

NO_STORE_HEADERS = {
    'Cache-Control': 'no-store, no-cache, must-revalidate, max-age=0',
    'Pragma': 'no-cache',
}

_PRIVATE_PREFIXES = ('/api/profile', '/api/usage', '/api/cv/', '/api/billing/')


@bp.after_app_request
def add_security_headers(response):
    """Security headers on every response; profile, CV and billing responses are never cached."""
    response.headers.update(SECURITY_HEADERS)
    if response.mimetype == 'text/html':
        response.headers['Content-Security-Policy'] = CV_DOCUMENT_POLICY
    if request.path.startswith(_PRIVATE_PREFIXES):
        response.headers.update(NO_STORE_HEADERS)
    if not current_app.debug:
        response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
    return response


# ============================================================
# ERROR HANDLERS
# ============================================================

def _workblix_error(e):
    if e.status_code >= 500:
        logger.error("%s: %s", type(e).__name__, e.message)
    return jsonify({"error": e.message}), e.status_code


def _ratelimit_handler(e):
    return jsonify({"error": "Too many requests. Please wait a few minutes and try again."}), 429


def _too_large(e):
    return jsonify({"error": "Request too large. Maximum size is 2MB."}), 413


def _not_found(e):
    return jsonify({"error": "Not found."}), 404


def _method_not_allowed(e):
    return jsonify({"error": "Method not allowed."}), 405


def _server_error(e):
    return jsonify({"error": "Internal server error. Please try again."}), 500


# ============================================================
# APP FACTORY
# ============================================================

def create_app(settings=None, store=None, template_loader=None, auth=None,
               retrieve_subscription=None, config=None):
    """
    Build the Flask app. Every collaborator can be injected; anything not
    given is built from settings (which default to the environment).
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = Flask(__name__)
    app.secret_key = settings.secret_key
    app.config['MAX_CONTENT_LENGTH'] = MAX_CONTENT_LENGTH
    app.config['SETTINGS'] = settings
    app.config['RATELIMIT_STORAGE_URI'] = settings.redis_url or 'memory://'
    app.config.update(config or {})
    app.debug = settings.debug

    CORS(app)
    limiter.init_app(app)

    app.extensions['workblix'] = {
        'settings': settings,
        'store': store or create_profile_store(settings),
        'templates': template_loader or TemplateLoader.from_settings(settings),
        'auth': auth or (lambda token: get_user_from_token(token, settings)),
        'retrieve_subscription': retrieve_subscription or make_subscription_retriever(settings),
    }

    app.register_blueprint(bp)
    app.register_error_handler(WorkblixError, _workblix_error)
    app.register_error_handler(429, _ratelimit_handler)
    app.register_error_handler(413, _too_large)
    app.register_error_handler(404, _not_found)
    app.register_error_handler(405, _method_not_allowed)
    app.register_error_handler(500, _server_error)
    return app


app = create_app()


# ============================================================
# RUN
# ============================================================

if __name__ == '__main__':
    port = int(os.getenv('PORT', 5001))
    settings = app.config['SETTINGS']
    logger.info("Workblix running at http://localhost:%s", port)
    logger.info("Stripe: %s | Auth: %s | Store: %s",
                'enabled' if settings.stripe_enabled else 'no API key found',
                'enabled' if settings.auth_enabled else 'not configured',
                app.extensions['workblix']['store'].backend)
    app.run(host='0.0.0.0', port=port, debug=settings.debug)
