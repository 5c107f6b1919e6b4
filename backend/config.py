"""
Workblix -- Configuration
All settings are read from the environment exactly once, at process start,
and handed to collaborators explicitly through a Settings instance.
"""

import os
import secrets
from dataclasses import dataclass, replace

from dotenv import load_dotenv


DEFAULT_TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'cv_templates')


@dataclass(frozen=True)
class Settings:
    secret_key: str = ''
    stripe_secret_key: str = ''
    stripe_webhook_secret: str = ''
    stripe_price_id: str = ''
    supabase_url: str = ''
    supabase_anon_key: str = ''
    redis_url: str = ''
    template_primary_url: str = ''
    template_fallback_url: str = ''
    template_dir: str = DEFAULT_TEMPLATE_DIR
    billing_api_url: str = ''
    app_base_url: str = 'http://localhost:5001'
    http_timeout: float = 10.0
    log_level: str = 'INFO'
    debug: bool = False

    @classmethod
    def from_env(cls, env_file=None):
        """Build settings from the process environment. A .env file only fills in unset keys."""
        load_dotenv(env_file)
        env = os.environ
        supabase_url = env.get('SUPABASE_URL', '').rstrip('/')

        # Templates live in the public "templates" bucket unless overridden
        primary = env.get('TEMPLATE_PRIMARY_URL', '')
        if not primary and supabase_url:
            primary = f"{supabase_url}/storage/v1/object/public/templates/cv"

        return cls(
            secret_key=env.get('FLASK_SECRET_KEY') or secrets.token_hex(32),
            stripe_secret_key=env.get('STRIPE_SECRET_KEY', ''),
            stripe_webhook_secret=env.get('STRIPE_WEBHOOK_SECRET', ''),
            stripe_price_id=env.get('STRIPE_PRICE_ID', ''),
            supabase_url=supabase_url,
            supabase_anon_key=env.get('SUPABASE_ANON_KEY', ''),
            redis_url=env.get('REDIS_URL', ''),
            template_primary_url=primary.rstrip('/'),
            template_fallback_url=env.get('TEMPLATE_FALLBACK_URL', '').rstrip('/'),
            template_dir=env.get('TEMPLATE_DIR') or DEFAULT_TEMPLATE_DIR,
            billing_api_url=env.get('BILLING_API_URL', '').rstrip('/'),
            app_base_url=env.get('APP_BASE_URL', 'http://localhost:5001').rstrip('/'),
            http_timeout=float(env.get('HTTP_TIMEOUT_SECONDS', '10')),
            log_level=env.get('LOG_LEVEL', 'INFO').upper(),
            debug=env.get('FLASK_ENV', 'production') == 'development',
        )

    def with_overrides(self, **changes):
        return replace(self, **changes)

    @property
    def stripe_enabled(self):
        return bool(self.stripe_secret_key)

    @property
    def auth_enabled(self):
        return bool(self.supabase_url and self.supabase_anon_key)
