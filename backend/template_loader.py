"""
Workblix -- Template Loader
Resolves a template id to static HTML: primary object-storage URL, then the
fallback URL, then the templates packaged with the app. The HTTP generation
path degrades to a built-in minimal template rather than failing.
"""

import os
import re

import requests

from backend.errors import TemplateNotFound
from backend.logger import get_logger


logger = get_logger("templates")

TEMPLATE_ID_RE = re.compile(r'^[a-z0-9][a-z0-9_-]{0,63}$')

MINIMAL_TEMPLATE = """<!DOCTYPE html>
<html lang="de">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>Lebenslauf</title>
<style>
body { font-family: Arial, sans-serif; margin: 20px; color: #333; }
.header { border-bottom: 2px solid #333; padding-bottom: 10px; margin-bottom: 20px; }
.name { font-size: 2em; font-weight: bold; }
.section { margin-bottom: 20px; }
.section h2 { color: #333; border-bottom: 1px solid #ccc; padding-bottom: 5px; }
</style>
</head>
<body>
<div class="header">
<div class="name">{{firstName}} {{lastName}}</div>
<div>{{email}} | {{phone}} | {{location}}</div>
</div>
<!-- section:summary -->
<div class="section"><h2>Profil</h2><p>{{summary}}</p></div>
<!-- /section:summary -->
<!-- section:experience -->
<div class="section"><h2>Berufserfahrung</h2>{{experience}}</div>
<!-- /section:experience -->
<!-- section:education -->
<div class="section"><h2>Ausbildung</h2>{{education}}</div>
<!-- /section:education -->
<!-- section:skills -->
<div class="section"><h2>Fähigkeiten</h2>{{skills}}</div>
<!-- /section:skills -->
<!-- section:languages -->
<div class="section"><h2>Sprachen</h2>{{languages}}</div>
<!-- /section:languages -->
</body>
</html>"""


def is_valid_template_id(template_id):
    return isinstance(template_id, str) and bool(TEMPLATE_ID_RE.match(template_id))


class TemplateLoader:
    """Loads template HTML by id from the configured sources."""

    def __init__(self, primary_url="", fallback_url="", template_dir=None, timeout=10.0, session=None):
        self.primary_url = (primary_url or "").rstrip("/")
        self.fallback_url = (fallback_url or "").rstrip("/")
        self.template_dir = template_dir
        self.timeout = timeout
        self.http = session or requests

    @classmethod
    def from_settings(cls, settings):
        return cls(
            primary_url=settings.template_primary_url,
            fallback_url=settings.template_fallback_url,
            template_dir=settings.template_dir,
            timeout=settings.http_timeout,
        )

    def _fetch(self, base_url, template_id):
        if not base_url:
            return None
        url = f"{base_url}/{template_id}.html"
        try:
            response = self.http.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("Template fetch failed for %s: %s", url, e)
            return None
        if response.status_code != 200:
            logger.warning("Template %s not available at %s (HTTP %s)", template_id, url, response.status_code)
            return None
        return response.text

    def _read_packaged(self, template_id):
        if not self.template_dir:
            return None
        path = os.path.join(self.template_dir, f"{template_id}.html")
        if not os.path.isfile(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    def load(self, template_id):
        """
        Return the HTML for template_id.

        Raises:
            TemplateNotFound: invalid id, or no source has the template
        """
        if not is_valid_template_id(template_id):
            raise TemplateNotFound(template_id)

        for source in (self.primary_url, self.fallback_url):
            html = self._fetch(source, template_id)
            if html is not None:
                return html

        html = self._read_packaged(template_id)
        if html is not None:
            return html
        raise TemplateNotFound(template_id)

    def load_or_default(self, template_id):
        """Like load(), but falls back to the built-in minimal template."""
        try:
            return self.load(template_id)
        except TemplateNotFound:
            logger.error("Error loading template %s, using minimal template", template_id)
            return MINIMAL_TEMPLATE

    def available(self):
        """Ids of the templates packaged with the app."""
        if not self.template_dir or not os.path.isdir(self.template_dir):
            return []
        return sorted(
            name[:-5] for name in os.listdir(self.template_dir)
            if name.endswith(".html") and is_valid_template_id(name[:-5])
        )
