"""
Workblix -- Template Engine
The Jinja2 environment shared by every surface that populates CV templates
(API generation, browser download).

Template syntax:
    {{name}}                         Jinja2 expression, autoescaped
    <!-- section:name --> ... <!-- /section:name -->
                                     explicitly delimited section; dropped
                                     entirely when its data is empty

Section delimiters are rewritten into `{% if sections["name"] %}` blocks
before compilation. Kept sections still carry their delimiters, so a
populated document can be read back with extract_entries().
"""

import html
import re
from functools import lru_cache

from jinja2 import Environment, FileSystemLoader
from jinja2 import TemplateSyntaxError as JinjaTemplateSyntaxError
from jinja2.ext import Extension

from backend.config import DEFAULT_TEMPLATE_DIR
from backend.errors import TemplateSyntaxError


FRAGMENTS_TEMPLATE = "_fragments.html"

_MARKER_RE = re.compile(r'<!--\s*(?P<close>/)?section:(?P<name>[\w-]+)\s*-->')
_ENTRY_RE = re.compile(r'data-entry="(?P<entry>[\w-]+)"[^>]*?data-start="(?P<start>[^"]*)"')


def section_open(name):
    return f"<!-- section:{name} -->"


def section_close(name):
    return f"<!-- /section:{name} -->"


class SectionExtension(Extension):
    """Turns comment-delimited sections into conditional Jinja2 blocks."""

    def preprocess(self, source, name, filename=None):
        stack = []

        def rewrite(match):
            section = match.group("name")
            if not match.group("close"):
                stack.append(section)
                return '{% if sections["' + section + '"] %}' + section_open(section)
            if not stack:
                raise TemplateSyntaxError(f"Section '{section}' closed without matching open")
            if stack[-1] != section:
                raise TemplateSyntaxError(
                    f"Section '{section}' closed without matching open (open section is '{stack[-1]}')"
                )
            stack.pop()
            return section_close(section) + "{% endif %}"

        output = _MARKER_RE.sub(rewrite, source)
        if stack:
            raise TemplateSyntaxError(f"Section '{stack[-1]}' is never closed")
        return output


environment = Environment(
    loader=FileSystemLoader(DEFAULT_TEMPLATE_DIR),
    autoescape=True,
    extensions=[SectionExtension],
    keep_trailing_newline=True,
)


@lru_cache(maxsize=64)
def compile_template(source):
    """
    Compile template text.

    Raises TemplateSyntaxError for unbalanced or mismatched section delimiters
    and for malformed Jinja2 tags.
    """
    try:
        return environment.from_string(source)
    except JinjaTemplateSyntaxError as e:
        raise TemplateSyntaxError(f"Template syntax error on line {e.lineno}: {e.message}") from e


def fragments():
    """The macros that render list placeholders (experience, education, ...)."""
    return environment.get_template(FRAGMENTS_TEMPLATE).module


def render(template, values, sections=None):
    """
    Render template text.

    Args:
        template: template source text
        values: mapping placeholder name -> value. Plain strings are escaped,
            markupsafe.Markup fragments are inserted as-is.
        sections: optional mapping section name -> bool (keep?). Sections not
            listed are kept when values[name] is non-blank.

    Returns:
        str: rendered document
    """
    flags = {name: bool(str(value).strip()) for name, value in values.items()}
    flags.update(sections or {})
    return compile_template(template).render(values, sections=flags)


def extract_entries(document, name):
    """
    Re-parse a populated document and return the data-start values of the
    entries inside every section called `name`, in document order.
    """
    block_re = re.compile(re.escape(section_open(name)) + r'(?P<body>.*?)' + re.escape(section_close(name)), re.S)
    starts = []
    for block in block_re.finditer(document):
        for match in _ENTRY_RE.finditer(block.group("body")):
            if match.group("entry") == name:
                starts.append(html.unescape(match.group("start")))
    return starts
