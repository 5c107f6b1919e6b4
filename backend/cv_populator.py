"""
Workblix -- CV Template Populator
Fills a static HTML template with CV data through the shared Jinja2
environment. One implementation serves both the API generation endpoint and
the browser download; the difference between the two is a RenderContext, not
a second populator.
"""

import re
from collections import namedtuple

from markupsafe import Markup

from backend.cv_data import (
    to_cv_data, sort_entries_desc, split_description, format_month_year,
    full_name, location_line, professional_title, PRESENT_LABEL,
)
from backend import template_engine


RenderContext = namedtuple("RenderContext", "name print_styles")

PRINT_STYLES = """
<style>
  @media print {
    .page { height: auto !important; min-height: auto !important; page-break-inside: avoid; }
    body { margin: 0 !important; padding: 0 !important; font-size: 12px !important; line-height: 1.4 !important; }
    .sidebar { width: 30% !important; padding: 15px !important; }
    .content { width: 70% !important; padding: 15px !important; }
    .name { font-size: 24px !important; }
    .title { font-size: 14px !important; }
    h2 { font-size: 16px !important; margin-bottom: 8px !important; }
    h3 { font-size: 14px !important; margin-bottom: 6px !important; }
    p, li { font-size: 11px !important; line-height: 1.3 !important; margin: 2px 0 !important; }
  }
</style>
"""

SERVER_CONTEXT = RenderContext("server", False)
BROWSER_CONTEXT = RenderContext("browser", True)


# ============================================================
# FRAGMENTS
# ============================================================

def _date_span(start, end, ongoing):
    start_text = format_month_year(start)
    end_text = PRESENT_LABEL if ongoing or not end else format_month_year(end)
    if not start_text:
        return end_text
    return f"{start_text} - {end_text}"


def _labelled(entry):
    return entry["name"] + (f" – {entry['level']}" if entry["level"] else "")


def experience_fragment(entries):
    if not entries:
        return Markup("")
    jobs = [
        {
            "start": exp["startDate"],
            "position": exp["position"],
            "company": exp["company"],
            "dates": _date_span(exp["startDate"], exp["endDate"], exp["current"]),
            "bullets": split_description(exp["description"]),
        }
        for exp in sort_entries_desc(entries)
    ]
    return template_engine.fragments().experience(jobs)


def education_fragment(entries):
    if not entries:
        return Markup("")
    schools = [
        {
            "start": edu["startDate"],
            "degree": edu["degree"] + (f" in {edu['field']}" if edu["field"] else ""),
            "institution": edu["institution"],
            "dates": _date_span(edu["startDate"], edu["endDate"], edu["ongoing"]),
            "description": edu["description"],
        }
        for edu in sort_entries_desc(entries)
    ]
    return template_engine.fragments().education(schools)


def skills_fragment(skills):
    if not skills:
        return Markup("")
    return template_engine.fragments().labels("skills", [_labelled(s) for s in skills])


def languages_fragment(languages):
    if not languages:
        return Markup("")
    return template_engine.fragments().labels("languages", [_labelled(lang) for lang in languages])


# ============================================================
# PUBLIC API
# ============================================================

def template_values(cv_data):
    """Placeholder name -> value for a normalised CVData dict."""
    values = dict(cv_data["personalInfo"])
    values.update({
        "fullName": full_name(cv_data),
        "location": location_line(cv_data),
        "professionalTitle": professional_title(cv_data),
        "experience": experience_fragment(cv_data["experience"]),
        "education": education_fragment(cv_data["education"]),
        "skills": skills_fragment(cv_data["skills"]),
        "languages": languages_fragment(cv_data["languages"]),
    })
    return values


def section_flags(cv_data):
    personal = cv_data["personalInfo"]
    return {
        "links": any(personal.get(k) for k in ("linkedin", "github", "website")),
        "photo": bool(cv_data.get("includePhotoPlaceholder")),
    }


def populate_html(template_html, cv_data, context=SERVER_CONTEXT):
    """Populate template text with CV data. Pure: same input, same bytes."""
    data = to_cv_data(cv_data)
    output = template_engine.render(template_html, template_values(data), section_flags(data))
    if context.print_styles:
        output = output.replace("</head>", PRINT_STYLES + "</head>", 1)
    return output


def populate(template_id, cv_data, loader, context=SERVER_CONTEXT, fallback=False):
    """
    Load template_id through loader and populate it.

    Args:
        template_id: short template id, e.g. "zurich"
        cv_data: CVData or a stored profile row
        loader: TemplateLoader
        context: SERVER_CONTEXT or BROWSER_CONTEXT
        fallback: use the built-in minimal template instead of raising

    Raises:
        TemplateNotFound: when fallback is False and the template is missing
    """
    if fallback:
        template_html = loader.load_or_default(template_id)
    else:
        template_html = loader.load(template_id)
    return populate_html(template_html, cv_data, context)


def download_filename(cv_data, template_id, ext):
    """CV_<firstName>_<lastName>_<templateId>.<ext>, filesystem-safe."""
    personal = to_cv_data(cv_data)["personalInfo"]
    raw = f"CV_{personal['firstName']}_{personal['lastName']}_{template_id}"
    return re.sub(r'[^\w.-]', '_', raw) + f".{ext}"
