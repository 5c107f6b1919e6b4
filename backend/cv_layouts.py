"""
Workblix -- CV Layout Components
Five visually distinct CV designs. Each takes a profile and returns a
document tree (backend.document.Node) that can be previewed as HTML or
exported as PDF.

Shared rules, applied by the section builders below:
- a section only appears when its data is non-empty (no empty headings)
- the photo placeholder only appears when include_photo_placeholder is set
- the links section only appears when linkedin, github or website is set
- the professional title falls back to the most recent position
- experience and education are re-sorted newest first on every render
- descriptions become one bullet per non-blank line
"""

from backend.cv_data import (
    to_cv_data, sort_entries_desc, split_description, date_range_label,
    full_name, location_line, professional_title,
)
from backend.document import Node
from backend.errors import TemplateNotFound


# Colour palettes: sidebar bg, sidebar text, accent, body text, muted text
PALETTES = {
    "budapest": {"side_bg": "#2f2f2f", "side_fg": "#fafafa", "accent": "#2f2f2f", "fg": "#333333", "muted": "#777777"},
    "cali": {"side_bg": "#f3efe7", "side_fg": "#3b3b3b", "accent": "#b5835a", "fg": "#333333", "muted": "#8a8a8a"},
    "chicago": {"side_bg": "#1e3a5f", "side_fg": "#f5f7fa", "accent": "#1e3a5f", "fg": "#2b2b2b", "muted": "#6b7280"},
    "riga": {"side_bg": "#eef2f3", "side_fg": "#2d3e40", "accent": "#2d6a73", "fg": "#2d3e40", "muted": "#6b7b7d", "banner": "#2d6a73"},
    "rotterdam": {"side_bg": "#263238", "side_fg": "#eceff1", "accent": "#e07a5f", "fg": "#263238", "muted": "#78909c"},
}


# ============================================================
# SECTION BUILDERS
# ============================================================

def _side_heading(text, p, first=False):
    return Node("subheading", text, color=p["side_fg"], size=15, bold=True,
                rule=p["muted"], gap=6 if first else 8)


def _main_heading(text, p):
    return Node("heading", text, color=p["accent"], size=16, bold=True, uppercase=True,
                rule=p["accent"], gap=8)


def _photo(cv, p):
    if not cv["includePhotoPlaceholder"]:
        return None
    return Node("photo", "FOTO", color=p["muted"], background=p["side_bg"], align="center", gap=16)


def _contact(cv, p):
    personal = cv["personalInfo"]
    lines = [location_line(cv), personal["address"], personal["phone"], personal["email"]]
    lines = [line for line in lines if line]
    if not lines:
        return None
    return Node("block", children=[_side_heading("Kontakt", p, first=True)] + [
        Node("paragraph", line, color=p["side_fg"], size=11) for line in lines
    ], gap=10)


def _links(cv, p):
    personal = cv["personalInfo"]
    links = [(label, personal[key]) for key, label in
             (("linkedin", "LinkedIn"), ("github", "GitHub"), ("website", "Website")) if personal[key]]
    if not links:
        return None
    return Node("block", children=[_side_heading("Links", p)] + [
        Node("paragraph", f"{label}: {url}", color=p["side_fg"], size=11) for label, url in links
    ], gap=10)


def _skills(cv, p, heading="Fähigkeiten", sidebar=True):
    if not cv["skills"]:
        return None
    color = p["side_fg"] if sidebar else p["fg"]
    items = []
    for skill in cv["skills"]:
        children = [Node("muted", skill["level"], color=p["muted"], size=10)] if skill["level"] else []
        items.append(Node("item", skill["name"], children=children, color=color, size=11, bold=True))
    title = _side_heading(heading, p) if sidebar else _main_heading(heading, p)
    return Node("block", children=[title, Node("list", children=items)], gap=10)


def _languages(cv, p, sidebar=True):
    if not cv["languages"]:
        return None
    color = p["side_fg"] if sidebar else p["fg"]
    items = [
        Node("item", f"{lang['name']} – {lang['level']}" if lang["level"] else lang["name"], color=color, size=11)
        for lang in cv["languages"]
    ]
    title = _side_heading("Sprachen", p) if sidebar else _main_heading("Sprachen", p)
    return Node("block", children=[title, Node("list", children=items)], gap=10)


def _summary(cv, p, heading, sidebar=False):
    summary = cv["personalInfo"]["summary"]
    if not summary:
        return None
    if sidebar:
        return Node("block", children=[
            _side_heading(heading, p), Node("paragraph", summary, color=p["side_fg"], size=11)
        ], gap=10)
    return Node("block", children=[
        _main_heading(heading, p), Node("paragraph", summary, color=p["fg"], size=12)
    ], gap=18)


def _bullet_list(description, p):
    bullets = split_description(description)
    if not bullets:
        return None
    return Node("list", children=[Node("item", b, color=p["fg"], size=11) for b in bullets])


def _experience(cv, p):
    if not cv["experience"]:
        return None
    entries = []
    for exp in sort_entries_desc(cv["experience"]):
        entries.append(Node("block", children=[
            Node("paragraph", exp["position"], color=p["fg"], size=12, bold=True),
            Node("paragraph", exp["company"], color=p["muted"], size=11, italic=True),
            Node("muted", date_range_label(exp["startDate"], exp["endDate"], exp["current"]),
                 color=p["muted"], size=10),
            _bullet_list(exp["description"], p),
        ], gap=12))
    return Node("block", children=[_main_heading("Berufserfahrung", p)] + entries, gap=18)


def _education(cv, p):
    if not cv["education"]:
        return None
    entries = []
    for edu in sort_entries_desc(cv["education"]):
        degree = edu["degree"] + (f" – {edu['field']}" if edu["field"] else "")
        entries.append(Node("block", children=[
            Node("paragraph", degree, color=p["fg"], size=12, bold=True),
            Node("paragraph", edu["institution"], color=p["muted"], size=11, italic=True),
            Node("muted", date_range_label(edu["startDate"], edu["endDate"], edu["ongoing"]),
                 color=p["muted"], size=10),
            Node("paragraph", edu["description"], color=p["fg"], size=11) if edu["description"] else None,
        ], gap=12))
    return Node("block", children=[_main_heading("Ausbildung", p)] + entries, gap=18)


def _name(cv, color, size=30, uppercase=True, align=None):
    style = {"color": color, "size": size, "bold": True, "uppercase": uppercase, "gap": 4}
    if align:
        style["align"] = align
    return Node("name", full_name(cv), **style)


def _title(cv, color, align=None):
    title = professional_title(cv)
    if not title:
        return None
    style = {"color": color, "size": 14, "italic": True, "gap": 18}
    if align:
        style["align"] = align
    return Node("title", title, **style)


def _two_columns(left, right, left_width, p, right_bg=None):
    right_style = {"width": 1 - left_width, "padding": 36}
    if right_bg:
        right_style["background"] = right_bg
    return Node("row", children=[
        Node("column", children=left, width=left_width, background=p["side_bg"], padding=22),
        Node("column", children=right, **right_style),
    ])


# ============================================================
# LAYOUTS
# ============================================================

def render_budapest(profile):
    """Dark sidebar with contact, profile, skills and languages; name repeated in the main column."""
    cv = to_cv_data(profile)
    p = PALETTES["budapest"]
    sidebar = [
        _photo(cv, p),
        Node("name", full_name(cv), color=p["side_fg"], size=24, bold=True, gap=16),
        _contact(cv, p),
        _summary(cv, p, "Profil", sidebar=True),
        _skills(cv, p),
        _languages(cv, p),
    ]
    main = [
        _name(cv, p["fg"]),
        _title(cv, p["fg"]),
        _summary(cv, p, "Über Mich"),
        _experience(cv, p),
        _education(cv, p),
    ]
    return Node("page", children=[_two_columns(sidebar, main, 0.25, p)])


def render_cali(profile):
    """Warm light sidebar with the name on the left, summary first on the right."""
    cv = to_cv_data(profile)
    p = PALETTES["cali"]
    left = [
        _photo(cv, p),
        Node("heading", full_name(cv), color=p["accent"], size=22, bold=True, gap=14),
        _contact(cv, p),
        _skills(cv, p),
        _languages(cv, p),
    ]
    right = [
        _summary(cv, p, "Profil"),
        _experience(cv, p),
        _education(cv, p),
    ]
    return Node("page", children=[_two_columns(left, right, 0.35, p)])


def render_chicago(profile):
    """Navy sidebar with contact, links and languages; skills as a main-column section."""
    cv = to_cv_data(profile)
    p = PALETTES["chicago"]
    sidebar = [
        _photo(cv, p),
        _contact(cv, p),
        _links(cv, p),
        _languages(cv, p),
    ]
    main = [
        _name(cv, p["accent"]),
        _title(cv, p["muted"]),
        _summary(cv, p, "Profil"),
        _experience(cv, p),
        _education(cv, p),
        _skills(cv, p, heading="Kompetenzen", sidebar=False),
    ]
    return Node("page", children=[_two_columns(sidebar, main, 0.3, p)])


def render_riga(profile):
    """Full-width banner with name and title above a two-column body."""
    cv = to_cv_data(profile)
    p = PALETTES["riga"]
    banner = Node("block", children=[
        _photo(cv, p),
        _name(cv, "#ffffff", align="center"),
        _title(cv, "#e0f2f1", align="center"),
    ], background=p["banner"], padding=28)
    sidebar = [
        _contact(cv, p),
        _summary(cv, p, "Über mich", sidebar=True),
        _skills(cv, p),
        _languages(cv, p),
    ]
    main = [
        _experience(cv, p),
        _education(cv, p),
    ]
    return Node("page", children=[banner, _two_columns(sidebar, main, 0.33, p)])


def render_rotterdam(profile):
    """Dark left column carrying identity, contact and links; accent headings on the right."""
    cv = to_cv_data(profile)
    p = PALETTES["rotterdam"]
    left = [
        _photo(cv, p),
        Node("heading", full_name(cv), color=p["side_fg"], size=22, bold=True, gap=4),
        _title(cv, p["accent"]),
        _contact(cv, p),
        _links(cv, p),
        _skills(cv, p),
        _languages(cv, p),
    ]
    right = [
        _summary(cv, p, "Über mich"),
        _experience(cv, p),
        _education(cv, p),
    ]
    return Node("page", children=[_two_columns(left, right, 0.34, p)])


LAYOUTS = {
    "budapest": render_budapest,
    "cali": render_cali,
    "chicago": render_chicago,
    "riga": render_riga,
    "rotterdam": render_rotterdam,
}


def render_layout(layout_id, profile):
    """Render profile with the named layout. Raises TemplateNotFound for unknown ids."""
    renderer = LAYOUTS.get(layout_id)
    if renderer is None:
        raise TemplateNotFound(layout_id)
    return renderer(profile)
