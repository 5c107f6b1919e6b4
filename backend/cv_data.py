"""
Workblix -- CV Data Mapper
Turns a stored profile row into the template-agnostic CVData shape used by
the template populator, the layout components and the exporters.

Everything here is pure and total: missing or malformed optional values come
out as "" or [], never None.
"""

import re


PRESENT_LABEL = "Heute"
NATIVE_LABEL = "Muttersprache"

_PERSONAL_FIELDS = {
    # CVData key: profile column
    "firstName": "first_name",
    "lastName": "last_name",
    "email": "email",
    "phone": "phone",
    "address": "address",
    "city": "city",
    "postalCode": "postal_code",
    "country": "country",
    "linkedin": "linkedin",
    "github": "github",
    "website": "website",
    "summary": "summary",
    "professionalTitle": "professional_title",
}

_ISO_DATE_RE = re.compile(r'^(\d{4})(?:-(\d{1,2}))?(?:-(\d{1,2}))?(?:[T\s].*)?$')
_MONTH_FIRST_RE = re.compile(r'^(\d{1,2})[./](\d{4})$')


# ============================================================
# SCALAR HELPERS
# ============================================================

def _text(value):
    """Coerce anything to a stripped string; None becomes ''."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return ""
    return str(value).strip()


def _flag(value):
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _list(value):
    return value if isinstance(value, list) else []


# ============================================================
# DATES
# ============================================================

def parse_date_key(value):
    """
    Parse a CV date into a sortable (year, month, day) tuple.

    Accepts YYYY, YYYY-MM, YYYY-MM-DD (optionally with a time part),
    MM/YYYY and MM.YYYY. Returns None for anything else.
    """
    text = _text(value)
    if not text:
        return None

    m = _ISO_DATE_RE.match(text)
    if m:
        year = int(m.group(1))
        month = int(m.group(2) or 1)
        day = int(m.group(3) or 1)
    else:
        m = _MONTH_FIRST_RE.match(text)
        if not m:
            return None
        month, year, day = int(m.group(1)), int(m.group(2)), 1

    if not 1 <= month <= 12 or not 1 <= day <= 31:
        return None
    return (year, month, day)


def format_month_year(value):
    """Format a date as MM/YYYY. Unparsable values are returned unchanged."""
    text = _text(value)
    key = parse_date_key(text)
    if key is None:
        return text
    return f"{key[1]:02d}/{key[0]}"


def sort_entries_desc(entries):
    """
    Sort experience/education entries by startDate, newest first.

    Stable: entries with equal dates keep their input order. Entries whose
    startDate is missing or unparsable go last, also in input order.
    """
    dated = []
    undated = []
    for entry in entries:
        key = parse_date_key(entry.get("startDate"))
        if key is None:
            undated.append(entry)
        else:
            dated.append((key, entry))
    dated.sort(key=lambda pair: pair[0], reverse=True)
    # list.sort(reverse=True) keeps equal keys in original order
    return [entry for _, entry in dated] + undated


def split_description(text):
    """One bullet per non-blank line, trimmed."""
    return [line.strip() for line in _text(text).split("\n") if line.strip()]


def date_range_label(start, end, ongoing=False, formatter=None):
    """'start – Heute' for ongoing entries, 'start – end' or just 'start' otherwise."""
    fmt = formatter or _text
    start_text = fmt(start)
    if ongoing:
        return f"{start_text} – {PRESENT_LABEL}" if start_text else PRESENT_LABEL
    end_text = fmt(end)
    if start_text and end_text:
        return f"{start_text} – {end_text}"
    return start_text or end_text


# ============================================================
# ENTRY NORMALISERS
# ============================================================

def normalize_experience(entry):
    if not isinstance(entry, dict):
        return None
    current = _flag(entry.get("current"))
    description = entry.get("description")
    # The generation endpoint also accepts a responsibilities list
    responsibilities = [_text(r) for r in _list(entry.get("responsibilities")) if _text(r)]
    if responsibilities:
        description = "\n".join([_text(description)] + responsibilities)
    return {
        "company": _text(entry.get("company")),
        "position": _text(entry.get("position")),
        "startDate": _text(entry.get("startDate") or entry.get("start_date")),
        "endDate": "" if current else _text(entry.get("endDate") or entry.get("end_date")),
        "current": current,
        "description": _text(description),
    }


def normalize_education(entry):
    if not isinstance(entry, dict):
        return None
    ongoing = _flag(entry.get("ongoing"))
    return {
        "institution": _text(entry.get("institution")),
        "degree": _text(entry.get("degree")),
        "field": _text(entry.get("field")),
        "startDate": _text(entry.get("startDate") or entry.get("start_date")),
        "endDate": "" if ongoing else _text(entry.get("endDate") or entry.get("end_date")),
        "ongoing": ongoing,
        "description": _text(entry.get("description")),
    }


def normalize_skill(entry):
    if isinstance(entry, str):
        return {"name": entry.strip(), "level": ""} if entry.strip() else None
    if not isinstance(entry, dict) or not _text(entry.get("name")):
        return None
    return {"name": _text(entry.get("name")), "level": _text(entry.get("level"))}


def normalize_language(entry):
    if isinstance(entry, str):
        return {"name": entry.strip(), "level": "", "native": False} if entry.strip() else None
    if not isinstance(entry, dict):
        return None
    name = _text(entry.get("name") or entry.get("language"))
    if not name:
        return None
    native = _flag(entry.get("native"))
    level = NATIVE_LABEL if native else _text(entry.get("level"))
    return {"name": name, "level": level, "native": native}


def _normalize_all(items, normalizer):
    out = []
    for item in _list(items):
        normalized = normalizer(item)
        if normalized is not None:
            out.append(normalized)
    return out


# ============================================================
# PUBLIC API
# ============================================================

def to_cv_data(profile):
    """
    Map a profile (stored row or CVData-shaped dict) to CVData.

    Never raises for dict input; a non-dict is treated as an empty profile.
    """
    if not isinstance(profile, dict):
        profile = {}

    personal_source = profile.get("personalInfo")
    personal = {}
    for key, column in _PERSONAL_FIELDS.items():
        if isinstance(personal_source, dict):
            value = personal_source.get(key)
        else:
            value = profile.get(column)
        personal[key] = _text(value)

    # Top-level summary on the generation payload
    if not personal["summary"]:
        personal["summary"] = _text(profile.get("summary"))

    return {
        "personalInfo": personal,
        "experience": _normalize_all(profile.get("experience"), normalize_experience),
        "education": _normalize_all(profile.get("education"), normalize_education),
        "skills": _normalize_all(profile.get("skills"), normalize_skill),
        "languages": _normalize_all(profile.get("languages"), normalize_language),
        "includePhotoPlaceholder": _flag(profile.get("include_photo_placeholder")
                                         or profile.get("includePhotoPlaceholder")),
    }


def full_name(cv_data):
    personal = cv_data.get("personalInfo", {})
    return " ".join(p for p in (personal.get("firstName", ""), personal.get("lastName", "")) if p)


def location_line(cv_data):
    personal = cv_data.get("personalInfo", {})
    return ", ".join(p for p in (personal.get("city", ""), personal.get("country", "")) if p)


def professional_title(cv_data):
    """The explicit title, else the position of the most recent experience."""
    title = cv_data.get("personalInfo", {}).get("professionalTitle", "")
    if title:
        return title
    experience = sort_entries_desc(cv_data.get("experience", []))
    return experience[0]["position"] if experience else ""
