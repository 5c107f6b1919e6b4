import pytest

from backend.cv_data import (
    parse_date_key, format_month_year, sort_entries_desc, split_description,
    date_range_label, normalize_language, normalize_skill, to_cv_data,
    full_name, location_line, professional_title,
)


@pytest.mark.parametrize("value, expected", [
    ("2021", (2021, 1, 1)),
    ("2021-03", (2021, 3, 1)),
    ("2021-03-15", (2021, 3, 15)),
    ("2021-03-15T10:00:00Z", (2021, 3, 15)),
    ("03/2021", (2021, 3, 1)),
    ("3.2021", (2021, 3, 1)),
    ("2021-13", None),
    ("last spring", None),
    ("", None),
    (None, None),
])
def test_parse_date_key(value, expected):
    assert parse_date_key(value) == expected


def test_format_month_year():
    assert format_month_year("2020-03") == "03/2020"
    assert format_month_year("2019") == "01/2019"
    assert format_month_year("sometime") == "sometime"
    assert format_month_year(None) == ""


def test_sort_entries_desc_is_stable_and_puts_undated_last():
    entries = [
        {"id": "a", "startDate": "2018-01"},
        {"id": "b", "startDate": ""},
        {"id": "c", "startDate": "2021-05"},
        {"id": "d", "startDate": "2018-01"},
        {"id": "e", "startDate": "irgendwann"},
    ]
    assert [e["id"] for e in sort_entries_desc(entries)] == ["c", "a", "d", "b", "e"]


def test_split_description_drops_blank_lines():
    assert split_description("  Led team \n\n Shipped product\n") == ["Led team", "Shipped product"]
    assert split_description(None) == []


def test_date_range_label():
    assert date_range_label("2020", "", ongoing=True) == "2020 – Heute"
    assert date_range_label("2018", "2020") == "2018 – 2020"
    assert date_range_label("2018", "") == "2018"
    assert date_range_label("2020-03", "2021-01", formatter=format_month_year) == "03/2020 – 01/2021"


def test_native_language_level():
    assert normalize_language({"name": "Deutsch", "level": "C2", "native": True})["level"] == "Muttersprache"
    assert normalize_language({"language": "Englisch", "level": "B2"})["name"] == "Englisch"
    assert normalize_language({"level": "B2"}) is None


def test_skill_accepts_plain_strings():
    assert normalize_skill("SQL") == {"name": "SQL", "level": ""}
    assert normalize_skill("   ") is None


def test_to_cv_data_from_stored_row(anna_profile):
    cv = to_cv_data(anna_profile)
    assert cv["personalInfo"]["firstName"] == "Anna"
    assert cv["personalInfo"]["city"] == "Zürich"
    assert cv["personalInfo"]["linkedin"] == ""
    assert cv["experience"][0]["endDate"] == ""
    assert cv["experience"][0]["current"] is True
    assert cv["skills"][1] == {"name": "SQL", "level": ""}
    assert cv["languages"][0]["level"] == "Muttersprache"


def test_to_cv_data_is_total():
    for garbage in (None, {}, {"experience": "nope", "skills": 5, "personalInfo": None}, "text"):
        cv = to_cv_data(garbage)
        assert cv["experience"] == []
        assert cv["skills"] == []
        assert all(value == "" for value in cv["personalInfo"].values())


def test_current_entry_drops_end_date():
    cv = to_cv_data({"experience": [{"position": "Dev", "startDate": "2020", "endDate": "2022", "current": "true"}]})
    assert cv["experience"][0]["endDate"] == ""


def test_to_cv_data_from_generation_payload():
    payload = {
        "personalInfo": {"firstName": "Lea", "lastName": "Keller", "professionalTitle": None},
        "summary": "Kurzprofil",
        "experience": [{"position": "Analyst", "startDate": "2019",
                        "responsibilities": ["Reporting", ""]}],
    }
    cv = to_cv_data(payload)
    assert cv["personalInfo"]["summary"] == "Kurzprofil"
    assert cv["personalInfo"]["professionalTitle"] == ""
    assert split_description(cv["experience"][0]["description"]) == ["Reporting"]


def test_name_location_and_title_helpers(anna_profile):
    cv = to_cv_data(anna_profile)
    assert full_name(cv) == "Anna Muster"
    assert location_line(cv) == "Zürich"
    assert professional_title(cv) == "Senior Developer"
    cv["personalInfo"]["professionalTitle"] = "Tech Lead"
    assert professional_title(cv) == "Tech Lead"
