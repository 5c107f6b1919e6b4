import pytest
from markupsafe import Markup

from backend import template_engine
from backend.errors import TemplateSyntaxError


TEMPLATE = (
    "<h1>{{name}}</h1>"
    "<!-- section:jobs --><h2>Jobs</h2>{{jobs}}<!-- /section:jobs -->"
    "<!-- section:links --><a>{{website}}</a><!-- /section:links -->"
)


def test_placeholders_are_replaced_everywhere():
    out = template_engine.render("{{a}} and {{ a }}", {"a": "x"})
    assert out == "x and x"


def test_unknown_placeholder_renders_empty():
    assert template_engine.render("[{{missing}}]", {}) == "[]"


def test_plain_values_are_escaped_markup_is_not():
    out = template_engine.render("{{a}}|{{b}}", {"a": "<b>x</b>", "b": Markup("<b>y</b>")})
    assert out == "&lt;b&gt;x&lt;/b&gt;|<b>y</b>"


def test_empty_section_is_dropped_with_its_heading():
    out = template_engine.render(TEMPLATE, {"name": "Anna", "jobs": "", "website": "w"}, {"links": True})
    assert "Jobs" not in out
    assert "<a>w</a>" in out


def test_blank_scalar_drops_its_section():
    out = template_engine.render("<!-- section:summary --><p>{{summary}}</p><!-- /section:summary -->",
                                 {"summary": "   "})
    assert out == ""


def test_section_flag_overrides_value_check():
    out = template_engine.render(TEMPLATE, {"name": "Anna", "jobs": Markup("<p>x</p>")}, {"jobs": False})
    assert "<p>x</p>" not in out


def test_kept_sections_keep_their_delimiters():
    out = template_engine.render(TEMPLATE, {"jobs": Markup("<p>x</p>")})
    assert "<!-- section:jobs --><h2>Jobs</h2><p>x</p><!-- /section:jobs -->" in out


def test_section_order_does_not_matter():
    swapped = (
        "<!-- section:links -->L<!-- /section:links -->"
        "<!-- section:jobs -->J{{jobs}}<!-- /section:jobs -->"
    )
    out = template_engine.render(swapped, {"jobs": "x"}, {"links": False})
    assert out == "<!-- section:jobs -->Jx<!-- /section:jobs -->"


def test_nested_sections():
    nested = "<!-- section:outer -->[<!-- section:inner -->{{inner}}<!-- /section:inner -->]<!-- /section:outer -->"
    out = template_engine.render(nested, {"inner": ""}, {"outer": True})
    assert out == "<!-- section:outer -->[]<!-- /section:outer -->"


@pytest.mark.parametrize("broken", [
    "<!-- section:a -->never closed",
    "<!-- /section:a -->",
    "<!-- section:a --><!-- section:b --><!-- /section:a --><!-- /section:b -->",
    "{% if %}",
])
def test_malformed_templates_raise(broken):
    with pytest.raises(TemplateSyntaxError):
        template_engine.render(broken, {})


def test_extract_entries_reads_only_the_named_section():
    document = (
        '<!-- section:experience -->'
        '<div data-entry="experience" data-start="2021-01">a</div>'
        '<div data-entry="experience" data-start="2019-05">b</div>'
        '<!-- /section:experience -->'
        '<!-- section:education -->'
        '<div data-entry="education" data-start="2015">c</div>'
        '<!-- /section:education -->'
    )
    assert template_engine.extract_entries(document, "experience") == ["2021-01", "2019-05"]
    assert template_engine.extract_entries(document, "education") == ["2015"]
    assert template_engine.extract_entries(document, "skills") == []


def test_fragment_macros_escape_entry_text():
    out = template_engine.fragments().labels("skills", ["C++ & <Rust>"])
    assert out == '<ul><li data-entry="skills">C++ &amp; &lt;Rust&gt;</li></ul>'
