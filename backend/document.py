"""
Workblix -- Document Tree
The printable structure produced by the layout components. A tree is
serialised to HTML for in-app preview and painted to a bitmap for PDF export,
so both outputs come from the same nodes.

Style keys understood by both back ends:
    width       column width as a fraction of the row (0..1)
    background  fill colour, "#rrggbb"
    color       text colour, "#rrggbb"
    padding     inner padding in CSS px
    size        font size in CSS px
    bold, italic, uppercase
    align       "left" | "center"
    rule        colour of a line drawn under the node
    gap         space after the node in CSS px
"""

import html


KINDS = {
    "page", "row", "column", "block", "name", "title", "heading",
    "subheading", "paragraph", "muted", "list", "item", "photo",
}

_TAGS = {
    "page": "div", "row": "div", "column": "div", "block": "div",
    "name": "div", "title": "div", "heading": "h2", "subheading": "h3",
    "paragraph": "p", "muted": "div", "list": "ul", "item": "li", "photo": "div",
}


class Node:
    __slots__ = ("kind", "text", "children", "style")

    def __init__(self, kind, text="", children=None, **style):
        if kind not in KINDS:
            raise ValueError(f"Unknown node kind: {kind}")
        self.kind = kind
        self.text = text or ""
        self.children = [c for c in (children or []) if c is not None]
        self.style = style

    def __repr__(self):
        return f"Node({self.kind!r}, text={self.text!r}, children={len(self.children)})"

    def find_all(self, kind):
        """Every descendant (including self) of the given kind, in document order."""
        found = [self] if self.kind == kind else []
        for child in self.children:
            found.extend(child.find_all(kind))
        return found


def iter_text(node):
    """Yield every non-empty text in document order."""
    if node.text:
        yield node.text
    for child in node.children:
        yield from iter_text(child)


def headings(node):
    return [n.text for n in node.find_all("heading") + node.find_all("subheading")]


# ============================================================
# HTML SERIALISER
# ============================================================

def _css(node):
    style = node.style
    rules = []
    if node.kind == "page":
        rules += ["width: 210mm", "min-height: 297mm", "background: #fff", "box-sizing: border-box"]
    if node.kind == "row":
        rules.append("display: flex")
    if "width" in style:
        rules.append(f"width: {style['width'] * 100:g}%")
        rules.append("box-sizing: border-box")
    if "background" in style:
        rules.append(f"background: {style['background']}")
    if "color" in style:
        rules.append(f"color: {style['color']}")
    if "padding" in style:
        rules.append(f"padding: {style['padding']}px")
    if "size" in style:
        rules.append(f"font-size: {style['size']}px")
    if style.get("bold"):
        rules.append("font-weight: bold")
    if style.get("italic"):
        rules.append("font-style: italic")
    if style.get("uppercase"):
        rules.append("text-transform: uppercase")
    if "align" in style:
        rules.append(f"text-align: {style['align']}")
    if "rule" in style:
        rules.append(f"border-bottom: 1px solid {style['rule']}")
    if "gap" in style:
        rules.append(f"margin-bottom: {style['gap']}px")
    return "; ".join(rules)


def _node_html(node, out):
    tag = _TAGS[node.kind]
    css = _css(node)
    attrs = f' class="{node.kind}"'
    if css:
        attrs += f' style="{html.escape(css, quote=True)}"'
    out.append(f"<{tag}{attrs}>")
    if node.text:
        out.append(html.escape(node.text))
    for child in node.children:
        _node_html(child, out)
    out.append(f"</{tag}>")


def to_html_fragment(node):
    out = []
    _node_html(node, out)
    return "".join(out)


def to_html(node, title="Lebenslauf"):
    """Standalone HTML document for a tree."""
    return (
        "<!DOCTYPE html>\n<html lang=\"de\">\n<head>\n<meta charset=\"UTF-8\">\n"
        f"<title>{html.escape(title)}</title>\n"
        "<style>body { margin: 0; font-family: Arial, sans-serif; color: #333; "
        "font-size: 12px; line-height: 1.4; } ul { margin: 4px 0 10px 18px; padding: 0; }</style>\n"
        "</head>\n<body>\n"
        + to_html_fragment(node)
        + "\n</body>\n</html>\n"
    )
