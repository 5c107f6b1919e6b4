"""
Workblix -- Document Rasterizer
Paints a document tree onto a Pillow bitmap at `scale` times CSS-pixel
resolution. The bitmap is what the PDF exporter embeds, so the PDF looks
exactly like the preview and contains no selectable text.

Layout is a simple block flow: nodes stack vertically, rows place their
columns side by side, and text wraps greedily on word boundaries.
"""

from functools import lru_cache

from PIL import Image, ImageDraw, ImageFont


# A4 at 96 dpi
PAGE_WIDTH_PX = 794
PAGE_HEIGHT_PX = 1123

LINE_HEIGHT = 1.4
BULLET_INDENT = 14
PHOTO_SIZE = 120

_DEFAULT_SIZES = {
    "name": 28, "title": 14, "heading": 16, "subheading": 14,
    "paragraph": 12, "muted": 10, "item": 11, "photo": 11,
}
_DEFAULT_GAPS = {"paragraph": 2, "muted": 4, "item": 3, "list": 6}

_FONT_FILES = {
    (False, False): ("DejaVuSans.ttf", "Arial.ttf", "LiberationSans-Regular.ttf"),
    (True, False): ("DejaVuSans-Bold.ttf", "Arial Bold.ttf", "LiberationSans-Bold.ttf"),
    (False, True): ("DejaVuSans-Oblique.ttf", "Arial Italic.ttf", "LiberationSans-Italic.ttf"),
    (True, True): ("DejaVuSans-BoldOblique.ttf", "Arial Bold Italic.ttf", "LiberationSans-BoldItalic.ttf"),
}


@lru_cache(maxsize=128)
def _font(size, bold=False, italic=False):
    """Best available TrueType font at `size` pixels, else Pillow's built-in font."""
    for filename in _FONT_FILES[(bold, italic)]:
        try:
            return ImageFont.truetype(filename, size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


def _wrap(text, font, max_width):
    """Greedy word wrap; words wider than the line are broken by character."""
    lines = []
    for paragraph in text.split("\n"):
        current = ""
        for word in paragraph.split():
            candidate = f"{current} {word}" if current else word
            if font.getlength(candidate) <= max_width:
                current = candidate
                continue
            if current:
                lines.append(current)
            current = ""
            # Hard-break overlong tokens (URLs, e-mail addresses)
            while font.getlength(word) > max_width and len(word) > 1:
                cut = len(word) - 1
                while cut > 1 and font.getlength(word[:cut]) > max_width:
                    cut -= 1
                lines.append(word[:cut])
                word = word[cut:]
            current = word
        lines.append(current)
    return lines


class _Painter:
    """Measures (draw=None) or paints (draw=ImageDraw) a tree in CSS pixels."""

    def __init__(self, scale, draw=None):
        self.scale = scale
        self.draw = draw

    def _s(self, value):
        return int(round(value * self.scale))

    def _rect(self, x, y, w, h, fill=None, outline=None):
        if self.draw is None or h <= 0 or w <= 0:
            return
        self.draw.rectangle(
            [self._s(x), self._s(y), self._s(x + w) - 1, self._s(y + h) - 1],
            fill=fill, outline=outline, width=max(1, self._s(2)) if outline else 0,
        )

    # ---- dispatch ----

    def layout(self, node, x, y, width, min_height=0):
        """Lay out node at (x, y); return the height it occupies including its gap."""
        kind = node.kind
        if kind in ("page", "column", "block", "list"):
            height = self._container(node, x, y, width, min_height)
        elif kind == "row":
            height = self._row(node, x, y, width, min_height)
        elif kind == "photo":
            height = self._photo(node, x, y, width)
        else:
            height = self._text(node, x, y, width)
        return height + node.style.get("gap", _DEFAULT_GAPS.get(kind, 0))

    def _stack(self, children, x, y, width, last_min_height=0):
        offset = 0
        for i, child in enumerate(children):
            extra = 0
            if i == len(children) - 1 and last_min_height:
                extra = max(0, last_min_height - offset)
            offset += self.layout(child, x, y + offset, width, extra)
        return offset

    def _measure(self, node, width):
        return _Painter(self.scale).layout(node, 0, 0, width) - node.style.get(
            "gap", _DEFAULT_GAPS.get(node.kind, 0))

    def _container(self, node, x, y, width, min_height):
        pad = node.style.get("padding", 0)
        inner = max(1, width - 2 * pad)
        # The page's last child (typically a row of columns) stretches to the page bottom
        last_min = PAGE_HEIGHT_PX - 2 * pad if node.kind == "page" else 0
        content = _Painter(self.scale)._stack(node.children, 0, 0, inner, last_min)
        height = max(content + 2 * pad, min_height)
        if self.draw is not None:
            if "background" in node.style:
                self._rect(x, y, width, height, fill=node.style["background"])
            self._stack(node.children, x + pad, y + pad, inner, last_min)
        return height

    def _row(self, node, x, y, width, min_height):
        columns = node.children
        widths = [c.style.get("width", 1.0 / len(columns)) * width for c in columns] if columns else []
        height = max([self._measure(c, w) for c, w in zip(columns, widths)] + [min_height])
        if self.draw is not None:
            cx = x
            for column, w in zip(columns, widths):
                self.layout(column, cx, y, w, height)
                cx += w
        return height

    def _photo(self, node, x, y, width):
        left = x + max(0, (width - PHOTO_SIZE) / 2)
        if self.draw is not None:
            self._rect(left, y, PHOTO_SIZE, PHOTO_SIZE, fill=node.style.get("background"),
                       outline=node.style.get("color", "#888888"))
            font = _font(self._s(_DEFAULT_SIZES["photo"]))
            label_w = font.getlength(node.text) / self.scale
            self.draw.text((self._s(left + (PHOTO_SIZE - label_w) / 2), self._s(y + PHOTO_SIZE / 2 - 6)),
                           node.text, font=font, fill=node.style.get("color", "#888888"))
        return PHOTO_SIZE

    def _text(self, node, x, y, width):
        style = node.style
        size = style.get("size", _DEFAULT_SIZES.get(node.kind, 12))
        font = _font(self._s(size), bool(style.get("bold")), bool(style.get("italic")))
        text = node.text.upper() if style.get("uppercase") else node.text
        indent = BULLET_INDENT if node.kind == "item" else 0
        text_width = max(1, width - indent)

        lines = _wrap(text, font, self._s(text_width)) if text else []
        line_h = size * LINE_HEIGHT
        height = line_h * len(lines)
        color = style.get("color", "#333333")

        if self.draw is not None:
            if node.kind == "item" and lines:
                self.draw.text((self._s(x + 3), self._s(y)), "•", font=font, fill=color)
            for i, line in enumerate(lines):
                line_x = x + indent
                if style.get("align") == "center":
                    line_x = x + (width - font.getlength(line) / self.scale) / 2
                self.draw.text((self._s(line_x), self._s(y + i * line_h)), line, font=font, fill=color)

        if "rule" in style:
            if self.draw is not None:
                rule_y = self._s(y + height + 2)
                self.draw.line([self._s(x), rule_y, self._s(x + width), rule_y],
                               fill=style["rule"], width=max(1, self._s(1)))
            height += 6

        if node.children:
            height += self._stack(node.children, x + indent, y + height, text_width)
        return height


def measure(document, width=PAGE_WIDTH_PX, scale=1):
    """Content height of a tree in CSS pixels, wrapped as it would be at `scale`."""
    return _Painter(scale).layout(document, 0, 0, width)


def rasterize(document, scale=2):
    """
    Paint the tree onto a new RGB image.

    Args:
        document: root Node (usually kind "page")
        scale: pixel density multiplier (2 = twice CSS resolution)

    Returns:
        PIL.Image.Image: caller owns it and must close() it
    """
    if scale <= 0:
        raise ValueError("scale must be positive")
    height = max(PAGE_HEIGHT_PX, measure(document, scale=scale))
    image = Image.new("RGB", (int(round(PAGE_WIDTH_PX * scale)), int(round(height * scale))), "#ffffff")
    try:
        _Painter(scale, ImageDraw.Draw(image)).layout(document, 0, 0, PAGE_WIDTH_PX)
    except Exception:
        image.close()
        raise
    return image
