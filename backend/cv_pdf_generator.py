"""
Workblix -- CV PDF Exporter
Rasterizes a rendered CV layout and embeds it as one full-page image in an
fpdf2 document. Free-plan exports get a small watermark at the bottom.

Export is all-or-nothing: any failure surfaces as a single RenderFailure and
no partial PDF is returned or written.
"""

import os
import tempfile
from dataclasses import dataclass

from fpdf import FPDF

from backend.cv_layouts import render_layout
from backend.cv_rasterizer import rasterize
from backend.errors import RenderFailure, ValidationFailure
from backend.logger import get_logger


logger = get_logger("pdf")

# 1 CSS pixel at 96 dpi, in millimetres
PX_TO_MM = 0.264583

PAGE_SIZES_MM = {
    "a4": (210.0, 297.0),
    "letter": (215.9, 279.4),
}
ORIENTATIONS = ("portrait", "landscape")

WATERMARK_TEXT = "Erstellt mit Workblix Free - Upgrade auf Pro für wasserzeichenfreie PDFs"

# Raster size is (794 x page height) * scale, so scale is bounded
MIN_SCALE = 1
MAX_SCALE = 4


@dataclass
class ExportOptions:
    filename: str = "CV.pdf"
    page_format: str = "a4"
    orientation: str = "portrait"
    scale: float = 2
    watermark: bool = False
    plan: str = "free"


def check_scale(scale):
    """Raise ValidationFailure unless MIN_SCALE <= scale <= MAX_SCALE."""
    if isinstance(scale, bool) or not isinstance(scale, (int, float)) or not MIN_SCALE <= scale <= MAX_SCALE:
        raise ValidationFailure(f"Scale must be between {MIN_SCALE} and {MAX_SCALE}")


def needs_watermark(options):
    """Watermark when explicitly requested or whenever the plan is free."""
    return bool(options.watermark) or options.plan == "free"


def page_dimensions(page_format, orientation):
    """(width, height) of the page in mm."""
    if page_format not in PAGE_SIZES_MM:
        raise ValidationFailure(f"Unsupported page format: {page_format}")
    if orientation not in ORIENTATIONS:
        raise ValidationFailure(f"Unsupported orientation: {orientation}")
    width, height = PAGE_SIZES_MM[page_format]
    if orientation == "landscape":
        return height, width
    return width, height


def fit_image(img_width_px, img_height_px, page_width, page_height):
    """
    Uniformly scale an image to fit the page and centre it.

    Returns:
        (x, y, width, height) in mm
    """
    width_mm = img_width_px * PX_TO_MM
    height_mm = img_height_px * PX_TO_MM
    ratio = min(page_width / width_mm, page_height / height_mm)
    scaled_width = width_mm * ratio
    scaled_height = height_mm * ratio
    return (
        (page_width - scaled_width) / 2,
        (page_height - scaled_height) / 2,
        scaled_width,
        scaled_height,
    )


def export_pdf(document, options=None):
    """
    Export a document tree to PDF bytes.

    Args:
        document: root Node from backend.cv_layouts
        options: ExportOptions

    Returns:
        bytes: PDF file content

    Raises:
        ValidationFailure: bad page format or orientation
        RenderFailure: rasterization or encoding failed
    """
    options = options or ExportOptions()
    page_width, page_height = page_dimensions(options.page_format, options.orientation)
    check_scale(options.scale)

    image = None
    try:
        image = rasterize(document, options.scale)

        pdf = FPDF(orientation=options.orientation, unit="mm", format=options.page_format)
        pdf.set_auto_page_break(auto=False)
        pdf.set_margins(0, 0, 0)
        pdf.add_page()

        x, y, width, height = fit_image(image.width, image.height, page_width, page_height)
        pdf.image(image, x=x, y=y, w=width, h=height)

        if needs_watermark(options):
            pdf.set_font('Helvetica', '', 8)
            pdf.set_text_color(120, 120, 120)
            pdf.text(10, page_height - 5, WATERMARK_TEXT)

        return bytes(pdf.output())
    except Exception as e:
        logger.error("Error generating PDF %s: %s", options.filename, e)
        raise RenderFailure("Failed to generate PDF. Please try again.") from e
    finally:
        if image is not None:
            image.close()


def generate_cv_pdf(profile, layout_id, options=None):
    """Render profile with layout_id and export it. Raises TemplateNotFound for unknown layouts."""
    return export_pdf(render_layout(layout_id, profile), options)


def save_pdf(pdf_bytes, path):
    """Write atomically: the target path only ever holds a complete file."""
    directory = os.path.dirname(os.path.abspath(path))
    fd, tmp_path = tempfile.mkstemp(suffix=".pdf.tmp", dir=directory)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(pdf_bytes)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
    return path
