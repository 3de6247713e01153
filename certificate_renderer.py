import io
import logging
import re
from pathlib import Path

from pypdf import PdfReader, PdfWriter
from reportlab.lib.colors import Color
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas

from errors import RenderError
from models import Certificate
from repositories import FieldSpec, TemplateLayout

logger = logging.getLogger(__name__)

PUBLIC_PREFIX = "/generated"
IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg")

_BASE14_FONTS = {
    "Courier",
    "Courier-Bold",
    "Courier-Oblique",
    "Courier-BoldOblique",
    "Helvetica",
    "Helvetica-Bold",
    "Helvetica-Oblique",
    "Helvetica-BoldOblique",
    "Times-Roman",
    "Times-Bold",
    "Times-Italic",
    "Times-BoldItalic",
    "Symbol",
    "ZapfDingbats",
}


def _normalize_font_name(name: str) -> str:
    return "".join(ch for ch in name.lower() if ch.isalnum())


def _font_is_available(font_name: str) -> bool:
    if font_name in _BASE14_FONTS:
        return True
    try:
        pdfmetrics.getFont(font_name)
        return True
    except Exception:
        return False


def resolve_font_name(font_name: str, fallback_font: str = "Helvetica") -> str:
    if _font_is_available(font_name):
        return font_name

    # Case/spacing-insensitive match against registered fonts.
    normalized = _normalize_font_name(font_name)
    for candidate in list(pdfmetrics.getRegisteredFontNames()) + sorted(_BASE14_FONTS):
        if _normalize_font_name(candidate) == normalized and _font_is_available(candidate):
            return candidate

    logger.warning("Font '%s' is unavailable. Falling back to '%s'.", font_name, fallback_font)
    return fallback_font if _font_is_available(fallback_font) else "Helvetica"


def register_fonts_from_directory(fonts_dir: Path) -> dict[str, str]:
    """Register every .ttf/.otf in *fonts_dir* under its file stem."""
    font_map: dict[str, str] = {}
    if not fonts_dir.exists():
        return font_map

    for font_file in sorted([*fonts_dir.glob("*.ttf"), *fonts_dir.glob("*.otf")]):
        try:
            pdfmetrics.registerFont(TTFont(font_file.stem, str(font_file)))
            font_map[font_file.stem] = str(font_file)
            logger.debug("Registered font: %s", font_file.stem)
        except Exception as exc:  # reportlab raises bare TTFError/ValueError variants
            logger.warning("Failed to register %s: %s", font_file.name, exc)
    return font_map


def fit_font_size(font_name: str, text: str, size: float, max_width: float | None) -> float:
    if not max_width or max_width <= 0:
        return size
    text_width = pdfmetrics.stringWidth(text, font_name, size)
    if text_width <= max_width or text_width == 0:
        return size
    return max(6.0, size * (max_width / text_width))


def parse_css_color(value: str | None, fallback: tuple[float, float, float]) -> tuple[float, float, float]:
    if not isinstance(value, str):
        return fallback
    s = value.strip().lower()
    named = {
        "black": (0.0, 0.0, 0.0),
        "white": (1.0, 1.0, 1.0),
        "red": (1.0, 0.0, 0.0),
        "green": (0.0, 0.5, 0.0),
        "blue": (0.0, 0.0, 1.0),
        "gray": (0.5, 0.5, 0.5),
        "grey": (0.5, 0.5, 0.5),
    }
    if s in named:
        return named[s]
    if s.startswith("#"):
        hexv = s[1:]
        if len(hexv) == 3:
            hexv = "".join(ch * 2 for ch in hexv)
        if len(hexv) == 6 and all(ch in "0123456789abcdef" for ch in hexv):
            return (
                int(hexv[0:2], 16) / 255.0,
                int(hexv[2:4], 16) / 255.0,
                int(hexv[4:6], 16) / 255.0,
            )
    m = re.match(r"rgb\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*\)", s)
    if m:
        return tuple(max(0, min(255, int(g))) / 255.0 for g in m.groups())  # type: ignore[return-value]
    return fallback


def short_certificate_id(certificate_id: str) -> str:
    return certificate_id[:8].upper()


def field_value(spec: FieldSpec, certificate: Certificate, public_base_url: str) -> str:
    if spec.field_type == "certificate_id":
        return short_certificate_id(certificate.id)
    if spec.field_type == "verification_link":
        return f"{public_base_url.rstrip('/')}/verify/{certificate.verification_code}"
    if spec.is_static:
        return spec.default_value or ""

    custom = certificate.custom_data or {}
    value = custom.get(spec.field_type)
    if not value and spec.field_type in ("student_name", "course_name", "completion_date"):
        value = getattr(certificate, spec.field_type)
    return str(value or spec.default_value or "")


def resolve_generated_path(output_dir: Path, public_path: str) -> Path:
    """Map a ``/generated/<name>`` public path back to the file on disk."""
    return output_dir / Path(public_path.replace("\\", "/")).name


class CertificateRenderer:
    """Draw a certificate's field values over its template background."""

    def __init__(self, output_dir: Path, fonts_dir: Path | None = None, public_base_url: str = ""):
        self.output_dir = output_dir
        self.public_base_url = public_base_url
        self.registered_fonts = register_fonts_from_directory(fonts_dir) if fonts_dir else {}
        if self.registered_fonts:
            logger.info("Registered %d custom font(s)", len(self.registered_fonts))

    def render(self, certificate: Certificate, template: TemplateLayout) -> str:
        """Write ``certificate_<id>.pdf`` and return its public path."""
        background = Path(template.template_image_path)
        if not background.exists():
            raise RenderError(f"Template background not found: {background.name}")

        self.output_dir.mkdir(parents=True, exist_ok=True)
        filename = f"certificate_{certificate.id}.pdf"
        output_path = self.output_dir / filename

        suffix = background.suffix.lower()
        if suffix == ".pdf":
            self._render_on_pdf(background, certificate, template, output_path)
        elif suffix in IMAGE_SUFFIXES:
            self._render_on_image(background, certificate, template, output_path)
        else:
            raise RenderError(f"Unsupported template background format: {suffix or background.name}")

        logger.debug("Rendered %s", output_path)
        return f"{PUBLIC_PREFIX}/{filename}"

    def _render_on_image(
        self, background: Path, certificate: Certificate, template: TemplateLayout, output_path: Path
    ) -> None:
        image = ImageReader(str(background))
        img_w, img_h = image.getSize()
        page_w = float(template.canvas_width or img_w)
        page_h = float(template.canvas_height or img_h)

        c = canvas.Canvas(str(output_path), pagesize=(page_w, page_h))
        c.drawImage(image, 0, 0, width=page_w, height=page_h)
        self._draw_fields(c, certificate, template, page_w, page_h, scale=1.0)
        c.showPage()
        c.save()

    def _render_on_pdf(
        self, background: Path, certificate: Certificate, template: TemplateLayout, output_path: Path
    ) -> None:
        reader = PdfReader(str(background))
        if not reader.pages:
            raise RenderError(f"Template PDF has no pages: {background.name}")
        page = reader.pages[0]
        page_w = float(page.mediabox.width)
        page_h = float(page.mediabox.height)
        # Field positions are in canvas units; map them onto the page.
        scale = page_w / template.canvas_width if template.canvas_width else 1.0

        packet = io.BytesIO()
        c = canvas.Canvas(packet, pagesize=(page_w, page_h))
        self._draw_fields(c, certificate, template, page_w, page_h, scale=scale)
        c.showPage()
        c.save()
        packet.seek(0)

        page.merge_page(PdfReader(packet).pages[0])
        writer = PdfWriter()
        writer.add_page(page)
        with output_path.open("wb") as f:
            writer.write(f)

    def _draw_fields(
        self,
        c: canvas.Canvas,
        certificate: Certificate,
        template: TemplateLayout,
        page_w: float,
        page_h: float,
        scale: float,
    ) -> None:
        for spec in template.fields:
            text = field_value(spec, certificate, self.public_base_url)
            if not text:
                continue

            x = spec.position_x * scale
            # Canvas coordinates grow downwards, PDF coordinates upwards.
            y = page_h - spec.position_y * scale
            align = (spec.text_align or "left").lower()
            if align == "center":
                available = 2 * min(x, page_w - x)
            elif align == "right":
                available = x
            else:
                available = page_w - x

            font_name = resolve_font_name(spec.font_family or "Helvetica")
            size = fit_font_size(font_name, text, spec.font_size * scale, available)
            c.setFillColor(Color(*parse_css_color(spec.font_color, (0.0, 0.0, 0.0))))
            c.setFont(font_name, size)
            if align == "center":
                c.drawCentredString(x, y, text)
            elif align == "right":
                c.drawRightString(x, y, text)
            else:
                c.drawString(x, y, text)
