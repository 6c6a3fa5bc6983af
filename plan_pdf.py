from __future__ import annotations

import base64
import binascii
import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from io import BytesIO
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import httpx
from PIL import Image, ImageFont
from reportlab.lib import colors
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFError, TTFont
from reportlab.pdfgen import canvas

from deck_models import DeckSpecs, PlanContent
from section_paginator import PageGeometry, SectionPage, paginate_section
from section_views import (
    DEFAULT_BACKGROUND,
    DEFAULT_SCALE,
    SECTION_TITLES,
    RenderMode,
    SectionId,
    capture_section,
)

logger = logging.getLogger(__name__)

PDF_FILENAME_PREFIX = "DeckMaster_Plan"
DOCUMENT_TITLE = "DeckMaster Construction Document"
DOCUMENT_SUBTITLE = "Architectural Plan, Bill of Materials & Cost Report"
GENERATED_BY = "Generated by DeckMaster AI Planner. For planning purposes only."

SECTION_ORDER: Tuple[SectionId, ...] = (
    SectionId.MATERIALS,
    SectionId.TOOLS,
    SectionId.STEPS,
    SectionId.COSTS,
    SectionId.DISCLAIMERS,
)

# Neutral chrome colours (slate-800 text, gray-100 bands, gray-300 rules).
_CHROME_TEXT = colors.Color(30 / 255.0, 41 / 255.0, 59 / 255.0)
_CHROME_BAND = colors.Color(243 / 255.0, 244 / 255.0, 246 / 255.0)
_CHROME_RULE = colors.Color(209 / 255.0, 213 / 255.0, 219 / 255.0)


class DocumentExportError(RuntimeError):
    pass


class ExportInProgressError(DocumentExportError):
    pass


@dataclass(frozen=True)
class CoverPage:
    specs: DeckSpecs
    hero_image: Optional[Image.Image] = None
    generated_at: Optional[datetime] = None


PageContent = Union[CoverPage, SectionPage]


@dataclass(frozen=True)
class SectionPlacement:
    section_id: SectionId
    title: str
    page_count: int


@dataclass(frozen=True)
class PageChrome:
    project_name: str
    timestamp: str
    page_number: int
    page_count: int

    @property
    def footer_text(self) -> str:
        return f"Page {self.page_number} of {self.page_count}"


@dataclass(frozen=True)
class FinalPage:
    content: PageContent
    chrome: Optional[PageChrome] = None


@dataclass(frozen=True)
class DocumentLayout:
    pages: Tuple[PageContent, ...]
    placements: Tuple[SectionPlacement, ...]


@dataclass(frozen=True)
class PlanPdfArtifact:
    filename: str
    pdf_bytes: bytes
    placements: Tuple[SectionPlacement, ...]
    page_count: int


def plan_pdf_filename(project_name: str) -> str:
    """
    `DeckMaster_Plan_<name>.pdf`, with every whitespace run collapsed to `_`.

    Path separators and other characters filesystems reject count as whitespace, so the
    name is always a single path component.
    """
    name = re.sub(r"[\\/:*?\"<>|\x00-\x1f]+", " ", project_name or "")
    name = re.sub(r"\s+", "_", name.strip()).strip("._")
    return f"{PDF_FILENAME_PREFIX}_{name or 'Untitled'}.pdf"


def load_hero_image(
    url: Optional[str],
    *,
    timeout_s: float = 15.0,
    client: Optional[httpx.Client] = None,
) -> Optional[Image.Image]:
    """
    Load the cover image from a `data:` URL or an http(s) URL.

    Never raises: any failure is logged and the cover is rendered without an image.
    """
    u = (url or "").strip()
    if not u:
        return None
    try:
        if u.startswith("data:"):
            _, _, payload = u.partition(",")
            raw = base64.b64decode(payload, validate=True)
        elif u.startswith(("http://", "https://")):
            raw = _download_bytes(u, timeout_s=timeout_s, client=client)
        else:
            logger.warning("hero image skipped: unsupported URL scheme (%s)", u[:40])
            return None
        img = Image.open(BytesIO(raw))
        img.load()
        return img.convert("RGB")
    except (httpx.HTTPError, httpx.InvalidURL, binascii.Error, OSError, ValueError) as exc:
        logger.warning("hero image could not be loaded, continuing without it: %s", exc)
        return None


def _download_bytes(url: str, *, timeout_s: float, client: Optional[httpx.Client]) -> bytes:
    if client is not None:
        resp = client.get(url, follow_redirects=True)
    else:
        with httpx.Client(timeout=timeout_s, follow_redirects=True) as c:
            resp = c.get(url)
    resp.raise_for_status()
    return resp.content


def layout_document(
    content: PlanContent,
    *,
    geometry: PageGeometry,
    hero_image: Optional[Image.Image] = None,
    generated_at: Optional[datetime] = None,
    scale: int = DEFAULT_SCALE,
    background: str = DEFAULT_BACKGROUND,
    sections: Sequence[SectionId] = SECTION_ORDER,
) -> DocumentLayout:
    """
    First pass: content-only page descriptors (cover + every section page).

    Sections missing from `content` are skipped. Captures run one at a time, each in
    `RenderMode.EXPANDED`.
    """
    pages: List[PageContent] = [CoverPage(specs=content.specs, hero_image=hero_image, generated_at=generated_at)]
    placements: List[SectionPlacement] = []
    for sid in sections:
        capture = capture_section(content, sid, mode=RenderMode.EXPANDED, scale=scale, background=background)
        if capture is None:
            logger.debug("section %s not present; skipped", sid.value)
            continue
        title = SECTION_TITLES[sid]
        section_pages = paginate_section(capture, section_id=sid.value, title=title, geometry=geometry)
        if not section_pages:
            logger.debug("section %s captured empty; skipped", sid.value)
            continue
        pages.extend(section_pages)
        placements.append(SectionPlacement(section_id=sid, title=title, page_count=len(section_pages)))
    return DocumentLayout(pages=tuple(pages), placements=tuple(placements))


def finalize_pages(
    pages: Sequence[PageContent],
    *,
    project_name: str,
    generated_at: datetime,
) -> List[FinalPage]:
    """
    Second pass: attach header/footer chrome now that the total page count is known.
    """
    total = len(pages)
    timestamp = generated_at.strftime("%Y-%m-%d %H:%M")
    out: List[FinalPage] = []
    for idx, page in enumerate(pages, start=1):
        if isinstance(page, CoverPage):
            out.append(FinalPage(content=page))
            continue
        out.append(
            FinalPage(
                content=page,
                chrome=PageChrome(project_name=project_name, timestamp=timestamp, page_number=idx, page_count=total),
            )
        )
    return out


def render_pdf_bytes(pages: Sequence[FinalPage], *, geometry: PageGeometry) -> bytes:
    buf = BytesIO()
    page_size = (geometry.page_width_mm * mm, geometry.page_height_mm * mm)
    c = canvas.Canvas(buf, pagesize=page_size)
    # Uncompressed so tests can find page text in the bytes.
    c.setPageCompression(0)
    c.setTitle(DOCUMENT_TITLE)
    for page in pages:
        if isinstance(page.content, CoverPage):
            _draw_cover_page(c, page.content, geometry=geometry)
        else:
            _draw_section_page(c, page.content, geometry=geometry)
        if page.chrome is not None:
            draw_page_chrome(c, page.chrome, geometry=geometry)
        c.showPage()
    c.save()
    return buf.getvalue()


def draw_page_chrome(c: canvas.Canvas, chrome: PageChrome, *, geometry: PageGeometry) -> None:
    """
    Header/footer decoration for a non-cover page.

    Bands are painted first so stray content never collides with the text, which makes
    repeated calls produce the same result.
    """
    w = geometry.page_width_mm * mm
    h = geometry.page_height_mm * mm
    x0 = geometry.margin_mm * mm
    x1 = w - geometry.margin_mm * mm
    top_band = geometry.top_reserved_mm * mm
    bottom_band = geometry.bottom_reserved_mm * mm

    c.saveState()
    c.setFillColor(_CHROME_BAND)
    c.rect(0, h - top_band, w, top_band, stroke=0, fill=1)
    c.rect(0, 0, w, bottom_band, stroke=0, fill=1)

    header_y = h - top_band * 0.55
    c.setFillColor(_CHROME_TEXT)
    stamp_w = c.stringWidth(chrome.timestamp, "Helvetica", 8)
    _draw_truncated(c, x0, header_y, chrome.project_name, max_width=(x1 - x0) - stamp_w - 6 * mm, size=9, bold=True)
    c.setFont("Helvetica", 8)
    c.drawRightString(x1, header_y, chrome.timestamp)

    c.setStrokeColor(_CHROME_RULE)
    c.setLineWidth(0.5)
    _hline(c, x0, x1, h - top_band * 0.75)
    _hline(c, x0, x1, bottom_band * 0.75)

    c.setFont("Helvetica", 8)
    c.drawCentredString(w / 2.0, bottom_band * 0.4, chrome.footer_text)
    c.restoreState()


def _draw_section_page(c: canvas.Canvas, page: SectionPage, *, geometry: PageGeometry) -> None:
    h = geometry.page_height_mm * mm
    x0 = geometry.margin_mm * mm
    if page.title:
        c.setFillColor(_CHROME_TEXT)
        title_y = h - (geometry.top_reserved_mm + geometry.title_reserved_mm * 0.65) * mm
        _draw_truncated(c, x0, title_y, page.title, max_width=geometry.usable_width_mm * mm, size=14, bold=True)
    img_h = page.slice_height_mm * mm
    img_y = h - page.content_top_mm * mm - img_h
    c.drawImage(
        ImageReader(page.image),
        x0,
        img_y,
        width=geometry.usable_width_mm * mm,
        height=img_h,
    )


def _draw_cover_page(c: canvas.Canvas, cover: CoverPage, *, geometry: PageGeometry) -> None:
    w = geometry.page_width_mm * mm
    h = geometry.page_height_mm * mm
    margin = max(geometry.margin_mm, 15.0) * mm
    x0 = margin
    usable_w = w - 2 * margin
    specs = cover.specs

    # Title band
    band_h = 42 * mm
    c.setFillColor(_CHROME_TEXT)
    c.rect(0, h - band_h, w, band_h, stroke=0, fill=1)
    c.setFillColor(colors.white)
    c.setFont("Helvetica-Bold", 22)
    c.drawString(x0, h - 20 * mm, DOCUMENT_TITLE)
    c.setFont("Helvetica", 11)
    c.drawString(x0, h - 30 * mm, DOCUMENT_SUBTITLE)

    y = h - band_h - 14 * mm
    c.setFillColor(_CHROME_TEXT)
    _draw_truncated(c, x0, y, specs.project_name, max_width=usable_w, size=18, bold=True)
    y -= 10 * mm

    fields = (
        ("Deck Type", specs.deck_type.value),
        ("Material", specs.material.value),
        ("Dimensions", specs.dimensions_label),
        ("Zip Code", specs.zip_code),
        ("Address", specs.address or "-"),
        ("Primary Use", specs.function),
        ("Environment", specs.environment),
        ("Future Expansion", specs.expansion),
        ("Railing Match", "Yes" if specs.railing_match else "No"),
    )
    label_w = 38 * mm
    for label, value in fields:
        c.setFont("Helvetica-Bold", 10)
        c.drawString(x0, y, label.upper())
        _draw_truncated(c, x0 + label_w, y, value, max_width=usable_w - label_w, size=10)
        y -= 6.5 * mm

    if cover.hero_image is not None:
        img_top = y - 6 * mm
        img_bottom = 30 * mm
        if img_top > img_bottom:
            c.drawImage(
                ImageReader(cover.hero_image),
                x0,
                img_bottom,
                width=usable_w,
                height=img_top - img_bottom,
                preserveAspectRatio=True,
                anchor="n",
            )

    c.setFont("Helvetica", 8)
    c.setFillColor(colors.grey)
    notice = GENERATED_BY
    if cover.generated_at is not None:
        notice = f"{notice} {cover.generated_at.strftime('%Y-%m-%d %H:%M')}"
    c.drawString(x0, 15 * mm, notice)
    c.setFillColor(colors.black)


def make_plan_pdf(
    content: PlanContent,
    *,
    hero_image_url: Optional[str] = None,
    geometry: Optional[PageGeometry] = None,
    generated_at: Optional[datetime] = None,
    scale: int = DEFAULT_SCALE,
    background: str = DEFAULT_BACKGROUND,
    hero_image_timeout_s: float = 15.0,
    http_client: Optional[httpx.Client] = None,
) -> PlanPdfArtifact:
    """
    Full export run: validate geometry, cover, sections, chrome, PDF bytes.

    Any failure raises `DocumentExportError`; nothing is returned for a failed run.
    """
    try:
        geo = (geometry or PageGeometry()).validate()
        when = generated_at or datetime.now()
        hero = load_hero_image(hero_image_url, timeout_s=hero_image_timeout_s, client=http_client)
        layout = layout_document(
            content,
            geometry=geo,
            hero_image=hero,
            generated_at=when,
            scale=scale,
            background=background,
        )
        final = finalize_pages(layout.pages, project_name=content.specs.project_name, generated_at=when)
        pdf = render_pdf_bytes(final, geometry=geo)
    except DocumentExportError:
        raise
    except Exception as exc:
        logger.exception("PDF export failed for %r", content.specs.project_name)
        raise DocumentExportError(f"Failed to generate PDF: {exc}") from exc

    logger.info(
        "exported %s: %d pages (%s)",
        content.specs.project_name,
        len(final),
        ", ".join(f"{p.section_id.value}={p.page_count}" for p in layout.placements),
    )
    return PlanPdfArtifact(
        filename=plan_pdf_filename(content.specs.project_name),
        pdf_bytes=pdf,
        placements=layout.placements,
        page_count=len(final),
    )


class PlanExporter:
    """
    Runs exports one at a time; a second call while one is running is rejected.
    """

    def __init__(
        self,
        *,
        geometry: Optional[PageGeometry] = None,
        scale: int = DEFAULT_SCALE,
        background: str = DEFAULT_BACKGROUND,
        hero_image_timeout_s: float = 15.0,
    ) -> None:
        self._geometry = geometry
        self._scale = scale
        self._background = background
        self._hero_image_timeout_s = hero_image_timeout_s
        self._lock = threading.Lock()
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def export(
        self,
        content: PlanContent,
        *,
        hero_image_url: Optional[str] = None,
        generated_at: Optional[datetime] = None,
    ) -> PlanPdfArtifact:
        with self._lock:
            if self._in_flight:
                raise ExportInProgressError("A PDF export is already running.")
            self._in_flight = True
        try:
            return make_plan_pdf(
                content,
                hero_image_url=hero_image_url,
                geometry=self._geometry,
                generated_at=generated_at,
                scale=self._scale,
                background=self._background,
                hero_image_timeout_s=self._hero_image_timeout_s,
            )
        finally:
            with self._lock:
                self._in_flight = False


def save_plan_pdf(artifact: PlanPdfArtifact, out_dir: Path) -> Path:
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / Path(artifact.filename).name
    path.write_bytes(artifact.pdf_bytes)
    return path


def _hline(c: canvas.Canvas, x1: float, x2: float, y: float) -> None:
    c.line(x1, y, x2, y)


@lru_cache(maxsize=1)
def _unicode_fonts() -> Tuple[str, str]:
    """
    (regular, bold) embedded font names for text outside the built-in fonts' encoding.

    Uses the DejaVu faces the section renderer draws with; falls back to Helvetica
    when they are not installed.
    """
    try:
        regular = ImageFont.truetype("DejaVuSans.ttf", 10).path
        bold = ImageFont.truetype("DejaVuSans-Bold.ttf", 10).path
        pdfmetrics.registerFont(TTFont("DejaVuSans", regular))
        pdfmetrics.registerFont(TTFont("DejaVuSans-Bold", bold))
    except (OSError, TTFError) as exc:
        logger.warning("DejaVu fonts unavailable, non-Latin text may not render: %s", exc)
        return "Helvetica", "Helvetica-Bold"
    return "DejaVuSans", "DejaVuSans-Bold"


def _font_for(text: str, *, bold: bool = False) -> str:
    # Built-in Type 1 fonts cover WinAnsi (cp1252) only.
    try:
        text.encode("cp1252")
    except UnicodeEncodeError:
        regular, heavy = _unicode_fonts()
        return heavy if bold else regular
    return "Helvetica-Bold" if bold else "Helvetica"


def _draw_truncated(
    c: canvas.Canvas,
    x: float,
    y: float,
    text: str,
    *,
    max_width: float,
    size: float,
    bold: bool = False,
) -> None:
    """
    Draw text truncated with ellipsis so it stays inside a box.
    """
    t = (text or "").strip()
    if not t:
        return
    if max_width <= 0:
        return
    c.setFont(_font_for(t, bold=bold), size)
    if c.stringWidth(t) <= max_width:
        c.drawString(x, y, t)
        return
    # ASCII ellipsis for compatibility with ReportLab's built-in fonts.
    ell = "..."
    lo = 0
    hi = len(t)
    best = ""
    while lo <= hi:
        mid = (lo + hi) // 2
        cand = (t[:mid].rstrip() + ell) if mid < len(t) else t
        if c.stringWidth(cand) <= max_width:
            best = cand
            lo = mid + 1
        else:
            hi = mid - 1
    if best:
        c.drawString(x, y, best)
