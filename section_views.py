from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from io import BytesIO
from typing import Any, Mapping, Optional, Sequence, Tuple, Union

from PIL import Image, ImageColor, ImageDraw, ImageFont

from deck_models import BOM_CATEGORIES, CostEstimate, PlanContent, PlanData

logger = logging.getLogger(__name__)

RGB = Tuple[int, int, int]
FontT = Union[ImageFont.FreeTypeFont, ImageFont.ImageFont]

# Logical (unscaled) card width; captures are `width * scale` pixels wide.
BASE_WIDTH_PX = 760
DEFAULT_SCALE = 2
DEFAULT_BACKGROUND = "#f3f4f6"

_WHITE: RGB = (255, 255, 255)
_SLATE_800: RGB = (30, 41, 59)
_SLATE_700: RGB = (51, 65, 85)
_GRAY_500: RGB = (107, 114, 128)
_GRAY_200: RGB = (229, 231, 235)
_GRAY_50: RGB = (249, 250, 251)
_BLUE_600: RGB = (37, 99, 235)
_BLUE_50: RGB = (239, 246, 255)
_GREEN_800: RGB = (22, 101, 52)
_AMBER_50: RGB = (255, 251, 235)
_AMBER_800: RGB = (146, 64, 14)
_EMERALD_800: RGB = (6, 95, 70)


class SectionCaptureError(RuntimeError):
    pass


class RenderMode(str, Enum):
    # Honour the on-screen controls (filters, accordion, collapsed breakdown).
    INTERACTIVE = "interactive"
    # Everything visible; used for document export.
    EXPANDED = "expanded"


class SectionId(str, Enum):
    MATERIALS = "materials"
    TOOLS = "tools"
    STEPS = "steps"
    COSTS = "costs"
    DISCLAIMERS = "disclaimers"


SECTION_TITLES = {
    SectionId.MATERIALS: "Output 1: Bill of Materials",
    SectionId.TOOLS: "Output 2: Tool Requirements",
    SectionId.STEPS: "Output 3: Execution Plan",
    SectionId.COSTS: "Output 4: Real-Time Cost Estimation",
    SectionId.DISCLAIMERS: "Methodology & Legal Disclaimers",
}

GENERAL_BOM_NOTES: Tuple[str, ...] = (
    "Approx. 10% wastage included in quantities.",
    "Ensure all cut ends of pressure treated lumber are sealed with end-grain preservative.",
    "Fasteners should be hot-dipped galvanized or stainless steel.",
)

METHODOLOGY_TEXT = (
    "DeckMaster AI combines a generative planning model with real-time search grounding. "
    "Pricing is retrieved from retail inventories of major US retailers and local lumber specialists "
    "near the provided Zip Code. Plans follow IBC (International Building Code) best practices "
    "but may require local engineer verification."
)

LEGAL_DISCLAIMERS: Tuple[Tuple[str, str], ...] = (
    (
        "Not a Structural Permit",
        "This document is for planning purposes only. All structures must be reviewed by a licensed "
        "structural engineer and approved by local building inspectors.",
    ),
    (
        "Pricing Fluctuations",
        "Material costs are estimates based on search data and can change daily. Local sales taxes are not included.",
    ),
    (
        "Labor Estimates",
        "Labor costs are regional averages and do not represent a binding quote from a contractor.",
    ),
    (
        "Safety",
        "Always follow OSHA guidelines and manufacturer instructions when handling tools and materials.",
    ),
)


@dataclass(frozen=True)
class SectionViewState:
    """On-screen control state; ignored in `RenderMode.EXPANDED`."""

    bom_category: Optional[str] = None
    open_step: Optional[int] = 1
    show_cost_breakdown: bool = False


@dataclass(frozen=True)
class RasterCapture:
    image: Image.Image

    @property
    def width_px(self) -> int:
        return int(self.image.width)

    @property
    def height_px(self) -> int:
        return int(self.image.height)


@dataclass(frozen=True)
class SectionRegion:
    section_id: SectionId
    title: str
    content: PlanContent


def region_for(content: PlanContent, section_id: Union[SectionId, str]) -> Optional[SectionRegion]:
    """
    Locate a section in the current content; `None` when it is not displayed.
    """
    try:
        sid = SectionId(section_id)
    except ValueError:
        return None
    if sid in (SectionId.MATERIALS, SectionId.TOOLS, SectionId.STEPS) and content.plan is None:
        return None
    if sid == SectionId.COSTS and content.cost is None:
        return None
    return SectionRegion(section_id=sid, title=SECTION_TITLES[sid], content=content)


def capture_section(
    content: PlanContent,
    section_id: Union[SectionId, str],
    *,
    mode: RenderMode = RenderMode.EXPANDED,
    view_state: Optional[SectionViewState] = None,
    scale: int = DEFAULT_SCALE,
    background: str = DEFAULT_BACKGROUND,
    width_px: int = BASE_WIDTH_PX,
) -> Optional[RasterCapture]:
    """
    Rasterize one section card.

    Returns None when the section is not present in `content`. Asset decoding problems
    raise `SectionCaptureError`.
    """
    region = region_for(content, section_id)
    if region is None:
        return None
    if not isinstance(scale, int) or scale < 1:
        raise SectionCaptureError(f"scale must be a positive int (got {scale!r})")

    state = SectionViewState() if mode == RenderMode.EXPANDED else (view_state or SectionViewState())
    expanded = mode == RenderMode.EXPANDED
    try:
        bg = ImageColor.getrgb(background)[:3]
    except ValueError as e:
        raise SectionCaptureError(f"invalid background color: {background!r}") from e

    blocks = _section_blocks(region, state=state, expanded=expanded)
    img = _render_card(blocks, width=width_px * scale, scale=scale, background=bg)
    logger.debug("captured section %s (%s): %dx%d px", region.section_id.value, mode.value, img.width, img.height)
    return RasterCapture(image=img)


def capture_png_bytes(
    content: PlanContent,
    section_id: Union[SectionId, str],
    *,
    mode: RenderMode = RenderMode.INTERACTIVE,
    view_state: Optional[SectionViewState] = None,
    scale: int = 1,
) -> Optional[bytes]:
    """PNG of a section card for on-screen previews."""
    capture = capture_section(content, section_id, mode=mode, view_state=view_state, scale=scale)
    if capture is None:
        return None
    buf = BytesIO()
    capture.image.save(buf, format="PNG", optimize=True)
    return buf.getvalue()


def decode_image_asset(value: Any) -> Image.Image:
    """
    Decode PNG/JPEG bytes or a `data:image/...;base64,` URL into an RGB image.
    """
    raw: bytes
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    elif isinstance(value, str) and value.startswith("data:"):
        _, _, payload = value.partition(",")
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise SectionCaptureError("image data URL is not valid base64") from e
    else:
        raise SectionCaptureError(f"unsupported image asset ({type(value).__name__})")
    try:
        img = Image.open(BytesIO(raw))
        img.load()
    except (OSError, ValueError) as e:
        raise SectionCaptureError(f"could not decode image asset: {e}") from e
    return img.convert("RGB")


# region blocks


@dataclass(frozen=True)
class _Header:
    title: str

    def measure(self, width: int, scale: int) -> int:
        return 48 * scale

    def draw(self, d: ImageDraw.ImageDraw, img: Image.Image, x: int, y: int, width: int, scale: int) -> None:
        d.rectangle([x, y, x + width - 1, y + 48 * scale - 1], fill=_SLATE_800)
        font = _font(18 * scale, bold=True)
        d.text((x + 16 * scale, y + 13 * scale), self.title, font=font, fill=_WHITE)


@dataclass(frozen=True)
class _Text:
    text: str
    size: int = 13
    bold: bool = False
    color: RGB = _SLATE_700
    indent: int = 0
    fill: Optional[RGB] = None
    pad_y: int = 6

    def _lines(self, width: int, scale: int) -> list[str]:
        font = _font(self.size * scale, bold=self.bold)
        return _wrap(self.text, font, width - (32 + self.indent) * scale)

    def measure(self, width: int, scale: int) -> int:
        lines = self._lines(width, scale)
        return len(lines) * _line_height(self.size * scale) + 2 * self.pad_y * scale

    def draw(self, d: ImageDraw.ImageDraw, img: Image.Image, x: int, y: int, width: int, scale: int) -> None:
        h = self.measure(width, scale)
        if self.fill is not None:
            d.rectangle([x, y, x + width - 1, y + h - 1], fill=self.fill)
        font = _font(self.size * scale, bold=self.bold)
        ty = y + self.pad_y * scale
        for line in self._lines(width, scale):
            d.text((x + (16 + self.indent) * scale, ty), line, font=font, fill=self.color)
            ty += _line_height(self.size * scale)


@dataclass(frozen=True)
class _Row:
    # (text, fraction of width, color)
    cells: Tuple[Tuple[str, float, RGB], ...]
    size: int = 12
    bold: bool = False
    fill: Optional[RGB] = None

    def _wrapped(self, width: int, scale: int) -> list[list[str]]:
        font = _font(self.size * scale, bold=self.bold)
        inner = width - 32 * scale
        return [_wrap(text, font, max(1, int(inner * frac) - 8 * scale)) for text, frac, _ in self.cells]

    def measure(self, width: int, scale: int) -> int:
        rows = max((len(c) for c in self._wrapped(width, scale)), default=1)
        return rows * _line_height(self.size * scale) + 14 * scale

    def draw(self, d: ImageDraw.ImageDraw, img: Image.Image, x: int, y: int, width: int, scale: int) -> None:
        h = self.measure(width, scale)
        if self.fill is not None:
            d.rectangle([x, y, x + width - 1, y + h - 1], fill=self.fill)
        d.line([(x, y + h - 1), (x + width - 1, y + h - 1)], fill=_GRAY_200, width=max(1, scale))
        font = _font(self.size * scale, bold=self.bold)
        inner = width - 32 * scale
        cx = x + 16 * scale
        for (_, frac, color), lines in zip(self.cells, self._wrapped(width, scale)):
            ty = y + 7 * scale
            for line in lines:
                d.text((cx, ty), line, font=font, fill=color)
                ty += _line_height(self.size * scale)
            cx += int(inner * frac)


@dataclass(frozen=True)
class _Tiles:
    # (label, value, color)
    tiles: Tuple[Tuple[str, str, RGB], ...]

    def measure(self, width: int, scale: int) -> int:
        return 84 * scale

    def draw(self, d: ImageDraw.ImageDraw, img: Image.Image, x: int, y: int, width: int, scale: int) -> None:
        n = max(1, len(self.tiles))
        gap = 12 * scale
        inner = width - 32 * scale
        tile_w = int((inner - gap * (n - 1)) / n)
        tx = x + 16 * scale
        label_font = _font(11 * scale, bold=True)
        value_font = _font(20 * scale, bold=True)
        for label, value, color in self.tiles:
            d.rounded_rectangle(
                [tx, y + 8 * scale, tx + tile_w, y + 76 * scale],
                radius=8 * scale,
                fill=_GRAY_50,
                outline=_GRAY_200,
                width=max(1, scale),
            )
            d.text((tx + 12 * scale, y + 18 * scale), label.upper(), font=label_font, fill=_GRAY_500)
            d.text((tx + 12 * scale, y + 40 * scale), _truncate(value, value_font, tile_w - 24 * scale), font=value_font, fill=color)
            tx += tile_w + gap


@dataclass(frozen=True)
class _Picture:
    image: Image.Image
    max_width: int = 480

    def _size(self, width: int, scale: int) -> Tuple[int, int]:
        target_w = min(width - 32 * scale, self.max_width * scale)
        ratio = target_w / max(1, self.image.width)
        return (max(1, int(target_w)), max(1, int(self.image.height * ratio)))

    def measure(self, width: int, scale: int) -> int:
        return self._size(width, scale)[1] + 16 * scale

    def draw(self, d: ImageDraw.ImageDraw, img: Image.Image, x: int, y: int, width: int, scale: int) -> None:
        w, h = self._size(width, scale)
        px = x + 16 * scale
        py = y + 8 * scale
        img.paste(self.image.resize((w, h)), (px, py))
        d.rectangle([px, py, px + w - 1, py + h - 1], outline=_GRAY_200, width=max(1, scale))


@dataclass(frozen=True)
class _Spacer:
    height: int

    def measure(self, width: int, scale: int) -> int:
        return self.height * scale

    def draw(self, d: ImageDraw.ImageDraw, img: Image.Image, x: int, y: int, width: int, scale: int) -> None:
        return None


_Block = Union[_Header, _Text, _Row, _Tiles, _Picture, _Spacer]


# endregion blocks


def _section_blocks(region: SectionRegion, *, state: SectionViewState, expanded: bool) -> list[_Block]:
    blocks: list[_Block] = [_Header(region.title)]
    content = region.content
    if region.section_id == SectionId.MATERIALS:
        blocks.extend(_materials_blocks(content.plan, state=state, expanded=expanded))
    elif region.section_id == SectionId.TOOLS:
        blocks.extend(_tools_blocks(content.plan))
    elif region.section_id == SectionId.STEPS:
        blocks.extend(_steps_blocks(content.plan, content.step_images, state=state, expanded=expanded))
    elif region.section_id == SectionId.COSTS:
        blocks.extend(_costs_blocks(content.cost, content.specs.zip_code, state=state, expanded=expanded))
    else:
        blocks.extend(_disclaimer_blocks())
    blocks.append(_Spacer(8))
    return blocks


def _materials_blocks(plan: PlanData, *, state: SectionViewState, expanded: bool) -> list[_Block]:
    items = list(plan.bom)
    category = None if expanded else state.bom_category
    if category:
        shown = [i for i in items if i.category == category]
    else:
        shown = items

    out: list[_Block] = []
    if category:
        out.append(_Text(f"Showing {category}: {len(shown)} of {len(items)} items", size=11, color=_BLUE_600, fill=_BLUE_50))
    out.append(
        _Row(
            cells=(
                ("CATEGORY", 0.18, _GRAY_500),
                ("ITEM", 0.34, _GRAY_500),
                ("QTY", 0.13, _GRAY_500),
                ("SPECIFIC NOTES", 0.35, _GRAY_500),
            ),
            size=11,
            bold=True,
            fill=_GRAY_50,
        )
    )
    if not shown:
        out.append(_Text("No materials listed.", color=_GRAY_500))
    for item in _sorted_bom(shown):
        out.append(
            _Row(
                cells=(
                    (item.category, 0.18, _GRAY_500),
                    (item.item, 0.34, _SLATE_800),
                    (item.quantity, 0.13, _BLUE_600),
                    (item.notes, 0.35, _GRAY_500),
                )
            )
        )
    out.append(_Text("GENERAL NOTES", size=11, bold=True, color=_AMBER_800, fill=_AMBER_50, pad_y=8))
    for note in GENERAL_BOM_NOTES:
        out.append(_Text(f"- {note}", size=11, color=_AMBER_800, fill=_AMBER_50, indent=8, pad_y=2))
    out.append(_Spacer(4))
    return out


def _sorted_bom(items: Sequence[Any]) -> list[Any]:
    order = {c: i for i, c in enumerate(BOM_CATEGORIES)}
    # Stable: keeps model order within a category.
    return sorted(items, key=lambda i: order.get(i.category, len(order)))


def _tools_blocks(plan: PlanData) -> list[_Block]:
    out: list[_Block] = []
    if not plan.tools:
        out.append(_Text("No tools listed.", color=_GRAY_500))
    for cat in plan.tools:
        out.append(_Spacer(6))
        out.append(_Text(cat.category, size=14, bold=True, color=_SLATE_700, fill=_GRAY_50))
        for tool in cat.tools:
            line = f"{tool.name}: {tool.description}" if tool.description else tool.name
            out.append(_Text(f"- {line}", size=12, color=_SLATE_700, indent=8, pad_y=3))
    return out


def _steps_blocks(
    plan: PlanData,
    step_images: Mapping[int, Any],
    *,
    state: SectionViewState,
    expanded: bool,
) -> list[_Block]:
    steps = plan.steps
    if not steps:
        return [_Text("No execution steps generated.", color=_GRAY_500, pad_y=24)]

    out: list[_Block] = []
    for step in steps:
        is_open = expanded or state.open_step == step.step_number
        out.append(
            _Row(
                cells=(
                    (str(step.step_number), 0.08, _BLUE_600 if is_open else _GRAY_500),
                    (step.title, 0.70, _SLATE_800),
                    (step.time_estimate, 0.22, _GREEN_800),
                ),
                size=14,
                bold=True,
                fill=_BLUE_50 if is_open else _WHITE,
            )
        )
        if not is_open:
            continue
        out.append(_Text(f"STEP {step.step_number} | {step.time_estimate}", size=11, bold=True, color=_BLUE_600, indent=40))
        out.append(_Text(step.description, size=13, color=_SLATE_700, indent=40))
        asset = step_images.get(step.step_number)
        if asset is not None:
            out.append(_Picture(decode_image_asset(asset)))
    return out


def _costs_blocks(cost: CostEstimate, zip_code: str, *, state: SectionViewState, expanded: bool) -> list[_Block]:
    out: list[_Block] = [
        _Text(f"Local pricing near {zip_code}", size=11, color=_GRAY_500),
        _Tiles(
            tiles=(
                ("Materials", cost.material_total, _EMERALD_800),
                ("Est. Pro Labor", cost.labor_total, _BLUE_600),
                ("Permit Fees", cost.permit_fees, _SLATE_700),
                ("Contingency", cost.contingency, _AMBER_800),
            )
        ),
    ]

    if expanded or state.show_cost_breakdown:
        out.append(
            _Row(
                cells=(
                    ("ITEM", 0.46, _GRAY_500),
                    ("QTY", 0.14, _GRAY_500),
                    ("UNIT PRICE", 0.20, _GRAY_500),
                    ("TOTAL", 0.20, _GRAY_500),
                ),
                size=11,
                bold=True,
                fill=_GRAY_50,
            )
        )
        for li in cost.breakdown:
            out.append(
                _Row(
                    cells=(
                        (li.item, 0.46, _SLATE_800),
                        (li.quantity, 0.14, _SLATE_700),
                        (li.unit_price, 0.20, _SLATE_700),
                        (li.total_price, 0.20, _EMERALD_800),
                    )
                )
            )
        if not cost.breakdown:
            out.append(_Text("No itemized breakdown was returned.", color=_GRAY_500))
    else:
        out.append(_Text(f"Itemized breakdown hidden ({len(cost.breakdown)} items).", size=11, color=_GRAY_500))

    if cost.sources:
        out.append(_Spacer(6))
        out.append(_Text("PRICING SOURCES & LOCAL SUPPLIERS", size=11, bold=True, color=_SLATE_700, fill=_GRAY_50))
        for src in cost.sources:
            out.append(_Text(f"- {src.title} ({src.uri})", size=11, color=_BLUE_600, indent=8, pad_y=2))
    return out


def _disclaimer_blocks() -> list[_Block]:
    out: list[_Block] = [
        _Text("METHODOLOGY & INTELLIGENCE", size=12, bold=True, color=_SLATE_800, pad_y=10),
        _Text(METHODOLOGY_TEXT, size=12, color=_GRAY_500),
        _Text("LEGAL DISCLAIMERS", size=12, bold=True, color=_SLATE_800, pad_y=10),
    ]
    for label, text in LEGAL_DISCLAIMERS:
        out.append(_Text(f"- {label}: {text}", size=11, color=_GRAY_500, indent=8, pad_y=3))
    out.append(_Text("All technical drawings AI-generated.", size=10, color=_GRAY_500, pad_y=10))
    return out


def _render_card(blocks: Sequence[_Block], *, width: int, scale: int, background: RGB) -> Image.Image:
    pad = 12 * scale
    card_w = width - 2 * pad
    heights = [b.measure(card_w, scale) for b in blocks]
    total_h = sum(heights) + 2 * pad

    img = Image.new("RGB", (width, total_h), background)
    d = ImageDraw.Draw(img)
    d.rectangle([pad, pad, pad + card_w - 1, total_h - pad - 1], fill=_WHITE, outline=_GRAY_200, width=max(1, scale))
    y = pad
    for block, h in zip(blocks, heights):
        block.draw(d, img, pad, y, card_w, scale)
        y += h
    return img


@lru_cache(maxsize=64)
def _font(size_px: int, *, bold: bool = False) -> FontT:
    name = "DejaVuSans-Bold.ttf" if bold else "DejaVuSans.ttf"
    try:
        return ImageFont.truetype(name, size_px)
    except OSError:
        return ImageFont.load_default(size=size_px)


def _line_height(size_px: int) -> int:
    return int(round(size_px * 1.4))


def _wrap(text: str, font: FontT, max_width: float) -> list[str]:
    """
    Greedy word wrap; words longer than a line are broken by character.
    """
    lines: list[str] = []
    for para in (text or "").splitlines() or [""]:
        words = para.split()
        if not words:
            lines.append("")
            continue
        cur = ""
        for word in words:
            cand = f"{cur} {word}" if cur else word
            if font.getlength(cand) <= max_width:
                cur = cand
                continue
            if cur:
                lines.append(cur)
            while font.getlength(word) > max_width and len(word) > 1:
                cut = len(word) - 1
                while cut > 1 and font.getlength(word[:cut]) > max_width:
                    cut -= 1
                lines.append(word[:cut])
                word = word[cut:]
            cur = word
        lines.append(cur)
    return lines


def _truncate(text: str, font: FontT, max_width: float) -> str:
    t = (text or "").strip() or "-"
    if font.getlength(t) <= max_width:
        return t
    ell = "..."
    while t and font.getlength(t + ell) > max_width:
        t = t[:-1]
    return (t.rstrip() + ell) if t else ell
