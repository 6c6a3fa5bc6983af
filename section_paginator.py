from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from PIL import Image

from section_views import RasterCapture

# Slices thinner than this are float residue, not content.
_EPSILON_MM = 1e-6


class PageGeometryError(ValueError):
    pass


class SlicePolicy(str, Enum):
    # Every page of a section carries at most the first-page usable height.
    UNIFORM = "uniform"
    # Continuation pages use their own (taller) usable height.
    TIGHT = "tight"


@dataclass(frozen=True)
class PageGeometry:
    """
    Page geometry for one export, in millimeters (A4 portrait by default).

    The vertical layout of a section page, top to bottom:
    - `top_reserved_mm`: header band (drawn later by the decorator)
    - `title_reserved_mm`: section title, first page of a section only
    - content slice
    - `bottom_reserved_mm`: footer band
    """

    page_width_mm: float = 210.0
    page_height_mm: float = 297.0
    margin_mm: float = 10.0
    top_reserved_mm: float = 20.0
    title_reserved_mm: float = 12.0
    bottom_reserved_mm: float = 15.0
    slice_policy: SlicePolicy = SlicePolicy.UNIFORM

    @property
    def usable_width_mm(self) -> float:
        return self.page_width_mm - 2 * self.margin_mm

    def content_top_mm(self, *, first_page: bool) -> float:
        """Distance from the top edge of the page to the content origin."""
        if first_page:
            return self.top_reserved_mm + self.title_reserved_mm
        return self.top_reserved_mm

    def usable_height_mm(self, *, first_page: bool) -> float:
        if self.slice_policy == SlicePolicy.UNIFORM:
            first_page = True
        return self.page_height_mm - self.content_top_mm(first_page=first_page) - self.bottom_reserved_mm

    def validate(self) -> "PageGeometry":
        for name in ("page_width_mm", "page_height_mm"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
                raise PageGeometryError(f"{name} must be a positive number (got {value!r})")
        for name in ("margin_mm", "top_reserved_mm", "title_reserved_mm", "bottom_reserved_mm"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value) or value < 0:
                raise PageGeometryError(f"{name} must be >= 0 (got {value!r})")
        if not isinstance(self.slice_policy, SlicePolicy):
            raise PageGeometryError(f"slice_policy must be a SlicePolicy (got {self.slice_policy!r})")
        if self.usable_width_mm <= 0:
            raise PageGeometryError("margins leave no usable width")
        if self.usable_height_mm(first_page=True) <= 0:
            raise PageGeometryError("reserved bands leave no usable height on the first page of a section")
        return self


@dataclass(frozen=True)
class SlicePlan:
    """One page's share of a capture; offsets/heights in capture pixels unless noted."""

    index: int
    offset_px: float
    height_px: float
    height_mm: float
    content_top_mm: float

    @property
    def has_title(self) -> bool:
        return self.index == 0


@dataclass(frozen=True)
class SectionPage:
    section_id: str
    title: Optional[str]
    image: Image.Image
    slice_height_mm: float
    content_top_mm: float


def pixels_per_mm(capture_width_px: int, geometry: PageGeometry) -> float:
    return float(capture_width_px) / geometry.usable_width_mm


def scaled_height_mm(capture_width_px: int, capture_height_px: int, geometry: PageGeometry) -> float:
    """Height of the capture once scaled to the full usable width."""
    return float(capture_height_px) * geometry.usable_width_mm / float(capture_width_px)


def plan_slices(capture_width_px: int, capture_height_px: int, geometry: PageGeometry) -> List[SlicePlan]:
    """
    Split a capture of the given pixel size into page-sized slices.

    Returns an empty list for an empty capture. Slice heights sum to the scaled capture
    height; consecutive slices are contiguous in pixel space.
    """
    if capture_width_px <= 0 or capture_height_px <= 0:
        return []

    total_mm = scaled_height_mm(capture_width_px, capture_height_px, geometry)
    ratio = pixels_per_mm(capture_width_px, geometry)

    slices: List[SlicePlan] = []
    remaining_mm = total_mm
    offset_px = 0.0
    while remaining_mm > _EPSILON_MM:
        first = not slices
        slice_mm = min(remaining_mm, geometry.usable_height_mm(first_page=first))
        slice_px = slice_mm * ratio
        slices.append(
            SlicePlan(
                index=len(slices),
                offset_px=offset_px,
                height_px=slice_px,
                height_mm=slice_mm,
                content_top_mm=geometry.content_top_mm(first_page=first),
            )
        )
        offset_px += slice_px
        remaining_mm -= slice_mm
    return slices


def paginate_section(capture: RasterCapture, *, section_id: str, title: str, geometry: PageGeometry) -> List[SectionPage]:
    """
    Slice a capture into `SectionPage` descriptors; only the first page carries `title`.
    """
    pages: List[SectionPage] = []
    for plan in plan_slices(capture.width_px, capture.height_px, geometry):
        top = min(int(round(plan.offset_px)), capture.height_px - 1)
        bottom = min(capture.height_px, int(round(plan.offset_px + plan.height_px)))
        # Sub-pixel slices still need one row to be a valid image.
        bottom = max(bottom, min(capture.height_px, top + 1))
        pages.append(
            SectionPage(
                section_id=section_id,
                title=title if plan.has_title else None,
                image=capture.image.crop((0, top, capture.width_px, bottom)),
                slice_height_mm=plan.height_mm,
                content_top_mm=plan.content_top_mm,
            )
        )
    return pages
