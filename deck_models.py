from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Sequence, Tuple


class DeckType(str, Enum):
    ATTACHED = "Attached Deck"
    DETACHED = "Detached Deck"
    MULTI_LEVEL = "Multi-Level Deck"
    WRAP_AROUND = "Wrap-Around Deck"
    POOL = "Pool Deck"
    ROOFTOP = "Rooftop Deck"


class MaterialType(str, Enum):
    PRESSURE_TREATED = "Natural Wood - Pressure Treated"
    CEDAR = "Natural Wood - Cedar"
    REDWOOD = "Natural Wood - Redwood"
    IPE = "Natural Wood - Ipe"
    COMPOSITE = "Composite Boards"
    PVC = "Polyvinyl Chloride (PVC)"
    ALUMINUM = "Aluminum"


BOM_CATEGORIES: Tuple[str, ...] = ("Framing", "Decking", "Hardware", "Waterproofing")


class SpecsError(ValueError):
    pass


class PlanPayloadError(ValueError):
    pass


@dataclass(frozen=True)
class DeckSpecs:
    project_name: str
    length_ft: float
    width_ft: float
    height_ft: float
    zip_code: str
    deck_type: DeckType = DeckType.ATTACHED
    material: MaterialType = MaterialType.PRESSURE_TREATED
    function: str = "Dining and Lounging"
    expansion: str = "None"
    environment: str = "Four seasons, moderate rain"
    address: Optional[str] = None
    railing_match: bool = False

    @property
    def dimensions_label(self) -> str:
        return f"{_num(self.length_ft)}ft (L) x {_num(self.width_ft)}ft (W) x {_num(self.height_ft)}ft (H)"

    @property
    def context_label(self) -> str:
        """Short description used in image prompts, e.g. `12x16 Attached Deck made of Composite Boards`."""
        return f"{_num(self.length_ft)}x{_num(self.width_ft)} {self.deck_type.value} made of {self.material.value}"


@dataclass(frozen=True)
class BomItem:
    category: str
    item: str
    quantity: str
    notes: str = ""


@dataclass(frozen=True)
class ToolItem:
    name: str
    description: str = ""


@dataclass(frozen=True)
class ToolCategory:
    category: str
    tools: Tuple[ToolItem, ...]


@dataclass(frozen=True)
class BuildStep:
    step_number: int
    title: str
    description: str
    time_estimate: str


@dataclass(frozen=True)
class PlanData:
    bom: Tuple[BomItem, ...]
    tools: Tuple[ToolCategory, ...]
    steps: Tuple[BuildStep, ...]


@dataclass(frozen=True)
class BreakdownItem:
    item: str
    quantity: str
    unit_price: str
    total_price: str


@dataclass(frozen=True)
class SourceLink:
    title: str
    uri: str


@dataclass(frozen=True)
class CostEstimate:
    material_total: str
    labor_total: str
    permit_fees: str
    contingency: str
    breakdown: Tuple[BreakdownItem, ...] = ()
    sources: Tuple[SourceLink, ...] = ()


@dataclass(frozen=True)
class PlanContent:
    """
    Everything currently on screen for one submission.

    Regions for the PDF export are looked up here; a missing plan or cost means the
    corresponding sections are absent.
    """

    specs: DeckSpecs
    plan: Optional[PlanData] = None
    cost: Optional[CostEstimate] = None
    # step_number -> PNG bytes or data URL
    step_images: Mapping[int, Any] = field(default_factory=dict)


def validate_specs(specs: DeckSpecs) -> DeckSpecs:
    if not (specs.project_name or "").strip():
        raise SpecsError("Project Name is mandatory for your architectural report.")
    if not (specs.zip_code or "").strip():
        raise SpecsError("Zip Code is required for local cost estimation.")
    for name in ("length_ft", "width_ft"):
        value = getattr(specs, name)
        if not isinstance(value, (int, float)) or value <= 0:
            raise SpecsError(f"{name} must be a positive number (got {value!r})")
    if not isinstance(specs.height_ft, (int, float)) or specs.height_ft < 0:
        raise SpecsError(f"height_ft must be >= 0 (got {specs.height_ft!r})")
    return specs


def bom_summary(plan: PlanData) -> str:
    return "\n".join(f"- [{i.category}] {i.quantity} x {i.item}" for i in plan.bom)


def plan_from_payload(payload: Mapping[str, Any]) -> PlanData:
    """
    Build a `PlanData` from the model's JSON object.

    Required keys: `bom`, `tools`, `steps`. Extra keys are ignored.
    """
    if not isinstance(payload, Mapping):
        raise PlanPayloadError(f"plan payload must be an object (got {type(payload).__name__})")

    bom: list[BomItem] = []
    for raw in _as_list(payload, "bom"):
        bom.append(
            BomItem(
                category=_required_str(raw, "category", where="bom"),
                item=_required_str(raw, "item", where="bom"),
                quantity=_required_str(raw, "quantity", where="bom"),
                notes=_optional_str(raw.get("notes")),
            )
        )

    tools: list[ToolCategory] = []
    for raw in _as_list(payload, "tools"):
        items: list[ToolItem] = []
        for t in raw.get("tools") or []:
            # Older responses list tools as bare names.
            if isinstance(t, str):
                if t.strip():
                    items.append(ToolItem(name=t.strip()))
                continue
            if not isinstance(t, Mapping):
                raise PlanPayloadError(f"tools entries must be objects or strings (got {type(t).__name__})")
            items.append(ToolItem(name=_required_str(t, "name", where="tools"), description=_optional_str(t.get("description"))))
        tools.append(ToolCategory(category=_required_str(raw, "category", where="tools"), tools=tuple(items)))

    steps: list[BuildStep] = []
    for idx, raw in enumerate(_as_list(payload, "steps"), start=1):
        steps.append(
            BuildStep(
                step_number=_as_int(raw.get("stepNumber", raw.get("step_number")), default=idx),
                title=_required_str(raw, "title", where="steps"),
                description=_optional_str(raw.get("description")),
                time_estimate=_optional_str(raw.get("timeEstimate", raw.get("time_estimate"))),
            )
        )

    return PlanData(bom=tuple(bom), tools=tuple(tools), steps=tuple(steps))


def cost_from_payload(payload: Mapping[str, Any], sources: Sequence[SourceLink] = ()) -> CostEstimate:
    if not isinstance(payload, Mapping):
        raise PlanPayloadError(f"cost payload must be an object (got {type(payload).__name__})")

    breakdown: list[BreakdownItem] = []
    for raw in payload.get("breakdown") or []:
        if not isinstance(raw, Mapping):
            continue
        breakdown.append(
            BreakdownItem(
                item=_optional_str(raw.get("item")),
                quantity=_optional_str(raw.get("quantity")),
                unit_price=_optional_str(raw.get("unitPrice", raw.get("unit_price"))),
                total_price=_optional_str(raw.get("totalPrice", raw.get("total_price"))),
            )
        )

    return CostEstimate(
        material_total=_optional_str(payload.get("materialTotal", payload.get("material_total"))),
        labor_total=_optional_str(payload.get("laborTotal", payload.get("labor_total"))),
        permit_fees=_optional_str(payload.get("permitFees", payload.get("permit_fees"))),
        contingency=_optional_str(payload.get("contingency")),
        breakdown=tuple(breakdown),
        sources=tuple(sources),
    )


def _num(value: float) -> str:
    f = float(value)
    return str(int(f)) if f.is_integer() else f"{f:g}"


def _as_list(payload: Mapping[str, Any], key: str) -> list[Mapping[str, Any]]:
    raw = payload.get(key)
    if raw is None:
        raise PlanPayloadError(f"plan payload is missing `{key}`")
    if not isinstance(raw, list):
        raise PlanPayloadError(f"`{key}` must be a list (got {type(raw).__name__})")
    out: list[Mapping[str, Any]] = []
    for entry in raw:
        if not isinstance(entry, Mapping):
            raise PlanPayloadError(f"`{key}` entries must be objects (got {type(entry).__name__})")
        out.append(entry)
    return out


def _required_str(raw: Mapping[str, Any], key: str, *, where: str) -> str:
    value = raw.get(key)
    if value is None or not str(value).strip():
        raise PlanPayloadError(f"{where} entry is missing `{key}`")
    return str(value).strip()


def _optional_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _as_int(value: Any, *, default: int) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default
