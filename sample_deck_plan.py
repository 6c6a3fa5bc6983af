from __future__ import annotations

from deck_models import (
    BomItem,
    BreakdownItem,
    BuildStep,
    CostEstimate,
    DeckSpecs,
    DeckType,
    MaterialType,
    PlanContent,
    PlanData,
    SourceLink,
    ToolCategory,
    ToolItem,
)


def sample_specs(project_name: str = "Backyard Retreat") -> DeckSpecs:
    return DeckSpecs(
        project_name=project_name,
        length_ft=16,
        width_ft=12,
        height_ft=3,
        zip_code="97205",
        deck_type=DeckType.ATTACHED,
        material=MaterialType.COMPOSITE,
        function="Dining and Lounging",
        expansion="Pergola in 2 years",
        environment="Four seasons, heavy rain",
    )


def sample_plan_content(*, project_name: str = "Backyard Retreat", repeat: int = 1) -> PlanContent:
    """
    Hardcoded plan/cost data shaped like a real model response.

    Intent:
    - Offline demos and smoke tests without an API key.
    - `repeat` multiplies the BOM and breakdown rows to force multi-page sections.
    """
    n = max(1, int(repeat))
    bom = (
        BomItem("Framing", "2x10 PT joists, 12ft", "13", "16in on center"),
        BomItem("Framing", "2x10 PT ledger board, 16ft", "1", "Flash above with Z-flashing"),
        BomItem("Framing", "6x6 PT posts, 8ft", "4", "Set on concrete footings"),
        BomItem("Decking", "Composite deck boards, 16ft", "36", "Grooved edge"),
        BomItem("Decking", "Composite fascia, 12ft", "6", ""),
        BomItem("Hardware", "Joist hangers, 2x10", "26", "Hot-dipped galvanized"),
        BomItem("Hardware", "Hidden deck fasteners (box of 90)", "8", ""),
        BomItem("Hardware", "1/2in ledger lag screws", "24", "Stainless steel"),
        BomItem("Waterproofing", "Joist tape, 3in x 50ft", "4", "Apply to joist tops"),
    )
    tools = (
        ToolCategory(
            "Layout & Excavation",
            (
                ToolItem("String line and stakes", "Square the footprint before digging."),
                ToolItem("Post hole digger", "Footings below the local frost line."),
            ),
        ),
        ToolCategory(
            "Cutting & Fastening",
            (
                ToolItem("Circular saw", "Cross-cuts on joists and boards."),
                ToolItem("Impact driver", "Lag screws and structural fasteners."),
                ToolItem("Hidden fastener jig", "Consistent board gaps."),
            ),
        ),
    )
    steps = (
        BuildStep(1, "Site layout and permits", "Pull permits, call 811, and stake out the footprint.", "1 day"),
        BuildStep(2, "Footings and posts", "Dig footings, pour concrete, and set post bases.", "2 days"),
        BuildStep(3, "Ledger and framing", "Install the flashed ledger, beams, and joists on hangers.", "2-3 days"),
        BuildStep(4, "Decking", "Tape joists and install composite boards with hidden fasteners.", "2 days"),
        BuildStep(5, "Fascia and inspection", "Install fascia, clean up, and schedule the final inspection.", "1 day"),
    )
    breakdown = (
        BreakdownItem("2x10 PT joists, 12ft", "13", "$24.98", "$324.74"),
        BreakdownItem("Composite deck boards, 16ft", "36", "$42.50", "$1,530.00"),
        BreakdownItem("Joist hangers, 2x10", "26", "$2.18", "$56.68"),
        BreakdownItem("Hidden deck fasteners (box of 90)", "8", "$38.97", "$311.76"),
    )
    cost = CostEstimate(
        material_total="$2,948",
        labor_total="$4,200",
        permit_fees="$350",
        contingency="$1,125 (15%)",
        breakdown=breakdown * n,
        sources=(
            SourceLink("Home Depot - Composite Decking", "https://www.homedepot.com/"),
            SourceLink("Lowe's - Deck Framing Lumber", "https://www.lowes.com/"),
        ),
    )
    return PlanContent(
        specs=sample_specs(project_name),
        plan=PlanData(bom=bom * n, tools=tools, steps=steps),
        cost=cost,
    )
